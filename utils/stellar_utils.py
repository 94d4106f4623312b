from config import Config
from protocols.lumilend import LumiLendPool
from protocols.payments import PaymentSender
from protocols.queries import PoolQueries
from protocols.soroban_rpc import SorobanRpc
from protocols.wallet import KeypairWallet
from utils.cache import ReadCache
from utils.store import JsonFileStore

def init_rpc() -> SorobanRpc:
    """Initialize Soroban RPC + Horizon connections"""
    return SorobanRpc(Config.SOROBAN_RPC_URL, Config.HORIZON_URL)

def init_wallet() -> KeypairWallet:
    """Wallet from WALLET_PVT_KEY; unconnected if the key is missing"""
    return KeypairWallet(Config.WALLET_PVT_KEY)

def init_pool(rpc: SorobanRpc, wallet: KeypairWallet) -> LumiLendPool:
    return LumiLendPool(
        rpc=rpc,
        wallet=wallet,
        contract_id=Config.CONTRACT_ID,
        network_passphrase=Config.NETWORK_PASSPHRASE,
        simulation_source=Config.SIMULATION_SOURCE,
        store=JsonFileStore(Config.HINT_STORE_PATH),
        base_fee=Config.BASE_FEE,
        tx_timeout=Config.TX_TIMEOUT,
        poll_interval=Config.POLL_INTERVAL,
        poll_timeout=Config.POLL_TIMEOUT,
        scan_limit=Config.LOAN_SCAN_LIMIT,
    )

def init_queries(pool: LumiLendPool) -> PoolQueries:
    return PoolQueries(
        pool,
        ReadCache(max_entries=Config.CACHE_MAX_ENTRIES),
        pool_stats_ttl=Config.POOL_STATS_TTL,
        address_ttl=Config.ADDRESS_TTL,
    )

def init_payments(rpc: SorobanRpc, wallet: KeypairWallet) -> PaymentSender:
    return PaymentSender(
        rpc.horizon,
        wallet,
        Config.NETWORK_PASSPHRASE,
        base_fee=Config.BASE_FEE,
        tx_timeout=Config.TX_TIMEOUT,
    )
