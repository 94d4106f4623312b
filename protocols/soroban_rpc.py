import logging
from typing import Optional

from stellar_sdk import Account, ServerAsync, SorobanServerAsync, TransactionEnvelope
from stellar_sdk import xdr as stellar_xdr
from stellar_sdk.client.aiohttp_client import AiohttpClient
from stellar_sdk.exceptions import ConnectionError as StellarConnectionError
from stellar_sdk.exceptions import BadResponseError, NotFoundError, SorobanRpcErrorResponse
from stellar_sdk.soroban_rpc import GetTransactionStatus, SendTransactionStatus

from .base import LedgerRpc, SimulationResult, StatusResult, SubmitResult, TxStatus
from .errors import AccountNotFound

logger = logging.getLogger(__name__)

class SorobanRpc(LedgerRpc):
    """LedgerRpc backed by a Soroban RPC node and a Horizon server

    Soroban RPC handles simulation, submission and status lookups. Accounts
    and balances are read from Horizon.
    """

    def __init__(self, soroban_rpc_url: str, horizon_url: str):
        self.soroban_rpc_url = soroban_rpc_url
        self.horizon_url = horizon_url
        self.server = SorobanServerAsync(soroban_rpc_url)
        self.horizon = ServerAsync(horizon_url=horizon_url, client=AiohttpClient())
        logger.info(f"Soroban RPC initialized: {soroban_rpc_url}")

    async def close(self):
        await self.server.close()
        await self.horizon.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def load_account(self, address: str) -> Account:
        try:
            return await self.horizon.load_account(address)
        except NotFoundError as e:
            raise AccountNotFound(address) from e

    async def get_native_balance(self, address: str) -> Optional[str]:
        try:
            account = await self.horizon.accounts().account_id(address).call()
        except NotFoundError:
            return None
        native = next((b for b in account.get('balances', []) if b.get('asset_type') == 'native'), None)
        return native['balance'] if native else '0'

    async def simulate(self, tx: TransactionEnvelope) -> SimulationResult:
        response = await self.server.simulate_transaction(tx)
        if response.error:
            return SimulationResult(success=False, error=response.error, raw=response)

        return_value = None
        if response.results:
            return_value = stellar_xdr.SCVal.from_xdr(response.results[0].xdr)
        return SimulationResult(
            success=True,
            return_value=return_value,
            min_resource_fee=int(response.min_resource_fee or 0),
            raw=response,
        )

    async def assemble(self, tx: TransactionEnvelope, simulation: SimulationResult) -> TransactionEnvelope:
        return await self.server.prepare_transaction(tx, simulation.raw)

    async def submit(self, tx: TransactionEnvelope) -> SubmitResult:
        response = await self.server.send_transaction(tx)
        if response.status == SendTransactionStatus.ERROR:
            return SubmitResult(hash=response.hash, error=response.error_result_xdr or "ERROR")
        if response.status == SendTransactionStatus.TRY_AGAIN_LATER:
            return SubmitResult(hash=response.hash, error="Node is busy (TRY_AGAIN_LATER)")
        return SubmitResult(hash=response.hash)

    async def get_status(self, tx_hash: str) -> StatusResult:
        try:
            response = await self.server.get_transaction(tx_hash)
        except (StellarConnectionError, BadResponseError, SorobanRpcErrorResponse) as e:
            # The transaction is queued either way; report it as not seen yet
            logger.warning(f"Status lookup for {tx_hash} failed, will retry: {e}")
            return StatusResult(status=TxStatus.NOT_FOUND)

        if response.status == GetTransactionStatus.NOT_FOUND:
            return StatusResult(status=TxStatus.NOT_FOUND)
        if response.status == GetTransactionStatus.SUCCESS:
            return StatusResult(
                status=TxStatus.SUCCESS,
                return_value=self._return_value(response.result_meta_xdr),
            )
        return StatusResult(status=TxStatus.FAILED)

    @staticmethod
    def _return_value(result_meta_xdr: Optional[str]) -> Optional[stellar_xdr.SCVal]:
        """Extract the contract return value from transaction meta, if present"""
        if not result_meta_xdr:
            return None
        meta = stellar_xdr.TransactionMeta.from_xdr(result_meta_xdr)
        for version in ('v4', 'v3'):
            versioned = getattr(meta, version, None)
            soroban_meta = getattr(versioned, 'soroban_meta', None) if versioned else None
            if soroban_meta is not None:
                return getattr(soroban_meta, 'return_value', None)
        return None
