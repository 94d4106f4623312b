import os
from dotenv import load_dotenv, find_dotenv
from protocols.config.networks import get_network

# Load .env if one exists; plain environment variables work without it
load_dotenv(find_dotenv())

# NETWORK picks the endpoint defaults; each one can still be overridden below
NETWORK_DEFAULTS = get_network(os.getenv("NETWORK", "testnet"))

class Config:
    # Network settings
    NETWORK = os.getenv("NETWORK", "testnet")
    SOROBAN_RPC_URL = os.getenv("SOROBAN_RPC_URL", NETWORK_DEFAULTS['soroban_rpc_url'])
    HORIZON_URL = os.getenv("HORIZON_URL", NETWORK_DEFAULTS['horizon_url'])
    NETWORK_PASSPHRASE = os.getenv("NETWORK_PASSPHRASE", NETWORK_DEFAULTS['network_passphrase'])
    EXPLORER_URL = os.getenv("EXPLORER_URL", NETWORK_DEFAULTS['explorer_url'])

    # Protocol settings
    CONTRACT_ID = os.getenv("CONTRACT_ID", "")
    WALLET_PVT_KEY = os.getenv("WALLET_PVT_KEY", "")
    # Read-only simulations need a source account but never a signature
    SIMULATION_SOURCE = os.getenv("SIMULATION_SOURCE", NETWORK_DEFAULTS['simulation_source'])

    # Transaction parameters
    BASE_FEE = int(os.getenv("BASE_FEE", "100"))  # stroops
    TX_TIMEOUT = int(os.getenv("TX_TIMEOUT", "30"))  # seconds
    POLL_INTERVAL = float(os.getenv("POLL_INTERVAL", "2"))
    POLL_TIMEOUT = float(os.getenv("POLL_TIMEOUT", "0"))  # 0 = poll until terminal

    # Read cache
    POOL_STATS_TTL = float(os.getenv("POOL_STATS_TTL", "30"))
    ADDRESS_TTL = float(os.getenv("ADDRESS_TTL", "10"))
    CACHE_MAX_ENTRIES = int(os.getenv("CACHE_MAX_ENTRIES", "256"))

    # Loan recovery
    LOAN_SCAN_LIMIT = int(os.getenv("LOAN_SCAN_LIMIT", "20"))
    HINT_STORE_PATH = os.getenv("HINT_STORE_PATH", ".lumilend_state.json")
