from stellar_sdk import Network

# Endpoints and passphrases for the supported networks
TESTNET = {
    'soroban_rpc_url': 'https://soroban-testnet.stellar.org',
    'horizon_url': 'https://horizon-testnet.stellar.org',
    'network_passphrase': Network.TESTNET_NETWORK_PASSPHRASE,
    'explorer_url': 'https://stellar.expert/explorer/testnet',
    'simulation_source': 'GAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAWHF',
}

PUBLIC = {
    'soroban_rpc_url': 'https://soroban-rpc.mainnet.stellar.gateway.fm',
    'horizon_url': 'https://horizon.stellar.org',
    'network_passphrase': Network.PUBLIC_NETWORK_PASSPHRASE,
    'explorer_url': 'https://stellar.expert/explorer/public',
    'simulation_source': 'GAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAWHF',
}

NETWORKS = {
    'testnet': TESTNET,
    'public': PUBLIC,
}

def get_network(name: str) -> dict:
    """Look up a network by its NETWORK setting value"""
    try:
        return NETWORKS[name.strip().lower()]
    except KeyError:
        raise ValueError(f"Unknown network {name!r}, expected one of: {', '.join(NETWORKS)}") from None

# Stroop scale: 1 XLM = 10^7 stroops
STROOP_DECIMALS = 7

# Keep this much XLM untouched for the account minimum balance and fees
ACCOUNT_RESERVE_XLM = 1
