"""
Constants and network configurations for transaction assembly.

This module contains all constants and network configuration mappings
used throughout the application.
"""

from dataclasses import dataclass
from typing import Dict, Any
from embit.networks import NETWORKS as EMBIT_NETWORKS

# HTTP defaults for the indexer client
HTTP_TIMEOUT = 10.0  # seconds

# Bitcoin constants
SATS_PER_BTC = 100_000_000
DUST_THRESHOLD = 546  # satoshis; change at or below this is absorbed into the fee

# Input sequence numbers
SEQUENCE_FINAL = 0xffffffff
SEQUENCE_RBF = 0xfffffffd  # BIP 125 opt-in replace-by-fee

# Network configurations
# Map our network names to embit network names
NETWORK_MAP = {
    'mainnet': 'main',
    'testnet': 'test',
    'testnet4': 'test',  # testnet4 uses same config as testnet
    'signet': 'signet',
    'regtest': 'regtest',
}

# Network display names and indexer endpoints
NETWORKS = {
    'mainnet': {'name': 'Bitcoin Mainnet', 'api_url': 'https://mempool.space/api'},
    'testnet': {'name': 'Bitcoin Testnet', 'api_url': 'https://mempool.space/testnet/api'},
    'testnet4': {'name': 'Bitcoin Testnet4', 'api_url': 'https://mempool.space/testnet4/api'},
    'signet': {'name': 'Bitcoin Signet', 'api_url': 'https://mempool.space/signet/api'},
    'regtest': {'name': 'Bitcoin Regtest', 'api_url': 'http://127.0.0.1:3002/api'},
}


def get_network_config(network: str) -> Dict[str, Any]:
    """
    Get embit network configuration for given network name.

    Args:
        network: Network name ('mainnet', 'testnet', etc.)

    Returns:
        Network configuration dictionary from embit
    """
    embit_key = NETWORK_MAP.get(network, 'main')
    return EMBIT_NETWORKS[embit_key]


def get_api_url(network: str) -> str:
    """Default mempool.space API base URL for a network."""
    return NETWORKS.get(network, NETWORKS['mainnet'])['api_url']


@dataclass
class BuilderConfig:
    """
    Per-build configuration passed explicitly into the assembler.

    Attributes:
        network: Network name used for address and key handling
        dust_threshold: Change amounts at or below this are not given an output
        strict: If True, an over-spend raises instead of clamping the amount
        cache_fetches: If True, previous transactions are fetched once per txid
    """
    network: str = 'mainnet'
    dust_threshold: int = DUST_THRESHOLD
    strict: bool = False
    cache_fetches: bool = True
