"""
Utility functions for the transaction tool.

This module provides helper functions for formatting and for validating
requests at the boundary, before they reach the transaction builder.
"""

import logging
from typing import Any, Dict

import base58

from .core.constants import SATS_PER_BTC, NETWORKS
from .core.errors import ValidationError
from .core.models import TransactionRequest

logger = logging.getLogger('btcsend.utils')

# WIF version bytes: mainnet, test networks
WIF_VERSIONS = (0x80, 0xef)


def format_btc(satoshis: int) -> str:
    """
    Format satoshis as BTC.

    Args:
        satoshis: Amount in satoshis

    Returns:
        Formatted string (e.g., "0.00123456 BTC")
    """
    return f"{satoshis / SATS_PER_BTC:.8f} BTC"


def get_network_display_name(network: str) -> str:
    """
    Get display name for a network.

    Args:
        network: Network name (mainnet, testnet, etc.)

    Returns:
        Display name (e.g., "Bitcoin Mainnet")
    """
    network_info = NETWORKS.get(network, NETWORKS['mainnet'])
    return network_info['name']


def validate_wif(wif: str) -> bool:
    """
    Check WIF structure: base58check checksum, version byte and length.

    Args:
        wif: WIF-encoded private key

    Returns:
        True if valid, False otherwise
    """
    try:
        decoded = base58.b58decode_check(wif)
    except ValueError:
        logger.error("Invalid private key: WIF checksum mismatch")
        return False

    if decoded[0] not in WIF_VERSIONS:
        logger.error(f"Invalid private key: unexpected WIF version byte {decoded[0]:#x}")
        return False

    # version + 32-byte key, optionally followed by the 0x01 compression flag
    if len(decoded) == 34 and decoded[-1] == 0x01:
        return True
    if len(decoded) == 33:
        return True

    logger.error(f"Invalid private key: unexpected WIF payload length {len(decoded)}")
    return False


def _require_str(data: Dict[str, Any], name: str) -> None:
    value = data.get(name)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} must be a non-empty string")


def _require_int(data: Dict[str, Any], name: str) -> None:
    value = data.get(name)
    # bool is an int subclass, reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer number of satoshis")
    if value < 0:
        raise ValidationError(f"{name} must not be negative")


def _require_bool(data: Dict[str, Any], name: str) -> None:
    if name in data and not isinstance(data[name], bool):
        raise ValidationError(f"{name} must be a boolean")


def validate_request(data: Dict[str, Any]) -> TransactionRequest:
    """
    Validate a raw request body and build a TransactionRequest.

    Args:
        data: Request fields (fromAddress, privateKey, toAddress,
            amountSatoshis, feeSatoshis, rbf, broadcast)

    Returns:
        TransactionRequest

    Raises:
        ValidationError: If any field is missing or has the wrong type
    """
    if not isinstance(data, dict):
        raise ValidationError("Request body must be an object")

    for name in ('fromAddress', 'privateKey', 'toAddress'):
        _require_str(data, name)
    for name in ('amountSatoshis', 'feeSatoshis'):
        _require_int(data, name)
    for name in ('rbf', 'broadcast'):
        _require_bool(data, name)

    if not validate_wif(data['privateKey']):
        raise ValidationError("privateKey is not a valid WIF private key")

    return TransactionRequest.from_dict(data)
