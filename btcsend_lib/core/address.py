"""
Address classification and key-derived addresses.

This module contains functions for:
- Classifying a sending address into a ScriptType by prefix
- Deriving the P2WPKH and P2SH output scripts
- Deriving the address a WIF key controls for a given script type

Classification looks at the prefix only; the address checksum and script are
never validated here.
"""

import logging

from embit import script
from embit.ec import PrivateKey, PublicKey

from .constants import get_network_config
from .models import ScriptType

logger = logging.getLogger('btcsend.address')

# Native segwit HRPs per network family
SEGWIT_PREFIXES = ('bc1', 'tb1', 'bcrt1')
# Base58 P2SH version prefixes ('3' mainnet, '2' test networks)
P2SH_PREFIXES = ('3', '2')


def classify_address(address: str) -> ScriptType:
    """
    Classify an address into one of the supported script types.

    Args:
        address: Bitcoin address string

    Returns:
        ScriptType.P2WPKH for bech32 prefixes, ScriptType.P2SH_P2WPKH for
        P2SH prefixes, ScriptType.P2PKH for everything else (including
        unrecognized prefixes)
    """
    if address.startswith(SEGWIT_PREFIXES):
        return ScriptType.P2WPKH
    if address.startswith(P2SH_PREFIXES):
        return ScriptType.P2SH_P2WPKH
    if not address.startswith(('1', 'm', 'n')):
        logger.debug(f"Unrecognized address prefix for {address!r}, treating as P2PKH")
    return ScriptType.P2PKH


def p2wpkh_script(public_key: bytes) -> bytes:
    """
    Standard pay-to-witness-pubkey-hash script (OP_0 <20-byte hash160>).

    Args:
        public_key: Compressed SEC public key (33 bytes)

    Returns:
        Raw script bytes (22 bytes)
    """
    return script.p2wpkh(PublicKey.parse(public_key)).data


def p2sh_script(redeem_script: bytes) -> bytes:
    """Pay-to-script-hash output script (OP_HASH160 <hash160> OP_EQUAL) for a redeem script."""
    return script.p2sh(script.Script(redeem_script)).data


def derive_address_from_wif(wif: str, script_type: ScriptType, network: str = 'mainnet') -> str:
    """
    Derive the address a WIF private key controls for a script type.

    Used to warn when the sending address does not belong to the key.

    Args:
        wif: WIF-encoded private key
        script_type: Script type to derive
        network: Bitcoin network

    Returns:
        Bitcoin address string
    """
    privkey = PrivateKey.from_wif(wif)
    pubkey = privkey.get_public_key()
    net_config = get_network_config(network)

    if script_type is ScriptType.P2WPKH:
        return script.p2wpkh(pubkey).address(net_config)
    elif script_type is ScriptType.P2SH_P2WPKH:
        return script.p2sh(script.p2wpkh(pubkey)).address(net_config)
    else:
        return script.p2pkh(pubkey).address(net_config)
