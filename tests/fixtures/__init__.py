"""
Test fixtures and helper functions for building test data.

This module provides a well-known test key, the addresses it controls and
helpers for constructing UTXOs and previous transactions used across the
test suite.
"""

from typing import List, Optional, Tuple

from embit import script
from embit.ec import PrivateKey, PublicKey
from embit.networks import NETWORKS
from embit.transaction import Transaction, TransactionInput, TransactionOutput

from btcsend_lib.core.models import UTXO, ScriptType, TransactionRequest
from btcsend_lib.core.address import derive_address_from_wif

# Private key 1 (generator point G), compressed, mainnet WIF
TEST_WIF = 'KwDiBf89QgGbjEhKnhXJuH7LrciVrZi3qYjgd9M7rFU73sVHnoWn'
TEST_PUBKEY_HEX = '0279be667ef9dcbbac55a06295ce870b07029bfcdb2dce28d959f2815b16f81798'

# BIP-173 example address, the P2WPKH address of TEST_WIF
TEST_P2WPKH_ADDRESS = 'bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4'

# Private key 2 (2G), a key TEST_WIF does not control
OTHER_PUBKEY_HEX = '02c6047f9441ed7d6d3045406e95c07cd85c778e4b8cef3ca7abac09b95c709ee5'

# Recipient (mainnet P2TR)
RECIPIENT_ADDRESS = 'bc1p5cyxnuxmeuwuvkwfem96lqzszd02n6xdcjrs20cac6yqjjwudpxqkedrcr'


def address_for(script_type: ScriptType) -> str:
    """Address controlled by TEST_WIF for a script type."""
    return derive_address_from_wif(TEST_WIF, script_type, 'mainnet')


def foreign_address(script_type: ScriptType) -> str:
    """Mainnet address of OTHER_PUBKEY_HEX for a script type."""
    pubkey = PublicKey.parse(bytes.fromhex(OTHER_PUBKEY_HEX))
    if script_type is ScriptType.P2WPKH:
        locking = script.p2wpkh(pubkey)
    elif script_type is ScriptType.P2SH_P2WPKH:
        locking = script.p2sh(script.p2wpkh(pubkey))
    else:
        locking = script.p2pkh(pubkey)
    return locking.address(NETWORKS['main'])


def make_utxo(index: int, value: int, confirmations: int = 6) -> UTXO:
    """UTXO with a deterministic fake txid."""
    return UTXO(txid=f"{index:064x}", vout=0, value=value, confirmations=confirmations)


def make_request(
    from_address: str = TEST_P2WPKH_ADDRESS,
    amount: int = 50000,
    fee: int = 1000,
    rbf: bool = False,
    broadcast: bool = False
) -> TransactionRequest:
    """Spend request signed with TEST_WIF."""
    return TransactionRequest(
        from_address=from_address,
        private_key=TEST_WIF,
        to_address=RECIPIENT_ADDRESS,
        amount_satoshis=amount,
        fee_satoshis=fee,
        rbf=rbf,
        broadcast=broadcast
    )


def make_previous_transaction(
    values: List[int],
    seed: int = 1,
    pubkey_hex: Optional[str] = None
) -> Tuple[str, str]:
    """
    Build a transaction paying a P2PKH script (TEST_WIF's by default).

    Args:
        values: Output values in satoshis
        seed: Makes the dummy input (and so the txid) unique
        pubkey_hex: Compressed public key to pay instead of TEST_WIF's

    Returns:
        Tuple of (raw_tx_hex, txid)
    """
    if pubkey_hex:
        pubkey = PublicKey.parse(bytes.fromhex(pubkey_hex))
    else:
        pubkey = PrivateKey.from_wif(TEST_WIF).get_public_key()
    tx = Transaction(
        vin=[TransactionInput(bytes([seed]) * 32, 0)],
        vout=[TransactionOutput(value, script.p2pkh(pubkey)) for value in values]
    )
    return tx.serialize().hex(), tx.txid().hex()
