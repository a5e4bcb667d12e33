"""
Script and signing engine for Bitcoin transactions.

This module wraps the embit library for:
- Decoding addresses to output scripts
- Loading WIF private keys
- Creating the embit Transaction from bound inputs and outputs
- ECDSA signing (BIP143 for segwit inputs, legacy sighash for P2PKH)
- Finalizing signatures into scriptSig / witness data
- Serializing and measuring the final transaction

Every signature is verified with coincurve before it is accepted
("Don't trust, verify").
"""

import logging
from typing import Dict, Any, List

from coincurve import PublicKey as CoincurvePublicKey
from embit import script
from embit.ec import PrivateKey
from embit.transaction import Transaction, TransactionInput, TransactionOutput, SIGHASH

from .constants import get_network_config
from .errors import SigningFailure, ValidationError
from .models import InputDescriptor, ScriptType, TxOutput

logger = logging.getLogger('btcsend.engine')


def push_data(data: bytes) -> bytes:
    """Minimal push for data shorter than OP_PUSHDATA1 (75 bytes)."""
    if len(data) > 75:
        raise ValueError(f"Push of {len(data)} bytes needs OP_PUSHDATA")
    return bytes([len(data)]) + data


class SigningEngine:
    """
    embit-backed engine used by the transaction assembler.

    Holds no per-transaction state; one engine can serve many builds.
    """

    def __init__(self, network: str = 'mainnet'):
        """
        Initialize the engine.

        Args:
            network: Bitcoin network name ('mainnet', 'testnet', etc.)
        """
        self.network = network
        self.net_config = get_network_config(network)

    def load_key(self, wif: str) -> PrivateKey:
        """
        Decode a WIF private key.

        Raises:
            ValidationError: If the WIF string cannot be decoded
        """
        try:
            return PrivateKey.from_wif(wif)
        except Exception as e:
            raise ValidationError(f"Invalid WIF private key: {e}")

    def public_key(self, privkey: PrivateKey) -> bytes:
        """Compressed SEC public key for a private key."""
        return privkey.get_public_key().sec()

    def derive_script(self, address: str) -> script.Script:
        """
        Convert an address to its output script.

        Supports P2PKH, P2SH, P2WPKH, P2WSH and P2TR addresses.

        Raises:
            ValidationError: If the address cannot be decoded
        """
        try:
            return script.address_to_scriptpubkey(address)
        except Exception as e:
            raise ValidationError(f"Failed to decode address {address}: {e}")

    def create_transaction(
        self,
        inputs: List[InputDescriptor],
        outputs: List[TxOutput]
    ) -> Transaction:
        """
        Build the unsigned embit Transaction.

        Args:
            inputs: Bound input descriptors in spending order
            outputs: Outputs in order

        Returns:
            Unsigned Transaction object
        """
        tx_inputs = []
        for inp in inputs:
            # txid is in display order, embit reverses on serialization
            txid_bytes = bytes.fromhex(inp.utxo.txid)
            tx_inputs.append(TransactionInput(txid_bytes, inp.utxo.vout, sequence=inp.sequence))

        tx_outputs = [
            TransactionOutput(output.amount, self.derive_script(output.address))
            for output in outputs
        ]

        return Transaction(vin=tx_inputs, vout=tx_outputs)

    def sign(
        self,
        tx: Transaction,
        index: int,
        descriptor: InputDescriptor,
        privkey: PrivateKey
    ) -> None:
        """
        Sign one input with SIGHASH_ALL and store the signature on the descriptor.

        Args:
            tx: Unsigned transaction
            index: Input index in tx
            descriptor: Input descriptor for that index
            privkey: Signing key

        Raises:
            SigningFailure: If the signing material is missing or malformed,
                or the produced signature does not verify
        """
        pubkey = privkey.get_public_key()
        sec = pubkey.sec()

        if descriptor.script_type.is_segwit:
            commitment = descriptor.witness_utxo
            if commitment is None:
                raise SigningFailure(f"Input {index}: missing witness commitment")
            witness_program = script.p2wpkh(pubkey)
            if descriptor.script_type is ScriptType.P2SH_P2WPKH:
                if descriptor.redeem_script != witness_program.data:
                    raise SigningFailure(f"Input {index}: missing or mismatched redeem script")
                expected = script.p2sh(witness_program).data
            else:
                expected = witness_program.data
            if commitment.script_pubkey != expected:
                raise SigningFailure(f"Input {index}: spent output is not locked to the signing key")
            # BIP143 script code for P2WPKH is the equivalent P2PKH script
            script_code = script.p2pkh(pubkey)
            sighash = tx.sighash_segwit(index, script_code, commitment.value, sighash=SIGHASH.ALL)
        else:
            prev_script = self._previous_output_script(index, descriptor)
            if prev_script.data != script.p2pkh(pubkey).data:
                raise SigningFailure(f"Input {index}: spent output is not locked to the signing key")
            sighash = tx.sighash_legacy(index, prev_script, sighash=SIGHASH.ALL)

        sig = privkey.sign(sighash).serialize()

        if not CoincurvePublicKey(sec).verify(sig, sighash, hasher=None):
            raise SigningFailure(f"Input {index}: signature failed verification")

        descriptor.signature = sig + bytes([SIGHASH.ALL])
        descriptor.public_key = sec
        logger.debug(f"Signed input {index} ({descriptor.script_type.value})")

    def _previous_output_script(self, index: int, descriptor: InputDescriptor) -> script.Script:
        """Script of the spent output, taken from the full previous transaction."""
        if not descriptor.non_witness_utxo:
            raise SigningFailure(f"Input {index}: missing previous transaction")
        try:
            prev_tx = Transaction.parse(bytes.fromhex(descriptor.non_witness_utxo))
        except Exception as e:
            raise SigningFailure(f"Input {index}: could not parse previous transaction: {e}")

        if prev_tx.txid().hex() != descriptor.utxo.txid:
            raise SigningFailure(f"Input {index}: previous transaction does not match {descriptor.utxo.txid}")
        if descriptor.utxo.vout >= len(prev_tx.vout):
            raise SigningFailure(f"Input {index}: output {descriptor.utxo.vout} not found in previous transaction")

        return prev_tx.vout[descriptor.utxo.vout].script_pubkey

    def finalize(self, tx: Transaction, index: int, descriptor: InputDescriptor) -> None:
        """
        Turn the stored signature into spendable scriptSig / witness data.

        Raises:
            SigningFailure: If the input has not been signed
        """
        if not descriptor.signature or not descriptor.public_key:
            raise SigningFailure(f"Input {index}: not signed")

        sig, pub = descriptor.signature, descriptor.public_key

        try:
            if descriptor.script_type is ScriptType.P2WPKH:
                descriptor.witness = [sig, pub]
                descriptor.script_sig = b''
            elif descriptor.script_type is ScriptType.P2SH_P2WPKH:
                descriptor.witness = [sig, pub]
                descriptor.script_sig = push_data(descriptor.redeem_script)
            else:
                descriptor.witness = []
                descriptor.script_sig = push_data(sig) + push_data(pub)
        except (TypeError, ValueError) as e:
            raise SigningFailure(f"Input {index}: could not finalize: {e}")

        tx.vin[index].script_sig = script.Script(descriptor.script_sig)
        tx.vin[index].witness = script.Witness(descriptor.witness)

    def serialize(self, tx: Transaction) -> Dict[str, Any]:
        """
        Serialize a finalized transaction.

        Virtual size follows BIP 141: weight = base_size * 3 + total_size,
        vsize = ceil(weight / 4).

        Returns:
            Dict with 'hex', 'txid', 'size' and 'virtual_size'
        """
        raw = tx.serialize()
        total_size = len(raw)

        # Same transaction with every witness stripped gives the base size
        stripped = Transaction(
            version=tx.version,
            vin=[
                TransactionInput(inp.txid, inp.vout, script_sig=inp.script_sig, sequence=inp.sequence)
                for inp in tx.vin
            ],
            vout=tx.vout,
            locktime=tx.locktime
        )
        base_size = len(stripped.serialize())

        weight = base_size * 3 + total_size
        virtual_size = (weight + 3) // 4

        return {
            'hex': raw.hex(),
            'txid': tx.txid().hex(),
            'size': total_size,
            'virtual_size': virtual_size
        }
