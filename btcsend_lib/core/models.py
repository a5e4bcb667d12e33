"""
Data models for transaction assembly.

This module contains all dataclasses used throughout the application
for representing UTXOs, spend requests, input descriptors, the in-progress
transaction and build results.
"""

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Optional, List, Dict, Any

from .constants import SATS_PER_BTC


class ScriptType(Enum):
    """Script type of the sending address."""
    P2WPKH = 'p2wpkh'
    P2SH_P2WPKH = 'p2sh-p2wpkh'
    P2PKH = 'p2pkh'

    @property
    def is_segwit(self) -> bool:
        return self is not ScriptType.P2PKH


class BuildState(Enum):
    """States of the transaction assembler, in order."""
    EMPTY = auto()
    INPUTS_BOUND = auto()
    OUTPUTS_ADDED = auto()
    SIGNED = auto()
    FINALIZED = auto()
    SERIALIZED = auto()


@dataclass(frozen=True)
class UTXO:
    """Unspent transaction output as reported by the indexer."""
    txid: str
    vout: int
    value: int  # satoshis
    confirmations: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any], tip_height: Optional[int] = None) -> 'UTXO':
        """
        Create UTXO from an indexer response entry.

        mempool.space reports a block height under 'status' rather than a
        confirmation count, so the count is derived from the chain tip when
        one is given. Unconfirmed outputs get 0.
        """
        confirmations = data.get('confirmations')
        if confirmations is None:
            status = data.get('status') or {}
            block_height = status.get('block_height')
            if status.get('confirmed') and block_height and tip_height:
                confirmations = max(tip_height - block_height + 1, 0)
            else:
                confirmations = 0
        return cls(
            txid=data.get('txid', ''),
            vout=data.get('vout', 0),
            value=data.get('value', 0),
            confirmations=confirmations
        )

    @property
    def outpoint(self) -> str:
        return f"{self.txid}:{self.vout}"

    def __str__(self) -> str:
        """Human-readable string representation."""
        btc_value = self.value / SATS_PER_BTC
        return (f"{self.outpoint} | {btc_value:.8f} BTC ({self.value:,} sats) | "
                f"{self.confirmations} conf")

    def to_dict(self) -> Dict[str, Any]:
        """Export UTXO data as dictionary."""
        return {
            'txid': self.txid,
            'vout': self.vout,
            'value': self.value,
            'confirmations': self.confirmations
        }


@dataclass
class TransactionRequest:
    """A caller's spend request. amount_satoshis may be reduced during resolution."""
    from_address: str
    private_key: str  # WIF
    to_address: str
    amount_satoshis: int
    fee_satoshis: int
    rbf: bool = False
    broadcast: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TransactionRequest':
        """Create a request from camelCase API fields."""
        return cls(
            from_address=data.get('fromAddress'),
            private_key=data.get('privateKey'),
            to_address=data.get('toAddress'),
            amount_satoshis=data.get('amountSatoshis'),
            fee_satoshis=data.get('feeSatoshis'),
            rbf=data.get('rbf', False),
            broadcast=data.get('broadcast', False)
        )


@dataclass
class TxOutput:
    """Transaction output (cleaner than Tuple[str, int])."""
    address: str
    amount: int  # satoshis

    def __str__(self) -> str:
        """Human-readable string representation."""
        return f"{self.address}: {self.amount:,} sats"


@dataclass
class WitnessUTXO:
    """Segwit commitment for an input: the spent output's script and value."""
    script_pubkey: bytes
    value: int


@dataclass
class InputDescriptor:
    """
    Signable input built from a UTXO.

    Segwit inputs carry a witness_utxo; legacy inputs carry the full previous
    transaction in non_witness_utxo. Wrapped segwit also carries redeem_script.
    signature/public_key are filled by signing, script_sig/witness by
    finalizing.
    """
    utxo: UTXO
    sequence: int
    script_type: ScriptType
    witness_utxo: Optional[WitnessUTXO] = None
    non_witness_utxo: Optional[str] = None  # raw previous transaction hex
    redeem_script: Optional[bytes] = None
    signature: Optional[bytes] = None
    public_key: Optional[bytes] = None
    script_sig: bytes = b''
    witness: List[bytes] = field(default_factory=list)


@dataclass
class PartialInputSkip:
    """A legacy UTXO left out because its previous transaction could not be fetched."""
    utxo: UTXO
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {'txid': self.utxo.txid, 'vout': self.utxo.vout,
                'value': self.utxo.value, 'reason': self.reason}


@dataclass
class AmountResolution:
    """Outcome of reconciling the requested amount, fee and total input."""
    total_input: int
    amount_satoshis: int
    fee_satoshis: int
    change: int
    dust_threshold: int
    max_send: bool = False
    clamped: bool = False

    @property
    def has_change_output(self) -> bool:
        return self.change > self.dust_threshold


@dataclass
class UnsignedTransaction:
    """Builder state for one request. Never reused across requests."""
    total_input: int
    amount_satoshis: int
    fee_satoshis: int
    change: int
    inputs: List[InputDescriptor] = field(default_factory=list)
    outputs: List[TxOutput] = field(default_factory=list)
    state: BuildState = BuildState.EMPTY

    @property
    def bound_input_value(self) -> int:
        return sum(inp.utxo.value for inp in self.inputs)


@dataclass
class BuildResult:
    """Serialized transaction and optional broadcast outcome."""
    transaction_hex: str
    txid: str
    size: int
    virtual_size: int
    num_inputs: int
    num_outputs: int
    skipped_inputs: List[PartialInputSkip] = field(default_factory=list)
    broadcast_result: Optional[Dict[str, Any]] = None

    def __str__(self) -> str:
        """Human-readable string representation."""
        lines = [
            f"Transaction {self.txid}:",
            f"  Inputs: {self.num_inputs}",
            f"  Outputs: {self.num_outputs}",
            f"  Size: {self.size} bytes ({self.virtual_size} vbytes)"
        ]
        if self.skipped_inputs:
            lines.append(f"  Skipped inputs: {len(self.skipped_inputs)}")
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Export result in the API's camelCase shape."""
        data = {
            'transactionHex': self.transaction_hex,
            'txid': self.txid,
            'size': self.size,
            'virtualSize': self.virtual_size
        }
        if self.skipped_inputs:
            data['skippedInputs'] = [skip.to_dict() for skip in self.skipped_inputs]
        if self.broadcast_result is not None:
            data['broadcastResult'] = self.broadcast_result
        return data


@dataclass
class BuildFailure:
    """Single descriptive failure surfaced to the caller."""
    kind: str
    message: str

    def __str__(self) -> str:
        return f"{self.kind}: {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        return {'kind': self.kind, 'message': self.message}
