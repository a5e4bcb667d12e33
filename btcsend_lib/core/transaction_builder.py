"""
Transaction building and signing for single-key Bitcoin spends.

This module contains:
- bind_inputs(): turns ordered UTXOs into signable input descriptors,
  per sender script type
- TransactionAssembler: the build state machine (bind inputs, add outputs,
  sign, finalize, serialize)
- assemble_transaction(): the full pipeline from request and UTXO set to a
  serialized transaction

Cryptography and byte serialization are delegated to SigningEngine (embit).
"""

import logging
from typing import Dict, List, Optional, Protocol, Tuple, Any

from embit.ec import PrivateKey
from embit.transaction import Transaction

from .address import classify_address, p2wpkh_script, p2sh_script
from .constants import BuilderConfig, SEQUENCE_FINAL, SEQUENCE_RBF
from .engine import SigningEngine
from .errors import BuildStateError, SigningFailure, InsufficientFunds
from .models import (
    UTXO, ScriptType, BuildState, TransactionRequest, TxOutput, WitnessUTXO,
    InputDescriptor, PartialInputSkip, AmountResolution, UnsignedTransaction,
    BuildResult
)
from .selection import select_utxos, total_value, resolve_amounts

logger = logging.getLogger('btcsend.transaction_builder')


class TransactionFetcher(Protocol):
    """Anything that can return a raw previous transaction by txid."""

    async def fetch_transaction(self, txid: str) -> str:
        ...


async def bind_inputs(
    utxos: List[UTXO],
    script_type: ScriptType,
    public_key: bytes,
    fetcher: TransactionFetcher,
    rbf: bool = False,
    cache: bool = True,
    sender_script: Optional[bytes] = None
) -> Tuple[List[InputDescriptor], List[PartialInputSkip]]:
    """
    Build an input descriptor for every UTXO, in the given order.

    Segwit inputs commit to the spent output script and the UTXO value. Legacy
    inputs need the full previous transaction, fetched one at a time; a UTXO
    whose fetch fails or returns nothing is skipped rather than failing the
    whole build.

    Args:
        utxos: UTXOs in spending order
        script_type: Sender's script type
        public_key: Compressed public key of the signing key
        fetcher: Previous-transaction source (used for P2PKH only)
        rbf: Signal replace-by-fee on every input
        cache: Reuse a fetched transaction for UTXOs sharing a txid
        sender_script: Output script of the sending address; defaults to the
            script the public key would lock (used for segwit only)

    Returns:
        Tuple of (descriptors, skipped) where skipped lists the UTXOs left out
    """
    sequence = SEQUENCE_RBF if rbf else SEQUENCE_FINAL
    descriptors: List[InputDescriptor] = []
    skipped: List[PartialInputSkip] = []
    fetched: Dict[str, str] = {}

    for utxo in utxos:
        if script_type is ScriptType.P2PKH:
            raw_tx = fetched.get(utxo.txid) if cache else None
            if raw_tx is None:
                try:
                    raw_tx = await fetcher.fetch_transaction(utxo.txid)
                except Exception as e:
                    logger.warning(f"Skipping input {utxo.outpoint}: previous transaction fetch failed: {e}")
                    skipped.append(PartialInputSkip(utxo, str(e)))
                    continue
                if not raw_tx:
                    logger.warning(f"Skipping input {utxo.outpoint}: previous transaction not found")
                    skipped.append(PartialInputSkip(utxo, 'previous transaction not found'))
                    continue
                if cache:
                    fetched[utxo.txid] = raw_tx

            descriptors.append(InputDescriptor(
                utxo=utxo,
                sequence=sequence,
                script_type=script_type,
                non_witness_utxo=raw_tx
            ))
            continue

        witness_script = p2wpkh_script(public_key)
        spent_script = sender_script
        if spent_script is None:
            spent_script = witness_script
            if script_type is ScriptType.P2SH_P2WPKH:
                spent_script = p2sh_script(witness_script)
        descriptor = InputDescriptor(
            utxo=utxo,
            sequence=sequence,
            script_type=script_type,
            witness_utxo=WitnessUTXO(spent_script, utxo.value)
        )
        if script_type is ScriptType.P2SH_P2WPKH:
            descriptor.redeem_script = witness_script
        descriptors.append(descriptor)

    logger.debug(f"Bound {len(descriptors)} input(s), skipped {len(skipped)}")
    return descriptors, skipped


class TransactionAssembler:
    """
    State machine that turns bound inputs into a serialized transaction.

    EMPTY -> INPUTS_BOUND -> OUTPUTS_ADDED -> SIGNED -> FINALIZED -> SERIALIZED

    Each step must be called once, in order. Any failure leaves the
    assembler unusable; a new one is created per request.
    """

    def __init__(self, resolution: AmountResolution, engine: SigningEngine):
        """
        Initialize the assembler.

        Args:
            resolution: Resolved amount, fee, change and total input
            engine: Script/signing engine
        """
        self.resolution = resolution
        self.engine = engine
        self.unsigned = UnsignedTransaction(
            total_input=resolution.total_input,
            amount_satoshis=resolution.amount_satoshis,
            fee_satoshis=resolution.fee_satoshis,
            change=resolution.change
        )
        self._tx: Optional[Transaction] = None

    @property
    def state(self) -> BuildState:
        return self.unsigned.state

    def _require(self, expected: BuildState, action: str) -> None:
        if self.unsigned.state is not expected:
            raise BuildStateError(
                f"Cannot {action} in state {self.unsigned.state.name} (expected {expected.name})"
            )

    def bind_inputs(self, descriptors: List[InputDescriptor]) -> None:
        """
        Attach input descriptors and check they still cover amount + fee.

        total_input was computed before any input was skipped, so the bound
        value can be lower than the value the amounts were resolved against.

        Raises:
            SigningFailure: If no input is bound or the bound value falls short
        """
        self._require(BuildState.EMPTY, "bind inputs")

        if not descriptors:
            raise SigningFailure("No inputs could be bound")

        self.unsigned.inputs = list(descriptors)

        required = self.unsigned.amount_satoshis + self.unsigned.fee_satoshis
        bound = self.unsigned.bound_input_value
        if bound < required:
            raise SigningFailure(
                f"Bound inputs total {bound:,} sats but amount plus fee needs {required:,} sats "
                f"({self.unsigned.total_input - bound:,} sats of inputs were skipped)"
            )

        self.unsigned.state = BuildState.INPUTS_BOUND

    def change_output_value(self) -> int:
        """
        Value of the change output, 0 when none is created.

        The resolved change is capped by what the bound inputs leave after
        amount + fee, so skipped inputs never make outputs exceed inputs.
        """
        available = self.unsigned.bound_input_value - self.unsigned.amount_satoshis - self.unsigned.fee_satoshis
        change = min(self.unsigned.change, available)
        if change < self.unsigned.change:
            logger.warning(f"Change reduced from {self.unsigned.change:,} to {change:,} sats by skipped inputs")
        return change if change > self.resolution.dust_threshold else 0

    def add_outputs(self, to_address: str, change_address: str) -> None:
        """Add the recipient output and, above the dust threshold, the change output."""
        self._require(BuildState.INPUTS_BOUND, "add outputs")

        self.unsigned.outputs.append(TxOutput(to_address, self.unsigned.amount_satoshis))
        change = self.change_output_value()
        if change:
            self.unsigned.outputs.append(TxOutput(change_address, change))

        self.unsigned.state = BuildState.OUTPUTS_ADDED

    def sign(self, privkey: PrivateKey) -> None:
        """
        Sign every input with the single supplied key.

        Raises:
            SigningFailure: If any input cannot be signed
        """
        self._require(BuildState.OUTPUTS_ADDED, "sign")

        self._tx = self.engine.create_transaction(self.unsigned.inputs, self.unsigned.outputs)
        for idx, descriptor in enumerate(self.unsigned.inputs):
            try:
                self.engine.sign(self._tx, idx, descriptor, privkey)
            except SigningFailure:
                raise
            except Exception as e:
                raise SigningFailure(f"Input {idx}: signing failed: {e}") from e

        self.unsigned.state = BuildState.SIGNED

    def finalize(self) -> None:
        """
        Convert each input's signature into scriptSig / witness data.

        Raises:
            SigningFailure: If any input cannot be finalized
        """
        self._require(BuildState.SIGNED, "finalize")

        for idx, descriptor in enumerate(self.unsigned.inputs):
            try:
                self.engine.finalize(self._tx, idx, descriptor)
            except SigningFailure:
                raise
            except Exception as e:
                raise SigningFailure(f"Input {idx}: finalizing failed: {e}") from e

        self.unsigned.state = BuildState.FINALIZED

    def serialize(self) -> Dict[str, Any]:
        """Serialize the finalized transaction (hex, txid, size, virtual_size)."""
        self._require(BuildState.FINALIZED, "serialize")

        serialized = self.engine.serialize(self._tx)
        self.unsigned.state = BuildState.SERIALIZED
        return serialized


async def assemble_transaction(
    request: TransactionRequest,
    utxos: List[UTXO],
    engine: SigningEngine,
    fetcher: TransactionFetcher,
    config: Optional[BuilderConfig] = None
) -> Tuple[BuildResult, AmountResolution]:
    """
    Run the full pipeline: order, resolve, bind, assemble.

    request.amount_satoshis is updated to the resolved amount.

    Args:
        request: Spend request
        utxos: Every UTXO of the sending address (all are spent)
        engine: Script/signing engine
        fetcher: Previous-transaction source for legacy inputs
        config: Builder configuration (dust threshold, strict mode, caching)

    Returns:
        Tuple of (BuildResult, AmountResolution)

    Raises:
        InsufficientFunds: No UTXOs, or the fee exceeds the total input
        OverSpendError: Strict mode and the amount cannot be covered
        ValidationError: Undecodable key or segwit sender address
        SigningFailure: Bound inputs fall short, or signing/finalizing fails
    """
    config = config or BuilderConfig()

    if not utxos:
        raise InsufficientFunds(f"No UTXOs available for {request.from_address}")

    ordered = select_utxos(utxos)
    total_input = total_value(ordered)

    resolution = resolve_amounts(
        total_input,
        request.amount_satoshis,
        request.fee_satoshis,
        dust_threshold=config.dust_threshold,
        strict=config.strict
    )
    request.amount_satoshis = resolution.amount_satoshis

    privkey = engine.load_key(request.private_key)
    public_key = engine.public_key(privkey)
    script_type = classify_address(request.from_address)
    sender_script = None
    if script_type.is_segwit:
        sender_script = engine.derive_script(request.from_address).data
    logger.info(f"Building {script_type.value} spend: {len(ordered)} UTXO(s), {total_input:,} sats in, "
                f"{resolution.amount_satoshis:,} sats out, change {resolution.change:,} sats")

    descriptors, skipped = await bind_inputs(
        ordered,
        script_type,
        public_key,
        fetcher,
        rbf=request.rbf,
        cache=config.cache_fetches,
        sender_script=sender_script
    )

    assembler = TransactionAssembler(resolution, engine)
    assembler.bind_inputs(descriptors)
    assembler.add_outputs(request.to_address, request.from_address)

    logger.debug(f"Signing {len(descriptors)} input(s)")
    assembler.sign(privkey)
    assembler.finalize()
    serialized = assembler.serialize()
    logger.debug(f"Transaction serialized: {serialized['txid']}")

    result = BuildResult(
        transaction_hex=serialized['hex'],
        txid=serialized['txid'],
        size=serialized['size'],
        virtual_size=serialized['virtual_size'],
        num_inputs=len(assembler.unsigned.inputs),
        num_outputs=len(assembler.unsigned.outputs),
        skipped_inputs=skipped
    )
    return result, resolution
