"""
UTXO ordering and amount/fee resolution.

Pure functions, no I/O:
- select_utxos() orders the full UTXO set (nothing is dropped)
- resolve_amounts() reconciles the requested amount, the fixed fee and the
  total input into a final amount and change
"""

import logging
from typing import List

from .constants import DUST_THRESHOLD
from .errors import InsufficientFunds, OverSpendError
from .models import UTXO, AmountResolution

logger = logging.getLogger('btcsend.selection')


def select_utxos(utxos: List[UTXO]) -> List[UTXO]:
    """
    Order UTXOs for spending: most confirmations first.

    Every supplied UTXO is kept. Ties are broken by txid, then vout, so the
    input order is reproducible.

    Args:
        utxos: Candidate UTXOs

    Returns:
        New list in spending order
    """
    return sorted(utxos, key=lambda u: (-u.confirmations, u.txid, u.vout))


def total_value(utxos: List[UTXO]) -> int:
    """Sum of UTXO values in satoshis."""
    return sum(utxo.value for utxo in utxos)


def resolve_amounts(
    total_input: int,
    amount_satoshis: int,
    fee_satoshis: int,
    dust_threshold: int = DUST_THRESHOLD,
    strict: bool = False
) -> AmountResolution:
    """
    Resolve the final send amount and change.

    Rules, applied in order:
    1. If total_input equals amount + fee exactly, the request means "send
       everything", so the fee is taken out of the amount.
    2. If amount + fee exceeds total_input, the amount is reduced to
       total_input - fee (or OverSpendError is raised when strict).
    3. change = total_input - amount - fee. A fee larger than the whole
       input, or a max-send amount smaller than the fee, aborts the build.
    A change output is only warranted when change > dust_threshold.

    Args:
        total_input: Sum of all selected UTXO values
        amount_satoshis: Requested amount
        fee_satoshis: Fixed fee
        dust_threshold: Dust limit for the change output
        strict: Raise on over-spend instead of clamping

    Returns:
        AmountResolution

    Raises:
        OverSpendError: strict mode and amount + fee > total_input
        InsufficientFunds: fee > total_input
    """
    if fee_satoshis > total_input:
        raise InsufficientFunds(
            f"Insufficient funds: fee {fee_satoshis:,} sats exceeds total input {total_input:,} sats"
        )

    amount = amount_satoshis
    max_send = False
    clamped = False

    if total_input == amount + fee_satoshis:
        amount -= fee_satoshis
        max_send = True
        logger.info(f"Max send: amount reduced by fee to {amount:,} sats")

    if amount + fee_satoshis > total_input:
        if strict:
            raise OverSpendError(
                f"Requested {amount:,} sats + {fee_satoshis:,} sats fee exceeds "
                f"available {total_input:,} sats"
            )
        clamped = True
        logger.warning(
            f"Requested amount {amount:,} sats plus fee exceeds input {total_input:,} sats, "
            f"clamping to {total_input - fee_satoshis:,} sats"
        )
        amount = total_input - fee_satoshis

    change = total_input - amount - fee_satoshis
    if change < 0 or amount < 0:
        raise InsufficientFunds(
            f"Insufficient funds: {total_input:,} sats cannot cover amount {amount:,} sats "
            f"and fee {fee_satoshis:,} sats"
        )

    resolution = AmountResolution(
        total_input=total_input,
        amount_satoshis=amount,
        fee_satoshis=fee_satoshis,
        change=change,
        dust_threshold=dust_threshold,
        max_send=max_send,
        clamped=clamped
    )

    if change and not resolution.has_change_output:
        logger.info(f"Change {change} sats is dust (<= {dust_threshold}), absorbed into fee")

    return resolution
