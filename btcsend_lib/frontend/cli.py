"""
Command-line interface frontend for the transaction tool.

This module implements the FrontendInterface for terminal-based interaction,
handling all print() and prompt operations with proper formatting.
"""

import sys

import questionary

from .base import FrontendInterface
from .events import Event, EventBus, EventType
from ..core.models import BuildResult, BuildFailure, TransactionRequest
from ..utils import format_btc


class CLIFrontend(FrontendInterface):
    """
    Command-line interface frontend implementation.

    Provides terminal-based output and an interactive broadcast prompt.
    """

    def __init__(self, quiet: bool = False, assume_yes: bool = False):
        """
        Initialize CLI frontend.

        Args:
            quiet: If True, suppress non-essential output (e.g., progress updates)
            assume_yes: If True, broadcast without asking
        """
        self.quiet = quiet
        self.assume_yes = assume_yes

    def attach(self, event_bus: EventBus):
        """Subscribe to the application's progress events."""
        event_bus.on(EventType.UTXOS_FETCHED, self._on_utxos_fetched)
        event_bus.on(EventType.INPUT_SKIPPED, self._on_input_skipped)

    async def _on_utxos_fetched(self, event: Event):
        self.show_utxos_fetched(event.data.get('utxo_count', 0), event.data.get('total_value', 0))

    async def _on_input_skipped(self, event: Event):
        self.show_input_skipped(event.data['txid'], event.data['vout'], event.data.get('reason', ''))

    # ========================================================================
    # Request Methods
    # ========================================================================

    def show_request_summary(self, request: TransactionRequest, network_name: str):
        """Display the spend request before building."""
        if self.quiet:
            return
        print("\n" + "=" * 70)
        print(f"SPEND REQUEST ({network_name}):")
        print("=" * 70)
        print(f"  From:   {request.from_address}")
        print(f"  To:     {request.to_address}")
        print(f"  Amount: {request.amount_satoshis:,} sats ({format_btc(request.amount_satoshis)})")
        print(f"  Fee:    {request.fee_satoshis:,} sats")
        print(f"  RBF:    {'yes' if request.rbf else 'no'}")

    async def prompt_confirm_broadcast(self, result: BuildResult) -> bool:
        """Ask the user to confirm before broadcasting."""
        if self.assume_yes:
            return True

        confirm = await questionary.confirm(
            f"Broadcast transaction {result.txid}?",
            default=False
        ).ask_async()

        # None means the user aborted (Ctrl+C)
        return bool(confirm)

    # ========================================================================
    # Progress Display Methods
    # ========================================================================

    def show_utxos_fetched(self, utxo_count: int, total_value: int):
        """Display how many UTXOs were found."""
        if not self.quiet:
            print(f"\nFound {utxo_count} UTXO(s) totalling {total_value:,} sats ({format_btc(total_value)})")

    def show_input_skipped(self, txid: str, vout: int, reason: str):
        """Display a skipped legacy input."""
        self.show_warning(f"Input {txid}:{vout} skipped: {reason}")

    # ========================================================================
    # Result Display Methods
    # ========================================================================

    def show_build_result(self, result: BuildResult):
        """Display the built transaction."""
        print(f"\nCalculated TXID: {result.txid}")
        print(f"Size: {result.size} bytes ({result.virtual_size} vbytes), "
              f"{result.num_inputs} input(s), {result.num_outputs} output(s)")
        print("\n" + "=" * 70)
        print("SIGNED TRANSACTION:")
        print("=" * 70)
        print(result.transaction_hex)

        if result.broadcast_result is not None:
            print("\n" + "=" * 70)
            if result.broadcast_result.get('success'):
                print(f"BROADCAST OK: {result.broadcast_result['txid']}")
            else:
                print(f"BROADCAST FAILED: {result.broadcast_result.get('error')}")
            print("=" * 70)

    def show_failure(self, failure: BuildFailure):
        """Display a failed build."""
        self.show_error(str(failure))

    # ========================================================================
    # Error Display Methods
    # ========================================================================

    def show_error(self, message: str):
        """Display error message."""
        print(f"ERROR: {message}", file=sys.stderr)

    def show_warning(self, message: str):
        """Display warning message."""
        print(f"WARNING: {message}")
