"""
Abstract base class defining the frontend interface for the transaction tool.

This module provides a contract that all frontend implementations must follow,
enabling support for different UI types (CLI, GUI, Web, etc.).
"""

from abc import ABC, abstractmethod

from ..core.models import BuildResult, BuildFailure, TransactionRequest


class FrontendInterface(ABC):
    """
    Abstract base class defining the contract for all frontend implementations.

    Frontend implementations handle all user interactions including:
    - Request summary and broadcast confirmation
    - Progress display during the build
    - Results presentation
    """

    # ========================================================================
    # Request Methods
    # ========================================================================

    @abstractmethod
    def show_request_summary(self, request: TransactionRequest, network_name: str):
        """
        Display the spend request before building.

        Args:
            request: Spend request
            network_name: Display name of the network
        """
        pass

    @abstractmethod
    async def prompt_confirm_broadcast(self, result: BuildResult) -> bool:
        """
        Ask the user whether a built transaction should be broadcast.

        Args:
            result: Built transaction

        Returns:
            True to broadcast, False otherwise
        """
        pass

    # ========================================================================
    # Progress Display Methods
    # ========================================================================

    @abstractmethod
    def show_utxos_fetched(self, utxo_count: int, total_value: int):
        """
        Display how many UTXOs were found for the sending address.

        Args:
            utxo_count: Number of UTXOs
            total_value: Their total value in satoshis
        """
        pass

    @abstractmethod
    def show_input_skipped(self, txid: str, vout: int, reason: str):
        """
        Display a legacy input left out of the transaction.

        Args:
            txid: Transaction ID of the skipped UTXO
            vout: Output index of the skipped UTXO
            reason: Why the previous transaction was unavailable
        """
        pass

    # ========================================================================
    # Result Display Methods
    # ========================================================================

    @abstractmethod
    def show_build_result(self, result: BuildResult):
        """
        Display the built transaction and broadcast outcome.

        Args:
            result: Build result
        """
        pass

    @abstractmethod
    def show_failure(self, failure: BuildFailure):
        """
        Display a failed build.

        Args:
            failure: Failure kind and message
        """
        pass

    @abstractmethod
    def show_error(self, message: str):
        """
        Display an error message.

        Args:
            message: Error message
        """
        pass
