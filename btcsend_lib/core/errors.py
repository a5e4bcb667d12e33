"""
Exception hierarchy for transaction assembly.

Every error the core raises derives from TransactionError, so the application
layer can turn any of them into a single {kind, message} failure.
"""


class TransactionError(Exception):
    """Base class for all transaction assembly errors."""

    @property
    def kind(self) -> str:
        return type(self).__name__


class ValidationError(TransactionError):
    """Malformed request or undecodable address."""


class InsufficientFunds(TransactionError):
    """No UTXOs, or the inputs cannot pay the fee."""


class OverSpendError(TransactionError):
    """Requested amount plus fee exceeds the total input (strict mode only)."""


class SigningFailure(TransactionError):
    """Signing, finalizing or the post-binding balance check failed."""


class BuildStateError(TransactionError):
    """A build step was invoked out of order."""


class FetchError(TransactionError):
    """The indexer could not return a previous transaction."""


class BroadcastFailure(TransactionError):
    """The indexer rejected a broadcast; detail carries the provider message."""

    def __init__(self, message: str, detail: str = ''):
        super().__init__(message)
        self.detail = detail
