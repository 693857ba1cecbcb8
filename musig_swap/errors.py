"""Exceptions raised by the swap protocol."""


class SwapError(Exception):
    """Base class for every error raised by this package."""


class ProtocolSequenceError(SwapError):
    """
    An operation was called in the wrong state or round.

    Always a caller bug. Nothing is retried and no state is changed.
    """


class VerificationError(SwapError):
    """
    A combined signature or a nonce commitment did not check out.

    Either the peer is misbehaving or both sides built different batches.
    The attempt has to be reset and restarted with a fresh salt.
    """


class InsufficientDepositError(SwapError):
    """The escrow account does not yet hold the counterparty's deposit."""

    def __init__(self, message: str, required: int = 0, available: int = 0):
        super().__init__(message)
        self.required = required
        self.available = available


class LedgerError(SwapError):
    """The ledger could not be reached or returned an error."""


class TransactionRejectedError(LedgerError):
    """The ledger refused a transaction."""

    def __init__(self, message: str, tx_hash: str | None = None):
        super().__init__(message)
        self.tx_hash = tx_hash


class ConfirmationTimeoutError(LedgerError):
    """A transaction was not confirmed within the allowed time."""
