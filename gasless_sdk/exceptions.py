"""
Exceptions for the gasless payments SDK.
"""
from typing import Optional


class GaslessError(Exception):
    """
    Base exception for all SDK errors.

    Carries enough structured detail for callers to render a precise
    message without parsing the text.

    Attributes:
        request_id: Payment request the error refers to (if known)
        current_status: Status of the request when the error was raised
        attempted: Transition or operation that was attempted
    """

    def __init__(
        self,
        message: str,
        request_id: Optional[str] = None,
        current_status: Optional[str] = None,
        attempted: Optional[str] = None
    ):
        self.request_id = request_id
        self.current_status = current_status
        self.attempted = attempted
        super().__init__(message)


class DecodeError(GaslessError):
    """
    Raised (or returned) when a log payload cannot be decoded.

    The reconciler never lets this escape: decode failures are counted
    and the offending entry is skipped.
    """

    def __init__(self, message: str, sequence_number: Optional[int] = None):
        self.sequence_number = sequence_number
        super().__init__(message)


class NotFoundError(GaslessError):
    """Raised when a referenced request, log entry or log is absent."""
    pass


class GuardViolation(GaslessError):
    """
    Raised when a lifecycle transition is not permitted.

    Attributes:
        guard: Name of the violated guard
    """

    def __init__(
        self,
        message: str,
        guard: str,
        request_id: Optional[str] = None,
        current_status: Optional[str] = None,
        attempted: Optional[str] = None
    ):
        self.guard = guard
        super().__init__(message, request_id, current_status, attempted)


class ExpiredError(GuardViolation):
    """Raised when acting on a request past its expiration time."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, guard="not_expired", **kwargs)


class AuthorizationError(GuardViolation):
    """Raised when the caller is not the sender (or the pinned sponsor)."""

    def __init__(self, message: str, guard: str = "authorized_party", **kwargs):
        super().__init__(message, guard=guard, **kwargs)


class AlreadyProcessedError(GuardViolation):
    """Raised on a duplicate create, sign or relay attempt."""

    def __init__(self, message: str, guard: str = "not_already_processed", **kwargs):
        super().__init__(message, guard=guard, **kwargs)


class ExternalCollaboratorError(GaslessError):
    """
    Raised when the log or the ledger cannot serve a request.

    Attributes:
        retryable: Whether retrying the same operation may succeed
    """

    def __init__(self, message: str, retryable: bool = True, **kwargs):
        self.retryable = retryable
        super().__init__(message, **kwargs)


class LogUnavailableError(ExternalCollaboratorError):
    """Raised when the log service is unreachable after retries."""
    pass


class LogFetchCancelledError(ExternalCollaboratorError):
    """Raised when a caller deadline or cancel event stops a log fetch."""
    pass


class LedgerUnavailableError(ExternalCollaboratorError):
    """Raised when the ledger endpoint cannot be reached."""
    pass


class TransactionRejectedError(ExternalCollaboratorError):
    """Raised when the ledger rejects or reverts a submitted transfer."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)
