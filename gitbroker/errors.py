"""
Error taxonomy for gitbroker.

Backends raise these typed errors instead of logging and carrying on;
producers and consumers decide which ones are recoverable.
"""

from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from gitbroker.backend.base import RepositoryClone


# Messages (from git or the OS) of failures worth retrying
TRANSIENT_PATTERNS = (
    "timed out",
    "connection refused",
    "connection reset",
    "temporarily unavailable",
    "could not resolve host",
    "temporary failure in name resolution",
    "remote end hung up unexpectedly",
    "early eof",
    "could not lock",
)


class BrokerError(Exception):
    """Base class for all gitbroker errors."""
    pass


class RetryableError(BrokerError):
    """Exception that should trigger retry."""
    pass


class NonRetryableError(BrokerError):
    """Exception that should not be retried."""
    pass


class ProvisionError(NonRetryableError):
    """Remote unreachable or the clone could not be created."""
    pass


class EmptyTopicError(BrokerError):
    """
    The topic branch has no commits yet.

    Recoverable: ``clone`` holds a usable local-only clone whose first
    push will create the branch.
    """

    def __init__(self, message: str, clone: Optional["RepositoryClone"] = None):
        super().__init__(message)
        self.clone = clone


class NotYetAdvertisedError(BrokerError):
    """No peer has created the topic branch on the remote yet."""
    pass


class SyncConflictError(NonRetryableError):
    """Local commits cannot be replayed on top of the remote branch."""
    pass


class CommitError(NonRetryableError):
    """Staging or committing a change failed."""
    pass


class NotFoundError(BrokerError):
    """No file matched a removal pattern."""
    pass


class PushRejectedError(RetryableError):
    """The remote advanced past the local base (lost an optimistic race)."""
    pass


class TransientBackendError(RetryableError):
    """A network or lock failure that may succeed if tried again."""
    pass


class AuthError(NonRetryableError):
    """The remote rejected the supplied credentials."""
    pass


class BackendTimeoutError(NonRetryableError):
    """A backend command did not finish within its timeout."""
    pass


class OperationCancelledError(NonRetryableError):
    """The caller cancelled a blocking operation."""
    pass


class ConcurrencyExhaustedError(NonRetryableError):
    """A push kept losing races until the retry budget ran out."""

    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts


def is_retryable_error(error: Exception) -> bool:
    """
    Determine if error is retryable.

    Args:
        error: Exception to check

    Returns:
        True if error should be retried
    """
    if isinstance(error, RetryableError):
        return True

    if isinstance(error, NonRetryableError):
        return False

    return is_transient_message(str(error))


def is_transient_message(text: str) -> bool:
    """Check whether an error message describes a transient failure."""
    lowered = text.lower()
    return any(pattern in lowered for pattern in TRANSIENT_PATTERNS)
