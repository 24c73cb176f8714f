"""Cooperative cancellation for blocking broker calls."""

import threading
import time
from typing import Optional

from gitbroker.errors import OperationCancelledError


class CancellationToken:
    """
    Flag shared between a caller and the blocking calls it started.

    Backends poll the token between (and during) git commands; the retry
    loop checks it before every attempt and while backing off.
    """

    def __init__(self, deadline_ms: Optional[int] = None):
        """
        Args:
            deadline_ms: Optional relative deadline after which the token
                reports itself cancelled
        """
        self._event = threading.Event()
        self._deadline: Optional[float] = None
        if deadline_ms is not None:
            self._deadline = time.monotonic() + deadline_ms / 1000.0

    def cancel(self) -> None:
        """Request cancellation."""
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline

    def raise_if_cancelled(self, operation: str = "operation") -> None:
        """Raise OperationCancelledError if cancellation was requested."""
        if self.is_cancelled:
            raise OperationCancelledError(f"{operation} cancelled")

    def wait(self, timeout_s: float) -> bool:
        """
        Sleep up to ``timeout_s`` seconds, waking early on cancellation.

        Returns:
            True if the token was cancelled while waiting
        """
        if self._deadline is not None:
            timeout_s = min(timeout_s, max(0.0, self._deadline - time.monotonic()))
        self._event.wait(timeout_s)
        return self.is_cancelled


def check_cancelled(cancel: Optional[CancellationToken], operation: str) -> None:
    """Raise if ``cancel`` is set; a missing token never cancels."""
    if cancel is not None:
        cancel.raise_if_cancelled(operation)
