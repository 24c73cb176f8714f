"""
Tests for cooperative cancellation.
"""

import time

import pytest

from gitbroker.core.cancel import CancellationToken, check_cancelled
from gitbroker.errors import OperationCancelledError


class TestCancellationToken:
    """Test CancellationToken."""

    def test_not_cancelled_initially(self):
        """Test a fresh token is live."""
        token = CancellationToken()

        assert not token.is_cancelled
        token.raise_if_cancelled("push")

    def test_cancel(self):
        """Test cancelling raises on the next check."""
        token = CancellationToken()
        token.cancel()

        assert token.is_cancelled
        with pytest.raises(OperationCancelledError, match="push cancelled"):
            token.raise_if_cancelled("push")

    def test_deadline(self):
        """Test a token expires at its deadline."""
        token = CancellationToken(deadline_ms=0)

        assert token.is_cancelled

    def test_wait_wakes_on_cancel(self):
        """Test wait returns early once cancelled."""
        token = CancellationToken()
        token.cancel()

        started = time.monotonic()
        assert token.wait(5.0)
        assert time.monotonic() - started < 1.0

    def test_wait_times_out(self):
        """Test wait returns False when nothing cancels it."""
        assert not CancellationToken().wait(0.01)

    def test_wait_bounded_by_deadline(self):
        """Test wait does not sleep past the deadline."""
        token = CancellationToken(deadline_ms=20)

        started = time.monotonic()
        assert token.wait(5.0)
        assert time.monotonic() - started < 1.0


class TestCheckCancelled:
    """Test check_cancelled helper."""

    def test_missing_token(self):
        """Test no token never cancels."""
        check_cancelled(None, "clone")

    def test_cancelled_token(self):
        """Test a cancelled token raises."""
        token = CancellationToken()
        token.cancel()

        with pytest.raises(OperationCancelledError):
            check_cancelled(token, "clone")
