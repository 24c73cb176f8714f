"""
Retry logic with exponential backoff for pushes.

A push loses when another node pushed first. The loop resynchronizes
(replaying the local commit on the new tip) and pushes again, bounded by
an attempt count and an optional deadline.
"""

import random
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from gitbroker.core.cancel import CancellationToken, check_cancelled
from gitbroker.errors import ConcurrencyExhaustedError, is_retryable_error
from gitbroker.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar('T')


@dataclass
class RetryConfig:
    """
    Configuration for retry behavior.

    Attributes:
        max_retries: Maximum number of retry attempts
        retry_backoff_ms: Initial backoff in milliseconds
        retry_backoff_max_ms: Maximum backoff in milliseconds
        retry_jitter_ms: Random jitter to add to backoff
        deadline_ms: Overall time budget across attempts (None = unbounded)
    """
    max_retries: int = 5
    retry_backoff_ms: int = 100
    retry_backoff_max_ms: int = 5000
    retry_jitter_ms: int = 50
    deadline_ms: Optional[int] = None


class RetryManager:
    """
    Manages retry logic with exponential backoff.

    Implements:
    - Exponential backoff: delay doubles each retry
    - Maximum backoff: caps delay at maximum
    - Random jitter: spreads out nodes that lost the same race
    """

    def __init__(self, config: Optional[RetryConfig] = None):
        """
        Initialize retry manager.

        Args:
            config: Retry configuration
        """
        self.config = config or RetryConfig()

    def execute_with_retry(
        self,
        operation: Callable[[], T],
        operation_name: str = "operation",
        before_retry: Optional[Callable[[], None]] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> T:
        """
        Execute operation with retry logic.

        Args:
            operation: Callable to execute
            operation_name: Name for logging
            before_retry: Called before every attempt after the first (e.g.
                resynchronize the clone); its retryable failures count as a
                failed attempt
            cancel: Optional cancellation token

        Returns:
            Result from operation

        Raises:
            ConcurrencyExhaustedError: Retryable failures outlasted the budget
            Exception: Any non-retryable error, unchanged
        """
        started = time.monotonic()
        last_exception: Optional[Exception] = None
        attempt = 0

        for attempt in range(self.config.max_retries + 1):
            check_cancelled(cancel, operation_name)

            try:
                if attempt > 0 and before_retry is not None:
                    before_retry()

                result = operation()

                if attempt > 0:
                    logger.info(
                        f"{operation_name} succeeded after retry",
                        attempt=attempt,
                    )

                return result

            except Exception as e:
                if not is_retryable_error(e):
                    raise

                last_exception = e

                if attempt >= self.config.max_retries:
                    break

                backoff_ms = self._calculate_backoff(attempt)

                if self._past_deadline(started, backoff_ms):
                    logger.warning(
                        f"{operation_name} deadline reached",
                        attempt=attempt,
                        deadline_ms=self.config.deadline_ms,
                    )
                    break

                logger.warning(
                    f"{operation_name} failed, retrying",
                    attempt=attempt,
                    backoff_ms=backoff_ms,
                    error=str(e),
                )

                if cancel is not None:
                    cancel.wait(backoff_ms / 1000.0)
                    check_cancelled(cancel, operation_name)
                else:
                    time.sleep(backoff_ms / 1000.0)

        attempts = attempt + 1
        logger.error(
            f"{operation_name} failed after all retries",
            attempts=attempts,
            error=str(last_exception),
        )
        raise ConcurrencyExhaustedError(
            f"{operation_name} gave up after {attempts} attempts: {last_exception}",
            attempts=attempts,
        ) from last_exception

    def _past_deadline(self, started: float, backoff_ms: int) -> bool:
        if self.config.deadline_ms is None:
            return False
        elapsed_ms = (time.monotonic() - started) * 1000
        return elapsed_ms + backoff_ms > self.config.deadline_ms

    def _calculate_backoff(self, attempt: int) -> int:
        """
        Calculate backoff delay with exponential growth and jitter.

        Formula: min(base * 2^attempt, max) + jitter

        Args:
            attempt: Current attempt number (0-indexed)

        Returns:
            Backoff delay in milliseconds
        """
        exponential_backoff = self.config.retry_backoff_ms * (2 ** attempt)

        backoff = min(exponential_backoff, self.config.retry_backoff_max_ms)

        jitter = random.randint(0, self.config.retry_jitter_ms) if self.config.retry_jitter_ms > 0 else 0

        return backoff + jitter
