"""
Order key generation.

Order keys name and order every file in a topic. They are wall-clock
milliseconds, bumped to ``last + 1`` whenever the clock has not moved past
the last issued key, so keys from one generator are strictly increasing
even when the system clock stalls or goes backwards.

Ordering across processes still depends on wall-clock proximity.
"""

import threading
import time
from typing import Callable, Optional

from gitbroker.utils.logging import get_logger

logger = get_logger(__name__)


def system_time_ms() -> int:
    """Current wall-clock time in milliseconds."""
    return int(time.time() * 1000)


class ManualClock:
    """
    Settable time source for deterministic tests.

    Example:
        clock = ManualClock(1000)
        generator = OrderKeyGenerator(time_source=clock)
        clock.advance(5)
    """

    def __init__(self, now_ms: int = 0):
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, delta_ms: int) -> None:
        self.now_ms += delta_ms

    def set(self, now_ms: int) -> None:
        """Jump to ``now_ms``; may move backwards."""
        self.now_ms = now_ms


class OrderKeyGenerator:
    """
    Thread-safe, strictly increasing order key generator.

    Attributes:
        time_source: Callable returning the current time in milliseconds
    """

    def __init__(self, time_source: Optional[Callable[[], int]] = None):
        """
        Initialize generator.

        Args:
            time_source: Millisecond clock (defaults to the system clock)
        """
        self.time_source = time_source or system_time_ms
        self._last_issued = 0
        self._lock = threading.Lock()

    def next_order_key(self) -> int:
        """
        Issue the next order key.

        Returns:
            A key strictly greater than every key previously issued or
            observed by this generator
        """
        candidate = self.time_source()
        with self._lock:
            if candidate <= self._last_issued:
                candidate = self._last_issued + 1
            self._last_issued = candidate
            return candidate

    def observe(self, order_key: int) -> None:
        """
        Advance past a key seen in the log.

        Later keys from this generator will sort after ``order_key`` even if
        it came from a node whose clock runs ahead of ours.
        """
        with self._lock:
            if order_key > self._last_issued:
                logger.debug(
                    "Advancing order key generator",
                    previous=self._last_issued,
                    observed=order_key,
                )
                self._last_issued = order_key

    @property
    def last_issued(self) -> int:
        with self._lock:
            return self._last_issued


_default_generator: Optional[OrderKeyGenerator] = None
_default_lock = threading.Lock()


def get_default_generator() -> OrderKeyGenerator:
    """
    Get the process-wide generator.

    Producers and consumers created without an explicit generator share
    this one, so file names issued in one process never collide.
    """
    global _default_generator
    with _default_lock:
        if _default_generator is None:
            _default_generator = OrderKeyGenerator()
        return _default_generator


def reset_default_generator() -> None:
    """Reset the process-wide generator (mainly for testing)."""
    global _default_generator
    with _default_lock:
        _default_generator = None
