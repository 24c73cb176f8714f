"""Consumer client for gitbroker."""

from gitbroker.consumer.batch import MessageBatch
from gitbroker.consumer.consumer import Consumer, ConsumerConfig, ConsumerState
from gitbroker.consumer.cursor import Selection, select_pending

__all__ = [
    "Consumer",
    "ConsumerConfig",
    "ConsumerState",
    "MessageBatch",
    "Selection",
    "select_pending",
]
