"""Batch of messages returned by one receive call."""

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Optional, Tuple

from gitbroker.core.codec import Checkpoint, Message


@dataclass(frozen=True)
class MessageBatch(Sequence):
    """
    Immutable, ordered batch of messages.

    Attributes:
        messages: Delivered messages in order-key order
        checkpoint: Checkpoint written for this batch, if any
        checkpoint_pushed: False if the checkpoint is still only local
    """
    messages: Tuple[Message, ...] = ()
    checkpoint: Optional[Checkpoint] = None
    checkpoint_pushed: bool = True

    @classmethod
    def empty(cls) -> "MessageBatch":
        return cls()

    def __getitem__(self, index):
        return self.messages[index]

    def __len__(self) -> int:
        return len(self.messages)

    def order_keys(self) -> Tuple[int, ...]:
        return tuple(message.order_key for message in self.messages)
