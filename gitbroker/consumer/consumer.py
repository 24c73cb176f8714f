"""
Consumer client for reading messages from a gitbroker topic.

Each ``batch_receive`` call:
- synchronizes the node's clone with the remote
- selects every message after the node's latest checkpoint
- writes a new checkpoint and pushes it
- returns the selected messages

The checkpoint is committed before the caller processes the batch, so a
crash in between skips that batch on the next call (at-most-once from the
checkpoint forward).
"""

import asyncio
import glob
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from gitbroker.backend.base import Credentials, RepositoryBackend
from gitbroker.backend.session import build_session
from gitbroker.consumer.batch import MessageBatch
from gitbroker.consumer.cursor import select_pending
from gitbroker.core.cancel import CancellationToken
from gitbroker.core.clock import OrderKeyGenerator, get_default_generator
from gitbroker.core.codec import CHECKPOINT_CONTENT, Checkpoint, Message, decode_entry
from gitbroker.errors import BrokerError, ConcurrencyExhaustedError, NotFoundError
from gitbroker.utils.config import ClientConfig
from gitbroker.utils.logging import get_logger

logger = get_logger(__name__)


class ConsumerState(Enum):
    """Where the consumer is within the current receive cycle."""
    UNSYNCED = "unsynced"
    SYNCED = "synced"
    EMPTY = "empty"
    DELIVERING = "delivering"


@dataclass
class ConsumerConfig(ClientConfig):
    """
    Configuration for consumer.

    Attributes:
        propagate_sync_errors: Raise backend errors hit while synchronizing;
            when False they are logged and the call works from the local
            working copy as it stands
    """
    propagate_sync_errors: bool = True


class Consumer:
    """
    High-level consumer client.

    Example:
        consumer = Consumer(
            "https://example.org/broker.git",
            topic="PINGPONG",
            node="PONG-NODE",
            author_name="Full Name",
            author_email="email@example.org",
        )

        batch = consumer.batch_receive()
        for message in batch:
            print(message.order_key, message.event, message.body)
            consumer.acknowledge(message)

        consumer.close()
    """

    def __init__(
        self,
        remote_uri: str,
        topic: str,
        node: str,
        credentials: Optional[Credentials] = None,
        backend: Optional[RepositoryBackend] = None,
        id_generator: Optional[OrderKeyGenerator] = None,
        config: Optional[ConsumerConfig] = None,
        **kwargs,
    ):
        """
        Initialize consumer and clone the topic.

        Args:
            remote_uri: Shared repository acting as the broker
            topic: Topic (branch) name
            node: Consumer node identity, used to name checkpoints
            credentials: Optional push credentials
            backend: Repository backend (GitBackend if None)
            id_generator: Order key generator (process-wide default if None)
            config: Consumer configuration
            **kwargs: Additional config overrides

        Raises:
            ProvisionError: The remote cannot be cloned
        """
        self.config = config or ConsumerConfig()

        for key, value in kwargs.items():
            if hasattr(self.config, key):
                setattr(self.config, key, value)

        self.topic = topic
        self.node = node

        self._ids = id_generator or get_default_generator()
        self._session = build_session(
            remote_uri, topic, node, self.config, backend=backend, credentials=credentials
        )
        self._session.open()

        self._closed = False
        self._state = ConsumerState.UNSYNCED
        self._delivered = 0
        self._checkpoints_written = 0
        self._last_checkpoint: Optional[Checkpoint] = None

        logger.info(
            "Consumer initialized",
            remote=remote_uri,
            topic=topic,
            node=node,
        )

    @property
    def state(self) -> ConsumerState:
        return self._state

    def batch_receive(self, cancel: Optional[CancellationToken] = None) -> MessageBatch:
        """
        Receive every message published since this node's last checkpoint.

        Args:
            cancel: Optional cancellation token

        Returns:
            The batch (empty when there is nothing new)

        Raises:
            BrokerError: A backend failure while synchronizing (unless
                ``propagate_sync_errors`` is off) or while committing the
                checkpoint; a checkpoint that cannot be pushed stays local
                and the batch is returned with ``checkpoint_pushed=False``
        """
        if self._closed:
            raise RuntimeError("Consumer is closed")

        self._state = ConsumerState.UNSYNCED
        self._synchronize(cancel)
        self._state = ConsumerState.SYNCED

        entries = self._session.list_entries()
        if not entries:
            return self._empty()

        selection = select_pending(entries, self.node)
        if not selection.pending:
            logger.info(
                "Without new messages from last checkpoint",
                topic=self.topic,
                node=self.node,
                checkpoint=selection.cursor,
            )
            return self._empty()

        messages = tuple(
            decode_entry(name, self._session.read(name)) for name in selection.pending
        )

        if selection.cursor:
            logger.info(
                "Processing messages from last checkpoint",
                checkpoint=selection.cursor,
                count=len(messages),
            )
        else:
            logger.info("Processing messages", topic=self.topic, count=len(messages))

        self._ids.observe(selection.max_order_key)
        checkpoint, pushed = self._write_checkpoint(cancel)

        self._delivered += len(messages)
        self._state = ConsumerState.DELIVERING
        return MessageBatch(messages=messages, checkpoint=checkpoint, checkpoint_pushed=pushed)

    async def batch_receive_async(
        self,
        cancel: Optional[CancellationToken] = None,
    ) -> MessageBatch:
        """Run ``batch_receive`` in a worker thread."""
        return await asyncio.to_thread(self.batch_receive, cancel)

    def _synchronize(self, cancel: Optional[CancellationToken]) -> None:
        try:
            if self._session.synchronize(cancel):
                self._flush_pending(cancel)
        except BrokerError as e:
            if self.config.propagate_sync_errors:
                raise
            logger.warning(
                "Synchronize failed, treating as no new data",
                topic=self.topic,
                error=str(e),
            )

    def _flush_pending(self, cancel: Optional[CancellationToken]) -> None:
        """Push a checkpoint left local by an earlier failed push."""
        try:
            self._session.flush("push pending commits", cancel)
        except ConcurrencyExhaustedError as e:
            logger.warning("Pending commits still not pushed", error=str(e))

    def _write_checkpoint(
        self,
        cancel: Optional[CancellationToken],
    ) -> Tuple[Checkpoint, bool]:
        checkpoint = Checkpoint(order_key=self._ids.next_order_key(), node=self.node)
        logger.info("Writing checkpoint", file_name=checkpoint.file_name)

        self._session.commit(checkpoint.file_name, CHECKPOINT_CONTENT, cancel)

        pushed = True
        try:
            self._session.flush(f"push {checkpoint.file_name}", cancel)
        except BrokerError as e:
            # The checkpoint commit stays local and is pushed on a later call;
            # the batch it covers is still delivered.
            logger.warning(
                "Checkpoint committed but not pushed",
                file_name=checkpoint.file_name,
                error_type=type(e).__name__,
                error=str(e),
            )
            pushed = False

        self._checkpoints_written += 1
        self._last_checkpoint = checkpoint
        return checkpoint, pushed

    def _empty(self) -> MessageBatch:
        self._state = ConsumerState.EMPTY
        return MessageBatch.empty()

    def acknowledge(
        self,
        message: Message,
        cancel: Optional[CancellationToken] = None,
    ) -> bool:
        """
        Delete a message from the topic.

        Removes the exact file the message was read from, commits and
        pushes the removal.

        Returns:
            False if the file was already gone
        """
        if self._closed:
            raise RuntimeError("Consumer is closed")

        logger.info("Acknowledge", file_name=message.file_name)
        self._session.synchronize(cancel)

        try:
            self._session.remove(glob.escape(message.file_name), cancel)
        except NotFoundError:
            logger.warning("Nothing to acknowledge", file_name=message.file_name)
            return False
        return True

    def close(self) -> None:
        """Close consumer and delete its working copy."""
        if self._closed:
            return

        logger.info("Closing consumer", topic=self.topic, node=self.node)

        self._closed = True

        try:
            self._session.flush("push pending commits")
        except Exception as e:
            logger.error("Error during flush on close", error=str(e))

        self._session.close()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()

    def metrics(self) -> dict:
        """
        Get consumer metrics.

        Returns:
            Dictionary with metrics
        """
        return {
            "topic": self.topic,
            "node": self.node,
            "state": self._state.value,
            "delivered": self._delivered,
            "checkpoints_written": self._checkpoints_written,
            "last_checkpoint": self._last_checkpoint.file_name if self._last_checkpoint else None,
            "closed": self._closed,
        }
