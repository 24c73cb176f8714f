"""
Producer client for publishing messages to a gitbroker topic.

A publish synchronizes the node's clone, names the message after a fresh
order key, commits the file and pushes it. A push that loses a race is
retried after replaying the commit on the new remote tip.
"""

import asyncio
from dataclasses import dataclass
from typing import Optional

from gitbroker.backend.base import Credentials, RepositoryBackend
from gitbroker.backend.session import build_session
from gitbroker.core.cancel import CancellationToken
from gitbroker.core.clock import OrderKeyGenerator, get_default_generator
from gitbroker.core.codec import CHECKPOINT_EVENT, Message, validate_event
from gitbroker.utils.config import ClientConfig
from gitbroker.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class ProducerConfig(ClientConfig):
    """Configuration for producer."""
    pass


class Producer:
    """
    High-level producer client.

    Example:
        producer = Producer(
            "https://example.org/broker.git",
            topic="PINGPONG",
            node="PING-NODE",
            credentials=Credentials("user", "token"),
        )

        message = producer.publish("PING", '{"n": 1}')
        print(message.file_name)

        producer.close()
    """

    def __init__(
        self,
        remote_uri: str,
        topic: str,
        node: str,
        credentials: Optional[Credentials] = None,
        backend: Optional[RepositoryBackend] = None,
        id_generator: Optional[OrderKeyGenerator] = None,
        config: Optional[ProducerConfig] = None,
        **kwargs,
    ):
        """
        Initialize producer and clone the topic.

        Args:
            remote_uri: Shared repository acting as the broker
            topic: Topic (branch) name
            node: Producer node identity
            credentials: Optional push credentials
            backend: Repository backend (GitBackend if None)
            id_generator: Order key generator (process-wide default if None)
            config: Producer configuration
            **kwargs: Additional config overrides

        Raises:
            ProvisionError: The remote cannot be cloned
        """
        self.config = config or ProducerConfig()

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
        self._published = 0

        logger.info(
            "Producer initialized",
            remote=remote_uri,
            topic=topic,
            node=node,
        )

    def publish(
        self,
        event: str,
        body: str = "",
        cancel: Optional[CancellationToken] = None,
    ) -> Message:
        """
        Publish one message.

        Args:
            event: Logical message type (no ``_``; ``OK`` is reserved)
            body: Payload, JSON text by convention
            cancel: Optional cancellation token

        Returns:
            The published message

        Raises:
            ValueError: Invalid event name
            ConcurrencyExhaustedError: The push kept losing races; the
                message stays committed locally and goes out with the
                next publish or flush
            BrokerError: Any other backend failure
        """
        if self._closed:
            raise RuntimeError("Producer is closed")

        validate_event(event)
        if event == CHECKPOINT_EVENT:
            raise ValueError(f"Event {CHECKPOINT_EVENT!r} is reserved for checkpoints")

        self._session.synchronize(cancel)

        message = Message(
            order_key=self._ids.next_order_key(),
            node=self.node,
            event=event,
            body=body,
        )

        self._session.write(message.file_name, body, cancel)
        self._published += 1

        logger.info(
            "Published message",
            topic=self.topic,
            file_name=message.file_name,
        )
        return message

    async def publish_async(
        self,
        event: str,
        body: str = "",
        cancel: Optional[CancellationToken] = None,
    ) -> Message:
        """Run ``publish`` in a worker thread."""
        return await asyncio.to_thread(self.publish, event, body, cancel)

    def flush(self, cancel: Optional[CancellationToken] = None) -> None:
        """Push messages left local by an earlier exhausted retry."""
        self._session.flush("flush", cancel)

    def close(self) -> None:
        """
        Close producer and delete its working copy.

        Unpushed messages are pushed first when possible.
        """
        if self._closed:
            return

        logger.info("Closing producer", topic=self.topic, node=self.node)

        self._closed = True

        try:
            self.flush()
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
        Get producer metrics.

        Returns:
            Dictionary with metrics
        """
        return {
            "topic": self.topic,
            "node": self.node,
            "published": self._published,
            "unpushed": self._session.has_unpushed_commits() if not self._closed else False,
            "closed": self._closed,
        }
