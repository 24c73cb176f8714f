"""
Topic session: one node's clone of one topic.

Producers and consumers share this plumbing: provision a working copy,
clone the topic, synchronize while tolerating a topic nobody has created
yet, and commit-then-push with the bounded retry loop.
"""

from pathlib import Path
from typing import Callable, List, Optional, TypeVar

from gitbroker.backend.base import Author, Credentials, RepositoryBackend, RepositoryClone
from gitbroker.backend.git import GitBackend
from gitbroker.backend.working_copy import LocalWorkingCopy
from gitbroker.core.cancel import CancellationToken
from gitbroker.core.codec import validate_node
from gitbroker.core.retry import RetryConfig, RetryManager
from gitbroker.errors import EmptyTopicError, NotYetAdvertisedError
from gitbroker.utils.config import ClientConfig
from gitbroker.utils.logging import get_logger

T = TypeVar('T')


class TopicSession:
    """
    A node's working copy of a topic plus the backend driving it.

    Attributes:
        remote_uri: Shared repository
        topic: Topic (branch) name
        node: Node identity
        author: Commit author
        credentials: Optional push credentials
    """

    def __init__(
        self,
        remote_uri: str,
        topic: str,
        node: str,
        author: Author,
        backend: RepositoryBackend,
        credentials: Optional[Credentials] = None,
        retry_config: Optional[RetryConfig] = None,
        work_dir: Optional[Path] = None,
    ):
        if not topic:
            raise ValueError("Topic must not be empty")
        validate_node(node)

        self.remote_uri = remote_uri
        self.topic = topic
        self.node = node
        self.author = author
        self.credentials = credentials

        self._logger = get_logger(__name__, topic=topic, node=node)
        self._backend = backend
        self._retry_manager = RetryManager(retry_config)
        self._work_dir = work_dir
        self._working_copy: Optional[LocalWorkingCopy] = None
        self._clone: Optional[RepositoryClone] = None

    @property
    def clone(self) -> RepositoryClone:
        if self._clone is None:
            raise RuntimeError("Session is not open")
        return self._clone

    @property
    def working_copy(self) -> LocalWorkingCopy:
        if self._working_copy is None:
            raise RuntimeError("Session is not open")
        return self._working_copy

    @property
    def is_open(self) -> bool:
        return self._clone is not None

    def open(self, cancel: Optional[CancellationToken] = None) -> None:
        """
        Provision a working copy and clone the topic into it.

        Raises:
            ProvisionError: The remote cannot be cloned
        """
        if self.is_open:
            return

        working_copy = LocalWorkingCopy.provision(self.topic, self.node, self._work_dir)
        try:
            clone = self._backend.clone(self.remote_uri, self.topic, working_copy.path, cancel)
        except EmptyTopicError as e:
            self._logger.warning("Empty topic, starting a local-only clone")
            clone = e.clone
        except Exception:
            working_copy.destroy()
            raise

        self._working_copy = working_copy
        self._clone = clone

        self._logger.info("Opened topic session", path=str(working_copy.path))

    def synchronize(self, cancel: Optional[CancellationToken] = None) -> bool:
        """
        Bring the working copy up to date with the remote.

        Returns:
            False if the topic does not exist on the remote yet
        """
        try:
            self._backend.synchronize(self.clone, cancel)
        except NotYetAdvertisedError:
            self._logger.info("Waiting for events")
            return False
        return True

    def commit_and_push(
        self,
        mutation: Callable[[], T],
        operation_name: str,
        cancel: Optional[CancellationToken] = None,
    ) -> T:
        """
        Run a committing ``mutation`` and push it, retrying lost races.

        A rejected push keeps the local commit: the next attempt replays it
        on the new remote tip and pushes again.

        Raises:
            ConcurrencyExhaustedError: The push kept being rejected
        """
        result = mutation()
        self.flush(operation_name, cancel)
        return result

    def flush(
        self,
        operation_name: str = "push",
        cancel: Optional[CancellationToken] = None,
    ) -> None:
        """
        Push every local commit the remote has not seen yet.

        Raises:
            ConcurrencyExhaustedError: The push kept being rejected; the
                commits stay local for the next flush
        """
        if not self._backend.has_unpushed_commits(self.clone):
            return

        self._retry_manager.execute_with_retry(
            lambda: self._backend.push(self.clone, self.credentials, cancel),
            operation_name=operation_name,
            before_retry=lambda: self.synchronize(cancel),
            cancel=cancel,
        )

    def commit(
        self,
        file_name: str,
        content: str,
        cancel: Optional[CancellationToken] = None,
    ) -> None:
        """Write and commit one file without pushing it."""
        self._backend.write_and_commit(self.clone, file_name, content, self.author, cancel)

    def write(
        self,
        file_name: str,
        content: str,
        cancel: Optional[CancellationToken] = None,
    ) -> None:
        """Write, commit and push one file."""
        self.commit_and_push(
            lambda: self.commit(file_name, content, cancel),
            operation_name=f"push {file_name}",
            cancel=cancel,
        )

    def remove(self, pattern: str, cancel: Optional[CancellationToken] = None) -> List[str]:
        """Remove matching files, commit and push the removal."""
        return self.commit_and_push(
            lambda: self._backend.remove_and_commit(self.clone, pattern, self.author, cancel),
            operation_name=f"push removal of {pattern}",
            cancel=cancel,
        )

    def has_unpushed_commits(self) -> bool:
        return self._backend.has_unpushed_commits(self.clone)

    def list_entries(self) -> List[str]:
        return self.working_copy.list_entries()

    def read(self, file_name: str) -> str:
        return self.working_copy.read(file_name)

    def close(self) -> None:
        """Release the clone and delete the working copy."""
        if self._clone is not None:
            self._backend.release(self._clone)
        if self._working_copy is not None:
            self._working_copy.destroy()
        self._clone = None
        self._working_copy = None


def build_session(
    remote_uri: str,
    topic: str,
    node: str,
    config: ClientConfig,
    backend: Optional[RepositoryBackend] = None,
    credentials: Optional[Credentials] = None,
) -> TopicSession:
    """
    Create a TopicSession from client settings.

    Uses a GitBackend when no backend is given.
    """
    if backend is None:
        backend = GitBackend(command_timeout_s=config.command_timeout_s)

    return TopicSession(
        remote_uri=remote_uri,
        topic=topic,
        node=node,
        author=Author(config.author_name, config.author_email),
        backend=backend,
        credentials=credentials,
        retry_config=RetryConfig(
            max_retries=config.max_retries,
            retry_backoff_ms=config.retry_backoff_ms,
            retry_backoff_max_ms=config.retry_backoff_max_ms,
            retry_jitter_ms=config.retry_jitter_ms,
            deadline_ms=config.deadline_ms,
        ),
        work_dir=Path(config.work_dir) if config.work_dir else None,
    )
