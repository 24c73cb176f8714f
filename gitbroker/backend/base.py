"""
Repository backend contract.

A topic is a branch of a shared repository and the remote is the broker.
Every mutation is a commit, every read is a listing of the working tree
after a successful synchronize. Message order comes from the order key
embedded in file names, never from commit order.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from gitbroker.core.cancel import CancellationToken
from gitbroker.errors import CommitError


@dataclass(frozen=True)
class Author:
    """
    Commit author identity.

    Attributes:
        name: Full name
        email: Email address
    """
    name: str
    email: str

    @property
    def is_complete(self) -> bool:
        return bool(self.name and self.name.strip() and self.email and self.email.strip())


@dataclass(frozen=True)
class Credentials:
    """
    Username/password supplied per push.

    Attributes:
        username: Remote user
        password: Password or token
    """
    username: str
    password: str = ""

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, password='***')"


@dataclass
class RepositoryClone:
    """
    A node's local materialization of a topic.

    Attributes:
        path: Working tree directory
        remote_uri: URI of the shared repository
        branch: Topic branch checked out in the working tree
        empty_topic: True if the branch had no commits when cloned
    """
    path: Path
    remote_uri: str
    branch: str
    empty_topic: bool = False


class RepositoryBackend(ABC):
    """
    Version-control primitives used by producers and consumers.

    Implementations raise the typed errors of ``gitbroker.errors``;
    they never log-and-swallow.
    """

    @abstractmethod
    def clone(
        self,
        remote_uri: str,
        branch: str,
        directory: Path,
        cancel: Optional[CancellationToken] = None,
    ) -> RepositoryClone:
        """
        Clone ``remote_uri`` into ``directory`` and check out ``branch``.

        Raises:
            ProvisionError: Remote unreachable or clone failed
            EmptyTopicError: Branch has no commits yet; ``error.clone`` is
                a usable local-only clone
        """

    @abstractmethod
    def synchronize(
        self,
        clone: RepositoryClone,
        cancel: Optional[CancellationToken] = None,
    ) -> None:
        """
        Fetch the topic branch and integrate it into the working tree.

        Unpushed local commits are replayed on top of the fetched tip.

        Raises:
            NotYetAdvertisedError: The remote branch does not exist yet
            SyncConflictError: Local commits conflict with the remote
        """

    @abstractmethod
    def write_and_commit(
        self,
        clone: RepositoryClone,
        file_name: str,
        content: str,
        author: Author,
        cancel: Optional[CancellationToken] = None,
    ) -> None:
        """
        Write ``file_name`` into the working tree, stage and commit it.

        Raises:
            CommitError: Staging or commit failed
        """

    @abstractmethod
    def remove_and_commit(
        self,
        clone: RepositoryClone,
        pattern: str,
        author: Author,
        cancel: Optional[CancellationToken] = None,
    ) -> List[str]:
        """
        Remove files matching the glob ``pattern`` and commit the removal.

        Returns:
            Names of the removed files

        Raises:
            NotFoundError: Nothing matched
            CommitError: Staging or commit failed
        """

    @abstractmethod
    def push(
        self,
        clone: RepositoryClone,
        credentials: Optional[Credentials] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> None:
        """
        Push local commits of the topic branch.

        Raises:
            PushRejectedError: The remote advanced past the local base
            AuthError: Credentials rejected
        """

    @abstractmethod
    def has_unpushed_commits(self, clone: RepositoryClone) -> bool:
        """Check whether the clone holds commits the remote has not seen."""

    def release(self, clone: RepositoryClone) -> None:
        """Forget a clone whose working tree is about to be deleted."""


def commit_message_for_add(file_name: str) -> str:
    return f"Creating file: {file_name}"


def commit_message_for_remove(file_names: List[str]) -> str:
    return "Removing file: " + ", ".join(file_names)


def require_author(author: Author) -> None:
    """Raise CommitError if ``author`` lacks a name or email."""
    if author is None or not author.is_complete:
        raise CommitError("Commit author identity (name and email) is required")
