"""
In-process repository backend.

``InMemoryRemote`` keeps a linear history per branch and accepts a push
only when the pusher's base is the current tip, the same compare-and-swap
rule a git remote applies to non-forced pushes. ``InMemoryBackend``
materialises clones of it into real directories, so working copies,
producers and consumers behave exactly as they do against git.
"""

import fnmatch
import threading
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Set

from gitbroker.backend.base import (
    Author,
    Credentials,
    RepositoryBackend,
    RepositoryClone,
    commit_message_for_add,
    commit_message_for_remove,
    require_author,
)
from gitbroker.core.cancel import CancellationToken, check_cancelled
from gitbroker.errors import (
    AuthError,
    CommitError,
    EmptyTopicError,
    NotFoundError,
    NotYetAdvertisedError,
    ProvisionError,
    PushRejectedError,
    SyncConflictError,
)
from gitbroker.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_MEMORY_URI = "memory://broker"


@dataclass(frozen=True)
class Commit:
    """
    A commit on a remote branch.

    Attributes:
        commit_id: Unique id within the remote
        parent_id: Id of the previous tip (None for the first commit)
        files: Full snapshot of the branch after this commit
        message: Commit message
        author: Commit author
    """
    commit_id: int
    parent_id: Optional[int]
    files: Mapping[str, str]
    message: str
    author: Author


@dataclass
class LocalCommit:
    """
    An unpushed commit held by a clone.

    Attributes:
        changes: File name -> new content, or None for a removal
        message: Commit message
        author: Commit author
    """
    changes: Dict[str, Optional[str]]
    message: str
    author: Author


@dataclass
class _CloneState:
    upstream: Optional[Commit] = None
    pending: List[LocalCommit] = field(default_factory=list)
    tracked: Set[str] = field(default_factory=set)


class InMemoryRemote:
    """
    Thread-safe shared remote.

    Attributes:
        uri: Address clones use to find this remote
        credentials: If set, pushes must present exactly these
        reachable: When False, clone and synchronize fail as if offline
    """

    def __init__(
        self,
        uri: str = DEFAULT_MEMORY_URI,
        credentials: Optional[Credentials] = None,
    ):
        self.uri = uri
        self.credentials = credentials
        self.reachable = True

        self._branches: Dict[str, List[Commit]] = {}
        self._next_id = 1
        self._lock = threading.RLock()

    def tip(self, branch: str) -> Optional[Commit]:
        """Latest commit of ``branch``, or None if it does not exist."""
        with self._lock:
            history = self._branches.get(branch)
            return history[-1] if history else None

    def history(self, branch: str) -> List[Commit]:
        """All commits of ``branch``, oldest first."""
        with self._lock:
            return list(self._branches.get(branch, []))

    def files(self, branch: str) -> Dict[str, str]:
        """Snapshot of ``branch`` at its tip."""
        tip = self.tip(branch)
        return dict(tip.files) if tip else {}

    def branches(self) -> List[str]:
        with self._lock:
            return sorted(self._branches)

    def check_credentials(self, credentials: Optional[Credentials]) -> None:
        """Raise AuthError unless ``credentials`` match the required ones."""
        if self.credentials is not None and credentials != self.credentials:
            raise AuthError(f"Authentication failed for {self.uri}")

    def append(
        self,
        branch: str,
        expected_tip_id: Optional[int],
        commits: List[LocalCommit],
    ) -> Commit:
        """
        Append ``commits`` to ``branch`` if its tip is still ``expected_tip_id``.

        Returns:
            The new tip

        Raises:
            PushRejectedError: The branch moved since the pusher last synced
        """
        with self._lock:
            history = self._branches.setdefault(branch, [])
            current = history[-1] if history else None
            current_id = current.commit_id if current else None

            if current_id != expected_tip_id:
                if not history:
                    del self._branches[branch]
                raise PushRejectedError(
                    f"Updates were rejected: remote {branch} is at {current_id}, "
                    f"local base is {expected_tip_id}"
                )

            files = dict(current.files) if current else {}
            for local in commits:
                files = _apply(files, local.changes)
                current = Commit(
                    commit_id=self._next_id,
                    parent_id=current.commit_id if current else None,
                    files=dict(files),
                    message=local.message,
                    author=local.author,
                )
                self._next_id += 1
                history.append(current)

            return current


def _apply(files: Dict[str, str], changes: Mapping[str, Optional[str]]) -> Dict[str, str]:
    result = dict(files)
    for name, content in changes.items():
        if content is None:
            result.pop(name, None)
        else:
            result[name] = content
    return result


def _rebase(pending: List[LocalCommit], base: Mapping[str, str]) -> List[LocalCommit]:
    """
    Replay ``pending`` on top of ``base``.

    Changes already present upstream are dropped; commits left empty are
    dropped as well.

    Raises:
        SyncConflictError: A local add collides with different remote content
    """
    files = dict(base)
    rebased = []

    for local in pending:
        effective: Dict[str, Optional[str]] = {}
        for name, content in local.changes.items():
            if content is None:
                if name in files:
                    effective[name] = None
                    del files[name]
            elif name in files:
                if files[name] != content:
                    raise SyncConflictError(f"Conflicting change to {name}")
            else:
                effective[name] = content
                files[name] = content

        if effective:
            rebased.append(replace(local, changes=effective))

    return rebased


class InMemoryBackend(RepositoryBackend):
    """
    RepositoryBackend over one or more InMemoryRemote instances.

    Example:
        remote = InMemoryRemote()
        backend = InMemoryBackend(remote)
        producer = Producer(remote.uri, "orders", "node-a", backend=backend)
    """

    def __init__(self, *remotes: InMemoryRemote):
        self._remotes: Dict[str, InMemoryRemote] = {r.uri: r for r in remotes}
        self._states: Dict[Path, _CloneState] = {}
        self._lock = threading.Lock()

    def add_remote(self, remote: InMemoryRemote) -> None:
        self._remotes[remote.uri] = remote

    def _remote(self, uri: str) -> InMemoryRemote:
        remote = self._remotes.get(uri)
        if remote is None or not remote.reachable:
            raise ProvisionError(f"Remote unreachable: {uri}")
        return remote

    def _state(self, clone: RepositoryClone) -> _CloneState:
        with self._lock:
            state = self._states.get(clone.path.resolve())
        if state is None:
            raise ProvisionError(f"Not a clone: {clone.path}")
        return state

    def clone(
        self,
        remote_uri: str,
        branch: str,
        directory: Path,
        cancel: Optional[CancellationToken] = None,
    ) -> RepositoryClone:
        check_cancelled(cancel, "clone")
        remote = self._remote(remote_uri)

        directory = Path(directory)
        if directory.exists() and any(directory.iterdir()):
            raise ProvisionError(f"Destination is not empty: {directory}")
        directory.mkdir(parents=True, exist_ok=True)

        state = _CloneState(upstream=remote.tip(branch))
        with self._lock:
            self._states[directory.resolve()] = state

        clone = RepositoryClone(path=directory, remote_uri=remote_uri, branch=branch)

        if state.upstream is None:
            clone.empty_topic = True
            raise EmptyTopicError(f"Topic {branch} has no commits yet", clone=clone)

        self._materialize(clone, state)
        logger.debug("Cloned in-memory remote", uri=remote_uri, branch=branch)
        return clone

    def synchronize(
        self,
        clone: RepositoryClone,
        cancel: Optional[CancellationToken] = None,
    ) -> None:
        check_cancelled(cancel, "synchronize")
        remote = self._remote(clone.remote_uri)
        state = self._state(clone)

        tip = remote.tip(clone.branch)
        if tip is None:
            raise NotYetAdvertisedError(f"Remote branch {clone.branch} does not exist yet")

        if state.upstream is not None and state.upstream.commit_id == tip.commit_id:
            return

        state.pending = _rebase(state.pending, tip.files)
        state.upstream = tip
        self._materialize(clone, state)

    def write_and_commit(
        self,
        clone: RepositoryClone,
        file_name: str,
        content: str,
        author: Author,
        cancel: Optional[CancellationToken] = None,
    ) -> None:
        require_author(author)
        check_cancelled(cancel, "commit")
        state = self._state(clone)

        try:
            (clone.path / file_name).write_text(content, encoding="utf-8")
        except OSError as e:
            raise CommitError(f"Cannot write {file_name}: {e}") from e

        state.pending.append(
            LocalCommit(
                changes={file_name: content},
                message=commit_message_for_add(file_name),
                author=author,
            )
        )
        state.tracked.add(file_name)

    def remove_and_commit(
        self,
        clone: RepositoryClone,
        pattern: str,
        author: Author,
        cancel: Optional[CancellationToken] = None,
    ) -> List[str]:
        require_author(author)
        check_cancelled(cancel, "remove")
        state = self._state(clone)

        matches = sorted(fnmatch.filter(state.tracked, pattern))
        if not matches:
            raise NotFoundError(f"No file matches {pattern}")

        for name in matches:
            (clone.path / name).unlink(missing_ok=True)
            state.tracked.discard(name)

        state.pending.append(
            LocalCommit(
                changes={name: None for name in matches},
                message=commit_message_for_remove(matches),
                author=author,
            )
        )
        return matches

    def push(
        self,
        clone: RepositoryClone,
        credentials: Optional[Credentials] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> None:
        check_cancelled(cancel, "push")
        remote = self._remote(clone.remote_uri)
        remote.check_credentials(credentials)
        state = self._state(clone)

        if not state.pending:
            return

        expected = state.upstream.commit_id if state.upstream else None
        state.upstream = remote.append(clone.branch, expected, state.pending)
        state.pending = []
        clone.empty_topic = False

    def has_unpushed_commits(self, clone: RepositoryClone) -> bool:
        return bool(self._state(clone).pending)

    def release(self, clone: RepositoryClone) -> None:
        with self._lock:
            self._states.pop(clone.path.resolve(), None)

    def _materialize(self, clone: RepositoryClone, state: _CloneState) -> None:
        """Make the working tree match upstream plus pending commits."""
        files = dict(state.upstream.files) if state.upstream else {}
        for local in state.pending:
            files = _apply(files, local.changes)

        for name in state.tracked - files.keys():
            (clone.path / name).unlink(missing_ok=True)

        for name, content in files.items():
            path = clone.path / name
            if not path.exists() or path.read_text(encoding="utf-8") != content:
                path.write_text(content, encoding="utf-8")

        state.tracked = set(files)
