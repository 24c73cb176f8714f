"""
Repository backend driving the ``git`` executable.

Each operation is a short sequence of git commands run in the clone's
working tree. Commands run with prompts disabled and the C locale so
failures can be classified from git's own messages; every command honours
a timeout and polls the caller's cancellation token while it runs.
"""

import fnmatch
import os
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence
from urllib.parse import quote, urlsplit, urlunsplit

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
    BackendTimeoutError,
    BrokerError,
    CommitError,
    EmptyTopicError,
    NotFoundError,
    NotYetAdvertisedError,
    OperationCancelledError,
    ProvisionError,
    PushRejectedError,
    SyncConflictError,
    TransientBackendError,
    is_transient_message,
)
from gitbroker.utils.logging import get_logger

logger = get_logger(__name__)

REMOTE_NAME = "origin"

_AUTH_PATTERNS = (
    "authentication failed",
    "could not read username",
    "could not read password",
    "terminal prompts disabled",
    "permission denied",
    "403",
    "401",
)

_REJECT_PATTERNS = (
    "[rejected]",
    "non-fast-forward",
    "fetch first",
    "failed to update ref",
    "stale info",
)


@dataclass
class GitResult:
    """
    Outcome of one git command.

    Attributes:
        returncode: Process exit status
        stdout: Captured standard output (stripped)
        stderr: Captured standard error (stripped)
    """
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        return f"{self.stdout}\n{self.stderr}".strip()


def _matches(text: str, patterns: Sequence[str]) -> bool:
    lowered = text.lower()
    return any(pattern in lowered for pattern in patterns)


def authenticated_url(remote_uri: str, credentials: Optional[Credentials]) -> Optional[str]:
    """
    Embed ``credentials`` in an http(s) remote URI.

    Returns:
        The URI with user info, or None when the scheme does not take
        credentials this way (ssh, file paths)
    """
    if credentials is None:
        return None

    parts = urlsplit(remote_uri)
    if parts.scheme not in ("http", "https"):
        return None

    host = parts.netloc.rpartition("@")[2]
    userinfo = quote(credentials.username, safe="")
    if credentials.password:
        userinfo += ":" + quote(credentials.password, safe="")

    return urlunsplit(parts._replace(netloc=f"{userinfo}@{host}"))


class GitBackend(RepositoryBackend):
    """
    RepositoryBackend over the git command line.

    Example:
        backend = GitBackend(command_timeout_s=30)
        clone = backend.clone("https://example.org/broker.git", "orders", Path("/tmp/wc"))
    """

    def __init__(
        self,
        git_executable: str = "git",
        command_timeout_s: float = 60.0,
        poll_interval_s: float = 0.05,
        committer: Optional[Author] = None,
    ):
        """
        Initialize backend.

        Args:
            git_executable: Name or path of the git binary
            command_timeout_s: Upper bound for any single git command
            poll_interval_s: How often a running command checks for cancellation
            committer: Identity used when replaying local commits on synchronize
        """
        self.git_executable = git_executable
        self.command_timeout_s = command_timeout_s
        self.poll_interval_s = poll_interval_s
        self.committer = committer or Author("gitbroker", "gitbroker@localhost")

    def _run(
        self,
        args: Sequence[str],
        cwd: Path,
        cancel: Optional[CancellationToken] = None,
    ) -> GitResult:
        """
        Run one git command.

        Raises:
            OperationCancelledError: ``cancel`` fired while the command ran
            BackendTimeoutError: The command exceeded ``command_timeout_s``
            ProvisionError: git could not be started
        """
        operation = f"git {args[0]}" if args else "git"
        check_cancelled(cancel, operation)

        env = os.environ.copy()
        env["GIT_TERMINAL_PROMPT"] = "0"
        env["GIT_EDITOR"] = "true"
        env["LC_ALL"] = "C"

        try:
            proc = subprocess.Popen(
                [self.git_executable, *args],
                cwd=str(cwd),
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                stdin=subprocess.DEVNULL,
                text=True,
                encoding="utf-8",
                errors="replace",
                env=env,
            )
        except OSError as e:
            raise ProvisionError(f"Cannot run {self.git_executable}: {e}") from e

        deadline = time.monotonic() + self.command_timeout_s
        while True:
            try:
                stdout, stderr = proc.communicate(timeout=self.poll_interval_s)
                break
            except subprocess.TimeoutExpired:
                if cancel is not None and cancel.is_cancelled:
                    proc.kill()
                    proc.communicate()
                    raise OperationCancelledError(f"{operation} cancelled")
                if time.monotonic() >= deadline:
                    proc.kill()
                    proc.communicate()
                    raise BackendTimeoutError(
                        f"{operation} timed out after {self.command_timeout_s}s"
                    )

        result = GitResult(proc.returncode, (stdout or "").strip(), (stderr or "").strip())
        logger.debug("git command finished", command=operation, returncode=result.returncode)
        return result

    def _identity_args(self, identity: Author) -> List[str]:
        return [
            "-c", f"user.name={identity.name}",
            "-c", f"user.email={identity.email}",
            "-c", "commit.gpgsign=false",
        ]

    def _has_head(self, path: Path, cancel: Optional[CancellationToken] = None) -> bool:
        return self._run(["rev-parse", "--verify", "--quiet", "HEAD"], path, cancel).ok

    def _has_remote_branch(
        self,
        path: Path,
        branch: str,
        cancel: Optional[CancellationToken] = None,
    ) -> bool:
        ref = f"refs/remotes/{REMOTE_NAME}/{branch}"
        return self._run(["rev-parse", "--verify", "--quiet", ref], path, cancel).ok

    def _fetch(self, clone: RepositoryClone, cancel: Optional[CancellationToken]) -> None:
        result = self._run(
            ["fetch", "--quiet", "--force", "--prune", REMOTE_NAME], clone.path, cancel
        )
        if not result.ok:
            if _matches(result.output, _AUTH_PATTERNS):
                raise AuthError(f"Fetch from {clone.remote_uri} rejected: {result.stderr}")
            if is_transient_message(result.output):
                raise TransientBackendError(f"Fetch from {clone.remote_uri} failed: {result.stderr}")
            raise ProvisionError(f"Fetch from {clone.remote_uri} failed: {result.stderr}")

    def clone(
        self,
        remote_uri: str,
        branch: str,
        directory: Path,
        cancel: Optional[CancellationToken] = None,
    ) -> RepositoryClone:
        directory = Path(directory)
        directory.parent.mkdir(parents=True, exist_ok=True)

        logger.debug("Cloning repository", uri=remote_uri, branch=branch)
        result = self._run(["clone", "--quiet", remote_uri, str(directory)], directory.parent, cancel)
        if not result.ok:
            raise ProvisionError(f"Cannot clone {remote_uri}: {result.stderr}")

        clone = RepositoryClone(path=directory, remote_uri=remote_uri, branch=branch)

        if self._has_remote_branch(directory, branch, cancel):
            result = self._run(
                ["checkout", "--quiet", "-B", branch, f"{REMOTE_NAME}/{branch}"],
                directory,
                cancel,
            )
            if not result.ok:
                raise ProvisionError(f"Cannot check out {branch}: {result.stderr}")
            return clone

        # New topic: start an unborn branch with an empty tree.
        if self._has_head(directory, cancel):
            result = self._run(["switch", "--quiet", "--orphan", branch], directory, cancel)
        else:
            result = self._run(["symbolic-ref", "HEAD", f"refs/heads/{branch}"], directory, cancel)
        if not result.ok:
            raise ProvisionError(f"Cannot create branch {branch}: {result.stderr}")

        clone.empty_topic = True
        raise EmptyTopicError(f"Topic {branch} has no commits yet", clone=clone)

    def synchronize(
        self,
        clone: RepositoryClone,
        cancel: Optional[CancellationToken] = None,
    ) -> None:
        self._fetch(clone, cancel)

        if not self._has_remote_branch(clone.path, clone.branch, cancel):
            raise NotYetAdvertisedError(f"Remote branch {clone.branch} does not exist yet")

        upstream = f"{REMOTE_NAME}/{clone.branch}"

        if not self._has_head(clone.path, cancel):
            result = self._run(
                ["checkout", "--quiet", "-B", clone.branch, upstream], clone.path, cancel
            )
            if not result.ok:
                raise SyncConflictError(f"Cannot check out {upstream}: {result.stderr}")
            clone.empty_topic = False
            return

        result = self._run(
            [*self._identity_args(self.committer), "rebase", "--quiet", upstream],
            clone.path,
            cancel,
        )
        if not result.ok:
            self._run(["rebase", "--abort"], clone.path)
            raise SyncConflictError(
                f"Local commits on {clone.branch} conflict with {upstream}: {result.output}"
            )

    def write_and_commit(
        self,
        clone: RepositoryClone,
        file_name: str,
        content: str,
        author: Author,
        cancel: Optional[CancellationToken] = None,
    ) -> None:
        require_author(author)

        try:
            (clone.path / file_name).write_text(content, encoding="utf-8")
        except OSError as e:
            raise CommitError(f"Cannot write {file_name}: {e}") from e

        try:
            result = self._run(["add", "--", file_name], clone.path, cancel)
            if not result.ok:
                raise CommitError(f"Cannot stage {file_name}: {result.stderr}")

            self._commit(clone, commit_message_for_add(file_name), author, cancel)
        except BrokerError:
            self._discard_add(clone, file_name)
            raise

    def remove_and_commit(
        self,
        clone: RepositoryClone,
        pattern: str,
        author: Author,
        cancel: Optional[CancellationToken] = None,
    ) -> List[str]:
        require_author(author)

        listing = self._run(["ls-files", "-z"], clone.path, cancel)
        if not listing.ok:
            raise CommitError(f"Cannot list tracked files: {listing.stderr}")

        tracked = [name for name in listing.stdout.split("\0") if name]
        matches = sorted(fnmatch.filter(tracked, pattern))
        if not matches:
            raise NotFoundError(f"No file matches {pattern}")

        result = self._run(["rm", "--quiet", "--", *matches], clone.path, cancel)
        if not result.ok:
            raise CommitError(f"Cannot remove {', '.join(matches)}: {result.stderr}")

        try:
            self._commit(clone, commit_message_for_remove(matches), author, cancel)
        except BrokerError:
            self._restore(clone, matches)
            raise
        return matches

    def _discard_add(self, clone: RepositoryClone, file_name: str) -> None:
        """Unstage and delete a file whose commit failed."""
        self._run(
            ["rm", "--cached", "--quiet", "--ignore-unmatch", "--", file_name], clone.path
        )
        (clone.path / file_name).unlink(missing_ok=True)
        logger.debug("Discarded uncommitted file", file_name=file_name)

    def _restore(self, clone: RepositoryClone, file_names: List[str]) -> None:
        """Bring back files whose removal could not be committed."""
        self._run(["checkout", "HEAD", "--", *file_names], clone.path)
        logger.debug("Restored files after failed removal", files=file_names)

    def _commit(
        self,
        clone: RepositoryClone,
        message: str,
        author: Author,
        cancel: Optional[CancellationToken],
    ) -> None:
        result = self._run(
            [*self._identity_args(author), "commit", "--quiet", "-m", message],
            clone.path,
            cancel,
        )
        if not result.ok:
            raise CommitError(f"Commit failed: {result.output}")

    def push(
        self,
        clone: RepositoryClone,
        credentials: Optional[Credentials] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> None:
        if not self._has_head(clone.path, cancel):
            return

        target = authenticated_url(clone.remote_uri, credentials) or REMOTE_NAME
        result = self._run(
            ["push", "--porcelain", target, f"HEAD:refs/heads/{clone.branch}"],
            clone.path,
            cancel,
        )

        if not result.ok:
            if _matches(result.output, _REJECT_PATTERNS):
                raise PushRejectedError(f"Push to {clone.branch} rejected: remote has advanced")
            if _matches(result.output, _AUTH_PATTERNS):
                raise AuthError(f"Credentials rejected by {clone.remote_uri}")
            if is_transient_message(result.output):
                raise TransientBackendError(f"Push to {clone.remote_uri} failed: {result.stderr}")
            raise ProvisionError(f"Push to {clone.remote_uri} failed: {result.stderr}")

        # A push to a URL does not move the remote-tracking ref by itself.
        self._run(
            ["update-ref", f"refs/remotes/{REMOTE_NAME}/{clone.branch}", "HEAD"],
            clone.path,
            cancel,
        )
        clone.empty_topic = False

    def has_unpushed_commits(self, clone: RepositoryClone) -> bool:
        if not self._has_head(clone.path):
            return False
        if not self._has_remote_branch(clone.path, clone.branch):
            return True

        result = self._run(
            ["rev-list", "--count", f"{REMOTE_NAME}/{clone.branch}..HEAD"], clone.path
        )
        return result.ok and int(result.stdout or "0") > 0
