"""
Shared fixtures for gitbroker tests.
"""

import shutil
import subprocess
from typing import List, Optional

import pytest

from gitbroker.backend.base import Author, Credentials, RepositoryClone
from gitbroker.backend.memory import InMemoryBackend, InMemoryRemote
from gitbroker.core.clock import ManualClock, OrderKeyGenerator, reset_default_generator
from gitbroker.errors import PushRejectedError
from gitbroker.utils.config import ClientConfig, reset_config

TOPIC = "PINGPONG"

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")


class FlakyBackend(InMemoryBackend):
    """In-memory backend that rejects the next ``reject_pushes`` pushes."""

    def __init__(self, *remotes: InMemoryRemote):
        super().__init__(*remotes)
        self.reject_pushes = 0
        self.push_attempts = 0

    def push(self, clone: RepositoryClone, credentials: Optional[Credentials] = None, cancel=None) -> None:
        self.push_attempts += 1
        if self.reject_pushes > 0:
            self.reject_pushes -= 1
            raise PushRejectedError("Updates were rejected (simulated)")
        super().push(clone, credentials, cancel)


class RacingBackend(InMemoryBackend):
    """In-memory backend that runs ``on_commit`` once, right after a commit."""

    def __init__(self, *remotes: InMemoryRemote):
        super().__init__(*remotes)
        self.on_commit = None

    def write_and_commit(self, clone, file_name, content, author, cancel=None) -> None:
        super().write_and_commit(clone, file_name, content, author, cancel)
        callback, self.on_commit = self.on_commit, None
        if callback is not None:
            callback()


@pytest.fixture(autouse=True)
def reset_globals():
    """Start every test with fresh process-wide state."""
    reset_default_generator()
    reset_config()
    yield
    reset_default_generator()
    reset_config()


@pytest.fixture
def remote():
    return InMemoryRemote()


@pytest.fixture
def backend(remote):
    return InMemoryBackend(remote)


@pytest.fixture
def author():
    return Author("Full Name", "email@example.org")


@pytest.fixture
def client_config(tmp_path):
    """Client settings with no backoff so retry tests run fast."""
    return ClientConfig(
        author_name="Full Name",
        author_email="email@example.org",
        work_dir=str(tmp_path / "work"),
        max_retries=5,
        retry_backoff_ms=0,
        retry_backoff_max_ms=0,
        retry_jitter_ms=0,
    )


@pytest.fixture
def clock():
    return ManualClock(10)


@pytest.fixture
def ids(clock):
    return OrderKeyGenerator(time_source=clock)


def remote_names(remote: InMemoryRemote, topic: str = TOPIC, suffix: str = "") -> List[str]:
    return sorted(name for name in remote.files(topic) if name.endswith(suffix))


def git(*args: str, cwd=None) -> subprocess.CompletedProcess:
    return subprocess.run(
        ["git", *args],
        cwd=cwd,
        check=True,
        capture_output=True,
        text=True,
    )


@pytest.fixture
def bare_remote(tmp_path):
    """Empty bare repository acting as the broker."""
    path = tmp_path / "broker.git"
    git("init", "--bare", "--quiet", str(path))
    return str(path)
