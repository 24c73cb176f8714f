"""
Tests for the in-memory repository backend.
"""

import pytest

from conftest import TOPIC

from gitbroker.backend.base import Author, Credentials
from gitbroker.backend.memory import InMemoryBackend, InMemoryRemote
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


def open_clone(backend, remote, path):
    """Clone the topic, accepting a topic that has no commits yet."""
    try:
        return backend.clone(remote.uri, TOPIC, path)
    except EmptyTopicError as e:
        return e.clone


@pytest.fixture
def seeded(remote, backend, author, tmp_path):
    """Topic with one message already pushed."""
    clone = open_clone(backend, remote, tmp_path / "seed")
    backend.write_and_commit(clone, "10_seed_PING.json", "seed", author)
    backend.push(clone)
    return clone


class TestClone:
    """Test cloning."""

    def test_clone_empty_topic(self, remote, backend, tmp_path):
        """Test an empty topic yields a usable local-only clone."""
        with pytest.raises(EmptyTopicError) as exc_info:
            backend.clone(remote.uri, TOPIC, tmp_path / "a")

        clone = exc_info.value.clone
        assert clone is not None
        assert clone.empty_topic
        assert clone.path.is_dir()

    def test_clone_materializes_files(self, seeded, remote, backend, tmp_path):
        """Test a clone's working tree holds the topic's files."""
        clone = backend.clone(remote.uri, TOPIC, tmp_path / "b")

        assert (clone.path / "10_seed_PING.json").read_text() == "seed"
        assert not clone.empty_topic

    def test_clone_unreachable(self, remote, backend, tmp_path):
        """Test an unreachable remote fails provisioning."""
        remote.reachable = False

        with pytest.raises(ProvisionError):
            backend.clone(remote.uri, TOPIC, tmp_path / "a")

    def test_clone_unknown_remote(self, backend, tmp_path):
        """Test an unknown URI fails provisioning."""
        with pytest.raises(ProvisionError):
            backend.clone("memory://elsewhere", TOPIC, tmp_path / "a")

    def test_clone_into_non_empty_directory(self, remote, backend, tmp_path):
        """Test the destination must be empty."""
        target = tmp_path / "a"
        target.mkdir()
        (target / "stray.txt").write_text("x")

        with pytest.raises(ProvisionError):
            backend.clone(remote.uri, TOPIC, target)


class TestCommitAndPush:
    """Test committing and pushing."""

    def test_first_push_creates_branch(self, remote, backend, author, tmp_path):
        """Test the first push of an empty topic creates the branch."""
        clone = open_clone(backend, remote, tmp_path / "a")

        backend.write_and_commit(clone, "1_a_PING.json", "{}", author)
        assert backend.has_unpushed_commits(clone)

        backend.push(clone)

        assert remote.files(TOPIC) == {"1_a_PING.json": "{}"}
        assert not backend.has_unpushed_commits(clone)
        assert not clone.empty_topic

        commit = remote.tip(TOPIC)
        assert commit.message == "Creating file: 1_a_PING.json"
        assert commit.author == author

    def test_push_without_commits_is_noop(self, seeded, remote, backend):
        """Test pushing with nothing pending leaves the remote alone."""
        before = len(remote.history(TOPIC))

        backend.push(seeded)

        assert len(remote.history(TOPIC)) == before

    def test_incomplete_author(self, remote, backend, tmp_path):
        """Test commits need a full author identity."""
        clone = open_clone(backend, remote, tmp_path / "a")

        with pytest.raises(CommitError):
            backend.write_and_commit(clone, "1_a_PING.json", "{}", Author("", ""))

    def test_stale_push_rejected(self, seeded, remote, backend, author, tmp_path):
        """Test a push from a stale base is rejected and the commit kept."""
        a = backend.clone(remote.uri, TOPIC, tmp_path / "a")
        b = backend.clone(remote.uri, TOPIC, tmp_path / "b")

        backend.write_and_commit(a, "20_a_PING.json", "a", author)
        backend.push(a)

        backend.write_and_commit(b, "21_b_PING.json", "b", author)
        with pytest.raises(PushRejectedError):
            backend.push(b)

        assert backend.has_unpushed_commits(b)

        backend.synchronize(b)
        assert (b.path / "20_a_PING.json").exists()
        assert (b.path / "21_b_PING.json").exists()

        backend.push(b)
        assert set(remote.files(TOPIC)) == {
            "10_seed_PING.json",
            "20_a_PING.json",
            "21_b_PING.json",
        }
        assert remote.tip(TOPIC).message == "Creating file: 21_b_PING.json"

    def test_credentials_required(self, author, tmp_path):
        """Test a protected remote rejects missing or wrong credentials."""
        remote = InMemoryRemote(credentials=Credentials("user", "secret"))
        backend = InMemoryBackend(remote)
        clone = open_clone(backend, remote, tmp_path / "a")
        backend.write_and_commit(clone, "1_a_PING.json", "{}", author)

        with pytest.raises(AuthError):
            backend.push(clone)
        with pytest.raises(AuthError):
            backend.push(clone, Credentials("user", "wrong"))

        backend.push(clone, Credentials("user", "secret"))
        assert "1_a_PING.json" in remote.files(TOPIC)


class TestSynchronize:
    """Test synchronizing."""

    def test_not_yet_advertised(self, remote, backend, tmp_path):
        """Test synchronizing a topic nobody has pushed yet."""
        clone = open_clone(backend, remote, tmp_path / "a")

        with pytest.raises(NotYetAdvertisedError):
            backend.synchronize(clone)

    def test_idempotent(self, seeded, remote, backend, tmp_path):
        """Test synchronizing twice without remote changes changes nothing."""
        clone = backend.clone(remote.uri, TOPIC, tmp_path / "a")

        backend.synchronize(clone)
        listing = sorted(p.name for p in clone.path.iterdir())
        backend.synchronize(clone)

        assert sorted(p.name for p in clone.path.iterdir()) == listing
        assert not backend.has_unpushed_commits(clone)

    def test_picks_up_removals(self, seeded, remote, backend, author, tmp_path):
        """Test files removed upstream disappear from the working tree."""
        a = backend.clone(remote.uri, TOPIC, tmp_path / "a")

        backend.remove_and_commit(seeded, "10_seed_PING.json", author)
        backend.push(seeded)
        backend.synchronize(a)

        assert not (a.path / "10_seed_PING.json").exists()

    def test_conflicting_add(self, seeded, remote, backend, author, tmp_path):
        """Test the same file added with different content conflicts."""
        a = backend.clone(remote.uri, TOPIC, tmp_path / "a")
        b = backend.clone(remote.uri, TOPIC, tmp_path / "b")

        backend.write_and_commit(a, "20_x_PING.json", "from a", author)
        backend.push(a)
        backend.write_and_commit(b, "20_x_PING.json", "from b", author)

        with pytest.raises(SyncConflictError):
            backend.synchronize(b)

    def test_identical_add_is_dropped(self, seeded, remote, backend, author, tmp_path):
        """Test a change already upstream is dropped on rebase."""
        a = backend.clone(remote.uri, TOPIC, tmp_path / "a")
        b = backend.clone(remote.uri, TOPIC, tmp_path / "b")

        backend.write_and_commit(a, "20_x_PING.json", "same", author)
        backend.push(a)
        backend.write_and_commit(b, "20_x_PING.json", "same", author)

        backend.synchronize(b)

        assert not backend.has_unpushed_commits(b)

    def test_unreachable(self, seeded, remote, backend, tmp_path):
        """Test synchronizing against an offline remote."""
        clone = backend.clone(remote.uri, TOPIC, tmp_path / "a")
        remote.reachable = False

        with pytest.raises(ProvisionError):
            backend.synchronize(clone)


class TestRemove:
    """Test removing files."""

    def test_remove_matching(self, seeded, remote, backend, author):
        """Test a pattern removes every matching tracked file."""
        backend.write_and_commit(seeded, "11_seed_PING.json", "x", author)
        backend.write_and_commit(seeded, "12_seed_PONG.json", "y", author)

        removed = backend.remove_and_commit(seeded, "*_PING.json", author)
        backend.push(seeded)

        assert removed == ["10_seed_PING.json", "11_seed_PING.json"]
        assert set(remote.files(TOPIC)) == {"12_seed_PONG.json"}
        assert remote.tip(TOPIC).message == "Removing file: 10_seed_PING.json, 11_seed_PING.json"

    def test_remove_no_match(self, seeded, backend, author):
        """Test removing a pattern that matches nothing."""
        with pytest.raises(NotFoundError):
            backend.remove_and_commit(seeded, "99_*.json", author)
