"""Repository backends: the version-control substrate of a topic."""

from gitbroker.backend.base import Author, Credentials, RepositoryBackend, RepositoryClone
from gitbroker.backend.git import GitBackend
from gitbroker.backend.memory import InMemoryBackend, InMemoryRemote

__all__ = [
    "Author",
    "Credentials",
    "GitBackend",
    "InMemoryBackend",
    "InMemoryRemote",
    "RepositoryBackend",
    "RepositoryClone",
]
