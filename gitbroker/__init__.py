"""
gitbroker - a message log on top of a shared git repository.

Producers commit message files to a topic branch and push them; consumers
pull the branch, deliver every file after their last checkpoint and commit
a new checkpoint. The remote repository is the broker:
- One branch per topic
- Order keys embedded in file names give the message order
- Per-node checkpoint files act as consumer cursors
- Optimistic concurrency through git's push rules, with bounded retry
"""

__version__ = "0.1.0"

from gitbroker.backend.base import Author, Credentials, RepositoryBackend, RepositoryClone
from gitbroker.backend.git import GitBackend
from gitbroker.backend.memory import InMemoryBackend, InMemoryRemote
from gitbroker.consumer import Consumer, ConsumerConfig, ConsumerState, MessageBatch
from gitbroker.core.cancel import CancellationToken
from gitbroker.core.clock import OrderKeyGenerator
from gitbroker.core.codec import Checkpoint, Message
from gitbroker.producer import Producer, ProducerConfig

__all__ = [
    "Author",
    "CancellationToken",
    "Checkpoint",
    "Consumer",
    "ConsumerConfig",
    "ConsumerState",
    "Credentials",
    "GitBackend",
    "InMemoryBackend",
    "InMemoryRemote",
    "Message",
    "MessageBatch",
    "OrderKeyGenerator",
    "Producer",
    "ProducerConfig",
    "RepositoryBackend",
    "RepositoryClone",
]
