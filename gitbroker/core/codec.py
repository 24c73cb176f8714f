"""
File naming convention for topic entries.

Every entry in a topic is a file in the working tree:

    {order_key}_{node}_{event}.json    message
    {order_key}_{node}_OK.json         checkpoint of ``node``

The order key is a decimal integer. The event is the text after the last
underscore, so it may not contain one; the node is everything between the
first and last underscore.
"""

from dataclasses import dataclass, field
from typing import Optional, Tuple, Union

FILE_SUFFIX = ".json"
CHECKPOINT_EVENT = "OK"
CHECKPOINT_CONTENT = "PROCESSED"

_FORBIDDEN_CHARS = ("/", "\\", "\0")


@dataclass(frozen=True)
class Message:
    """
    A message read from, or written to, a topic.

    Attributes:
        order_key: Monotonic ordering key
        node: Identity of the producing node
        event: Logical message type
        body: Opaque payload (JSON text by convention)
        file_name: Exact name of the file holding the message
    """
    order_key: int
    node: str
    event: str
    body: str = ""
    file_name: str = field(default="", compare=False)

    def __post_init__(self) -> None:
        if not self.file_name:
            object.__setattr__(
                self, "file_name", encode_file_name(self.order_key, self.node, self.event)
            )


@dataclass(frozen=True)
class Checkpoint:
    """
    Marker recording that ``node`` processed the topic up to this point.

    Attributes:
        order_key: Position of the marker in the topic
        node: Consumer node that wrote it
        file_name: Exact name of the marker file
    """
    order_key: int
    node: str
    file_name: str = field(default="", compare=False)

    def __post_init__(self) -> None:
        if not self.file_name:
            object.__setattr__(
                self, "file_name", encode_file_name(self.order_key, self.node, CHECKPOINT_EVENT)
            )


Entry = Union[Message, Checkpoint]


def validate_node(node: str) -> None:
    """Raise ValueError if ``node`` cannot appear in a file name."""
    if not node:
        raise ValueError("Node must not be empty")
    if any(char in node for char in _FORBIDDEN_CHARS):
        raise ValueError(f"Node contains a path separator: {node!r}")


def validate_event(event: str) -> None:
    """Raise ValueError if ``event`` cannot appear in a file name."""
    if not event:
        raise ValueError("Event must not be empty")
    if "_" in event:
        raise ValueError(f"Event must not contain '_': {event!r}")
    if any(char in event for char in _FORBIDDEN_CHARS):
        raise ValueError(f"Event contains a path separator: {event!r}")


def encode_file_name(order_key: int, node: str, event: str) -> str:
    """
    Build the file name of a topic entry.

    Args:
        order_key: Non-negative order key
        node: Node identity
        event: Event name (``OK`` for checkpoints)

    Returns:
        ``{order_key}_{node}_{event}.json``
    """
    if order_key < 0:
        raise ValueError(f"Order key must be non-negative, got {order_key}")
    validate_node(node)
    validate_event(event)
    return f"{order_key}_{node}_{event}{FILE_SUFFIX}"


def parse_file_name(file_name: str) -> Tuple[int, str, str]:
    """
    Split a file name into ``(order_key, node, event)``.

    Raises:
        ValueError: If the name does not follow the convention
    """
    if not file_name.endswith(FILE_SUFFIX):
        raise ValueError(f"Not a topic entry: {file_name}")

    stem = file_name[: -len(FILE_SUFFIX)]
    key_part, sep, rest = stem.partition("_")
    node, sep2, event = rest.rpartition("_")

    if not sep or not sep2 or not key_part.isdigit() or not node or not event:
        raise ValueError(f"Malformed topic entry name: {file_name}")

    return int(key_part), node, event


def is_checkpoint_name(file_name: str, node: Optional[str] = None) -> bool:
    """
    Check whether ``file_name`` is a checkpoint marker.

    Args:
        file_name: Name to check
        node: If given, only checkpoints of this node match
    """
    try:
        _, entry_node, event = parse_file_name(file_name)
    except ValueError:
        return False
    if event != CHECKPOINT_EVENT:
        return False
    return node is None or entry_node == node


def decode_entry(file_name: str, content: str = "") -> Entry:
    """
    Decode a file into a Message or a Checkpoint.

    Args:
        file_name: Name of the file in the working tree
        content: File content (ignored for checkpoints)

    Raises:
        ValueError: If the name does not follow the convention
    """
    order_key, node, event = parse_file_name(file_name)
    if event == CHECKPOINT_EVENT:
        return Checkpoint(order_key=order_key, node=node, file_name=file_name)
    return Message(
        order_key=order_key,
        node=node,
        event=event,
        body=content,
        file_name=file_name,
    )


def sort_key(file_name: str) -> Tuple[int, int, str]:
    """
    Sort key for topic listings.

    Ascending order key; at equal keys messages come before checkpoints so
    a checkpoint covers every message issued in the same millisecond.
    Undecodable names sort first and are dropped by callers.
    """
    try:
        order_key, _, event = parse_file_name(file_name)
    except ValueError:
        return (-1, 0, file_name)
    return (order_key, 1 if event == CHECKPOINT_EVENT else 0, file_name)
