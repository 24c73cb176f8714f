"""
Cursor computation for a consumer node.

Given the ``*.json`` listing of a working tree, find the node's latest
checkpoint and the messages that come after it.
"""

from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from gitbroker.core.codec import is_checkpoint_name, parse_file_name, sort_key
from gitbroker.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class Selection:
    """
    Result of scanning a topic listing.

    Attributes:
        cursor: File name of the node's latest checkpoint, if any
        pending: Message file names to deliver, in delivery order
        max_order_key: Greatest order key in the listing (-1 if none)
    """
    cursor: Optional[str] = None
    pending: List[str] = field(default_factory=list)
    max_order_key: int = -1


def _decodable(file_names: Iterable[str]) -> List[str]:
    valid = []
    for name in file_names:
        try:
            parse_file_name(name)
        except ValueError:
            logger.warning("Skipping file with unexpected name", file_name=name)
            continue
        valid.append(name)
    return valid


def select_pending(file_names: Iterable[str], node: str) -> Selection:
    """
    Select the messages ``node`` has not processed yet.

    With a checkpoint, everything up to and including the latest one is
    dropped; without one, every message is pending. Checkpoints of any
    node are never delivered.

    Args:
        file_names: ``*.json`` names in the working tree
        node: Consumer node identity

    Returns:
        Selection with the cursor and the pending names in order
    """
    ordered = sorted(_decodable(file_names), key=sort_key)
    if not ordered:
        return Selection()

    max_order_key = sort_key(ordered[-1])[0]

    checkpoints = [name for name in ordered if is_checkpoint_name(name, node)]

    if checkpoints:
        cursor = checkpoints[-1]
        after_cursor = ordered[ordered.index(cursor) + 1:]
        pending = [name for name in after_cursor if not is_checkpoint_name(name)]
        return Selection(cursor=cursor, pending=pending, max_order_key=max_order_key)

    pending = [name for name in ordered if not is_checkpoint_name(name)]
    return Selection(cursor=None, pending=pending, max_order_key=max_order_key)
