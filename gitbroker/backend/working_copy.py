"""
Local working copy of a topic.

The working tree of a node's private clone is the visible queue: every
``*.json`` file in it is a message or a checkpoint.
"""

import shutil
import tempfile
from pathlib import Path
from typing import List, Optional

from gitbroker.core.codec import FILE_SUFFIX
from gitbroker.utils.logging import get_logger

logger = get_logger(__name__)


class LocalWorkingCopy:
    """
    Disposable directory holding a node's clone.

    Attributes:
        path: Directory the clone lives in
    """

    def __init__(self, path: Path, owned: bool = False):
        """
        Args:
            path: Clone directory
            owned: Whether ``destroy`` may delete the directory
        """
        self.path = Path(path)
        self._owned = owned

    @classmethod
    def provision(
        cls,
        topic: str,
        node: str,
        base_dir: Optional[Path] = None,
    ) -> "LocalWorkingCopy":
        """
        Create a fresh, empty directory for a clone.

        Args:
            topic: Topic the clone will hold
            node: Node identity
            base_dir: Parent directory (system temp directory if None)
        """
        if base_dir is not None:
            Path(base_dir).mkdir(parents=True, exist_ok=True)

        parent = Path(tempfile.mkdtemp(prefix=f"gitbroker-{topic}-{node}-", dir=base_dir))
        working_copy = cls(parent / "repo", owned=True)

        logger.debug("Provisioned working copy", path=str(working_copy.path))
        return working_copy

    def list_entries(self) -> List[str]:
        """Names of all ``*.json`` files in the working tree, unsorted."""
        if not self.path.is_dir():
            return []
        return [
            entry.name
            for entry in self.path.iterdir()
            if entry.is_file() and entry.name.endswith(FILE_SUFFIX)
        ]

    def read(self, file_name: str) -> str:
        return (self.path / file_name).read_text(encoding="utf-8")

    def destroy(self) -> None:
        """Delete the directory if this working copy created it."""
        if not self._owned:
            return
        root = self.path.parent
        shutil.rmtree(root, ignore_errors=True)
        logger.debug("Destroyed working copy", path=str(root))
