"""Filesystem storage for raw snapshots of fetched pages."""
import asyncio
import logging
import os
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)


class SnapshotStore:
    """
    Stores one raw snapshot per bookmark under a root directory.

    Snapshots are addressed by bookmark id (``{root}/{bookmark_id}.html``) and
    overwritten on reprocessing. Each write goes to a temporary file in the
    same directory which is then renamed over the target, so readers never
    observe a partially written snapshot.
    """

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        """Directory holding the snapshot files."""
        return self._root

    def path_for(self, bookmark_id: int) -> Path:
        """Deterministic snapshot path for a bookmark."""
        return self._root / f"{bookmark_id}.html"

    async def write(self, bookmark_id: int, content: str) -> str:
        """Write ``content`` as the bookmark's snapshot and return its path."""
        path = await asyncio.to_thread(self._write, bookmark_id, content)
        logger.debug("Wrote snapshot for bookmark %d to %s", bookmark_id, path)
        return str(path)

    def _write(self, bookmark_id: int, content: str) -> Path:
        self._root.mkdir(parents=True, exist_ok=True)
        target = self.path_for(bookmark_id)
        fd, tmp_name = tempfile.mkstemp(dir=self._root, prefix=f".{bookmark_id}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        return target

    async def read(self, bookmark_id: int) -> str | None:
        """Return a bookmark's snapshot, or None if none was written."""
        path = self.path_for(bookmark_id)
        try:
            return await asyncio.to_thread(path.read_text, encoding="utf-8")
        except FileNotFoundError:
            return None
