"""Content adapters connecting the sync client to the application's buffers."""

import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path

from ..hashing import content_tag

logger = logging.getLogger(__name__)


class CanvasAdapter(ABC):
    """Narrow interface the sync client needs from the content layer.

    The producer side reports and clears dirtiness and hands out bytes; the
    consumer side receives pulled content. `apply_remote` may be called at
    any time, including while local edits are pending, and must decide on
    its own whether applying is safe.
    """

    @abstractmethod
    def is_dirty(self, key: str) -> bool:
        """Whether the local content of a key has unsynced edits."""
        pass

    @abstractmethod
    def mark_clean(self, key: str) -> None:
        """Record that the content last returned by `read_bytes` is synced.

        Edits made after that export must leave the key dirty.
        """
        pass

    @abstractmethod
    def read_bytes(self, key: str) -> bytes:
        """Export the current local content of a key."""
        pass

    @abstractmethod
    def apply_remote(self, key: str, data: bytes | None) -> bool:
        """Receive pulled content; None means the key was cleared remotely.

        Returns:
            True if the content was applied to the local buffer.
        """
        pass


class MemoryCanvas(CanvasAdapter):
    """In-process buffers, one per key."""

    def __init__(self, keys: list[str] | None = None):
        self._buffers: dict[str, bytes] = {k: b"" for k in keys or []}
        self._dirty: set[str] = set()
        # Write counter per key, and its value when read_bytes last exported
        self._revision: dict[str, int] = {}
        self._exported: dict[str, int] = {}

    def write(self, key: str, data: bytes) -> None:
        """Replace local content, as an editor would after a stroke."""
        self._buffers[key] = bytes(data)
        self._dirty.add(key)
        self._revision[key] = self._revision.get(key, 0) + 1

    def is_dirty(self, key: str) -> bool:
        return key in self._dirty

    def mark_clean(self, key: str) -> None:
        # Writes made after the last export are still unsynced
        if self._exported.get(key) == self._revision.get(key, 0):
            self._dirty.discard(key)

    def read_bytes(self, key: str) -> bytes:
        self._exported[key] = self._revision.get(key, 0)
        return self._buffers.get(key, b"")

    def apply_remote(self, key: str, data: bytes | None) -> bool:
        if key in self._dirty:
            logger.debug(f"Keeping unsynced local edits of {key}")
            return False
        self._buffers[key] = data if data is not None else b""
        return True


class DirectoryCanvas(CanvasAdapter):
    """One file per key inside a directory.

    A key is dirty when its file no longer matches the content last synced.
    Remote content never overwrites a file with unsynced edits.
    """

    def __init__(self, directory: str | Path, suffix: str = ".png"):
        """Initialize the adapter.

        Args:
            directory: Directory holding the key files.
            suffix: File extension appended to each key.
        """
        self.directory = Path(directory).expanduser()
        self.suffix = suffix
        self._synced: dict[str, str | None] = {}
        self._exported: dict[str, str] = {}

    def path_for(self, key: str) -> Path:
        return self.directory / f"{key}{self.suffix}"

    def _current_tag(self, key: str) -> str | None:
        path = self.path_for(key)
        if not path.exists():
            return None
        return content_tag(path.read_bytes())

    def is_dirty(self, key: str) -> bool:
        current = self._current_tag(key)
        if current is None:
            return False
        return current != self._synced.get(key)

    def mark_clean(self, key: str) -> None:
        # The file may have been saved again since it was exported
        if key in self._exported:
            self._synced[key] = self._exported.pop(key)
        else:
            self._synced[key] = self._current_tag(key)

    def read_bytes(self, key: str) -> bytes:
        path = self.path_for(key)
        data = path.read_bytes() if path.exists() else b""
        self._exported[key] = content_tag(data)
        return data

    def apply_remote(self, key: str, data: bytes | None) -> bool:
        if self.is_dirty(key):
            logger.info(f"Not applying remote {key}: local file has unsynced edits")
            return False

        path = self.path_for(key)
        if data is None:
            if path.exists():
                path.unlink()
            self._synced[key] = None
            logger.info(f"Removed {path} (cleared remotely)")
            return True

        self.directory.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(path.name + ".tmp")
        tmp_path.write_bytes(data)
        os.replace(tmp_path, path)
        self._synced[key] = content_tag(data)
        logger.info(f"Wrote {len(data)} bytes to {path}")
        return True
