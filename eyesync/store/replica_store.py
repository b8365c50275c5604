"""Per-room replica store with conditional-request semantics.

A ReplicaStore is the single authority for every key of one room. All
operations go through one lock, so a write is applied and persisted before
the next operation on the room is allowed to observe it.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any

from ..hashing import content_tag

if TYPE_CHECKING:
    from .backend import SQLiteReplicaBackend

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Base error for replica storage."""


class PersistenceError(StoreError):
    """A write could not be durably committed and was not acknowledged."""


@dataclass(frozen=True)
class Replica:
    """Stored value of one key.

    `version_tag` is present exactly when `content` is present.
    """

    content: bytes | None = None
    version_tag: str | None = None
    last_modified: datetime | None = None

    @property
    def exists(self) -> bool:
        return self.content is not None

    @property
    def size(self) -> int:
        return len(self.content) if self.content is not None else 0

    def to_dict(self) -> dict[str, Any]:
        """Metadata view, without the content itself."""
        return {
            "exists": self.exists,
            "version_tag": self.version_tag,
            "size": self.size,
            "last_modified": (
                self.last_modified.isoformat() if self.last_modified else None
            ),
        }


ABSENT = Replica()


class ReadStatus(Enum):
    """Outcome of a conditional read."""

    OK = "ok"
    NOT_MODIFIED = "not_modified"
    ABSENT = "absent"


@dataclass
class ReadResult:
    """Result of a conditional read."""

    status: ReadStatus
    replica: Replica = ABSENT


class ReplicaStore:
    """Durable store of the replicas belonging to one room."""

    def __init__(self, room_id: str, backend: "SQLiteReplicaBackend"):
        """Initialize the store.

        Args:
            room_id: Room this store is authoritative for.
            backend: Persistence backend shared by all rooms.
        """
        self.room_id = room_id
        self._backend = backend
        self._replicas: dict[str, Replica] = {}
        self._loaded = False
        self._lock = threading.RLock()

    def load(self) -> None:
        """Reload the room's replicas from the backend."""
        with self._lock:
            self._replicas = self._backend.load_room(self.room_id)
            self._loaded = True
            logger.info(
                f"Room {self.room_id} loaded with {len(self._replicas)} keys"
            )

    def _ensure_loaded(self) -> None:
        if not self._loaded:
            self.load()

    def get(self, key: str) -> Replica:
        """Return the current replica of a key, or an absent replica."""
        with self._lock:
            self._ensure_loaded()
            return self._replicas.get(key, ABSENT)

    def head(self, key: str) -> str | None:
        """Return only the current version tag of a key."""
        return self.get(key).version_tag

    def conditional_get(self, key: str, if_none_match: str | None) -> ReadResult:
        """Read a key unless the caller already holds its current version.

        Args:
            key: Key to read.
            if_none_match: Version tag cached by the caller, if any.

        Returns:
            NOT_MODIFIED when the tag matches, ABSENT when there is no
            content, otherwise OK with the full replica.
        """
        replica = self.get(key)
        if if_none_match and replica.version_tag == if_none_match:
            return ReadResult(ReadStatus.NOT_MODIFIED, replica)
        if not replica.exists:
            return ReadResult(ReadStatus.ABSENT, replica)
        return ReadResult(ReadStatus.OK, replica)

    def put(self, key: str, data: bytes) -> str:
        """Store new content for a key and return its version tag.

        Raises:
            PersistenceError: If the write could not be committed.
        """
        data = bytes(data)
        tag = content_tag(data)
        replica = Replica(
            content=data,
            version_tag=tag,
            last_modified=datetime.now(timezone.utc),
        )
        self._commit(key, replica)
        logger.debug(f"Stored {len(data)} bytes at {self.room_id}/{key} tag={tag[:12]}")
        return tag

    def delete(self, key: str) -> None:
        """Clear a key's content and tag.

        Raises:
            PersistenceError: If the delete could not be committed.
        """
        self._commit(key, Replica(last_modified=datetime.now(timezone.utc)))
        logger.debug(f"Cleared {self.room_id}/{key}")

    def _commit(self, key: str, replica: Replica) -> None:
        """Apply a write in memory and persist it, rolling back on failure."""
        with self._lock:
            self._ensure_loaded()
            previous = self._replicas.get(key)
            self._replicas[key] = replica
            try:
                self._backend.save_replica(self.room_id, key, replica)
            except PersistenceError:
                if previous is None:
                    del self._replicas[key]
                else:
                    self._replicas[key] = previous
                logger.error(f"Write to {self.room_id}/{key} not persisted")
                raise

    def keys(self) -> list[str]:
        """List keys that have ever been written in this room."""
        with self._lock:
            self._ensure_loaded()
            return sorted(self._replicas)

    def stats(self) -> dict[str, Any]:
        """Per-key metadata for status reporting."""
        with self._lock:
            self._ensure_loaded()
            return {
                "room": self.room_id,
                "keys": {
                    key: replica.to_dict()
                    for key, replica in sorted(self._replicas.items())
                },
            }
