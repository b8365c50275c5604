"""Routing of room identifiers to their owning ReplicaStore."""

import logging
import threading
from pathlib import Path

from .backend import SQLiteReplicaBackend
from .replica_store import ReplicaStore

logger = logging.getLogger(__name__)


class RoomRouter:
    """Maps each room to exactly one ReplicaStore for the process lifetime.

    Stores are created on first reference and load their persisted state
    lazily. Rooms never share state.
    """

    def __init__(self, backend: SQLiteReplicaBackend):
        self._backend = backend
        self._stores: dict[str, ReplicaStore] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_path(cls, db_path: str | Path) -> "RoomRouter":
        """Create a router over a SQLite database file."""
        backend = SQLiteReplicaBackend(db_path)
        backend.connect()
        return cls(backend)

    def resolve(self, room_id: str) -> ReplicaStore:
        """Return the store owning a room, creating it on first access."""
        with self._lock:
            store = self._stores.get(room_id)
            if store is None:
                store = ReplicaStore(room_id, self._backend)
                self._stores[room_id] = store
                logger.info(f"Created store for room {room_id}")
            return store

    def rooms(self) -> list[str]:
        """List rooms resolved so far in this process."""
        with self._lock:
            return sorted(self._stores)

    def close(self) -> None:
        """Close the persistence backend."""
        self._backend.close()
