"""SQLite persistence for replica stores."""

import logging
import sqlite3
import threading
from datetime import datetime
from pathlib import Path

from .replica_store import PersistenceError, Replica

logger = logging.getLogger(__name__)

REPLICA_SCHEMA = """
-- One row per key per room; NULL content means absent/deleted
CREATE TABLE IF NOT EXISTS replicas (
    room TEXT NOT NULL,
    key TEXT NOT NULL,
    content BLOB,
    version_tag TEXT,
    last_modified TEXT,
    PRIMARY KEY (room, key)
);

CREATE INDEX IF NOT EXISTS idx_replicas_room ON replicas(room);
"""


class SQLiteReplicaBackend:
    """Durable storage shared by all rooms of one server process."""

    def __init__(self, db_path: str | Path):
        """Initialize the backend.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
        """
        self.db_path = db_path if db_path == ":memory:" else Path(db_path).expanduser()
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    def connect(self) -> None:
        """Initialize database connection and schema."""
        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(REPLICA_SCHEMA)
        self._conn.commit()

        logger.info(f"Replica backend connected to {self.db_path}")

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def _ensure_connected(self) -> sqlite3.Connection:
        if self._conn is None:
            self.connect()
        return self._conn

    def load_room(self, room: str) -> dict[str, Replica]:
        """Load every persisted replica of a room.

        Args:
            room: Room identifier.

        Returns:
            Mapping of key to Replica; empty if the room was never written.
        """
        with self._lock:
            conn = self._ensure_connected()
            cursor = conn.execute(
                """
                SELECT key, content, version_tag, last_modified
                FROM replicas
                WHERE room = ?
                """,
                (room,),
            )

            replicas = {}
            for row in cursor:
                replicas[row["key"]] = Replica(
                    content=bytes(row["content"]) if row["content"] is not None else None,
                    version_tag=row["version_tag"],
                    last_modified=(
                        datetime.fromisoformat(row["last_modified"])
                        if row["last_modified"]
                        else None
                    ),
                )

        return replicas

    def save_replica(self, room: str, key: str, replica: Replica) -> None:
        """Persist one replica, committing before returning.

        Raises:
            PersistenceError: If SQLite rejects the write.
        """
        with self._lock:
            try:
                conn = self._ensure_connected()
                conn.execute(
                    """
                    INSERT INTO replicas (room, key, content, version_tag, last_modified)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(room, key) DO UPDATE SET
                        content = excluded.content,
                        version_tag = excluded.version_tag,
                        last_modified = excluded.last_modified
                    """,
                    (
                        room,
                        key,
                        replica.content,
                        replica.version_tag,
                        replica.last_modified.isoformat() if replica.last_modified else None,
                    ),
                )
                conn.commit()
            except sqlite3.Error as e:
                if self._conn is not None:
                    self._conn.rollback()
                raise PersistenceError(f"Failed to persist {room}/{key}: {e}") from e

    def list_rooms(self) -> list[str]:
        """List rooms that have persisted data."""
        with self._lock:
            conn = self._ensure_connected()
            cursor = conn.execute("SELECT DISTINCT room FROM replicas ORDER BY room")
            return [row[0] for row in cursor]
