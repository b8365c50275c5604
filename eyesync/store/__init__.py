"""Server-side replica storage.

One ReplicaStore owns every key of a room; the RoomRouter hands out those
stores and the SQLite backend makes their writes durable.
"""

from .backend import SQLiteReplicaBackend
from .replica_store import (
    PersistenceError,
    ReadResult,
    ReadStatus,
    Replica,
    ReplicaStore,
    StoreError,
)
from .router import RoomRouter

__all__ = [
    "PersistenceError",
    "ReadResult",
    "ReadStatus",
    "Replica",
    "ReplicaStore",
    "RoomRouter",
    "SQLiteReplicaBackend",
    "StoreError",
]
