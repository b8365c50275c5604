"""Client-side replication of canvases to a replica server.

Pushes local changes after a debounce window and polls the server with
conditional requests to pull remote changes.
"""

from .adapter import CanvasAdapter, DirectoryCanvas, MemoryCanvas
from .sync_client import SyncClient, SyncResult, SyncStatus
from .transport import (
    RemoteState,
    RemoteStatus,
    ReplicaTransport,
    TransientNetworkError,
    TransportError,
)

__all__ = [
    "CanvasAdapter",
    "DirectoryCanvas",
    "MemoryCanvas",
    "RemoteState",
    "RemoteStatus",
    "ReplicaTransport",
    "SyncClient",
    "SyncResult",
    "SyncStatus",
    "TransientNetworkError",
    "TransportError",
]
