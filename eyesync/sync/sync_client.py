"""Sync client keeping local canvases and a replica server consistent.

Local changes are pushed after a debounce window, skipping pushes whose
content hash matches the last known version tag. Each key is polled on a
fixed interval with conditional requests and pulled when its tag changes.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from ..hashing import content_tag
from .adapter import CanvasAdapter
from .transport import RemoteStatus, ReplicaTransport, TransientNetworkError, TransportError

logger = logging.getLogger(__name__)


class SyncStatus(Enum):
    """Outcome of a single push, pull or poll."""

    PUSHED = "pushed"
    PULLED = "pulled"
    CLEARED = "cleared"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"  # Key not dirty, nothing to push
    STALE = "stale"  # Response older than what we already hold
    OFFLINE = "offline"  # Transient network failure
    FAILED = "failed"


@dataclass
class SyncResult:
    """Result of a sync operation on one key."""

    status: SyncStatus
    key: str
    tag: str | None = None
    error: str | None = None
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class KeyState:
    """Session-scoped cache entry for one key."""

    last_known_tag: str | None = None
    last_modified: datetime | None = None
    timer: asyncio.Task | None = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class SyncClient:
    """Replicates a set of keys between a CanvasAdapter and a replica server.

    All network calls for one key are serialized by that key's lock, so a
    push in flight completes before the next push or poll of the same key
    starts. Keys are independent of each other.
    """

    def __init__(
        self,
        transport: ReplicaTransport,
        adapter: CanvasAdapter,
        keys: list[str],
        debounce_seconds: float = 0.9,
        poll_interval_seconds: float = 1.0,
        retry_interval_seconds: float = 0.0,
    ):
        """Initialize the sync client.

        Args:
            transport: Transport bound to the room being synced.
            adapter: Producer/consumer of local content.
            keys: Keys to keep in sync.
            debounce_seconds: Quiet period before a local change is pushed.
            poll_interval_seconds: Interval between remote change checks.
            retry_interval_seconds: Delay before retrying a failed push;
                0 leaves retries to the next local change.
        """
        self.transport = transport
        self.adapter = adapter
        self.keys = list(keys)
        self.debounce_seconds = debounce_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self.retry_interval_seconds = retry_interval_seconds
        self._states: dict[str, KeyState] = {key: KeyState() for key in self.keys}
        self._poll_tasks: dict[str, asyncio.Task] = {}
        self._tasks: set[asyncio.Task] = set()
        self._running = False

    def _state(self, key: str) -> KeyState:
        state = self._states.get(key)
        if state is None:
            state = self._states[key] = KeyState()
        return state

    def last_known_tag(self, key: str) -> str | None:
        return self._state(key).last_known_tag

    def has_pending_push(self, key: str) -> bool:
        return self._state(key).timer is not None

    # ==================== Push ====================

    def notify_local_change(self, key: str) -> bool:
        """Schedule a debounced push after a local edit.

        Any armed timer for the key is cancelled and restarted, so a burst
        of edits produces one push carrying the latest content. Must be
        called from within the running event loop.

        Returns:
            True if a push was scheduled.
        """
        if not self.adapter.is_dirty(key):
            return False
        self._arm_timer(key, self.debounce_seconds)
        return True

    def _arm_timer(self, key: str, delay: float) -> None:
        state = self._state(key)
        if state.timer is not None:
            state.timer.cancel()
        task = asyncio.create_task(self._fire_after(key, delay))
        state.timer = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _fire_after(self, key: str, delay: float) -> None:
        await asyncio.sleep(delay)
        state = self._state(key)
        # Past this point the timer is a push in flight and can no longer be cancelled
        if state.timer is asyncio.current_task():
            state.timer = None
        await self.flush(key)

    async def flush(self, key: str) -> SyncResult:
        """Push a key now if it is dirty and its content actually changed."""
        state = self._state(key)
        async with state.lock:
            if not self.adapter.is_dirty(key):
                return SyncResult(SyncStatus.SKIPPED, key, state.last_known_tag)

            data = self.adapter.read_bytes(key)
            local_tag = content_tag(data)
            if local_tag == state.last_known_tag:
                self.adapter.mark_clean(key)
                logger.debug(f"{key} unchanged since last sync, not pushing")
                return SyncResult(SyncStatus.UNCHANGED, key, local_tag)

            try:
                remote = await self.transport.put(key, data)
            except TransientNetworkError as e:
                logger.warning(f"Push of {key} failed, keeping it dirty: {e}")
                self._schedule_retry(key)
                return SyncResult(SyncStatus.OFFLINE, key, state.last_known_tag, str(e))
            except TransportError as e:
                logger.error(f"Push of {key} rejected: {e}")
                self._schedule_retry(key)
                return SyncResult(SyncStatus.FAILED, key, state.last_known_tag, str(e))

            if remote.tag != local_tag:
                logger.warning(
                    f"Server tag for {key} differs from local hash "
                    f"({remote.tag} != {local_tag})"
                )
            state.last_known_tag = remote.tag
            state.last_modified = remote.last_modified

            # A newer edit arrived while the push was in flight; it is still unsynced
            if state.timer is None:
                self.adapter.mark_clean(key)

            logger.info(f"Pushed {len(data)} bytes for {key}, tag={remote.tag[:12]}")
            return SyncResult(SyncStatus.PUSHED, key, remote.tag)

    def _schedule_retry(self, key: str) -> None:
        if self.retry_interval_seconds > 0 and self._state(key).timer is None:
            logger.debug(f"Retrying push of {key} in {self.retry_interval_seconds}s")
            self._arm_timer(key, self.retry_interval_seconds)

    # ==================== Pull ====================

    def _is_stale(self, state: KeyState, last_modified: datetime | None) -> bool:
        return (
            last_modified is not None
            and state.last_modified is not None
            and last_modified < state.last_modified
        )

    async def check(self, key: str) -> SyncResult:
        """One poll tick: detect a remote change with a conditional HEAD."""
        state = self._state(key)
        async with state.lock:
            try:
                remote = await self.transport.head(key, if_none_match=state.last_known_tag)
            except TransientNetworkError as e:
                logger.debug(f"Poll of {key} failed: {e}")
                return SyncResult(SyncStatus.OFFLINE, key, state.last_known_tag, str(e))
            except TransportError as e:
                logger.warning(f"Poll of {key} rejected: {e}")
                return SyncResult(SyncStatus.FAILED, key, state.last_known_tag, str(e))

            if remote.status == RemoteStatus.NOT_MODIFIED:
                return SyncResult(SyncStatus.UNCHANGED, key, state.last_known_tag)

            if remote.status == RemoteStatus.ABSENT:
                if state.last_known_tag is None:
                    return SyncResult(SyncStatus.UNCHANGED, key)
                if self._is_stale(state, remote.last_modified):
                    return SyncResult(SyncStatus.STALE, key, state.last_known_tag)
                self._apply(key, None)
                state.last_known_tag = None
                state.last_modified = remote.last_modified
                return SyncResult(SyncStatus.CLEARED, key)

            if remote.tag == state.last_known_tag:
                return SyncResult(SyncStatus.UNCHANGED, key, remote.tag)

            return await self._pull_locked(key, state)

    async def pull(self, key: str) -> SyncResult:
        """Fetch a key's content from the server and hand it to the adapter."""
        state = self._state(key)
        async with state.lock:
            return await self._pull_locked(key, state)

    async def _pull_locked(self, key: str, state: KeyState) -> SyncResult:
        try:
            remote = await self.transport.get(key, if_none_match=state.last_known_tag)
        except TransientNetworkError as e:
            logger.debug(f"Pull of {key} failed: {e}")
            return SyncResult(SyncStatus.OFFLINE, key, state.last_known_tag, str(e))
        except TransportError as e:
            logger.warning(f"Pull of {key} rejected: {e}")
            return SyncResult(SyncStatus.FAILED, key, state.last_known_tag, str(e))

        if remote.status == RemoteStatus.NOT_MODIFIED:
            return SyncResult(SyncStatus.UNCHANGED, key, state.last_known_tag)

        if self._is_stale(state, remote.last_modified):
            logger.debug(f"Discarding stale response for {key}")
            return SyncResult(SyncStatus.STALE, key, state.last_known_tag)

        if remote.status == RemoteStatus.ABSENT:
            self._apply(key, None)
            state.last_known_tag = None
            state.last_modified = remote.last_modified
            return SyncResult(SyncStatus.CLEARED, key)

        self._apply(key, remote.content)
        state.last_known_tag = remote.tag
        state.last_modified = remote.last_modified
        logger.info(f"Pulled {len(remote.content or b'')} bytes for {key}, tag={remote.tag[:12]}")
        return SyncResult(SyncStatus.PULLED, key, remote.tag)

    def _apply(self, key: str, data: bytes | None) -> None:
        try:
            applied = self.adapter.apply_remote(key, data)
        except Exception as e:
            logger.error(f"Adapter failed to apply remote {key}: {e}", exc_info=True)
            return
        if not applied:
            logger.info(f"Adapter kept local content of {key}")

    # ==================== Delete ====================

    async def clear_remote(self, key: str) -> SyncResult:
        """Delete a key on the server; the cached tag is reset either way."""
        state = self._state(key)
        async with state.lock:
            try:
                await self.transport.delete(key)
                result = SyncResult(SyncStatus.CLEARED, key)
            except TransientNetworkError as e:
                logger.warning(f"Remote clear of {key} failed: {e}")
                result = SyncResult(SyncStatus.OFFLINE, key, error=str(e))
            except TransportError as e:
                logger.warning(f"Remote clear of {key} rejected: {e}")
                result = SyncResult(SyncStatus.FAILED, key, error=str(e))
            state.last_known_tag = None
            state.last_modified = None
            return result

    # ==================== Lifecycle ====================

    async def _poll_loop(self, key: str) -> None:
        """Initial pull followed by periodic checks of one key."""
        await self.pull(key)

        while self._running:
            await asyncio.sleep(self.poll_interval_seconds)
            try:
                await self.check(key)
            except Exception as e:
                logger.error(f"Poll loop error for {key}: {e}", exc_info=True)

    async def start(self) -> None:
        """Start one poll loop per key."""
        if self._running:
            return

        self._running = True
        for key in self.keys:
            self._poll_tasks[key] = asyncio.create_task(self._poll_loop(key))
        logger.info(
            f"Sync started for {self.keys} in room {self.transport.room} "
            f"(poll={self.poll_interval_seconds}s, debounce={self.debounce_seconds}s)"
        )

    async def stop(self) -> None:
        """Stop polling, drop armed timers and wait for pushes in flight."""
        self._running = False
        for task in self._poll_tasks.values():
            task.cancel()
        for state in self._states.values():
            if state.timer is not None:
                state.timer.cancel()
                state.timer = None

        await asyncio.gather(
            *self._poll_tasks.values(), *self._tasks, return_exceptions=True
        )
        self._poll_tasks.clear()
        logger.info("Sync stopped")

    def get_sync_status(self) -> dict[str, Any]:
        """Get current per-key sync state."""
        return {
            "base_url": self.transport.base_url,
            "room": self.transport.room,
            "running": self._running,
            "keys": {
                key: {
                    "last_known_tag": state.last_known_tag,
                    "last_modified": (
                        state.last_modified.isoformat() if state.last_modified else None
                    ),
                    "pending_push": state.timer is not None,
                    "dirty": self.adapter.is_dirty(key),
                }
                for key, state in self._states.items()
            },
        }
