"""FastAPI application exposing replica stores over HTTP."""

import logging
from email.utils import format_datetime
from typing import Any

from fastapi import FastAPI, Header, Request
from fastapi.responses import JSONResponse, Response

from ..config import Config
from ..store import PersistenceError, ReadStatus, Replica, RoomRouter

logger = logging.getLogger(__name__)

VERSION_TAG_HEADER = "Version-Tag"


def _normalize_tag(value: str | None) -> str | None:
    """Strip weak-validator prefix and quotes from an If-None-Match value."""
    if not value:
        return None
    value = value.strip()
    if value.startswith("W/"):
        value = value[2:]
    return value.strip('"') or None


def _replica_headers(replica: Replica) -> dict[str, str]:
    headers = {"Cache-Control": "no-store"}
    if replica.version_tag:
        headers[VERSION_TAG_HEADER] = replica.version_tag
        headers["ETag"] = replica.version_tag
    if replica.last_modified:
        headers["Last-Modified"] = format_datetime(replica.last_modified, usegmt=True)
    return headers


def create_app(config: Config, router: RoomRouter | None = None) -> FastAPI:
    """Create the replica server application.

    Args:
        config: Application configuration.
        router: Optional RoomRouter; one over `config.server.db_path` is
            created when omitted.

    Returns:
        Configured FastAPI application.
    """
    app = FastAPI(
        title="eyesync",
        description="Durable per-room blob replicas with conditional requests",
        version="0.1.0",
    )

    if router is None:
        router = RoomRouter.from_path(config.server.db_path)

    app.state.config = config
    app.state.router = router

    server_config = config.server

    def _resolve_key(key: str | None) -> str | None:
        key = key or server_config.default_key
        if server_config.allowed_keys and key not in server_config.allowed_keys:
            return None
        return key

    def _bad_key(key: str | None) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={
                "error": f"Unknown key: {key}",
                "allowed_keys": server_config.allowed_keys,
            },
        )

    # ==================== Replica Routes ====================

    @app.api_route("/replica", methods=["GET", "HEAD", "PUT", "DELETE"])
    async def replica(
        request: Request,
        room: str | None = None,
        key: str | None = None,
        if_none_match: str | None = Header(default=None),
    ):
        """Conditional read and write access to one key of a room."""
        room_id = room or server_config.default_room
        resolved_key = _resolve_key(key)
        if resolved_key is None:
            return _bad_key(key)

        store = router.resolve(room_id)
        method = request.method

        if method in ("GET", "HEAD"):
            result = store.conditional_get(resolved_key, _normalize_tag(if_none_match))
            headers = _replica_headers(result.replica)

            if result.status == ReadStatus.NOT_MODIFIED:
                return Response(status_code=304, headers=headers)
            if result.status == ReadStatus.ABSENT:
                return Response(status_code=204, headers=headers)
            if method == "HEAD":
                return Response(status_code=200, headers=headers)
            return Response(
                content=result.replica.content,
                status_code=200,
                headers=headers,
                media_type="application/octet-stream",
            )

        if method == "PUT":
            body = await request.body()
            try:
                store.put(resolved_key, body)
            except PersistenceError as e:
                logger.error(f"PUT {room_id}/{resolved_key} failed: {e}")
                return JSONResponse(status_code=503, content={"error": str(e)})
            return Response(
                status_code=204, headers=_replica_headers(store.get(resolved_key))
            )

        try:
            store.delete(resolved_key)
        except PersistenceError as e:
            logger.error(f"DELETE {room_id}/{resolved_key} failed: {e}")
            return JSONResponse(status_code=503, content={"error": str(e)})
        return Response(status_code=204)

    # ==================== API Routes (JSON) ====================

    @app.get("/health")
    async def health() -> dict[str, Any]:
        """Liveness check."""
        return {"status": "ok", "rooms": router.rooms()}

    @app.get("/api/rooms/{room_id}")
    async def room_stats(room_id: str) -> dict[str, Any]:
        """Per-key metadata of a room."""
        return router.resolve(room_id).stats()

    return app
