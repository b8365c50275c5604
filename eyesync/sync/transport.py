"""HTTP transport used by the sync client to reach a replica server."""

import logging
from dataclasses import dataclass
from datetime import datetime
from email.utils import parsedate_to_datetime
from enum import Enum

import httpx

logger = logging.getLogger(__name__)

VERSION_TAG_HEADER = "Version-Tag"


class TransportError(Exception):
    """The server answered in a way the client does not understand."""


class TransientNetworkError(TransportError):
    """Timeout, connection failure or server-side error; safe to retry later."""


class RemoteStatus(Enum):
    """What the server reported about a key."""

    PRESENT = "present"
    NOT_MODIFIED = "not_modified"
    ABSENT = "absent"


@dataclass
class RemoteState:
    """Server view of one key as seen in a single response."""

    status: RemoteStatus
    tag: str | None = None
    last_modified: datetime | None = None
    content: bytes | None = None


def _parse_last_modified(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError):
        logger.debug(f"Ignoring unparseable Last-Modified: {value!r}")
        return None


def _state_from_response(response: httpx.Response, include_content: bool) -> RemoteState:
    tag = response.headers.get(VERSION_TAG_HEADER) or response.headers.get("ETag")
    last_modified = _parse_last_modified(response.headers.get("Last-Modified"))

    if response.status_code == 304:
        return RemoteState(RemoteStatus.NOT_MODIFIED, tag, last_modified)
    if response.status_code == 204 or not tag:
        return RemoteState(RemoteStatus.ABSENT, None, last_modified)
    return RemoteState(
        RemoteStatus.PRESENT,
        tag,
        last_modified,
        response.content if include_content else None,
    )


class ReplicaTransport:
    """Async client for the `/replica` endpoint of one room."""

    def __init__(
        self,
        base_url: str,
        room: str,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize the transport.

        Args:
            base_url: Base URL of the replica server (e.g., "http://host:8787").
            room: Room every request is addressed to.
            timeout: Request timeout in seconds.
            client: Optional preconfigured httpx client (used by tests to
                route requests to an in-process app).
        """
        self.base_url = base_url.rstrip("/")
        self.room = room
        self.timeout = timeout
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        key: str,
        content: bytes | None = None,
        if_none_match: str | None = None,
    ) -> httpx.Response:
        headers = {"Cache-Control": "no-store"}
        if if_none_match:
            headers["If-None-Match"] = if_none_match

        client = self._get_client()
        try:
            response = await client.request(
                method,
                f"{self.base_url}/replica",
                params={"room": self.room, "key": key},
                content=content,
                headers=headers,
            )
        except httpx.TimeoutException as e:
            raise TransientNetworkError(f"{method} {key} timed out") from e
        except httpx.TransportError as e:
            raise TransientNetworkError(f"{method} {key} failed: {e}") from e

        if response.status_code >= 500:
            raise TransientNetworkError(f"{method} {key}: HTTP {response.status_code}")
        if response.status_code not in (200, 204, 304):
            raise TransportError(
                f"{method} {key}: HTTP {response.status_code}: {response.text}"
            )
        return response

    async def head(self, key: str, if_none_match: str | None = None) -> RemoteState:
        """Fetch a key's version tag without its content."""
        response = await self._request("HEAD", key, if_none_match=if_none_match)
        return _state_from_response(response, include_content=False)

    async def get(self, key: str, if_none_match: str | None = None) -> RemoteState:
        """Fetch a key's content unless `if_none_match` is still current."""
        response = await self._request("GET", key, if_none_match=if_none_match)
        return _state_from_response(response, include_content=True)

    async def put(self, key: str, data: bytes) -> RemoteState:
        """Store content and return the server's canonical tag."""
        response = await self._request("PUT", key, content=bytes(data))
        tag = response.headers.get(VERSION_TAG_HEADER) or response.headers.get("ETag")
        if not tag:
            raise TransportError(f"PUT {key}: response carried no version tag")
        return RemoteState(
            RemoteStatus.PRESENT,
            tag,
            _parse_last_modified(response.headers.get("Last-Modified")),
        )

    async def delete(self, key: str) -> None:
        """Clear a key on the server."""
        await self._request("DELETE", key)
