"""Tests for the HTTP transport used by the sync client."""

import httpx
import pytest
from datetime import datetime, timezone

from eyesync.sync import (
    RemoteStatus,
    ReplicaTransport,
    TransientNetworkError,
    TransportError,
)

LAST_MODIFIED = "Mon, 19 Oct 2026 10:00:00 GMT"


def make_transport(handler) -> ReplicaTransport:
    """Create a transport whose requests are answered by `handler`."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ReplicaTransport("http://replicas.test/", "r1", client=client)


class TestReplicaTransportRequests:
    """Tests for request construction and response parsing."""

    @pytest.mark.asyncio
    async def test_head_sends_room_key_and_condition(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(304, headers={"Version-Tag": "t1"})

        transport = make_transport(handler)
        state = await transport.head("left", if_none_match="t1")
        await transport.close()

        assert state.status == RemoteStatus.NOT_MODIFIED
        request = seen[0]
        assert request.method == "HEAD"
        assert request.url.path == "/replica"
        assert request.url.params["room"] == "r1"
        assert request.url.params["key"] == "left"
        assert request.headers["If-None-Match"] == "t1"

    @pytest.mark.asyncio
    async def test_get_present(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                content=b"pixels",
                headers={"Version-Tag": "t1", "Last-Modified": LAST_MODIFIED},
            )

        transport = make_transport(handler)
        state = await transport.get("left")

        assert state.status == RemoteStatus.PRESENT
        assert state.content == b"pixels"
        assert state.tag == "t1"
        assert state.last_modified == datetime(2026, 10, 19, 10, 0, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_get_absent(self):
        transport = make_transport(lambda request: httpx.Response(204))

        state = await transport.get("left")

        assert state.status == RemoteStatus.ABSENT
        assert state.tag is None
        assert state.content is None

    @pytest.mark.asyncio
    async def test_put_returns_server_tag(self):
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(request.content)
            return httpx.Response(204, headers={"Version-Tag": "canonical"})

        transport = make_transport(handler)
        state = await transport.put("right", b"\x01\x02")

        assert bodies == [b"\x01\x02"]
        assert state.tag == "canonical"

    @pytest.mark.asyncio
    async def test_put_without_tag_rejected(self):
        transport = make_transport(lambda request: httpx.Response(204))

        with pytest.raises(TransportError):
            await transport.put("left", b"x")

    @pytest.mark.asyncio
    async def test_etag_fallback(self):
        transport = make_transport(
            lambda request: httpx.Response(200, content=b"x", headers={"ETag": "t9"})
        )

        state = await transport.get("left")

        assert state.tag == "t9"


class TestReplicaTransportErrors:
    """Tests for error classification."""

    @pytest.mark.asyncio
    async def test_server_error_is_transient(self):
        transport = make_transport(lambda request: httpx.Response(503))

        with pytest.raises(TransientNetworkError):
            await transport.put("left", b"x")

    @pytest.mark.asyncio
    async def test_connection_error_is_transient(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        transport = make_transport(handler)

        with pytest.raises(TransientNetworkError):
            await transport.head("left")

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        transport = make_transport(handler)

        with pytest.raises(TransientNetworkError):
            await transport.get("left")

    @pytest.mark.asyncio
    async def test_client_error_is_not_transient(self):
        transport = make_transport(lambda request: httpx.Response(400, text="bad key"))

        with pytest.raises(TransportError) as exc_info:
            await transport.delete("middle")

        assert not isinstance(exc_info.value, TransientNetworkError)
