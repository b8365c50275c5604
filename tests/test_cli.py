"""Tests for the command line entry point."""

import asyncio
import httpx
import json
import logging
import pytest
from unittest.mock import AsyncMock, patch

from eyesync.__main__ import JSONFormatter, main, setup_logging, watch_directory
from eyesync.config import Config
from eyesync.hashing import content_tag
from eyesync.server import create_app
from eyesync.store import RoomRouter, SQLiteReplicaBackend
from eyesync.sync import (
    DirectoryCanvas,
    RemoteState,
    RemoteStatus,
    ReplicaTransport,
    SyncClient,
    TransientNetworkError,
)


async def wait_until(condition, timeout: float = 2.0) -> bool:
    """Poll a condition until it holds or the timeout passes."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if condition():
            return True
        await asyncio.sleep(0.02)
    return condition()


class TestJSONFormatter:
    def test_format(self):
        record = logging.LogRecord(
            "eyesync.sync", logging.WARNING, __file__, 1, "Push of %s failed", ("left",), None
        )

        data = json.loads(JSONFormatter().format(record))

        assert data["level"] == "WARNING"
        assert data["component"] == "eyesync.sync"
        assert data["message"] == "Push of left failed"

    def test_non_serializable_values(self):
        record = logging.LogRecord(
            "eyesync.sync", logging.INFO, __file__, 1, "%s", (b"\x89PNG",), None
        )

        data = json.loads(JSONFormatter().format(record))

        assert "PNG" in data["message"]


class TestSetupLogging:
    @pytest.fixture(autouse=True)
    def restore_levels(self):
        saved = {name: logging.getLogger(name).level for name in ("httpx", "httpcore")}
        yield
        for name, level in saved.items():
            logging.getLogger(name).setLevel(level)

    def test_request_loggers_quieted(self):
        setup_logging()

        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("httpcore").level == logging.WARNING

    def test_request_loggers_verbose_in_debug(self):
        setup_logging(log_level="debug")

        assert logging.getLogger("httpx").level == logging.DEBUG


class TestCommands:
    """Tests for one-shot commands with a mocked transport."""

    def test_no_command(self, monkeypatch):
        monkeypatch.setattr("sys.argv", ["eyesync"])

        assert main() == 1

    def test_push(self, monkeypatch, tmp_path, capsys):
        path = tmp_path / "left.png"
        path.write_bytes(b"\x01\x02\x03")
        monkeypatch.setattr("sys.argv", ["eyesync", "push", "left", str(path)])

        with patch("eyesync.__main__.ReplicaTransport") as transport_cls:
            transport = transport_cls.return_value
            transport.put = AsyncMock(return_value=RemoteState(RemoteStatus.PRESENT, "t1"))
            transport.close = AsyncMock()

            assert main() == 0

        transport.put.assert_awaited_once_with("left", b"\x01\x02\x03")
        assert capsys.readouterr().out.strip() == "t1"

    def test_pull_absent(self, monkeypatch, tmp_path):
        monkeypatch.setattr(
            "sys.argv", ["eyesync", "pull", "right", str(tmp_path / "right.png")]
        )

        with patch("eyesync.__main__.ReplicaTransport") as transport_cls:
            transport = transport_cls.return_value
            transport.get = AsyncMock(return_value=RemoteState(RemoteStatus.ABSENT))
            transport.close = AsyncMock()

            assert main() == 1

        assert not (tmp_path / "right.png").exists()

    def test_status_unreachable(self, monkeypatch, capsys):
        monkeypatch.setattr("sys.argv", ["eyesync", "status", "--json"])

        with patch("eyesync.__main__.ReplicaTransport") as transport_cls:
            transport = transport_cls.return_value
            transport.head = AsyncMock(side_effect=TransientNetworkError("refused"))
            transport.close = AsyncMock()

            assert main() == 1

        data = json.loads(capsys.readouterr().out)
        assert data["reachable"] is False
        assert "refused" in data["keys"]["left"]["error"]


class TestWatchDirectory:
    """The sync command's loop against an in-process server."""

    @pytest.mark.asyncio
    async def test_file_edits_and_remote_changes(self, tmp_path):
        backend = SQLiteReplicaBackend(":memory:")
        backend.connect()
        router = RoomRouter(backend)
        app = create_app(Config(), router=router)
        http = httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app), base_url="http://testserver"
        )
        transport = ReplicaTransport("http://testserver", "r1", client=http)

        canvas = DirectoryCanvas(tmp_path)
        client = SyncClient(
            transport,
            canvas,
            ["left", "right"],
            debounce_seconds=0.02,
            poll_interval_seconds=0.05,
        )
        store = router.resolve("r1")
        canvas.path_for("left").write_bytes(b"\x89PNG left")

        stop = asyncio.Event()
        watcher = asyncio.create_task(watch_directory(client, canvas, 0.02, stop_event=stop))
        try:
            assert await wait_until(lambda: store.get("left").content == b"\x89PNG left")
            assert await wait_until(lambda: not canvas.is_dirty("left"))

            canvas.path_for("left").write_bytes(b"\x89PNG left v2")
            assert await wait_until(lambda: store.get("left").content == b"\x89PNG left v2")

            tag = store.put("right", b"\x89PNG remote")
            right = canvas.path_for("right")
            assert await wait_until(lambda: right.exists() and right.read_bytes() == b"\x89PNG remote")
            assert tag == content_tag(b"\x89PNG remote")
            assert await wait_until(lambda: client.last_known_tag("right") == tag)
            assert not canvas.is_dirty("right")
        finally:
            stop.set()
            await watcher
            await transport.close()
            backend.close()

        assert not client.has_pending_push("left")
