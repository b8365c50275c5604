"""CLI entry point for eyesync."""

import argparse
import asyncio
import json
import logging
import sys
import traceback
from datetime import datetime
from pathlib import Path

from .config import Config, load_config
from .sync import (
    DirectoryCanvas,
    RemoteStatus,
    ReplicaTransport,
    SyncClient,
    TransportError,
)


class JSONFormatter(logging.Formatter):
    """One JSON object per log line."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_data["exception"] = "".join(traceback.format_exception(*record.exc_info))
        return json.dumps(log_data, default=str)


# Loggers that report every poll request at INFO
NOISY_LOGGERS = ("httpx", "httpcore")


def setup_logging(verbose: bool = False, log_level: str | None = None, json_output: bool = False) -> None:
    """Configure logging.

    Args:
        verbose: Enable debug logging (ignored if log_level is set).
        log_level: Explicit level name (error, warning, info, debug).
        json_output: Output logs as JSON lines for machine parsing.
    """
    if log_level:
        level = getattr(logging, log_level.upper(), logging.INFO)
    else:
        level = logging.DEBUG if verbose else logging.INFO

    handler = logging.StreamHandler()
    handler.setFormatter(
        JSONFormatter()
        if json_output
        else logging.Formatter(
            fmt="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    logging.basicConfig(level=level, handlers=[handler])

    # The poll loop issues a request per key every interval
    quiet_level = logging.DEBUG if level <= logging.DEBUG else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)


def _make_transport(config: Config) -> ReplicaTransport:
    return ReplicaTransport(
        base_url=config.sync.base_url,
        room=config.sync.room,
        timeout=config.sync.timeout_seconds,
    )


async def cmd_serve(args: argparse.Namespace) -> int:
    """Run the replica server."""
    config = load_config(args.config)

    from .server import create_app
    from .store import RoomRouter

    import uvicorn

    host = args.host or config.server.host
    port = args.port or config.server.port

    router = RoomRouter.from_path(config.server.db_path)
    app = create_app(config, router=router)

    print("Starting eyesync server")
    print(f"Database: {config.server.db_path}")
    print(f"URL: http://{host}:{port}/replica")

    try:
        verbose = getattr(args, "verbose", False)
        config_uvicorn = uvicorn.Config(
            app,
            host=host,
            port=port,
            log_level="info" if verbose else "warning",
        )
        server = uvicorn.Server(config_uvicorn)
        await server.serve()
    finally:
        router.close()

    return 0


async def cmd_status(args: argparse.Namespace) -> int:
    """Report the remote version of every configured key."""
    config = load_config(args.config)
    transport = _make_transport(config)

    status_data = {
        "timestamp": datetime.now().isoformat(),
        "base_url": config.sync.base_url,
        "room": config.sync.room,
        "reachable": True,
        "keys": {},
    }

    try:
        for key in config.sync.keys:
            try:
                remote = await transport.head(key)
            except TransportError as e:
                status_data["reachable"] = False
                status_data["keys"][key] = {"error": str(e)}
                continue
            status_data["keys"][key] = {
                "present": remote.status == RemoteStatus.PRESENT,
                "version_tag": remote.tag,
                "last_modified": (
                    remote.last_modified.isoformat() if remote.last_modified else None
                ),
            }
    finally:
        await transport.close()

    if args.json_status:
        print(json.dumps(status_data, indent=2))
    else:
        print(f"Server: {status_data['base_url']} (room: {status_data['room']})")
        for key, info in status_data["keys"].items():
            if "error" in info:
                print(f"  {key}: unreachable ({info['error']})")
            elif info["present"]:
                print(f"  {key}: {info['version_tag']} (modified {info['last_modified']})")
            else:
                print(f"  {key}: absent")

    return 0 if status_data["reachable"] else 1


async def cmd_push(args: argparse.Namespace) -> int:
    """Upload a file as the content of a key."""
    config = load_config(args.config)
    path = Path(args.file)
    if not path.exists():
        print(f"File not found: {path}", file=sys.stderr)
        return 1

    transport = _make_transport(config)
    try:
        remote = await transport.put(args.key, path.read_bytes())
    except TransportError as e:
        print(f"Push failed: {e}", file=sys.stderr)
        return 1
    finally:
        await transport.close()

    print(remote.tag)
    return 0


async def cmd_pull(args: argparse.Namespace) -> int:
    """Download the content of a key into a file."""
    config = load_config(args.config)
    transport = _make_transport(config)
    try:
        remote = await transport.get(args.key)
    except TransportError as e:
        print(f"Pull failed: {e}", file=sys.stderr)
        return 1
    finally:
        await transport.close()

    if remote.status != RemoteStatus.PRESENT:
        print(f"{args.key} is absent in room {config.sync.room}", file=sys.stderr)
        return 1

    Path(args.file).write_bytes(remote.content or b"")
    print(remote.tag)
    return 0


async def cmd_clear(args: argparse.Namespace) -> int:
    """Delete the content of a key on the server."""
    config = load_config(args.config)
    transport = _make_transport(config)
    try:
        await transport.delete(args.key)
    except TransportError as e:
        print(f"Clear failed: {e}", file=sys.stderr)
        return 1
    finally:
        await transport.close()

    print(f"Cleared {args.key} in room {config.sync.room}")
    return 0


async def watch_directory(
    client: SyncClient,
    adapter: DirectoryCanvas,
    interval_seconds: float,
    stop_event: asyncio.Event | None = None,
) -> None:
    """Run a sync client while watching key files for local edits.

    Args:
        client: Sync client bound to the directory adapter.
        adapter: Adapter whose files are checked every interval.
        interval_seconds: Seconds between file checks.
        stop_event: Event to signal the watch should stop.
    """
    await client.start()
    try:
        while not (stop_event and stop_event.is_set()):
            for key in client.keys:
                if adapter.is_dirty(key) and not client.has_pending_push(key):
                    client.notify_local_change(key)

            if stop_event:
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
                except asyncio.TimeoutError:
                    pass
            else:
                await asyncio.sleep(interval_seconds)
    finally:
        await client.stop()


async def cmd_sync(args: argparse.Namespace) -> int:
    """Keep a directory of key files in sync with the server."""
    config = load_config(args.config)
    adapter = DirectoryCanvas(args.directory, suffix=args.suffix)
    transport = _make_transport(config)
    client = SyncClient(
        transport=transport,
        adapter=adapter,
        keys=config.sync.keys,
        debounce_seconds=config.sync.debounce_seconds,
        poll_interval_seconds=config.sync.poll_interval_seconds,
        retry_interval_seconds=config.sync.retry_interval_seconds,
    )

    print(f"Syncing {adapter.directory} with {config.sync.base_url} (room: {config.sync.room})")

    try:
        await watch_directory(client, adapter, config.sync.poll_interval_seconds)
    except (KeyboardInterrupt, asyncio.CancelledError):
        print("\nShutting down...")
    finally:
        await transport.close()

    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="eyesync",
        description="Replicate stereo canvas snapshots through a durable store",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file (default: built-in defaults)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["error", "warning", "info", "debug"],
        default=None,
        help="Set log level explicitly (overrides -v/--verbose)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output logs as JSON for machine parsing",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Run the replica server")
    serve_parser.add_argument(
        "-p", "--port",
        type=int,
        default=None,
        help="Port to listen on (default: from config, 8787)",
    )
    serve_parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Host to bind to (default: from config, 0.0.0.0)",
    )
    serve_parser.set_defaults(func=cmd_serve)

    # Status command
    status_parser = subparsers.add_parser("status", help="Show remote versions of configured keys")
    status_parser.add_argument(
        "--json",
        dest="json_status",
        action="store_true",
        help="Output status as JSON",
    )
    status_parser.set_defaults(func=cmd_status)

    # Push command
    push_parser = subparsers.add_parser("push", help="Upload a file as a key's content")
    push_parser.add_argument("key", help="Key to write (e.g. left)")
    push_parser.add_argument("file", help="File to upload")
    push_parser.set_defaults(func=cmd_push)

    # Pull command
    pull_parser = subparsers.add_parser("pull", help="Download a key's content to a file")
    pull_parser.add_argument("key", help="Key to read (e.g. right)")
    pull_parser.add_argument("file", help="Destination file")
    pull_parser.set_defaults(func=cmd_pull)

    # Clear command
    clear_parser = subparsers.add_parser("clear", help="Delete a key on the server")
    clear_parser.add_argument("key", help="Key to clear")
    clear_parser.set_defaults(func=cmd_clear)

    # Sync command
    sync_parser = subparsers.add_parser("sync", help="Continuously sync a directory of key files")
    sync_parser.add_argument("directory", help="Directory holding <key><suffix> files")
    sync_parser.add_argument(
        "--suffix",
        type=str,
        default=".png",
        help="File extension for key files (default: .png)",
    )
    sync_parser.set_defaults(func=cmd_sync)

    args = parser.parse_args()

    setup_logging(args.verbose, args.log_level, getattr(args, "json", False))

    if not args.command:
        parser.print_help()
        return 1

    try:
        return asyncio.run(args.func(args))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
