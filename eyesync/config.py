"""Configuration loading for eyesync."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


def _default_keys() -> list[str]:
    return ["left", "right"]


@dataclass
class ServerConfig:
    """Configuration for the replica server."""

    host: str = "0.0.0.0"
    port: int = 8787
    db_path: str = "~/.eyesync/replicas.db"
    default_room: str = "global"
    default_key: str = "left"
    allowed_keys: list[str] = field(default_factory=_default_keys)
    """Keys accepted by the server; an empty list accepts any key"""


@dataclass
class SyncConfig:
    """Configuration for the sync client."""

    base_url: str = "http://localhost:8787"
    room: str = "global"
    keys: list[str] = field(default_factory=_default_keys)
    debounce_seconds: float = 0.9
    poll_interval_seconds: float = 1.0
    retry_interval_seconds: float = 0.0  # 0 disables periodic retry of failed pushes
    timeout_seconds: float = 10.0


@dataclass
class Config:
    server: ServerConfig = field(default_factory=ServerConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with EYESYNC_ prefix."""
    return os.environ.get(f"EYESYNC_{key}", default)


def _split_keys(value: str) -> list[str]:
    return [k.strip() for k in value.split(",") if k.strip()]


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    # Server overrides
    if host := _get_env("SERVER_HOST"):
        config.server.host = host
    if port := _get_env("SERVER_PORT"):
        config.server.port = int(port)
    if db_path := _get_env("DB_PATH"):
        config.server.db_path = db_path
    if default_room := _get_env("DEFAULT_ROOM"):
        config.server.default_room = default_room

    # Sync overrides
    if base_url := _get_env("BASE_URL"):
        config.sync.base_url = base_url
    if room := _get_env("ROOM"):
        config.sync.room = room
    if keys := _get_env("KEYS"):
        config.sync.keys = _split_keys(keys)
    if debounce := _get_env("DEBOUNCE"):
        config.sync.debounce_seconds = float(debounce)
    if poll_interval := _get_env("POLL_INTERVAL"):
        config.sync.poll_interval_seconds = float(poll_interval)
    if retry_interval := _get_env("RETRY_INTERVAL"):
        config.sync.retry_interval_seconds = float(retry_interval)

    return config


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. If None, uses default config.

    Returns:
        Loaded Config object.
    """
    config = Config()

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}

            # Parse server config
            if "server" in data:
                server_data = data["server"]
                config.server = ServerConfig(
                    host=server_data.get("host", config.server.host),
                    port=server_data.get("port", config.server.port),
                    db_path=server_data.get("db_path", config.server.db_path),
                    default_room=server_data.get(
                        "default_room", config.server.default_room
                    ),
                    default_key=server_data.get(
                        "default_key", config.server.default_key
                    ),
                    allowed_keys=server_data.get(
                        "allowed_keys", config.server.allowed_keys
                    ),
                )

            # Parse sync config
            if "sync" in data:
                sync_data = data["sync"]
                config.sync = SyncConfig(
                    base_url=sync_data.get("base_url", config.sync.base_url),
                    room=sync_data.get("room", config.sync.room),
                    keys=sync_data.get("keys", config.sync.keys),
                    debounce_seconds=sync_data.get(
                        "debounce_seconds", config.sync.debounce_seconds
                    ),
                    poll_interval_seconds=sync_data.get(
                        "poll_interval_seconds", config.sync.poll_interval_seconds
                    ),
                    retry_interval_seconds=sync_data.get(
                        "retry_interval_seconds", config.sync.retry_interval_seconds
                    ),
                    timeout_seconds=sync_data.get(
                        "timeout_seconds", config.sync.timeout_seconds
                    ),
                )

    # Apply environment variable overrides
    config = _apply_env_overrides(config)

    # A default key outside the allowed set would make bare requests fail
    if config.server.allowed_keys and config.server.default_key not in config.server.allowed_keys:
        config.server.default_key = config.server.allowed_keys[0]

    return config
