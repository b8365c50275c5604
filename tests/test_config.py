"""Tests for configuration loading."""

import pytest

from eyesync.config import Config, load_config


@pytest.fixture
def clean_env(monkeypatch):
    """Remove EYESYNC_ overrides inherited from the environment."""
    import os

    for name in list(os.environ):
        if name.startswith("EYESYNC_"):
            monkeypatch.delenv(name)
    return monkeypatch


class TestLoadConfig:
    """Tests for load_config."""

    def test_defaults(self, clean_env):
        config = load_config(None)

        assert config.server.port == 8787
        assert config.server.allowed_keys == ["left", "right"]
        assert config.sync.debounce_seconds == 0.9
        assert config.sync.poll_interval_seconds == 1.0
        assert config.sync.retry_interval_seconds == 0.0

    def test_missing_file_uses_defaults(self, clean_env, tmp_path):
        config = load_config(tmp_path / "nope.yaml")

        assert config == Config()

    def test_yaml_values(self, clean_env, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "server:\n"
            "  port: 9000\n"
            "  default_room: studio\n"
            "sync:\n"
            "  room: studio\n"
            "  keys: [left]\n"
            "  retry_interval_seconds: 5\n"
        )

        config = load_config(path)

        assert config.server.port == 9000
        assert config.server.default_room == "studio"
        assert config.server.db_path == "~/.eyesync/replicas.db"
        assert config.sync.room == "studio"
        assert config.sync.keys == ["left"]
        assert config.sync.retry_interval_seconds == 5

    def test_env_overrides(self, clean_env, tmp_path):
        clean_env.setenv("EYESYNC_SERVER_PORT", "9100")
        clean_env.setenv("EYESYNC_BASE_URL", "http://paint:9100")
        clean_env.setenv("EYESYNC_KEYS", "left, right ,top")
        clean_env.setenv("EYESYNC_DEBOUNCE", "0.5")

        config = load_config(None)

        assert config.server.port == 9100
        assert config.sync.base_url == "http://paint:9100"
        assert config.sync.keys == ["left", "right", "top"]
        assert config.sync.debounce_seconds == 0.5

    def test_default_key_follows_allowed_keys(self, clean_env, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("server:\n  allowed_keys: [a, b]\n")

        config = load_config(path)

        assert config.server.default_key == "a"
