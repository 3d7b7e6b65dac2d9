"""Unit tests for StreamConfig."""

from __future__ import annotations

import pytest

from stream_view.config import BACKOFF_BASE_MS, StreamConfig
from stream_view.errors import ConfigError


class TestStreamConfig:

    def test_defaults(self):
        config = StreamConfig()
        assert config.url == "ws://127.0.0.1:8080"
        assert config.backoff_base_ms == BACKOFF_BASE_MS == 3000
        assert config.backoff_cap_ms == 30000
        assert config.max_reconnect_attempts == 5
        assert config.window_size == 500
        assert config.signal_duration_ms == 2000
        assert config.snapshot_interval_ms == 100

    def test_secure_url(self):
        assert StreamConfig(host="feed.example", port=443, secure=True).url == "wss://feed.example:443"

    @pytest.mark.parametrize("kwargs", [
        {"port": 0},
        {"port": 70000},
        {"host": ""},
        {"window_size": -1},
        {"queue_size": 0},
        {"max_reconnect_attempts": -1},
        {"snapshot_interval_ms": -1},
    ])
    def test_invalid_values(self, kwargs):
        with pytest.raises(ConfigError):
            StreamConfig(**kwargs)

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("STREAM_VIEW_HOST", "10.0.0.5")
        monkeypatch.setenv("STREAM_VIEW_PORT", "9001")
        monkeypatch.setenv("STREAM_VIEW_SECURE", "true")
        monkeypatch.setenv("STREAM_VIEW_WINDOW", "100")
        monkeypatch.setenv("STREAM_VIEW_SNAPSHOT_INTERVAL", "250")
        config = StreamConfig.from_env()
        assert config.url == "wss://10.0.0.5:9001"
        assert config.window_size == 100
        assert config.snapshot_interval_ms == 250

    def test_from_env_rejects_bad_int(self, monkeypatch):
        monkeypatch.setenv("STREAM_VIEW_PORT", "eighty")
        with pytest.raises(ConfigError):
            StreamConfig.from_env()

    def test_overrides_skip_none(self):
        config = StreamConfig(host="a").with_overrides(host=None, port=9999)
        assert config.host == "a"
        assert config.port == 9999
