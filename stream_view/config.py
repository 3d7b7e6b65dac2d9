"""
Runtime configuration.

Defaults live in module constants; StreamConfig.from_env() overrides them from
environment variables:

    STREAM_VIEW_HOST=127.0.0.1
    STREAM_VIEW_PORT=8080
    STREAM_VIEW_SECURE=0
    STREAM_VIEW_TOPIC=data_stream
    STREAM_VIEW_WINDOW=500
    STREAM_VIEW_SNAPSHOT_INTERVAL=100

CLI flags in main.py take precedence over both.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace

from .errors import ConfigError

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8080
DEFAULT_TOPIC = "data_stream"

# Reconnect schedule: min(base * 2**attempt, cap), at most MAX attempts
BACKOFF_BASE_MS = 3000
BACKOFF_CAP_MS = 30000
MAX_RECONNECT_ATTEMPTS = 5
RESUME_SETTLE_MS = 500

WINDOW_SIZE = 500              # Max points per rendered series
SIGNAL_DURATION_MS = 2000      # Highlight / alert lifetime
SNAPSHOT_INTERVAL_MS = 100      # Min gap between frame-driven UI snapshots
SNAPSHOT_QUEUE_SIZE = 5


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None


@dataclass(frozen=True)
class StreamConfig:
    """Connection, backoff and view settings for one StreamClient."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    secure: bool = False
    topic: str = DEFAULT_TOPIC
    subscription_id: int = 1
    backoff_base_ms: int = BACKOFF_BASE_MS
    backoff_cap_ms: int = BACKOFF_CAP_MS
    max_reconnect_attempts: int = MAX_RECONNECT_ATTEMPTS
    resume_settle_ms: int = RESUME_SETTLE_MS
    window_size: int = WINDOW_SIZE
    signal_duration_ms: int = SIGNAL_DURATION_MS
    snapshot_interval_ms: int = SNAPSHOT_INTERVAL_MS
    queue_size: int = SNAPSHOT_QUEUE_SIZE

    def __post_init__(self) -> None:
        if not self.host:
            raise ConfigError("host must not be empty")
        if not 0 < self.port < 65536:
            raise ConfigError(f"port out of range: {self.port}")
        if self.backoff_base_ms < 0 or self.backoff_cap_ms < 0:
            raise ConfigError("backoff delays must be non-negative")
        if self.max_reconnect_attempts < 0:
            raise ConfigError("max_reconnect_attempts must be non-negative")
        if self.window_size < 0:
            raise ConfigError("window_size must be non-negative")
        if self.snapshot_interval_ms < 0:
            raise ConfigError("snapshot_interval_ms must be non-negative")
        if self.queue_size < 1:
            raise ConfigError("queue_size must be at least 1")

    @property
    def url(self) -> str:
        scheme = "wss" if self.secure else "ws"
        return f"{scheme}://{self.host}:{self.port}"

    @classmethod
    def from_env(cls) -> StreamConfig:
        return cls(
            host=os.getenv("STREAM_VIEW_HOST", DEFAULT_HOST),
            port=_env_int("STREAM_VIEW_PORT", DEFAULT_PORT),
            secure=_env_bool("STREAM_VIEW_SECURE", False),
            topic=os.getenv("STREAM_VIEW_TOPIC", DEFAULT_TOPIC),
            window_size=_env_int("STREAM_VIEW_WINDOW", WINDOW_SIZE),
            snapshot_interval_ms=_env_int("STREAM_VIEW_SNAPSHOT_INTERVAL", SNAPSHOT_INTERVAL_MS),
        )

    def with_overrides(self, **changes: object) -> StreamConfig:
        """Copy with non-None overrides applied (CLI flags)."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})
