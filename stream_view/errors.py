"""
Error taxonomy for Stream View.

Only ConnectionExhausted is fatal, and only to the session that raised it.
Everything else is reported through logging at the component boundary.
"""

from __future__ import annotations


class StreamViewError(Exception):
    """Base error for all stream_view components."""


class ConfigError(StreamViewError):
    """Invalid configuration value."""


class ConnectionLost(StreamViewError):
    """Transport dropped or failed to connect. Recoverable via backoff."""

    def __init__(self, message: str, *, attempt: int = 0) -> None:
        self.attempt = attempt
        super().__init__(message)


class ConnectionExhausted(StreamViewError):
    """Reconnect budget spent. Terminal for the session."""

    def __init__(self, message: str, *, attempts: int = 0) -> None:
        self.attempts = attempts
        super().__init__(message)


class NotConnected(StreamViewError):
    """send() called while the session is not open."""


class MalformedFrame(StreamViewError):
    """Inbound frame is not a decodable delta push. The frame is dropped."""

    def __init__(self, message: str, *, raw: str | bytes = "") -> None:
        self.raw = raw
        super().__init__(message)


class CoercionFailure(StreamViewError, ValueError):
    """A value could not be coerced to a number for projection."""

    def __init__(self, value: object) -> None:
        self.value = value
        super().__init__(f"cannot coerce {value!r} to a number")
