"""Shared test fixtures for Stream View."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, NamedTuple

import aiohttp
import orjson
import pytest

from stream_view.config import StreamConfig


class FakeMessage(NamedTuple):
    type: aiohttp.WSMsgType
    data: Any
    extra: Any = None


class FakeWebSocket:
    """In-memory stand-in for aiohttp.ClientWebSocketResponse."""

    def __init__(self) -> None:
        self._inbox: asyncio.Queue = asyncio.Queue()
        self.sent: list[str] = []
        self.closed = False

    def push(self, text: str) -> None:
        self._inbox.put_nowait(FakeMessage(aiohttp.WSMsgType.TEXT, text))

    def push_error(self) -> None:
        self._inbox.put_nowait(FakeMessage(aiohttp.WSMsgType.ERROR, None))

    def drop(self) -> None:
        """Server-side close."""
        self._inbox.put_nowait(FakeMessage(aiohttp.WSMsgType.CLOSED, None))

    async def send_str(self, data: str) -> None:
        if self.closed:
            raise ConnectionResetError("socket closed")
        self.sent.append(data)

    async def close(self) -> bool:
        self.closed = True
        self._inbox.put_nowait(None)
        return True

    def exception(self) -> BaseException | None:
        return None

    def __aiter__(self) -> FakeWebSocket:
        return self

    async def __anext__(self) -> FakeMessage:
        msg = await self._inbox.get()
        if msg is None:
            raise StopAsyncIteration
        return msg


class FakeConnector:
    """Connect callable for TransportSession; fails the first `fail_times` calls."""

    def __init__(self, fail_times: int = 0, always_fail: bool = False) -> None:
        self.fail_times = fail_times
        self.always_fail = always_fail
        self.calls = 0
        self.urls: list[str] = []
        self.sockets: list[FakeWebSocket] = []

    async def __call__(self, url: str) -> FakeWebSocket:
        self.calls += 1
        self.urls.append(url)
        if self.always_fail or self.calls <= self.fail_times:
            raise aiohttp.ClientConnectionError("connection refused")
        ws = FakeWebSocket()
        self.sockets.append(ws)
        return ws

    @property
    def latest(self) -> FakeWebSocket:
        return self.sockets[-1]


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll `predicate` until true or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("condition not reached in time")
        await asyncio.sleep(0.005)


def make_frame(added=None, changed=None, removed=None) -> str:
    """Build an inbound delta push frame."""
    data = {}
    if added is not None:
        data["added"] = added
    if changed is not None:
        data["changed"] = changed
    if removed is not None:
        data["removed"] = removed
    return orjson.dumps({"params": {"data": data}}).decode()


class FakeClock:
    """Monotonic clock the tests advance by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fast_config() -> StreamConfig:
    """Config with millisecond backoff so reconnect tests run quickly."""
    return StreamConfig(
        host="stream.test",
        port=9000,
        backoff_base_ms=1,
        backoff_cap_ms=5,
        resume_settle_ms=1,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
