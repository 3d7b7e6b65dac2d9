"""
WebSocket transport session with bounded, backing-off reconnects.

Handles:
1. One logical connection to the data source (aiohttp WebSocket)
2. Reconnect after unexpected drops: min(base * 2**attempt, cap), bounded
3. Host suspension (backgrounded) and resumption without spending the budget
4. Outbound subscribe requests while open

State machine:

    CLOSED --open()--> CONNECTING --ok--> OPEN
    CONNECTING/OPEN --drop--> RECONNECTING --timer--> CONNECTING
    RECONNECTING --budget spent--> CLOSED (ConnectionExhausted)
    any --close()--> CLOSING --> CLOSED

Every timer and connection task carries the generation current when it was
created. open(), close(), suspend() and resume() bump the generation, which
turns anything scheduled earlier into a no-op.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

import aiohttp
import orjson

from ..config import (
    BACKOFF_BASE_MS,
    BACKOFF_CAP_MS,
    DEFAULT_TOPIC,
    MAX_RECONNECT_ATTEMPTS,
    RESUME_SETTLE_MS,
    StreamConfig,
)
from ..errors import ConnectionExhausted, ConnectionLost, NotConnected
from ..types import ConnectionState

logger = logging.getLogger(__name__)

# Errors that mean "the transport is gone", as opposed to bugs
TRANSPORT_ERRORS = (aiohttp.ClientError, OSError, asyncio.TimeoutError)

MessageHandler = Callable[[str], None]
StateHandler = Callable[[ConnectionState, ConnectionState], None]
ErrorHandler = Callable[[Exception], None]
Connector = Callable[[str], Awaitable[Any]]


def backoff_delay_ms(
    attempt: int,
    base_ms: int = BACKOFF_BASE_MS,
    cap_ms: int = BACKOFF_CAP_MS,
) -> int:
    """Delay before reconnect number `attempt` (0-based)."""
    return min(base_ms * 2 ** attempt, cap_ms)


def build_subscribe_request(
    request_id: int,
    query: str,
    topic: str = DEFAULT_TOPIC,
    subscription_id: int = 1,
) -> dict:
    """JSON-RPC subscribe payload."""
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "method": "subscribe",
        "params": {
            "type": topic,
            "subscription_id": subscription_id,
            "query": query,
        },
    }


class TransportSession:
    """
    One reconnecting WebSocket connection.

    Usage:
        session = TransportSession("ws://127.0.0.1:8080")
        session.on_message(handle_frame)
        session.open()
        await session.send("SELECT ...")
        await session.wait_closed()

    Thread-safety: NOT thread-safe. All methods must run on the session's loop.
    """

    def __init__(
        self,
        url: str,
        *,
        backoff_base_ms: int = BACKOFF_BASE_MS,
        backoff_cap_ms: int = BACKOFF_CAP_MS,
        max_attempts: int = MAX_RECONNECT_ATTEMPTS,
        resume_settle_ms: int = RESUME_SETTLE_MS,
        topic: str = DEFAULT_TOPIC,
        subscription_id: int = 1,
        heartbeat: float | None = 30.0,
        connect: Connector | None = None,
    ) -> None:
        self.url = url
        self.backoff_base_ms = backoff_base_ms
        self.backoff_cap_ms = backoff_cap_ms
        self.max_attempts = max_attempts
        self.resume_settle_ms = resume_settle_ms
        self.topic = topic
        self.subscription_id = subscription_id
        self.heartbeat = heartbeat
        self._connect: Connector = connect or self._aiohttp_connect

        # State
        self._state = ConnectionState.CLOSED
        self._attempts: int = 0
        self._generation: int = 0
        self._request_id: int = 0
        self._explicit_close = False
        self._suspended = False
        self.last_error: Exception | None = None
        self._exhausted: ConnectionExhausted | None = None

        # Owned resources
        self._http: aiohttp.ClientSession | None = None
        self._ws: Any = None
        self._task: asyncio.Task | None = None
        self._timers: set[asyncio.TimerHandle] = set()
        self._done = asyncio.Event()

        # Observers
        self._message_handlers: list[MessageHandler] = []
        self._state_handlers: list[StateHandler] = []
        self._error_handlers: list[ErrorHandler] = []

    @classmethod
    def from_config(cls, config: StreamConfig, connect: Connector | None = None) -> TransportSession:
        return cls(
            config.url,
            backoff_base_ms=config.backoff_base_ms,
            backoff_cap_ms=config.backoff_cap_ms,
            max_attempts=config.max_reconnect_attempts,
            resume_settle_ms=config.resume_settle_ms,
            topic=config.topic,
            subscription_id=config.subscription_id,
            connect=connect,
        )

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def on_message(self, handler: MessageHandler) -> None:
        self._message_handlers.append(handler)

    def on_state_change(self, handler: StateHandler) -> None:
        self._state_handlers.append(handler)

    def on_error(self, handler: ErrorHandler) -> None:
        self._error_handlers.append(handler)

    def remove_state_handler(self, handler: StateHandler) -> None:
        if handler in self._state_handlers:
            self._state_handlers.remove(handler)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def suspended(self) -> bool:
        return self._suspended

    def open(self) -> None:
        """Connect. No-op while already CONNECTING or OPEN."""
        if self._state in (ConnectionState.CONNECTING, ConnectionState.OPEN):
            return
        self._explicit_close = False
        self._suspended = False
        self._exhausted = None
        self._attempts = 0
        self._done.clear()
        self._cancel_timers()
        self._generation += 1
        self._start_connect(self._generation)

    async def send(self, query: str) -> int:
        """
        Send a subscribe request. Returns the request id.

        Raises NotConnected immediately if the session is not OPEN.
        """
        ws = self._ws
        if self._state is not ConnectionState.OPEN or ws is None:
            raise NotConnected(f"cannot send while {self._state.value}")

        self._request_id += 1
        payload = build_subscribe_request(
            self._request_id, query, self.topic, self.subscription_id,
        )
        try:
            await ws.send_str(orjson.dumps(payload).decode())
        except TRANSPORT_ERRORS as e:
            logger.error("Failed to send query: %s", e)
            raise ConnectionLost(f"send failed: {e}") from e
        logger.info("Query sent (request %d): %s", self._request_id, query)
        return self._request_id

    async def close(self) -> None:
        """Close for good. No reconnect is scheduled afterwards."""
        self._explicit_close = True
        self._generation += 1
        self._cancel_timers()
        if self._state is not ConnectionState.CLOSED:
            self._set_state(ConnectionState.CLOSING)
        await self._teardown()
        if self._http is not None:
            await self._http.close()
            self._http = None
        self._set_state(ConnectionState.CLOSED)
        self._done.set()
        logger.info("Session to %s closed", self.url)

    async def suspend(self) -> None:
        """Host went to background: drop the socket, keep the retry budget."""
        if self._explicit_close:
            return
        # Also supersedes a resume() still waiting out its settle delay
        self._generation += 1
        self._cancel_timers()
        if self._suspended:
            return
        self._suspended = True
        await self._teardown()
        self._set_state(ConnectionState.CLOSED)
        logger.info("Session suspended")

    def resume(self) -> None:
        """Host back in foreground: one fresh open() after the settle delay."""
        if self._explicit_close or not self._suspended:
            return
        self._generation += 1
        self._cancel_timers()
        self._schedule(self.resume_settle_ms / 1000.0, self._resume_open, self._generation)

    async def wait_closed(self) -> None:
        """Wait for terminal closure. Raises ConnectionExhausted if retries ran out."""
        await self._done.wait()
        if self._exhausted is not None:
            raise self._exhausted

    # ------------------------------------------------------------------
    # Connection loop
    # ------------------------------------------------------------------

    async def _aiohttp_connect(self, url: str) -> aiohttp.ClientWebSocketResponse:
        if self._http is None or self._http.closed:
            self._http = aiohttp.ClientSession()
        return await self._http.ws_connect(url, heartbeat=self.heartbeat)

    def _start_connect(self, generation: int) -> None:
        self._set_state(ConnectionState.CONNECTING)
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._run(generation))
        self._task.add_done_callback(self._on_task_done)

    async def _run(self, generation: int) -> None:
        try:
            ws = await self._connect(self.url)
        except TRANSPORT_ERRORS as e:
            if generation == self._generation:
                self._handle_drop(generation, ConnectionLost(
                    f"connect to {self.url} failed: {e}", attempt=self._attempts,
                ))
            return

        if generation != self._generation:
            await ws.close()
            return

        self._ws = ws
        self._attempts = 0
        self._set_state(ConnectionState.OPEN)
        logger.info("WebSocket connected to %s", self.url)

        reason = "closed by server"
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._dispatch_message(msg.data)
                elif msg.type == aiohttp.WSMsgType.BINARY:
                    self._dispatch_message(msg.data.decode("utf-8", errors="replace"))
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    reason = f"error: {ws.exception()}"
                    break
                elif msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSED):
                    break
        except TRANSPORT_ERRORS as e:
            reason = f"error: {e}"
        finally:
            if self._ws is ws:
                self._ws = None
            if not ws.closed:
                await ws.close()

        if generation == self._generation:
            self._handle_drop(generation, ConnectionLost(f"connection to {self.url} {reason}"))

    def _handle_drop(self, generation: int, error: ConnectionLost) -> None:
        """Unexpected drop or failed connect: schedule a retry or give up."""
        self.last_error = error
        logger.warning("%s", error)

        if self._attempts >= self.max_attempts:
            exhausted = ConnectionExhausted(
                f"giving up on {self.url} after {self._attempts} reconnect attempts",
                attempts=self._attempts,
            )
            self._exhausted = exhausted
            self.last_error = exhausted
            self._set_state(ConnectionState.CLOSED)
            logger.error("%s", exhausted)
            self._notify_error(exhausted)
            self._done.set()
            return

        delay_ms = backoff_delay_ms(self._attempts, self.backoff_base_ms, self.backoff_cap_ms)
        self._set_state(ConnectionState.RECONNECTING)
        self._notify_error(error)
        logger.info("Reconnecting in %dms (attempt %d/%d)",
                    delay_ms, self._attempts + 1, self.max_attempts)
        self._schedule(delay_ms / 1000.0, self._reconnect, generation)

    def _reconnect(self, generation: int) -> None:
        if generation != self._generation or self._state is not ConnectionState.RECONNECTING:
            return
        self._attempts += 1
        self._start_connect(generation)

    def _resume_open(self, generation: int) -> None:
        if generation != self._generation:
            return
        logger.info("Session resumed")
        self.open()

    async def _teardown(self) -> None:
        """Cancel the connection task and close the socket."""
        task = self._task
        self._task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        ws = self._ws
        self._ws = None
        if ws is not None and not ws.closed:
            await ws.close()

    def _on_task_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        logger.error("Connection task failed", exc_info=exc)
        # Only the live task may drive the state machine
        if task is not self._task or self._explicit_close or self._suspended:
            return
        self._task = None
        self._handle_drop(self._generation, ConnectionLost(
            f"connection to {self.url} failed: {exc!r}", attempt=self._attempts,
        ))

    # ------------------------------------------------------------------
    # Timers and observers
    # ------------------------------------------------------------------

    def _schedule(self, delay_sec: float, callback: Callable[..., None], *args: Any) -> None:
        loop = asyncio.get_running_loop()
        handle: asyncio.TimerHandle | None = None

        def fire() -> None:
            self._timers.discard(handle)
            callback(*args)

        handle = loop.call_later(delay_sec, fire)
        self._timers.add(handle)

    def _cancel_timers(self) -> None:
        for handle in self._timers:
            handle.cancel()
        self._timers.clear()

    def _set_state(self, state: ConnectionState) -> None:
        old = self._state
        if old is state:
            return
        self._state = state
        logger.debug("Connection state %s -> %s", old.value, state.value)
        for handler in list(self._state_handlers):
            try:
                handler(old, state)
            except Exception:
                logger.exception("State handler failed")

    def _dispatch_message(self, raw: str) -> None:
        for handler in list(self._message_handlers):
            try:
                handler(raw)
            except Exception:
                logger.exception("Message handler failed")

    def _notify_error(self, error: Exception) -> None:
        for handler in list(self._error_handlers):
            try:
                handler(error)
            except Exception:
                logger.exception("Error handler failed")
