"""
Stream client: wires transport, decoder, table, projection and signals.

Handles:
1. Frame pipeline: raw frame -> DeltaBatch -> ChangeReport -> Signal
2. Renderer interface (fields, series, highlighted ids)
3. Snapshot publishing for UI consumers on other threads/loops, at most one
   frame-driven snapshot per snapshot_interval_ms
4. Host visibility (suspend/resume) and subscription queries

Frames are processed one at a time, synchronously, inside the session's
receive loop; the next frame is not read until the current one is applied.
"""

from __future__ import annotations

import asyncio
import logging
import queue
import time
from typing import Sequence

from ..config import StreamConfig
from ..engine.projection import ProjectionBuilder
from ..engine.signals import NotificationController, Notifier, SignalDispatcher
from ..errors import MalformedFrame
from ..types import (
    ID_FIELD,
    TIMESTAMP_FIELD,
    ChangeReport,
    ConnectionState,
    FieldDescriptor,
    Series,
    ViewSnapshot,
)
from .decoder import decode
from .session import Connector, TransportSession
from .table import LiveTable

logger = logging.getLogger(__name__)


class StreamClient:
    """
    Live table client for one endpoint.

    Usage:
        client = StreamClient(StreamConfig(host="10.0.0.5", port=8080))
        task = asyncio.create_task(client.run())
        await client.subscribe("SELECT * FROM quotes")
        snapshot = client.snapshot_queue.get()
    """

    def __init__(
        self,
        config: StreamConfig | None = None,
        notifier: Notifier | None = None,
        controller: NotificationController | None = None,
        connect: Connector | None = None,
        axis_field: str = "timestamp",
        selected_fields: Sequence[str] = (),
        auto_select: bool = True,
    ) -> None:
        self.config = config or StreamConfig()
        # Plot every discovered field when none were chosen explicitly
        self.auto_select = auto_select and not selected_fields

        # Core components
        self.session = TransportSession.from_config(self.config, connect=connect)
        self.table = LiveTable()
        self.projection = ProjectionBuilder(
            window_size=self.config.window_size,
            axis_field=axis_field,
            selected_fields=selected_fields,
        )
        self.controller = controller or NotificationController()
        self.signals = SignalDispatcher(
            notifier=notifier,
            controller=self.controller,
            duration_ms=self.config.signal_duration_ms,
        )

        # State
        self._running = False
        self.frames_received: int = 0
        self.frames_dropped: int = 0

        # Snapshot throttling
        self.snapshot_interval_ms = self.config.snapshot_interval_ms
        self._last_snapshot_time: float = float("-inf")
        self._flush_handle: asyncio.TimerHandle | None = None

        # Rolling update rate tracking
        self._update_count: int = 0
        self._update_count_last: int = 0
        self._rate_calc_time: float = time.perf_counter()
        self._updates_per_sec: float = 0.0

        # Output queue for UI - thread-safe for cross-thread access
        self.snapshot_queue: queue.Queue[ViewSnapshot] = queue.Queue(maxsize=self.config.queue_size)

        self.session.on_message(self.handle_frame)
        self.session.on_state_change(self._on_state_change)

    # ------------------------------------------------------------------
    # Renderer interface
    # ------------------------------------------------------------------

    def get_fields(self) -> list[FieldDescriptor]:
        return self.table.fields()

    def get_series(
        self,
        axis: str | None = None,
        selected_fields: Sequence[str] | None = None,
    ) -> list[Series]:
        """Project the current table. Defaults to the configured axis/fields."""
        return self.projection.build(
            self.table.records(),
            labels=self.table.registry.labels(),
            axis_field=axis,
            value_fields=selected_fields,
        )

    def get_highlighted_ids(self) -> frozenset[str]:
        return self.signals.highlighted_ids()

    def plottable_fields(self) -> list[str]:
        """Discovered fields that can be plotted against the current axis."""
        return [
            f.value for f in self.table.fields()
            if f.value not in (ID_FIELD, TIMESTAMP_FIELD, self.projection.axis_field)
        ]

    def set_axis(self, axis_field: str) -> None:
        """Switch the x axis. The axis drops out of the plotted fields."""
        self.projection.set_axis(axis_field)
        logger.info("Axis set to %r", axis_field)
        self.push_snapshot()

    def select_fields(self, fields: Sequence[str]) -> None:
        """Choose the plotted fields. Stops auto-selecting discovered fields."""
        self.auto_select = False
        self.projection.select(fields)
        self.push_snapshot()

    # ------------------------------------------------------------------
    # Frame pipeline
    # ------------------------------------------------------------------

    def handle_frame(self, raw: str | bytes) -> ChangeReport | None:
        """
        Decode and apply one frame.

        HOT PATH - called for every inbound message. A malformed frame is
        logged and dropped; the session keeps running.
        """
        self.frames_received += 1
        try:
            batch = decode(raw)
        except MalformedFrame as e:
            self.frames_dropped += 1
            logger.warning("Dropping malformed frame: %s", e)
            return None

        if batch.is_empty:
            return None

        report = self.table.apply(batch)
        if self.auto_select and not self.projection.selected_fields:
            self.projection.select(self.plottable_fields())
        self._update_count += 1
        self.signals.dispatch(report)
        self._maybe_push_snapshot()
        return report

    def build_snapshot(self) -> ViewSnapshot:
        now = time.perf_counter()
        rate_elapsed = now - self._rate_calc_time
        if rate_elapsed >= 1.0:
            self._updates_per_sec = (self._update_count - self._update_count_last) / rate_elapsed
            self._update_count_last = self._update_count
            self._rate_calc_time = now

        return ViewSnapshot(
            endpoint=self.config.url,
            state=self.session.state,
            fields=self.get_fields(),
            rows=list(self.table.records()),
            series=self.get_series(),
            highlighted_ids=self.get_highlighted_ids(),
            attention=self.signals.attention,
            last_signal=self.signals.last_signal,
            timestamp_ms=int(time.time() * 1000),
            updates_per_sec=self._updates_per_sec,
            axis_label=self.table.registry.label_for(self.projection.axis_field),
            frames_received=self.frames_received,
            frames_dropped=self.frames_dropped,
        )

    def _maybe_push_snapshot(self) -> None:
        """Push a snapshot if the interval elapsed, else flush once it has."""
        now = time.perf_counter()
        elapsed_ms = (now - self._last_snapshot_time) * 1000

        if elapsed_ms >= self.snapshot_interval_ms:
            self.push_snapshot()
            return

        if self._flush_handle is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                return
            delay_sec = (self.snapshot_interval_ms - elapsed_ms) / 1000.0
            self._flush_handle = loop.call_later(delay_sec, self._flush_snapshot)

    def _flush_snapshot(self) -> None:
        self._flush_handle = None
        self.push_snapshot()

    def _cancel_flush(self) -> None:
        if self._flush_handle is not None:
            self._flush_handle.cancel()
            self._flush_handle = None

    def push_snapshot(self) -> None:
        """Publish a snapshot now, dropping the oldest queued one if full."""
        self._cancel_flush()
        self._last_snapshot_time = time.perf_counter()
        snapshot = self.build_snapshot()
        try:
            self.snapshot_queue.put_nowait(snapshot)
        except queue.Full:
            try:
                self.snapshot_queue.get_nowait()
            except queue.Empty:
                pass
            self.snapshot_queue.put_nowait(snapshot)

    def _on_state_change(self, old: ConnectionState, new: ConnectionState) -> None:
        logger.debug("Session %s -> %s", old.value, new.value)
        self.push_snapshot()

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    async def subscribe(self, query: str) -> int:
        """Send a subscription query. Raises NotConnected if not open."""
        return await self.session.send(query)

    async def set_visible(self, visible: bool) -> None:
        """Host visibility: background suspends the socket, foreground resumes."""
        if visible:
            self.session.resume()
        else:
            await self.session.suspend()

    async def run(self) -> None:
        """
        Open the session and wait until it ends.

        Returns after stop(); raises ConnectionExhausted if the reconnect
        budget runs out.
        """
        self._running = True
        self.session.open()
        try:
            await self.session.wait_closed()
        finally:
            self._running = False
            self._cancel_flush()
            self.controller.stop()

    async def stop(self) -> None:
        """Close the session and cancel all timers."""
        self._running = False
        self._cancel_flush()
        self.signals.reset()
        await self.session.close()

    @property
    def running(self) -> bool:
        return self._running


async def wait_for_state(
    client: StreamClient,
    state: ConnectionState,
    timeout: float = 5.0,
) -> None:
    """Wait until the client's session reaches `state`."""
    reached = asyncio.Event()

    def check(_old: ConnectionState, new: ConnectionState) -> None:
        if new is state:
            reached.set()

    if client.session.state is state:
        return
    client.session.on_state_change(check)
    try:
        await asyncio.wait_for(reached.wait(), timeout)
    finally:
        client.session.remove_state_handler(check)
