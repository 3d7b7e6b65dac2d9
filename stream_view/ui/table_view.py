"""
Live table TUI using Textual.

Displays:
- Top: Status bar (endpoint, connection state, rows, update rate, axis,
  dropped frames)
- Middle: Record table, rows touched by the latest batch highlighted
- Right: Series panel (points, last value, sparkline per plotted field)
- Bottom: Query input that sends a subscription

Notes:
- Polls the client's snapshot queue at ~10 FPS and renders only the latest
- Table rendering is capped to the newest MAX_TABLE_ROWS rows
"""

from __future__ import annotations

import queue
from datetime import datetime
from typing import TYPE_CHECKING

from rich.console import RenderableType
from rich.style import Style
from rich.table import Table
from rich.text import Text

from textual.app import App, ComposeResult
from textual.containers import Horizontal
from textual.widgets import Footer, Input, Static

from ..datafeed.decoder import parse_timestamp_ms
from ..errors import ConnectionLost, NotConnected
from ..types import ID_FIELD, TIMESTAMP_FIELD, ConnectionState

if TYPE_CHECKING:
    from ..datafeed.stream_client import StreamClient
    from ..types import Series, ViewSnapshot

# Color scheme (dark theme)
HIGHLIGHT_BG = "#7f1d1d"       # Red-900
TEXT_COLOR = "#d1d5db"
HEADER_COLOR = "#94a3b8"
LINE_COLOR = "#38bdf8"
STATE_COLORS = {
    ConnectionState.OPEN: "#22c55e",
    ConnectionState.CONNECTING: "yellow",
    ConnectionState.RECONNECTING: "yellow",
    ConnectionState.CLOSING: "#ef4444",
    ConnectionState.CLOSED: "#ef4444",
}

MAX_TABLE_ROWS = 200
SPARK_CHARS = "▁▂▃▄▅▆▇█"
SPARK_WIDTH = 24


def format_value(value: object) -> str:
    """Format a cell for display."""
    if value is None:
        return "-"
    if isinstance(value, float):
        if abs(value) >= 1000:
            return f"{value:,.1f}"
        return f"{value:.4g}"
    return str(value)


def format_timestamp(value: object) -> str:
    """Canonical timestamp -> local time string; unreadable values as-is."""
    ms = parse_timestamp_ms(value)
    if ms != ms:  # NaN
        return format_value(value)
    return datetime.fromtimestamp(ms / 1000).strftime("%Y-%m-%d %H:%M:%S")


def make_sparkline(values: list[float], width: int = SPARK_WIDTH) -> Text:
    """Block-character sparkline of the last `width` values."""
    if not values:
        return Text(" " * width)
    tail = values[-width:]
    lo, hi = min(tail), max(tail)
    span = hi - lo
    chars = []
    for v in tail:
        idx = 0 if span <= 0 else int((v - lo) / span * (len(SPARK_CHARS) - 1))
        chars.append(SPARK_CHARS[idx])
    return Text("".join(chars).ljust(width), style=Style(color=LINE_COLOR))


class AppNotifier:
    """Notifier that raises Textual toasts and rings the terminal bell."""

    def __init__(self, app: App) -> None:
        self.app = app

    def notify(self, summary: str, description: str = "") -> None:
        self.app.notify(description or summary, title=summary, timeout=2.0)
        self.app.bell()

    def request_permission(self) -> bool:
        return True


class RecordTable(Static):
    """Live record table."""

    DEFAULT_CSS = """
    RecordTable {
        width: 3fr;
        height: 100%;
    }
    """

    def __init__(self) -> None:
        super().__init__()
        self._snapshot: ViewSnapshot | None = None

    @property
    def snapshot(self) -> ViewSnapshot | None:
        return self._snapshot

    def update_snapshot(self, snapshot: ViewSnapshot) -> None:
        self._snapshot = snapshot
        self.refresh()

    def render(self) -> RenderableType:
        if self._snapshot is None:
            return Text("Waiting for data...", style="dim")

        snap = self._snapshot
        if not snap.rows:
            return Text("No rows", style="dim")

        table = Table(
            show_header=True,
            header_style=HEADER_COLOR,
            box=None,
            padding=(0, 1),
            collapse_padding=True,
        )
        for field in snap.fields:
            table.add_column(field.label, no_wrap=True)

        for record in snap.rows[-MAX_TABLE_ROWS:]:
            cells = []
            for field in snap.fields:
                value = record.get(field.value)
                if field.value == TIMESTAMP_FIELD:
                    cells.append(format_timestamp(value))
                else:
                    cells.append(format_value(value))
            style = Style(bgcolor=HIGHLIGHT_BG) if record.id in snap.highlighted_ids else None
            table.add_row(*cells, style=style)

        return table


class SeriesPanel(Static):
    """Per-series summary for the plotted fields."""

    DEFAULT_CSS = """
    SeriesPanel {
        width: 2fr;
        height: 100%;
        padding: 0 1;
    }
    """

    def __init__(self) -> None:
        super().__init__()
        self._series: list[Series] = []

    def update_series(self, series: list[Series]) -> None:
        self._series = series
        self.refresh()

    def render(self) -> RenderableType:
        if not self._series:
            return Text("No series selected", style="dim")

        table = Table(show_header=True, header_style=HEADER_COLOR, box=None, padding=(0, 1))
        table.add_column("Series")
        table.add_column("Pts", justify="right")
        table.add_column("Last", justify="right")
        table.add_column("Trend", no_wrap=True)

        for series in self._series:
            ys = [p.y for p in series.points]
            last = format_value(ys[-1]) if ys else "-"
            table.add_row(series.name, str(len(ys)), last, make_sparkline(ys))
        return table


class StatusBar(Static):
    """Status bar showing endpoint, connection state and rates."""

    DEFAULT_CSS = """
    StatusBar {
        dock: top;
        height: 3;
        padding: 0 2;
        background: #0f172a;
    }
    """

    def __init__(self) -> None:
        super().__init__()
        self._snapshot: ViewSnapshot | None = None
        self.alerts_enabled = True

    def update_snapshot(self, snapshot: ViewSnapshot) -> None:
        self._snapshot = snapshot
        self.refresh()

    def render(self) -> RenderableType:
        if self._snapshot is None:
            return Text("Connecting...", style="dim")

        snap = self._snapshot
        parts = [
            Text(f" {snap.endpoint} ", style="bold white on #1e40af"),
            Text("  "),
            Text(snap.state.value.upper(), style=STATE_COLORS.get(snap.state, TEXT_COLOR)),
            Text("  │  ", style="dim"),
            Text("Rows: ", style="dim"),
            Text(str(len(snap.rows)), style="cyan"),
            Text("  Updates/s: ", style="dim"),
            Text(f"{snap.updates_per_sec:.1f}", style="cyan"),
            Text("  Axis: ", style="dim"),
            Text(snap.axis_label or "-", style="cyan"),
            Text("  Dropped: ", style="dim"),
            Text(f"{snap.frames_dropped}/{snap.frames_received}", style="cyan"),
            Text("  Alerts: ", style="dim"),
            Text("on" if self.alerts_enabled else "off", style="cyan"),
        ]
        if snap.attention and snap.last_signal is not None:
            parts.append(Text("  │  ", style="dim"))
            parts.append(Text(f"🔔 {snap.last_signal.summary}", style="bold yellow"))

        result = Text()
        for p in parts:
            result.append(p)
        return result


class StreamViewApp(App):
    """Main Stream View application."""

    TITLE = "Stream View"
    # Keys go to the bindings until the query input is clicked
    AUTO_FOCUS = None

    CSS = """
    Screen {
        background: #0f172a;
    }

    #main-container {
        width: 100%;
        height: 1fr;
        padding: 1 2;
    }

    #query-input {
        dock: bottom;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("n", "toggle_alerts", "Alerts"),
        ("v", "toggle_visibility", "Suspend/Resume"),
        ("a", "cycle_axis", "Axis"),
        ("f", "cycle_fields", "Fields"),
    ]

    def __init__(self, client: StreamClient, poll_interval: float = 0.1) -> None:
        super().__init__()
        self.client = client
        self.poll_interval = poll_interval
        self.visible = True
        self._status_bar: StatusBar | None = None
        self._record_table: RecordTable | None = None
        self._series_panel: SeriesPanel | None = None

        client.signals.notifier = AppNotifier(self)
        client.controller.base_title = self.title
        client.controller.on_title = self._set_title

    def compose(self) -> ComposeResult:
        self._status_bar = StatusBar()
        self._record_table = RecordTable()
        self._series_panel = SeriesPanel()

        yield self._status_bar
        yield Horizontal(self._record_table, self._series_panel, id="main-container")
        yield Input(placeholder="Enter a query and press Enter to subscribe", id="query-input")
        yield Footer()

    def on_mount(self) -> None:
        self.set_interval(self.poll_interval, self.poll_snapshots)

    def on_unmount(self) -> None:
        self.client.controller.on_title = None
        self.client.controller.stop()

    def poll_snapshots(self) -> None:
        """Drain the snapshot queue and render the newest one."""
        latest: ViewSnapshot | None = None
        while True:
            try:
                latest = self.client.snapshot_queue.get_nowait()
            except queue.Empty:
                break
        if latest is not None:
            self.show_snapshot(latest)
        elif self._record_table is not None and self._record_table.snapshot is not None:
            # Highlights expire between batches
            self.show_snapshot(self._record_table.snapshot._replace(
                highlighted_ids=self.client.get_highlighted_ids(),
                attention=self.client.signals.attention,
            ))

    def show_snapshot(self, snapshot: ViewSnapshot) -> None:
        if self._status_bar:
            self._status_bar.update_snapshot(snapshot)
        if self._record_table:
            self._record_table.update_snapshot(snapshot)
        if self._series_panel:
            self._series_panel.update_series(snapshot.series)

    async def on_input_submitted(self, event: Input.Submitted) -> None:
        query = event.value.strip()
        if not query:
            return
        try:
            await self.client.subscribe(query)
        except (NotConnected, ConnectionLost) as e:
            self.notify(str(e), title="Query not sent", severity="error")
            return
        event.input.value = ""
        self.notify(query, title="Subscribed")

    def action_toggle_alerts(self) -> None:
        signals = self.client.signals
        signals.alerts_enabled = not signals.alerts_enabled
        if self._status_bar:
            self._status_bar.alerts_enabled = signals.alerts_enabled
            self._status_bar.refresh()

    async def action_toggle_visibility(self) -> None:
        self.visible = not self.visible
        await self.client.set_visible(self.visible)

    def action_cycle_axis(self) -> None:
        """Move the x axis to the next discovered field."""
        choices = [f.value for f in self.client.get_fields() if f.value != ID_FIELD]
        if not choices:
            return
        current = self.client.projection.axis_field
        index = choices.index(current) + 1 if current in choices else 0
        self.client.set_axis(choices[index % len(choices)])

    def action_cycle_fields(self) -> None:
        """Plot every field, then each field alone, then every field again."""
        choices = self.client.plottable_fields()
        if not choices:
            return
        selected = self.client.projection.selected_fields
        if selected == choices:
            fields = choices[:1]
        elif len(selected) == 1 and selected[0] in choices:
            index = choices.index(selected[0]) + 1
            fields = choices if index == len(choices) else [choices[index]]
        else:
            fields = choices
        self.client.select_fields(fields)

    def _set_title(self, title: str) -> None:
        self.title = title


async def run_ui(client: StreamClient) -> None:
    """Run the TUI application."""
    app = StreamViewApp(client)
    await app.run_async()
