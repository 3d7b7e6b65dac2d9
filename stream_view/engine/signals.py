"""
Update signals: row highlight, attention flag and alerts.

A batch that inserts or updates rows fires one Signal. For the signal's
lifetime (2 s by default) the touched ids are highlighted, the attention flag
is set and the title blinks; exactly one notification goes out per batch.
A newer batch replaces the highlight set and pushes the expiry out.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime
from typing import Callable, Protocol

from rich.console import Console

from ..config import SIGNAL_DURATION_MS
from ..types import ChangeReport, Signal

logger = logging.getLogger(__name__)

ALERT_TITLE = "🔔 New Message!"
BLINK_INTERVAL_SEC = 1.0


class Notifier(Protocol):
    """Alert sink. Implementations must degrade to no-ops when unsupported."""

    def notify(self, summary: str, description: str = "") -> None: ...

    def request_permission(self) -> bool: ...


class NullNotifier:
    """Host without any notification support."""

    def notify(self, summary: str, description: str = "") -> None:
        pass

    def request_permission(self) -> bool:
        return False


class LogNotifier:
    """Alerts as log lines (headless mode)."""

    def __init__(self, level: int = logging.INFO) -> None:
        self.level = level

    def notify(self, summary: str, description: str = "") -> None:
        logger.log(self.level, "Data update: %s. %s", summary, description)

    def request_permission(self) -> bool:
        return True


class ConsoleNotifier:
    """Alerts printed to a rich console, with the terminal bell."""

    def __init__(self, console: Console | None = None, bell: bool = True) -> None:
        self.console = console or Console(stderr=True)
        self.bell = bell

    def notify(self, summary: str, description: str = "") -> None:
        self.console.print(f"[bold yellow]{ALERT_TITLE}[/] {summary}  [dim]{description}[/]")
        if self.bell:
            self.console.bell()

    def request_permission(self) -> bool:
        return self.console.is_terminal


class NotificationController:
    """
    Title blink for one session.

    Toggles the title between base_title and ALERT_TITLE every interval until
    stop() or until the auto-stop deadline passed to start(). Owns its timer
    handles; a generation counter makes callbacks from a superseded start()
    no-ops.
    """

    def __init__(
        self,
        on_title: Callable[[str], None] | None = None,
        base_title: str = "Stream View",
        interval_sec: float = BLINK_INTERVAL_SEC,
    ) -> None:
        self.on_title = on_title
        self.base_title = base_title
        self.interval_sec = interval_sec
        self.title = base_title
        self._generation = 0
        self._blink_handle: asyncio.TimerHandle | None = None
        self._stop_handle: asyncio.TimerHandle | None = None

    @property
    def running(self) -> bool:
        return self._blink_handle is not None

    def start(self, duration_sec: float | None = None) -> None:
        """Start (or extend) blinking. Without a running loop the title is set once."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._set_title(ALERT_TITLE)
            return

        if self._stop_handle is not None:
            self._stop_handle.cancel()
            self._stop_handle = None
        if duration_sec is not None:
            self._stop_handle = loop.call_later(duration_sec, self._auto_stop, self._generation)

        if self._blink_handle is None:
            self._set_title(ALERT_TITLE)
            self._blink_handle = loop.call_later(self.interval_sec, self._blink, self._generation)

    def stop(self) -> None:
        """Cancel all pending timers and restore the base title."""
        self._generation += 1
        for handle in (self._blink_handle, self._stop_handle):
            if handle is not None:
                handle.cancel()
        self._blink_handle = None
        self._stop_handle = None
        self._set_title(self.base_title)

    def _blink(self, generation: int) -> None:
        if generation != self._generation:
            return
        self._set_title(self.base_title if self.title == ALERT_TITLE else ALERT_TITLE)
        loop = asyncio.get_running_loop()
        self._blink_handle = loop.call_later(self.interval_sec, self._blink, generation)

    def _auto_stop(self, generation: int) -> None:
        if generation == self._generation:
            self.stop()

    def _set_title(self, title: str) -> None:
        self.title = title
        if self.on_title is not None:
            try:
                self.on_title(title)
            except Exception:
                logger.exception("Title callback failed")


class SignalDispatcher:
    """
    Decides per batch whether to raise a signal.

    Highlight and attention state expire lazily against `clock`, so readers
    on any schedule see them clear at the deadline. The notifier is asked for
    permission once; without it only the highlight and title blink happen.
    """

    def __init__(
        self,
        notifier: Notifier | None = None,
        controller: NotificationController | None = None,
        duration_ms: int = SIGNAL_DURATION_MS,
        clock: Callable[[], float] = time.monotonic,
        alerts_enabled: bool = True,
    ) -> None:
        self._notifier: Notifier = notifier or NullNotifier()
        self._permitted: bool | None = None
        self.controller = controller
        self.duration_sec = duration_ms / 1000.0
        self.clock = clock
        self.alerts_enabled = alerts_enabled

        self._highlighted: frozenset[str] = frozenset()
        self._expires_at: float = 0.0
        self.last_signal: Signal | None = None
        self.signal_count: int = 0

    @property
    def notifier(self) -> Notifier:
        return self._notifier

    @notifier.setter
    def notifier(self, notifier: Notifier) -> None:
        self._notifier = notifier
        self._permitted = None

    def permitted(self) -> bool:
        """Ask the notifier for permission once, on first use."""
        if self._permitted is None:
            try:
                self._permitted = bool(self._notifier.request_permission())
            except Exception:
                logger.exception("Notification permission request failed")
                self._permitted = False
            if not self._permitted:
                logger.info("Notifications not permitted; alerts limited to highlight and title")
        return self._permitted

    def dispatch(self, report: ChangeReport) -> Signal | None:
        """Fire a signal iff the batch inserted or updated at least one row."""
        touched = report.touched_ids
        if not touched:
            return None

        now = self.clock()
        signal = Signal(
            inserted=len(report.inserted_ids),
            updated=len(report.updated_ids),
            ids=touched,
            timestamp_ms=int(time.time() * 1000),
            expires_at=now + self.duration_sec,
        )
        self._highlighted = touched
        self._expires_at = signal.expires_at
        self.last_signal = signal
        self.signal_count += 1

        if self.alerts_enabled:
            description = f"New data received at {datetime.now().strftime('%H:%M:%S')}"
            if self.permitted():
                try:
                    self._notifier.notify(signal.summary, description)
                except Exception:
                    logger.exception("Notifier failed for %r", signal.summary)
            if self.controller is not None:
                self.controller.start(self.duration_sec)

        return signal

    @property
    def attention(self) -> bool:
        return self.clock() < self._expires_at

    def highlighted_ids(self) -> frozenset[str]:
        if self.attention:
            return self._highlighted
        return frozenset()

    def reset(self) -> None:
        """Drop any active highlight and stop the blink."""
        self._highlighted = frozenset()
        self._expires_at = 0.0
        if self.controller is not None:
            self.controller.stop()
