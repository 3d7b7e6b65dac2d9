"""Unit tests for the signal dispatcher, notifiers and title blink."""

from __future__ import annotations

import asyncio
import io

import pytest
from rich.console import Console

from stream_view.engine.signals import (
    ALERT_TITLE,
    ConsoleNotifier,
    NotificationController,
    NullNotifier,
    SignalDispatcher,
)
from stream_view.types import ChangeReport


def report(inserted=(), updated=(), removed=()) -> ChangeReport:
    return ChangeReport(frozenset(inserted), frozenset(updated), frozenset(removed), 0.0)


class RecordingNotifier:

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []

    def notify(self, summary: str, description: str = "") -> None:
        self.calls.append((summary, description))

    def request_permission(self) -> bool:
        return True


class BrokenNotifier(RecordingNotifier):

    def notify(self, summary: str, description: str = "") -> None:
        raise RuntimeError("no audio device")


class DeniedNotifier(RecordingNotifier):

    def __init__(self) -> None:
        super().__init__()
        self.asked = 0

    def request_permission(self) -> bool:
        self.asked += 1
        return False


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


class TestDispatch:

    def test_no_signal_for_removal_only(self, clock):
        dispatcher = SignalDispatcher(notifier=RecordingNotifier(), clock=clock)
        assert dispatcher.dispatch(report(removed={"1"})) is None
        assert dispatcher.dispatch(report()) is None
        assert dispatcher.notifier.calls == []
        assert not dispatcher.attention

    def test_signal_counts_and_single_notification(self, clock):
        notifier = RecordingNotifier()
        dispatcher = SignalDispatcher(notifier=notifier, clock=clock)

        signal = dispatcher.dispatch(report(inserted={"1", "2"}, updated={"3"}))

        assert (signal.inserted, signal.updated) == (2, 1)
        assert signal.ids == {"1", "2", "3"}
        assert len(notifier.calls) == 1
        summary, description = notifier.calls[0]
        assert summary == "2 row(s) added, 1 row(s) updated"
        assert description.startswith("New data received at ")

    def test_highlight_expires(self, clock):
        dispatcher = SignalDispatcher(clock=clock, duration_ms=2000)
        dispatcher.dispatch(report(inserted={"1"}))

        assert dispatcher.attention
        assert dispatcher.highlighted_ids() == {"1"}
        clock.advance(1.99)
        assert dispatcher.highlighted_ids() == {"1"}
        clock.advance(0.02)
        assert not dispatcher.attention
        assert dispatcher.highlighted_ids() == frozenset()

    def test_newer_batch_replaces_and_extends(self, clock):
        notifier = RecordingNotifier()
        dispatcher = SignalDispatcher(notifier=notifier, clock=clock, duration_ms=2000)
        dispatcher.dispatch(report(inserted={"1"}))
        clock.advance(1.5)
        dispatcher.dispatch(report(updated={"2"}))
        clock.advance(1.0)

        assert dispatcher.highlighted_ids() == {"2"}
        assert dispatcher.last_signal.updated == 1
        assert len(notifier.calls) == 2

    def test_notifier_failure_is_contained(self, clock):
        dispatcher = SignalDispatcher(notifier=BrokenNotifier(), clock=clock)
        signal = dispatcher.dispatch(report(inserted={"1"}))
        assert signal is not None
        assert dispatcher.highlighted_ids() == {"1"}

    def test_muted_alerts_still_highlight(self, clock):
        notifier = RecordingNotifier()
        dispatcher = SignalDispatcher(notifier=notifier, clock=clock, alerts_enabled=False)
        dispatcher.dispatch(report(updated={"1"}))
        assert notifier.calls == []
        assert dispatcher.highlighted_ids() == {"1"}

    def test_denied_permission_skips_notify(self, clock):
        notifier = DeniedNotifier()
        controller = NotificationController(base_title="Base")
        dispatcher = SignalDispatcher(notifier=notifier, controller=controller, clock=clock)

        dispatcher.dispatch(report(inserted={"1"}))
        dispatcher.dispatch(report(updated={"1"}))

        assert notifier.calls == []
        assert notifier.asked == 1
        assert dispatcher.highlighted_ids() == {"1"}
        assert controller.title == ALERT_TITLE

    def test_permission_not_asked_before_first_signal(self, clock):
        notifier = DeniedNotifier()
        dispatcher = SignalDispatcher(notifier=notifier, clock=clock)
        dispatcher.dispatch(report(removed={"1"}))
        assert notifier.asked == 0

    def test_new_notifier_is_asked_again(self, clock):
        dispatcher = SignalDispatcher(notifier=DeniedNotifier(), clock=clock)
        dispatcher.dispatch(report(inserted={"1"}))

        granted = RecordingNotifier()
        dispatcher.notifier = granted
        dispatcher.dispatch(report(inserted={"2"}))

        assert len(granted.calls) == 1

    def test_reset(self, clock):
        dispatcher = SignalDispatcher(clock=clock)
        dispatcher.dispatch(report(inserted={"1"}))
        dispatcher.reset()
        assert dispatcher.highlighted_ids() == frozenset()


# ---------------------------------------------------------------------------
# Notifiers
# ---------------------------------------------------------------------------


class TestNotifiers:

    def test_null_notifier(self):
        notifier = NullNotifier()
        notifier.notify("1 row(s) added, 0 row(s) updated")
        assert notifier.request_permission() is False

    def test_console_notifier(self):
        buffer = io.StringIO()
        console = Console(file=buffer, force_terminal=False, width=120)
        notifier = ConsoleNotifier(console)

        notifier.notify("1 row(s) added, 0 row(s) updated", "New data received at 12:00:00")

        output = buffer.getvalue()
        assert "1 row(s) added" in output
        assert "12:00:00" in output
        assert notifier.request_permission() is False


# ---------------------------------------------------------------------------
# Title blink
# ---------------------------------------------------------------------------


class TestNotificationController:

    def test_without_loop_sets_title_once(self):
        titles: list[str] = []
        controller = NotificationController(on_title=titles.append)
        controller.start(2.0)
        assert titles == [ALERT_TITLE]
        assert not controller.running

    @pytest.mark.asyncio
    async def test_blinks_then_stops(self):
        titles: list[str] = []
        controller = NotificationController(on_title=titles.append, base_title="Base", interval_sec=0.01)

        controller.start()
        await asyncio.sleep(0.035)
        assert controller.running
        assert "Base" in titles and ALERT_TITLE in titles

        controller.stop()
        assert not controller.running
        assert controller.title == "Base"
        count = len(titles)
        await asyncio.sleep(0.03)
        assert len(titles) == count

    @pytest.mark.asyncio
    async def test_auto_stop_after_duration(self):
        controller = NotificationController(base_title="Base", interval_sec=0.01)
        controller.start(0.02)
        await asyncio.sleep(0.06)
        assert not controller.running
        assert controller.title == "Base"

    @pytest.mark.asyncio
    async def test_restart_extends_deadline(self):
        controller = NotificationController(base_title="Base", interval_sec=0.5)
        controller.start(0.03)
        await asyncio.sleep(0.02)
        controller.start(0.05)
        await asyncio.sleep(0.02)
        assert controller.running
        await asyncio.sleep(0.05)
        assert not controller.running

    @pytest.mark.asyncio
    async def test_dispatcher_drives_controller(self, clock):
        controller = NotificationController(base_title="Base", interval_sec=0.5)
        dispatcher = SignalDispatcher(controller=controller, clock=clock, duration_ms=20)
        dispatcher.dispatch(report(inserted={"1"}))
        assert controller.title == ALERT_TITLE
        await asyncio.sleep(0.05)
        assert controller.title == "Base"
