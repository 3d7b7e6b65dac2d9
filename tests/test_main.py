"""Tests for the CLI helpers that run beside the feed."""

from __future__ import annotations

import asyncio

import pytest

from conftest import FakeConnector, wait_until
from stream_view.datafeed.stream_client import StreamClient, wait_for_state
from stream_view.engine.signals import ConsoleNotifier, LogNotifier
from stream_view.errors import ConnectionExhausted
from stream_view.main import headless_notifier, subscribe_when_open
from stream_view.types import ConnectionState


class TestHeadlessNotifier:

    def test_console_on_terminal(self, monkeypatch):
        monkeypatch.setattr(ConsoleNotifier, "request_permission", lambda self: True)
        assert isinstance(headless_notifier(), ConsoleNotifier)

    def test_log_lines_otherwise(self, monkeypatch):
        monkeypatch.setattr(ConsoleNotifier, "request_permission", lambda self: False)
        assert isinstance(headless_notifier(), LogNotifier)


class TestSubscribeWhenOpen:

    @pytest.mark.asyncio
    async def test_resubscribes_after_reconnect(self, fast_config):
        connector = FakeConnector()
        client = StreamClient(fast_config, connect=connector)
        run_task = asyncio.create_task(client.run())
        sub_task = asyncio.create_task(subscribe_when_open(client, "SELECT 1"))

        await wait_until(lambda: bool(connector.sockets) and bool(connector.latest.sent))
        connector.latest.drop()
        await wait_until(lambda: len(connector.sockets) == 2 and bool(connector.latest.sent))

        assert [len(ws.sent) for ws in connector.sockets] == [1, 1]
        assert all('"query":"SELECT 1"' in ws.sent[0] for ws in connector.sockets)

        sub_task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await sub_task
        await client.stop()
        await run_task

    @pytest.mark.asyncio
    async def test_subscribes_when_already_open(self, fast_config):
        connector = FakeConnector()
        client = StreamClient(fast_config, connect=connector)
        run_task = asyncio.create_task(client.run())
        await wait_for_state(client, ConnectionState.OPEN, timeout=2.0)

        sub_task = asyncio.create_task(subscribe_when_open(client, "SELECT 1"))
        await wait_until(lambda: bool(connector.latest.sent))

        sub_task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await sub_task
        await client.stop()
        await run_task

    @pytest.mark.asyncio
    async def test_exhausted_feed_leaves_task_cancellable(self, fast_config):
        client = StreamClient(fast_config, connect=FakeConnector(always_fail=True))
        sub_task = asyncio.create_task(subscribe_when_open(client, "SELECT 1"))

        with pytest.raises(ConnectionExhausted):
            await asyncio.wait_for(client.run(), 2.0)

        assert not sub_task.done()
        sub_task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await sub_task
        assert client.session._state_handlers == [client._on_state_change]
