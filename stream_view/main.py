#!/usr/bin/env python3
"""
Stream View - live table + series view over a WebSocket delta stream.

Usage:
    python -m stream_view.main 127.0.0.1 --port 8080 --query "SELECT * FROM quotes"

    Or headless (log signals instead of drawing):
    stream-view 127.0.0.1 --headless --fields price,volume

Controls:
    q - Quit
    n - Toggle alerts
    v - Suspend/resume the connection
    a - Cycle the x axis
    f - Cycle the plotted fields (all, then one at a time)
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import queue
import sys

from .config import StreamConfig
from .errors import ConnectionExhausted, StreamViewError

logger = logging.getLogger("stream_view")


async def subscribe_when_open(client, query: str) -> None:
    """Send `query` each time the session (re)opens. Runs until cancelled."""
    from .types import ConnectionState

    opened = asyncio.Event()

    def on_state(_old: ConnectionState, new: ConnectionState) -> None:
        if new is ConnectionState.OPEN:
            opened.set()

    client.session.on_state_change(on_state)
    if client.session.state is ConnectionState.OPEN:
        opened.set()
    try:
        while True:
            await opened.wait()
            opened.clear()
            try:
                await client.subscribe(query)
            except StreamViewError as e:
                logger.warning("Subscription failed: %s", e)
    finally:
        client.session.remove_state_handler(on_state)


def headless_notifier():
    """Rich console alerts when stderr is a terminal, log lines otherwise."""
    from .engine.signals import ConsoleNotifier, LogNotifier

    notifier = ConsoleNotifier()
    if notifier.request_permission():
        return notifier
    return LogNotifier()


async def log_snapshots(client, interval: float) -> None:
    """Headless consumer: log the newest snapshot every `interval` seconds."""
    while True:
        await asyncio.sleep(interval)
        latest = None
        while True:
            try:
                latest = client.snapshot_queue.get_nowait()
            except queue.Empty:
                break
        if latest is None:
            continue
        summary = ", ".join(
            f"{s.name}={s.points[-1].y:g} ({len(s.points)} pts)" if s.points else f"{s.name}=-"
            for s in latest.series
        )
        logger.info(
            "[%s] rows=%d frames=%d dropped=%d %s",
            latest.state.value, len(latest.rows),
            latest.frames_received, latest.frames_dropped, summary,
        )


async def main(
    config: StreamConfig,
    query: str | None,
    axis: str,
    fields: list[str],
    headless: bool,
) -> None:
    """Main entry point - runs data feed and UI concurrently."""

    # Import here to avoid slow startup for --help
    from .datafeed.stream_client import StreamClient

    client = StreamClient(
        config,
        notifier=headless_notifier() if headless else None,
        axis_field=axis,
        selected_fields=fields,
    )

    async def run_feed() -> None:
        try:
            await client.run()
        except ConnectionExhausted as e:
            logger.error("Feed stopped: %s", e)

    feed_task = asyncio.create_task(run_feed())
    helpers = []
    if query:
        helpers.append(asyncio.create_task(subscribe_when_open(client, query)))

    try:
        if headless:
            helpers.append(asyncio.create_task(log_snapshots(client, 1.0)))
            await feed_task
        else:
            from .ui.table_view import run_ui
            await run_ui(client)
    finally:
        for task in helpers:
            task.cancel()
        await client.stop()
        feed_task.cancel()
        try:
            await feed_task
        except asyncio.CancelledError:
            pass


def setup_logging(level: str, log_file: str | None, headless: bool) -> None:
    """Logs go to stderr in headless mode; the TUI only logs to a file."""
    if log_file:
        handler: logging.Handler = logging.FileHandler(log_file)
    elif headless:
        handler = logging.StreamHandler()
    else:
        handler = logging.NullHandler()
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
        handlers=[handler],
    )


def cli() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Stream View - live table view of a WebSocket delta stream",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python -m stream_view.main 127.0.0.1 --port 8080
    python -m stream_view.main 10.0.0.5 --query "SELECT * FROM quotes" --fields price
    python -m stream_view.main 10.0.0.5 --secure --headless --log-level debug
        """
    )

    parser.add_argument(
        "host",
        nargs="?",
        default=None,
        help="Data source host (default: $STREAM_VIEW_HOST or 127.0.0.1)"
    )

    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Data source port (default: $STREAM_VIEW_PORT or 8080)"
    )

    parser.add_argument(
        "--secure",
        action="store_true",
        default=None,
        help="Use wss:// instead of ws://"
    )

    parser.add_argument(
        "--query",
        default=None,
        help="Subscription query to send once connected"
    )

    parser.add_argument(
        "--axis",
        default="timestamp",
        help="Field used as the x axis (default: timestamp)"
    )

    parser.add_argument(
        "--fields",
        default="",
        help="Comma-separated value fields to plot (default: all discovered)"
    )

    parser.add_argument(
        "--window",
        type=int,
        default=None,
        help="Max points per series (default: 500)"
    )

    parser.add_argument(
        "--snapshot-interval",
        type=int,
        default=None,
        help="Min milliseconds between UI snapshots (default: 100)"
    )

    parser.add_argument(
        "--headless",
        action="store_true",
        help="No TUI; log signals and series summaries"
    )

    parser.add_argument(
        "--log-level",
        default="info",
        help="Logging level (default: info)"
    )

    parser.add_argument(
        "--log-file",
        default=None,
        help="Write logs to this file (TUI mode logs nowhere otherwise)"
    )

    args = parser.parse_args()
    setup_logging(args.log_level, args.log_file, args.headless)

    try:
        config = StreamConfig.from_env().with_overrides(
            host=args.host,
            port=args.port,
            secure=args.secure,
            window_size=args.window,
            snapshot_interval_ms=args.snapshot_interval,
        )
    except StreamViewError as e:
        parser.error(str(e))

    fields = [f.strip() for f in args.fields.split(",") if f.strip()]

    # Run
    try:
        asyncio.run(main(config, args.query, args.axis, fields, args.headless))
    except KeyboardInterrupt:
        print("\nShutdown requested.")
        sys.exit(0)


if __name__ == "__main__":
    cli()
