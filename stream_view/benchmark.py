#!/usr/bin/env python3
"""
Micro-benchmark for Stream View performance.

Tests:
1. Frame decode throughput
2. Table reconcile throughput
3. Series projection speed
4. Full frame pipeline (decode + apply + project)

Usage:
    python -m stream_view.benchmark
"""

from __future__ import annotations

import random
import time
from statistics import mean, stdev

import orjson

from .datafeed.decoder import decode
from .datafeed.table import LiveTable
from .engine.projection import project

BASE_TS = 1_700_000_000


def generate_mock_record(record_id: int, ts: int) -> dict:
    """Generate one mock quote row."""
    return {
        'id': str(record_id),
        'timestamp': ts,
        'price': round(random.uniform(90, 110), 2),
        'volume': random.randint(1, 1000),
        'symbol': random.choice(['AAA', 'BBB', 'CCC']),
    }


def generate_mock_frame(start_id: int, rows: int = 1000, changes: int = 50) -> str:
    """Generate a mock delta frame: inserts, updates to existing ids, a few removals."""
    added = [generate_mock_record(start_id + i, BASE_TS + start_id + i) for i in range(changes)]
    changed = [
        generate_mock_record(random.randint(0, max(rows - 1, 0)), BASE_TS + start_id)
        for _ in range(changes // 2)
    ]
    removed = [{'id': str(random.randint(0, max(rows - 1, 0)))} for _ in range(changes // 10)]
    return orjson.dumps({'params': {'data': {
        'added': added, 'changed': changed, 'removed': removed,
    }}}).decode()


def seeded_table(rows: int = 1000) -> LiveTable:
    table = LiveTable()
    table.apply(decode(generate_mock_frame(0, rows=rows, changes=rows)))
    return table


def benchmark_decode(iterations: int = 2000) -> None:
    """Benchmark frame decode throughput."""
    print("\n=== Decode Benchmark ===")

    frames = [generate_mock_frame(i * 50) for i in range(iterations)]

    start = time.perf_counter()
    for f in frames:
        decode(f)
    elapsed = time.perf_counter() - start

    rate = iterations / elapsed
    print(f"  Frames decoded: {iterations:,}")
    print(f"  Time: {elapsed*1000:.1f}ms")
    print(f"  Rate: {rate:,.0f} frames/sec")
    print(f"  Per frame: {elapsed/iterations*1_000_000:.1f}µs")


def benchmark_reconcile(iterations: int = 2000) -> None:
    """Benchmark table apply throughput."""
    print("\n=== Reconcile Benchmark ===")

    table = seeded_table()

    # Pre-decode batches
    batches = [decode(generate_mock_frame(1000 + i * 50)) for i in range(iterations)]

    start = time.perf_counter()
    for b in batches:
        table.apply(b)
    elapsed = time.perf_counter() - start

    rate = iterations / elapsed
    print(f"  Batches applied: {iterations:,}")
    print(f"  Final rows: {len(table):,}")
    print(f"  Time: {elapsed*1000:.1f}ms")
    print(f"  Rate: {rate:,.0f} batches/sec")
    print(f"  Per batch: {elapsed/iterations*1_000_000:.1f}µs")


def benchmark_projection(iterations: int = 200, rows: int = 5000) -> None:
    """Benchmark series projection over a large table."""
    print("\n=== Projection Benchmark ===")

    table = seeded_table(rows)
    records = table.records()

    # Warm up
    for _ in range(5):
        project(records, 'timestamp', ['price', 'volume'])

    times = []
    for _ in range(iterations):
        start = time.perf_counter()
        project(records, 'timestamp', ['price', 'volume'])
        times.append(time.perf_counter() - start)

    avg_time = mean(times) * 1000
    std_time = stdev(times) * 1000

    print(f"  Rows: {len(records):,}")
    print(f"  Iterations: {iterations}")
    print(f"  Avg time: {avg_time:.3f}ms")
    print(f"  Std dev: {std_time:.3f}ms")
    print(f"  Rate: {1000/avg_time:,.0f} calls/sec")


def benchmark_full_pipeline(iterations: int = 500) -> None:
    """Benchmark decode + apply + project (what every frame costs)."""
    print("\n=== Full Pipeline Benchmark ===")

    table = seeded_table()
    frames = [generate_mock_frame(1000 + i * 50) for i in range(iterations)]

    times = []
    for f in frames:
        start = time.perf_counter()
        table.apply(decode(f))
        project(table.records(), 'timestamp', ['price', 'volume'])
        times.append(time.perf_counter() - start)

    avg_time = mean(times) * 1000
    std_time = stdev(times) * 1000

    print(f"  Frames: {iterations}")
    print(f"  Avg time: {avg_time:.3f}ms")
    print(f"  Std dev: {std_time:.3f}ms")
    print(f"  Max frames/sec: {1000/avg_time:,.0f}")


def main() -> None:
    """Run all benchmarks."""
    print("=" * 60)
    print("Stream View Performance Benchmark")
    print("=" * 60)

    benchmark_decode()
    benchmark_reconcile()
    benchmark_projection()
    benchmark_full_pipeline()

    print("\n" + "=" * 60)
    print("Benchmark complete.")
    print("=" * 60)


if __name__ == "__main__":
    main()
