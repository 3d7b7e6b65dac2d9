"""
Windowed series projection.

HOT PATH: project() runs after every applied batch.

Two sorts on purpose:
1. Every record is ordered by the axis field and only the trailing window is
   kept, so the window always holds the newest data along the axis
2. The retained points are sorted again by their coerced x value, so the
   rendered series is monotone even when axis values coerce differently
   from how they compare (e.g. mixed strings and numbers)

Points whose x or y cannot be read as a number are dropped.
"""

from __future__ import annotations

import logging
import math
from typing import Iterable, Mapping, Sequence

import numpy as np

from ..config import WINDOW_SIZE
from ..datafeed.decoder import parse_timestamp_ms
from ..errors import CoercionFailure
from ..types import TIMESTAMP_FIELD, Point, Record, Scalar, Series

logger = logging.getLogger(__name__)


def to_number(value: Scalar | None) -> float:
    """
    Coerce a field value to float.

    Numbers pass through, numeric strings are parsed. Raises CoercionFailure
    for missing values, booleans, empty or non-numeric strings and NaN.
    """
    if isinstance(value, bool) or value is None:
        raise CoercionFailure(value)
    if isinstance(value, (int, float)):
        result = float(value)
    elif isinstance(value, str):
        try:
            result = float(value.strip())
        except ValueError:
            raise CoercionFailure(value) from None
    else:
        raise CoercionFailure(value)
    if math.isnan(result):
        raise CoercionFailure(value)
    return result


def _coerce(value: Scalar | None, is_timestamp: bool) -> float:
    if is_timestamp:
        return parse_timestamp_ms(value)
    try:
        return to_number(value)
    except CoercionFailure:
        return math.nan


def _axis_key(value: Scalar | None, is_timestamp: bool) -> tuple:
    """
    Sort key for window selection.

    Unreadable values sort first so they are the first to leave the window.
    Non-timestamp axes: numbers before strings, strings lexicographic.
    """
    if is_timestamp:
        ms = parse_timestamp_ms(value)
        return (0, 0.0) if math.isnan(ms) else (1, ms)
    if value is None or isinstance(value, bool):
        return (0, 0.0)
    if isinstance(value, (int, float)):
        return (0, 0.0) if math.isnan(value) else (1, float(value))
    return (2, str(value))


def select_window(
    records: Iterable[Record],
    axis_field: str,
    window_size: int = WINDOW_SIZE,
) -> list[Record]:
    """All records sorted by axis, trailing window_size kept (oldest dropped)."""
    if window_size <= 0:
        return []
    is_timestamp = axis_field == TIMESTAMP_FIELD
    ordered = sorted(records, key=lambda r: _axis_key(r.get(axis_field), is_timestamp))
    return ordered[-window_size:]


def project(
    records: Iterable[Record],
    axis_field: str,
    value_fields: Sequence[str],
    labels: Mapping[str, str] | None = None,
    window_size: int = WINDOW_SIZE,
) -> list[Series]:
    """
    Build one Series per value field from the current table.

    Each series has at most min(len(records), window_size) points with
    non-decreasing x. The axis field itself is never projected.
    """
    labels = labels or {}
    fields = [f for f in value_fields if f != axis_field]
    window = select_window(records, axis_field, window_size)
    is_timestamp = axis_field == TIMESTAMP_FIELD

    xs = np.fromiter(
        (_coerce(r.get(axis_field), is_timestamp) for r in window),
        dtype=np.float64,
        count=len(window),
    )

    result: list[Series] = []
    for field in fields:
        ys = np.fromiter(
            (_coerce(r.get(field), False) for r in window),
            dtype=np.float64,
            count=len(window),
        )
        valid = ~(np.isnan(xs) | np.isnan(ys))
        px, py = xs[valid], ys[valid]
        order = np.argsort(px, kind="stable")

        dropped = len(window) - len(px)
        if dropped:
            logger.debug("Series %r: dropped %d non-numeric point(s)", field, dropped)

        points = [Point(float(x), float(y)) for x, y in zip(px[order], py[order])]
        result.append(Series(name=labels.get(field, field), field=field, points=points))

    return result


class ProjectionBuilder:
    """
    Holds the view settings (window, axis, selected fields) for a renderer.

    Thread-safety: NOT thread-safe. Call from the client's loop.
    """

    __slots__ = ('window_size', 'axis_field', 'selected_fields')

    def __init__(
        self,
        window_size: int = WINDOW_SIZE,
        axis_field: str = TIMESTAMP_FIELD,
        selected_fields: Sequence[str] = (),
    ) -> None:
        self.window_size = window_size
        self.axis_field = axis_field
        self.selected_fields: list[str] = list(selected_fields)

    def set_axis(self, axis_field: str) -> None:
        """Switch x axis; the axis drops out of the selected value fields."""
        self.axis_field = axis_field
        self.selected_fields = [f for f in self.selected_fields if f != axis_field]

    def select(self, fields: Sequence[str]) -> None:
        self.selected_fields = [f for f in fields if f != self.axis_field]

    def build(
        self,
        records: Iterable[Record],
        labels: Mapping[str, str] | None = None,
        axis_field: str | None = None,
        value_fields: Sequence[str] | None = None,
    ) -> list[Series]:
        return project(
            records,
            axis_field or self.axis_field,
            self.selected_fields if value_fields is None else value_fields,
            labels=labels,
            window_size=self.window_size,
        )
