"""
Data types for Stream View.

Notes:
- NamedTuple for immutable value objects handed between components
- Record keeps a fixed header (id, timestamp) plus an open field mapping;
  the FieldRegistry in datafeed/table.py is the schema for the open part
"""

from __future__ import annotations

import enum
from typing import Iterator, NamedTuple, Union

Scalar = Union[str, int, float]

TIMESTAMP_FIELD = "timestamp"
ID_FIELD = "id"


class ConnectionState(enum.Enum):
    """Lifecycle of a TransportSession."""
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"
    RECONNECTING = "reconnecting"


class Record(NamedTuple):
    """One row of the live table."""
    id: str
    timestamp: str                 # Canonical ISO-8601 (see decoder.format_iso_ms)
    fields: dict[str, Scalar]      # Everything except id/timestamp, arrival order

    def get(self, name: str, default: Scalar | None = None) -> Scalar | None:
        if name == ID_FIELD:
            return self.id
        if name == TIMESTAMP_FIELD:
            return self.timestamp
        return self.fields.get(name, default)

    def field_names(self) -> Iterator[str]:
        yield ID_FIELD
        yield TIMESTAMP_FIELD
        yield from self.fields

    def as_dict(self) -> dict[str, Scalar]:
        return {ID_FIELD: self.id, TIMESTAMP_FIELD: self.timestamp, **self.fields}


class DeltaBatch(NamedTuple):
    """
    One decoded push from the transport.

    Produced once by the decoder, consumed once by the reconciler.
    """
    added: tuple[Record, ...]
    changed: tuple[Record, ...]
    removed: tuple[Record, ...]
    received_at_ms: int

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.changed or self.removed)


class ChangeReport(NamedTuple):
    """Which ids a single applied batch inserted, updated or removed."""
    inserted_ids: frozenset[str]
    updated_ids: frozenset[str]
    removed_ids: frozenset[str]
    created_at: float              # Monotonic seconds

    @property
    def touched_ids(self) -> frozenset[str]:
        """Ids that should be highlighted (inserted or updated)."""
        return self.inserted_ids | self.updated_ids

    @property
    def is_empty(self) -> bool:
        return not (self.inserted_ids or self.updated_ids or self.removed_ids)


class FieldDescriptor(NamedTuple):
    """Discovered column: raw field name + display label."""
    value: str
    label: str


class Point(NamedTuple):
    x: float
    y: float


class Series(NamedTuple):
    """Plot-ready series for one value field, sorted by x ascending."""
    name: str                      # Display label
    field: str
    points: list[Point]


class Signal(NamedTuple):
    """User-facing update signal for one batch."""
    inserted: int
    updated: int
    ids: frozenset[str]
    timestamp_ms: int              # Wall clock, for display
    expires_at: float              # Monotonic seconds

    @property
    def summary(self) -> str:
        return f"{self.inserted} row(s) added, {self.updated} row(s) updated"


class ViewSnapshot(NamedTuple):
    """
    Complete view state for one rendered frame.

    Pushed to the client's snapshot queue after applied batches (throttled)
    and on every connection state or view change.
    """
    endpoint: str
    state: ConnectionState
    fields: list[FieldDescriptor]
    rows: list[Record]             # Deterministic table order
    series: list[Series]
    highlighted_ids: frozenset[str]
    attention: bool
    last_signal: Signal | None
    timestamp_ms: int
    updates_per_sec: float
    axis_label: str = ""
    frames_received: int = 0
    frames_dropped: int = 0
