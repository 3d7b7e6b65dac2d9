"""
Authoritative in-memory table for the live view.

HOT PATH: apply() runs once per inbound frame.

Strategy:
1. dict[id, Record] for O(1) upsert/delete by identity
2. Copy-on-write per batch: the new row map is built off to the side and
   swapped in with a single assignment, so readers never see half a batch
3. Row list for rendering is cached and rebuilt lazily after a batch
4. Field registry is append-only and discovered once from the first rows
"""

from __future__ import annotations

import logging
import time
from types import MappingProxyType
from typing import Mapping

from ..types import (
    TIMESTAMP_FIELD,
    ChangeReport,
    DeltaBatch,
    FieldDescriptor,
    Record,
)

logger = logging.getLogger(__name__)


def make_label(name: str) -> str:
    """'price' -> 'Price'."""
    return name[:1].upper() + name[1:]


class FieldRegistry:
    """Ordered, append-only list of discovered fields, seeded with timestamp."""

    __slots__ = ('_fields', '_names')

    def __init__(self) -> None:
        self._fields: list[FieldDescriptor] = [
            FieldDescriptor(TIMESTAMP_FIELD, make_label(TIMESTAMP_FIELD))
        ]
        self._names: set[str] = {TIMESTAMP_FIELD}

    @property
    def is_seed_only(self) -> bool:
        return len(self._fields) == 1

    def extend(self, names) -> list[FieldDescriptor]:
        """Append unseen names in order. Returns the descriptors added."""
        added: list[FieldDescriptor] = []
        for name in names:
            if name in self._names:
                continue
            descriptor = FieldDescriptor(name, make_label(name))
            self._fields.append(descriptor)
            self._names.add(name)
            added.append(descriptor)
        return added

    def label_for(self, name: str) -> str:
        for descriptor in self._fields:
            if descriptor.value == name:
                return descriptor.label
        return name

    def labels(self) -> dict[str, str]:
        return {d.value: d.label for d in self._fields}

    def __contains__(self, name: object) -> bool:
        return name in self._names

    def __iter__(self):
        return iter(list(self._fields))

    def __len__(self) -> int:
        return len(self._fields)


class LiveTable:
    """
    Table reconciler: applies delta batches and reports what changed.

    Thread-safety: one writer (the stream client's receive loop). Readers on
    other threads see either the pre-batch or the post-batch row map.
    """

    __slots__ = (
        'registry', 'version',
        '_rows', '_records_cache', '_cache_version',
    )

    def __init__(self) -> None:
        self.registry = FieldRegistry()
        self.version: int = 0

        self._rows: dict[str, Record] = {}

        # Cached row list for rendering - rebuilt lazily
        self._records_cache: list[Record] = []
        self._cache_version: int = 0

    def apply(self, batch: DeltaBatch) -> ChangeReport:
        """
        Apply one delta batch atomically.

        Order: upsert added, upsert changed, delete removed, discover fields.
        An id both upserted and removed in the same batch ends up absent.
        """
        before = self._rows
        rows = dict(before)

        upserted: list[Record] = []
        for record in batch.added:
            rows[record.id] = record
            upserted.append(record)
        for record in batch.changed:
            rows[record.id] = record
            upserted.append(record)

        removed_ids: set[str] = set()
        for record in batch.removed:
            if rows.pop(record.id, None) is not None:
                removed_ids.add(record.id)

        if self.registry.is_seed_only and upserted:
            discovered = self.registry.extend(upserted[0].field_names())
            if discovered:
                logger.info("Discovered fields: %s", ", ".join(d.value for d in discovered))

        upserted_ids = {r.id for r in upserted} - removed_ids
        inserted_ids = frozenset(i for i in upserted_ids if i not in before)
        updated_ids = frozenset(upserted_ids - inserted_ids)

        # Single reference swap publishes the batch
        self._rows = rows
        self.version += 1

        report = ChangeReport(
            inserted_ids=inserted_ids,
            updated_ids=updated_ids,
            removed_ids=frozenset(removed_ids),
            created_at=time.monotonic(),
        )
        logger.debug(
            "Applied batch v%d: +%d ~%d -%d (rows=%d)",
            self.version, len(inserted_ids), len(updated_ids), len(removed_ids), len(rows),
        )
        return report

    def rows(self) -> Mapping[str, Record]:
        """Read-only view of the current row map."""
        return MappingProxyType(self._rows)

    def records(self) -> list[Record]:
        """Rows in deterministic (first insertion) order."""
        if self._cache_version != self.version:
            self._records_cache = list(self._rows.values())
            self._cache_version = self.version
        return self._records_cache

    def get(self, record_id: str) -> Record | None:
        return self._rows.get(record_id)

    def fields(self) -> list[FieldDescriptor]:
        return list(self.registry)

    def clear(self) -> None:
        """Drop all rows. The field registry is append-only and survives."""
        self._rows = {}
        self.version += 1

    def __len__(self) -> int:
        return len(self._rows)

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._rows
