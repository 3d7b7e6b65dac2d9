"""
Delta frame decoder.

Turns one raw WebSocket text frame into a DeltaBatch:

    {"params": {"data": {"added": [...], "changed": [...], "removed": [...]}}}

Timestamps arrive as Unix seconds, Unix milliseconds or strings. Numbers below
1e12 are taken as seconds, anything else as milliseconds; strings are kept
as sent. The canonical form is ISO-8601 UTC with millisecond precision.
"""

from __future__ import annotations

import logging
import math
import time
import uuid
from datetime import datetime, timedelta, timezone

import orjson

from ..errors import MalformedFrame
from ..types import ID_FIELD, TIMESTAMP_FIELD, DeltaBatch, Record, Scalar

logger = logging.getLogger(__name__)

# Numeric timestamps below this are Unix seconds, above are Unix millis
SECONDS_THRESHOLD = 1e12

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_SECTIONS = ("added", "changed", "removed")


def now_ms() -> int:
    return int(time.time() * 1000)


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def format_iso_ms(ms: int) -> str:
    """Epoch milliseconds -> '2023-11-14T22:13:20.000Z'."""
    dt = _EPOCH + timedelta(milliseconds=ms)
    return dt.strftime("%Y-%m-%dT%H:%M:%S") + f".{dt.microsecond // 1000:03d}Z"


def normalize_timestamp(value: object, received_ms: int) -> str:
    """Canonicalize a raw timestamp value (see module docstring)."""
    if value is None or value == "":
        return format_iso_ms(received_ms)
    if _is_number(value):
        if math.isnan(value) or math.isinf(value):
            return format_iso_ms(received_ms)
        ms = value * 1000 if value < SECONDS_THRESHOLD else value
        try:
            return format_iso_ms(int(round(ms)))
        except OverflowError:
            logger.debug("Timestamp %r out of range, using receipt time", value)
            return format_iso_ms(received_ms)
    if isinstance(value, str):
        return value
    return format_iso_ms(received_ms)


def parse_timestamp_ms(value: object) -> float:
    """
    Timestamp value -> epoch milliseconds, NaN if it cannot be read.

    Numbers follow the same seconds/millis rule as normalize_timestamp.
    ISO strings without an offset are read as UTC.
    """
    if _is_number(value):
        return float(value * 1000 if value < SECONDS_THRESHOLD else value)
    if not isinstance(value, str) or not value.strip():
        return math.nan
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return math.nan
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return (dt - _EPOCH) / timedelta(milliseconds=1)


def _decode_record(item: object, section: str, received_ms: int) -> Record:
    if not isinstance(item, dict):
        raise MalformedFrame(f"{section} entry is not an object: {type(item).__name__}")

    raw_id = item.get(ID_FIELD)
    if raw_id is None or raw_id == "":
        record_id = str(uuid.uuid4())
    else:
        record_id = str(raw_id)

    fields: dict[str, Scalar] = {}
    for key, value in item.items():
        if key in (ID_FIELD, TIMESTAMP_FIELD):
            continue
        if isinstance(value, str) or _is_number(value):
            fields[str(key)] = value
        else:
            logger.debug("Dropping non-scalar field %r on record %s", key, record_id)

    return Record(
        id=record_id,
        timestamp=normalize_timestamp(item.get(TIMESTAMP_FIELD), received_ms),
        fields=fields,
    )


def decode(raw: str | bytes, *, received_ms: int | None = None) -> DeltaBatch:
    """
    Decode one inbound frame.

    Raises MalformedFrame for anything that is not a JSON object or whose
    delta sections are not lists of objects. Objects without params.data
    (acks, heartbeats) decode to an empty batch.
    """
    if received_ms is None:
        received_ms = now_ms()

    try:
        message = orjson.loads(raw)
    except orjson.JSONDecodeError as e:
        raise MalformedFrame(f"invalid JSON: {e}", raw=raw) from e

    if not isinstance(message, dict):
        raise MalformedFrame("frame is not a JSON object", raw=raw)

    params = message.get("params")
    data = params.get("data") if isinstance(params, dict) else None
    if not isinstance(data, dict):
        return DeltaBatch((), (), (), received_ms)

    sections: dict[str, tuple[Record, ...]] = {}
    for section in _SECTIONS:
        items = data.get(section)
        if items is None:
            sections[section] = ()
            continue
        if not isinstance(items, list):
            raise MalformedFrame(f"{section} is not a list", raw=raw)
        try:
            sections[section] = tuple(_decode_record(i, section, received_ms) for i in items)
        except MalformedFrame as e:
            e.raw = raw
            raise

    return DeltaBatch(
        added=sections["added"],
        changed=sections["changed"],
        removed=sections["removed"],
        received_at_ms=received_ms,
    )
