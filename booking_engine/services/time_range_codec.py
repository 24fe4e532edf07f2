from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from booking_engine.services.slot_models import (
    Slot,
    SlotStatus,
    SlotType,
    SubjectType,
    TimeRange,
    utc_now,
)

logger = logging.getLogger(__name__)

_LOWER_BOUND = "["
_UPPER_BOUND = ")"


def encode_time_range(time_range: TimeRange) -> str:
    """Render the store-native half-open literal, e.g. ``[2025-12-01T10:00:00+00:00,2025-12-01T11:00:00+00:00)``."""
    start = _as_utc(time_range.start).isoformat()
    end = _as_utc(time_range.end).isoformat()
    return f"{_LOWER_BOUND}{start},{end}{_UPPER_BOUND}"


def decode_time_range(raw: Any) -> TimeRange | None:
    """Parse a persisted range. Returns None when the value has an unexpected shape."""
    if isinstance(raw, TimeRange):
        return raw
    if isinstance(raw, Mapping):
        start = _parse_bound(raw.get("start"))
        end = _parse_bound(raw.get("end"))
    elif isinstance(raw, str):
        start, end = _split_literal(raw)
    else:
        return None

    if start is None or end is None or start >= end:
        return None
    return TimeRange(start=start, end=end)


def decode_time_range_with_fallback(
    raw: Any,
    *,
    duration_minutes: int,
    now: datetime | None = None,
) -> tuple[TimeRange, bool]:
    """Decode ``raw``; on failure rebuild ``[now, now + duration)`` and flag it as degraded."""
    decoded = decode_time_range(raw)
    if decoded is not None:
        return decoded, False

    fallback_start = now or utc_now()
    logger.warning(
        "Undecodable slot time_range, using degraded fallback raw=%r duration_minutes=%s",
        raw,
        duration_minutes,
    )
    return TimeRange.from_duration(fallback_start, duration_minutes), True


def slot_from_record(record: Mapping[str, Any], *, now: datetime | None = None) -> Slot:
    duration_minutes = int(record["duration_minutes"])
    time_range, degraded = decode_time_range_with_fallback(
        record.get("time_range"),
        duration_minutes=duration_minutes,
        now=now,
    )
    metadata = record.get("metadata")
    return Slot(
        id=str(record["_id"]),
        subject_id=str(record["subject_id"]),
        subject_type=SubjectType(record["subject_type"]),
        time_range=time_range,
        duration_minutes=duration_minutes,
        slot_type=SlotType(record["slot_type"]),
        status=SlotStatus(record["status"]),
        created_at=_as_utc(record["created_at"]),
        updated_at=_as_utc(record["updated_at"]),
        session_id=_optional_text(record.get("session_id")),
        title=_optional_text(record.get("title")),
        reason=_optional_text(record.get("reason")),
        metadata=dict(metadata) if isinstance(metadata, Mapping) else {},
        time_range_degraded=degraded,
    )


def record_from_slot(slot: Slot) -> dict[str, Any]:
    return {
        "_id": slot.id,
        "subject_id": slot.subject_id,
        "subject_type": slot.subject_type.value,
        "time_range": encode_time_range(slot.time_range),
        "start_time": slot.time_range.start,
        "end_time": slot.time_range.end,
        "duration_minutes": slot.duration_minutes,
        "slot_type": slot.slot_type.value,
        "status": slot.status.value,
        "session_id": slot.session_id,
        "title": slot.title,
        "reason": slot.reason,
        "metadata": dict(slot.metadata),
        "created_at": slot.created_at,
        "updated_at": slot.updated_at,
    }


def _split_literal(raw: str) -> tuple[datetime | None, datetime | None]:
    text = raw.strip()
    if not text.startswith(_LOWER_BOUND) or not text.endswith(_UPPER_BOUND):
        return None, None
    parts = text[1:-1].split(",")
    if len(parts) != 2:
        return None, None
    return _parse_bound(parts[0]), _parse_bound(parts[1])


def _parse_bound(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return _as_utc(value)
    if not isinstance(value, str):
        return None
    text = value.strip().strip('"')
    if not text:
        return None
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return _as_utc(parsed)


def _as_utc(value: datetime) -> datetime:
    # pymongo hands back naive datetimes that are already UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None
