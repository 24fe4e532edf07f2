from datetime import UTC, datetime, timedelta

from booking_engine.services.slot_models import SlotStatus, SlotType, SubjectType, TimeRange
from booking_engine.services.time_range_codec import (
    decode_time_range,
    decode_time_range_with_fallback,
    encode_time_range,
    record_from_slot,
    slot_from_record,
)

_START = datetime(2025, 12, 1, 10, 0, tzinfo=UTC)
_END = datetime(2025, 12, 1, 11, 0, tzinfo=UTC)


def _record(**overrides: object) -> dict[str, object]:
    record: dict[str, object] = {
        "_id": "slot-1",
        "subject_id": "mentor-1",
        "subject_type": "mentor",
        "time_range": "[2025-12-01T10:00:00+00:00,2025-12-01T11:00:00+00:00)",
        "duration_minutes": 60,
        "slot_type": "regular_mentoring",
        "status": "booked",
        "session_id": None,
        "title": "  Career chat ",
        "reason": "",
        "metadata": {"meeting_url": "https://meet.example.com/abc"},
        "created_at": datetime(2025, 11, 1, 9, 0),
        "updated_at": datetime(2025, 11, 1, 9, 0),
    }
    record.update(overrides)
    return record


def test_encode_time_range_renders_half_open_literal() -> None:
    literal = encode_time_range(TimeRange(start=_START, end=_END))

    assert literal == "[2025-12-01T10:00:00+00:00,2025-12-01T11:00:00+00:00)"


def test_decode_time_range_accepts_postgres_style_literal() -> None:
    decoded = decode_time_range('["2025-12-01 10:00:00+00:00","2025-12-01 11:00:00+00:00")')

    assert decoded == TimeRange(start=_START, end=_END)


def test_decode_time_range_accepts_structured_value() -> None:
    decoded = decode_time_range({"start": "2025-12-01T12:00:00+02:00", "end": _END})

    assert decoded == TimeRange(start=_START, end=_END)


def test_decode_time_range_rejects_unexpected_shapes() -> None:
    assert decode_time_range("(2025-12-01T10:00:00+00:00,2025-12-01T11:00:00+00:00]") is None
    assert decode_time_range("[not-a-date,2025-12-01T11:00:00+00:00)") is None
    assert decode_time_range("[2025-12-01T11:00:00+00:00,2025-12-01T10:00:00+00:00)") is None
    assert decode_time_range(None) is None
    assert decode_time_range(42) is None


def test_decode_with_fallback_rebuilds_range_from_duration() -> None:
    now = datetime(2025, 11, 5, 8, 30, tzinfo=UTC)

    time_range, degraded = decode_time_range_with_fallback("garbage", duration_minutes=45, now=now)

    assert degraded is True
    assert time_range == TimeRange(start=now, end=now + timedelta(minutes=45))


def test_slot_from_record_maps_every_field() -> None:
    slot = slot_from_record(_record())

    assert slot.id == "slot-1"
    assert slot.subject_type is SubjectType.mentor
    assert slot.slot_type is SlotType.regular_mentoring
    assert slot.status is SlotStatus.booked
    assert slot.time_range == TimeRange(start=_START, end=_END)
    assert slot.title == "Career chat"
    assert slot.reason is None
    assert slot.metadata == {"meeting_url": "https://meet.example.com/abc"}
    assert slot.created_at.tzinfo is not None
    assert slot.time_range_degraded is False


def test_slot_from_record_marks_degraded_range_instead_of_raising() -> None:
    now = datetime(2025, 11, 5, 8, 30, tzinfo=UTC)

    slot = slot_from_record(_record(time_range="tstzrange(broken)"), now=now)

    assert slot.time_range_degraded is True
    assert slot.time_range.start == now
    assert slot.time_range.end == now + timedelta(minutes=60)


def test_record_from_slot_is_readable_by_slot_from_record() -> None:
    slot = slot_from_record(_record())

    record = record_from_slot(slot)

    assert record["time_range"] == "[2025-12-01T10:00:00+00:00,2025-12-01T11:00:00+00:00)"
    assert record["start_time"] == _START
    assert record["end_time"] == _END
    assert slot_from_record(record) == slot
