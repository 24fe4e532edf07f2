from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Any


class SubjectType(StrEnum):
    mentor = "mentor"
    student = "student"
    counselor = "counselor"


class SlotType(StrEnum):
    regular_mentoring = "regular_mentoring"
    gap_analysis = "gap_analysis"
    ai_career = "ai_career"
    comm_session = "comm_session"
    class_session = "class_session"
    mock_interview = "mock_interview"


class SlotStatus(StrEnum):
    booked = "booked"
    cancelled = "cancelled"
    completed = "completed"


@dataclass(frozen=True)
class TimeRange:
    """Half-open interval ``[start, end)``; adjacent ranges do not overlap."""

    start: datetime
    end: datetime

    @classmethod
    def from_duration(cls, start: datetime, duration_minutes: int) -> TimeRange:
        return cls(start=start, end=start + timedelta(minutes=duration_minutes))

    def overlaps(self, other: TimeRange) -> bool:
        return self.start < other.end and other.start < self.end

    def duration_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)

    def minutes(self) -> list[datetime]:
        """Every whole minute covered by the range, end excluded."""
        total = self.duration_minutes()
        return [self.start + timedelta(minutes=offset) for offset in range(total)]


@dataclass(frozen=True)
class SlotRequest:
    subject_id: str
    subject_type: SubjectType
    start_time: datetime
    duration_minutes: int
    slot_type: SlotType
    session_id: str | None = None
    title: str | None = None
    reason: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def time_range(self) -> TimeRange:
        return TimeRange.from_duration(self.start_time, self.duration_minutes)


@dataclass(frozen=True)
class Slot:
    id: str
    subject_id: str
    subject_type: SubjectType
    time_range: TimeRange
    duration_minutes: int
    slot_type: SlotType
    status: SlotStatus
    created_at: datetime
    updated_at: datetime
    session_id: str | None = None
    title: str | None = None
    reason: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    time_range_degraded: bool = False


@dataclass(frozen=True)
class SlotConflict:
    """Booking-level conflict reported by a store; returned, never raised."""

    subject_id: str
    time_range: TimeRange
    constraint: str


def utc_now() -> datetime:
    return datetime.now(UTC)


def normalize_start_time(value: datetime) -> datetime:
    """Return ``value`` in UTC; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
