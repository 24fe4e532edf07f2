from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from booking_engine.services.slot_models import Slot, SlotConflict, SlotStatus, SlotType, SubjectType


class SlotTimeRange(BaseModel):
    start: datetime
    end: datetime


class SlotResponse(BaseModel):
    id: str
    subject_id: str
    subject_type: SubjectType
    time_range: SlotTimeRange
    duration_minutes: int
    slot_type: SlotType
    status: SlotStatus
    session_id: str | None = None
    title: str | None = None
    reason: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    time_range_degraded: bool = False
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_slot(cls, slot: Slot) -> SlotResponse:
        return cls(
            id=slot.id,
            subject_id=slot.subject_id,
            subject_type=slot.subject_type,
            time_range=SlotTimeRange(start=slot.time_range.start, end=slot.time_range.end),
            duration_minutes=slot.duration_minutes,
            slot_type=slot.slot_type,
            status=slot.status,
            session_id=slot.session_id,
            title=slot.title,
            reason=slot.reason,
            metadata=dict(slot.metadata),
            time_range_degraded=slot.time_range_degraded,
            created_at=slot.created_at,
            updated_at=slot.updated_at,
        )


class SlotConflictResponse(BaseModel):
    status: Literal["conflict"] = "conflict"
    subject_id: str
    time_range: SlotTimeRange
    constraint: str
    detail: str = "Requested time overlaps an existing booking."

    @classmethod
    def from_conflict(cls, conflict: SlotConflict) -> SlotConflictResponse:
        return cls(
            subject_id=conflict.subject_id,
            time_range=SlotTimeRange(start=conflict.time_range.start, end=conflict.time_range.end),
            constraint=conflict.constraint,
        )


class SlotCreateRequest(BaseModel):
    subject_id: str
    subject_type: SubjectType
    start_time: datetime
    duration_minutes: int
    slot_type: SlotType
    session_id: str | None = None
    title: str | None = Field(default=None, max_length=255)
    reason: str | None = Field(default=None, max_length=255)
    metadata: dict[str, Any] = Field(default_factory=dict)


class SlotRescheduleRequest(BaseModel):
    new_start_time: datetime
    new_duration_minutes: int


class SlotSessionAttachRequest(BaseModel):
    session_id: str


class SlotAvailabilityResponse(BaseModel):
    subject_id: str
    start_time: datetime
    duration_minutes: int
    available: bool
    advisory: bool = True


class SlotListResponse(BaseModel):
    items: list[SlotResponse] = Field(default_factory=list)
