from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from booking_engine.core.config import Settings, get_settings
from booking_engine.services.slot_errors import (
    SlotNotFoundError,
    SlotStateConflictError,
    SlotValidationError,
)
from booking_engine.services.slot_models import (
    Slot,
    SlotConflict,
    SlotRequest,
    SlotStatus,
    SlotType,
    SubjectType,
    TimeRange,
    normalize_start_time,
    utc_now,
)
from booking_engine.services.slot_store import SlotStore, create_slot_store
from booking_engine.services.slot_validator import SlotValidator

logger = logging.getLogger(__name__)


class _RescheduleRejected(Exception):
    """Raised inside the reschedule transaction to roll back the old slot's cancellation."""

    def __init__(self, conflict: SlotConflict) -> None:
        super().__init__(conflict.constraint)
        self.conflict = conflict


class BookingService:
    """Reserves, releases and reschedules slots for a single subject at a time.

    Overlap prevention is delegated to the store's atomic insert. Booking
    conflicts come back as ``SlotConflict`` values; every other failure is raised.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        store: SlotStore | None = None,
        validator: SlotValidator | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = store or create_slot_store(self.settings)
        self.validator = validator or SlotValidator.from_settings(self.settings)
        self._clock = clock or utc_now

    def create_slot(
        self,
        *,
        subject_id: str,
        subject_type: SubjectType | str,
        start_time: datetime,
        duration_minutes: int,
        slot_type: SlotType | str,
        session_id: str | None = None,
        title: str | None = None,
        reason: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Slot | SlotConflict:
        request = self._build_request(
            subject_id=subject_id,
            subject_type=subject_type,
            start_time=start_time,
            duration_minutes=duration_minutes,
            slot_type=slot_type,
            session_id=session_id,
            title=title,
            reason=reason,
            metadata=metadata,
        )
        result = self.store.insert(request)
        if isinstance(result, SlotConflict):
            logger.info(
                "Slot booking conflict subject_id=%s start=%s duration_minutes=%s constraint=%s",
                request.subject_id,
                request.start_time.isoformat(),
                request.duration_minutes,
                result.constraint,
            )
            return result

        logger.info(
            "Slot booked slot_id=%s subject_id=%s start=%s duration_minutes=%s",
            result.id,
            result.subject_id,
            result.time_range.start.isoformat(),
            result.duration_minutes,
        )
        return result

    def check_availability(
        self,
        *,
        subject_id: str,
        subject_type: SubjectType | str,
        start_time: datetime,
        duration_minutes: int,
    ) -> bool:
        """Advisory only: the answer may be stale by the time a booking is attempted.

        Never gate ``create_slot`` on this result; the store's insert is the only
        authoritative overlap check.
        """
        _coerce_enum(SubjectType, subject_type, "subject_type")
        normalized_start = normalize_start_time(start_time)
        window = self.validator.validate_booking(normalized_start, duration_minutes, now=self._clock())
        return self.store.count_overlapping(_normalize_id(subject_id, "subject_id"), window) == 0

    def release_slot(self, slot_id: str) -> Slot:
        existing = self._require_slot(slot_id)
        if existing.status == SlotStatus.cancelled:
            raise SlotStateConflictError(existing.id, "Slot is already cancelled.")
        if existing.status != SlotStatus.booked:
            raise SlotStateConflictError(existing.id, f"Slot is {existing.status.value} and cannot be cancelled.")

        released = self._transition(existing.id, SlotStatus.cancelled)
        logger.info("Slot released slot_id=%s subject_id=%s", released.id, released.subject_id)
        return released

    def complete_slot(self, slot_id: str) -> Slot:
        existing = self._require_slot(slot_id)
        if existing.status != SlotStatus.booked:
            raise SlotStateConflictError(existing.id, f"Slot is {existing.status.value} and cannot be completed.")

        completed = self._transition(existing.id, SlotStatus.completed)
        logger.info("Slot completed slot_id=%s subject_id=%s", completed.id, completed.subject_id)
        return completed

    def reschedule_slot(
        self,
        slot_id: str,
        *,
        new_start_time: datetime,
        new_duration_minutes: int,
    ) -> Slot | SlotConflict:
        old_slot = self._require_slot(slot_id)
        if old_slot.status != SlotStatus.booked:
            raise SlotStateConflictError(
                old_slot.id,
                f"Slot is {old_slot.status.value} and cannot be rescheduled.",
            )

        request = self._build_request(
            subject_id=old_slot.subject_id,
            subject_type=old_slot.subject_type,
            start_time=new_start_time,
            duration_minutes=new_duration_minutes,
            slot_type=old_slot.slot_type,
            session_id=old_slot.session_id,
            title=old_slot.title,
            reason=old_slot.reason,
            metadata=old_slot.metadata,
        )

        def _cancel_old_and_book_new(store: SlotStore) -> Slot:
            cancelled = store.update_status(
                old_slot.id,
                SlotStatus.cancelled,
                expected_status=SlotStatus.booked,
            )
            if cancelled is None:
                raise SlotStateConflictError(old_slot.id, "Slot changed state while rescheduling.")

            result = store.insert(request)
            if isinstance(result, SlotConflict):
                raise _RescheduleRejected(result)
            return result

        try:
            new_slot = self.store.with_transaction(_cancel_old_and_book_new)
        except _RescheduleRejected as exc:
            logger.info(
                "Slot reschedule conflict slot_id=%s subject_id=%s start=%s duration_minutes=%s",
                old_slot.id,
                old_slot.subject_id,
                request.start_time.isoformat(),
                request.duration_minutes,
            )
            return exc.conflict

        logger.info(
            "Slot rescheduled old_slot_id=%s new_slot_id=%s start=%s duration_minutes=%s",
            old_slot.id,
            new_slot.id,
            new_slot.time_range.start.isoformat(),
            new_slot.duration_minutes,
        )
        return new_slot

    def query_booked_slots(
        self,
        *,
        subject_id: str,
        subject_type: SubjectType | str,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
    ) -> list[Slot]:
        normalized_subject_type = _coerce_enum(SubjectType, subject_type, "subject_type")
        now = self._clock()
        window_start = _as_aware(date_from) if date_from else now
        window_end = _as_aware(date_to) if date_to else now + self.validator.query_window
        self.validator.validate_query_window(window_start, window_end)
        return self.store.find_booked(
            _normalize_id(subject_id, "subject_id"),
            normalized_subject_type.value,
            TimeRange(start=window_start, end=window_end),
        )

    def get_by_id(self, slot_id: str) -> Slot | None:
        return self.store.find_by_id(slot_id.strip())

    def get_by_session_id(self, session_id: str) -> Slot | None:
        return self.store.find_by_session_id(session_id.strip())

    def attach_session(self, slot_id: str, session_id: str) -> Slot:
        normalized_session_id = _normalize_id(session_id, "session_id")
        existing = self._require_slot(slot_id)
        if existing.status != SlotStatus.booked:
            raise SlotStateConflictError(
                existing.id,
                f"Slot is {existing.status.value}; sessions can only be attached to booked slots.",
            )

        updated = self.store.update_session_id(
            existing.id,
            normalized_session_id,
            expected_status=SlotStatus.booked,
        )
        if updated is None:
            current = self._require_slot(existing.id)
            raise SlotStateConflictError(
                current.id,
                f"Slot is {current.status.value}; sessions can only be attached to booked slots.",
            )
        logger.info("Slot session attached slot_id=%s session_id=%s", updated.id, normalized_session_id)
        return updated

    def _require_slot(self, slot_id: str) -> Slot:
        normalized_slot_id = slot_id.strip()
        slot = self.store.find_by_id(normalized_slot_id)
        if slot is None:
            raise SlotNotFoundError(normalized_slot_id)
        return slot

    def _transition(self, slot_id: str, status: SlotStatus) -> Slot:
        updated = self.store.update_status(slot_id, status, expected_status=SlotStatus.booked)
        if updated is not None:
            return updated

        current = self._require_slot(slot_id)
        if current.status == SlotStatus.cancelled:
            raise SlotStateConflictError(current.id, "Slot is already cancelled.")
        raise SlotStateConflictError(current.id, f"Slot is {current.status.value} and cannot change status.")

    def _build_request(
        self,
        *,
        subject_id: str,
        subject_type: SubjectType | str,
        start_time: datetime,
        duration_minutes: int,
        slot_type: SlotType | str,
        session_id: str | None,
        title: str | None,
        reason: str | None,
        metadata: dict[str, Any] | None,
    ) -> SlotRequest:
        normalized_start = normalize_start_time(start_time)
        self.validator.validate_booking(normalized_start, duration_minutes, now=self._clock())
        return SlotRequest(
            subject_id=_normalize_id(subject_id, "subject_id"),
            subject_type=_coerce_enum(SubjectType, subject_type, "subject_type"),
            start_time=normalized_start,
            duration_minutes=duration_minutes,
            slot_type=_coerce_enum(SlotType, slot_type, "slot_type"),
            session_id=(session_id or "").strip() or None,
            title=(title or "").strip() or None,
            reason=(reason or "").strip() or None,
            metadata=dict(metadata or {}),
        )


def _normalize_id(value: str, field_name: str) -> str:
    normalized = (value or "").strip()
    if not normalized:
        raise SlotValidationError(f"{field_name} is required.")
    return normalized


def _coerce_enum(enum_cls: Any, value: Any, field_name: str) -> Any:
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError as exc:
        raise SlotValidationError(f"Unsupported {field_name}: {value}.") from exc


def _as_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value
