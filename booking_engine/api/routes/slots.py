from datetime import datetime

from fastapi import APIRouter, HTTPException, Query, status
from fastapi.responses import JSONResponse

from booking_engine.schemas.slot import (
    SlotAvailabilityResponse,
    SlotConflictResponse,
    SlotCreateRequest,
    SlotListResponse,
    SlotRescheduleRequest,
    SlotResponse,
    SlotSessionAttachRequest,
)
from booking_engine.services.booking_service import BookingService
from booking_engine.services.slot_models import Slot, SlotConflict, SubjectType

router = APIRouter(prefix="/slots", tags=["slots"])

_CONFLICT_RESPONSES = {status.HTTP_409_CONFLICT: {"model": SlotConflictResponse}}


@router.post(
    "",
    response_model=SlotResponse,
    status_code=status.HTTP_201_CREATED,
    responses=_CONFLICT_RESPONSES,
)
def create_slot(payload: SlotCreateRequest) -> SlotResponse | JSONResponse:
    service = BookingService()
    result = service.create_slot(
        subject_id=payload.subject_id,
        subject_type=payload.subject_type,
        start_time=payload.start_time,
        duration_minutes=payload.duration_minutes,
        slot_type=payload.slot_type,
        session_id=payload.session_id,
        title=payload.title,
        reason=payload.reason,
        metadata=payload.metadata,
    )
    return _slot_or_conflict(result)


@router.get("/availability", response_model=SlotAvailabilityResponse)
def check_slot_availability(
    subject_id: str,
    subject_type: SubjectType,
    start_time: datetime,
    duration_minutes: int,
) -> SlotAvailabilityResponse:
    service = BookingService()
    available = service.check_availability(
        subject_id=subject_id,
        subject_type=subject_type,
        start_time=start_time,
        duration_minutes=duration_minutes,
    )
    return SlotAvailabilityResponse(
        subject_id=subject_id,
        start_time=start_time,
        duration_minutes=duration_minutes,
        available=available,
    )


@router.get("", response_model=SlotListResponse)
def list_booked_slots(
    subject_id: str,
    subject_type: SubjectType,
    date_from: datetime | None = Query(default=None),
    date_to: datetime | None = Query(default=None),
) -> SlotListResponse:
    service = BookingService()
    slots = service.query_booked_slots(
        subject_id=subject_id,
        subject_type=subject_type,
        date_from=date_from,
        date_to=date_to,
    )
    return SlotListResponse(items=[SlotResponse.from_slot(slot) for slot in slots])


@router.get("/by-session/{session_id}", response_model=SlotResponse)
def get_slot_by_session(session_id: str) -> SlotResponse:
    service = BookingService()
    slot = service.get_by_session_id(session_id)
    if slot is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No booked slot for session.",
        )
    return SlotResponse.from_slot(slot)


@router.get("/{slot_id}", response_model=SlotResponse)
def get_slot(slot_id: str) -> SlotResponse:
    service = BookingService()
    slot = service.get_by_id(slot_id)
    if slot is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Slot not found.",
        )
    return SlotResponse.from_slot(slot)


@router.post("/{slot_id}/release", response_model=SlotResponse)
def release_slot(slot_id: str) -> SlotResponse:
    service = BookingService()
    return SlotResponse.from_slot(service.release_slot(slot_id))


@router.post("/{slot_id}/complete", response_model=SlotResponse)
def complete_slot(slot_id: str) -> SlotResponse:
    service = BookingService()
    return SlotResponse.from_slot(service.complete_slot(slot_id))


@router.post(
    "/{slot_id}/reschedule",
    response_model=SlotResponse,
    responses=_CONFLICT_RESPONSES,
)
def reschedule_slot(slot_id: str, payload: SlotRescheduleRequest) -> SlotResponse | JSONResponse:
    service = BookingService()
    result = service.reschedule_slot(
        slot_id,
        new_start_time=payload.new_start_time,
        new_duration_minutes=payload.new_duration_minutes,
    )
    return _slot_or_conflict(result)


@router.post("/{slot_id}/session", response_model=SlotResponse)
def attach_slot_session(slot_id: str, payload: SlotSessionAttachRequest) -> SlotResponse:
    service = BookingService()
    return SlotResponse.from_slot(service.attach_session(slot_id, payload.session_id))


def _slot_or_conflict(result: Slot | SlotConflict) -> SlotResponse | JSONResponse:
    if isinstance(result, SlotConflict):
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content=SlotConflictResponse.from_conflict(result).model_dump(mode="json"),
        )
    return SlotResponse.from_slot(result)
