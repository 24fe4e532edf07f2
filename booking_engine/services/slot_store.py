from __future__ import annotations

import copy
import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from functools import lru_cache
from typing import Any, TypeVar
from uuid import uuid4

from booking_engine.core.config import Settings
from booking_engine.services.slot_errors import StoreError
from booking_engine.services.slot_models import (
    Slot,
    SlotConflict,
    SlotRequest,
    SlotStatus,
    TimeRange,
    utc_now,
)
from booking_engine.services.time_range_codec import record_from_slot, slot_from_record

logger = logging.getLogger(__name__)

T = TypeVar("T")

OVERLAP_CONSTRAINT_NAME = "uniq_slot_occupancy_subject_minute"
DUPLICATE_KEY_ERROR_CODE = 11000


class SlotStore(ABC):
    @abstractmethod
    def insert(self, request: SlotRequest) -> Slot | SlotConflict:
        """Persist a booked slot, or report the overlap that prevented it.

        Inside ``with_transaction`` a returned ``SlotConflict`` marks the whole
        transaction for rollback, even if ``fn`` returns normally.
        """
        raise NotImplementedError

    @abstractmethod
    def find_by_id(self, slot_id: str) -> Slot | None:
        raise NotImplementedError

    @abstractmethod
    def find_by_session_id(self, session_id: str) -> Slot | None:
        raise NotImplementedError

    @abstractmethod
    def count_overlapping(self, subject_id: str, window: TimeRange) -> int:
        raise NotImplementedError

    @abstractmethod
    def find_booked(self, subject_id: str, subject_type: str, window: TimeRange) -> list[Slot]:
        raise NotImplementedError

    @abstractmethod
    def update_status(
        self,
        slot_id: str,
        status: SlotStatus,
        *,
        expected_status: SlotStatus | None = None,
    ) -> Slot | None:
        """Set ``status``; returns None when no slot matches id (and ``expected_status``)."""
        raise NotImplementedError

    @abstractmethod
    def update_session_id(
        self,
        slot_id: str,
        session_id: str,
        *,
        expected_status: SlotStatus | None = None,
    ) -> Slot | None:
        raise NotImplementedError

    @abstractmethod
    def with_transaction(self, fn: Callable[[SlotStore], T]) -> T:
        """Run ``fn`` against a transactional view; its writes commit or roll back together.

        Everything rolls back when ``fn`` raises or when any insert inside it
        reported a ``SlotConflict``; in the latter case ``fn``'s result is still returned.
        """
        raise NotImplementedError

    @abstractmethod
    def ping(self) -> None:
        """Raise ``StoreError`` when the backend is unreachable."""
        raise NotImplementedError


def _new_slot(request: SlotRequest) -> Slot:
    now = utc_now()
    return Slot(
        id=str(uuid4()),
        subject_id=request.subject_id,
        subject_type=request.subject_type,
        time_range=request.time_range,
        duration_minutes=request.duration_minutes,
        slot_type=request.slot_type,
        status=SlotStatus.booked,
        created_at=now,
        updated_at=now,
        session_id=request.session_id,
        title=request.title,
        reason=request.reason,
        metadata=dict(request.metadata),
    )


class InMemorySlotStore(SlotStore):
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._records_by_id: dict[str, dict[str, Any]] = {}
        self._transaction_depth = 0
        self._transaction_conflicted = False

    def insert(self, request: SlotRequest) -> Slot | SlotConflict:
        time_range = request.time_range
        with self._lock:
            for record in self._records_by_id.values():
                if record["subject_id"] != request.subject_id:
                    continue
                if record["status"] != SlotStatus.booked.value:
                    continue
                if _record_range(record).overlaps(time_range):
                    if self._transaction_depth:
                        self._transaction_conflicted = True
                    return SlotConflict(
                        subject_id=request.subject_id,
                        time_range=time_range,
                        constraint=OVERLAP_CONSTRAINT_NAME,
                    )

            slot = _new_slot(request)
            self._records_by_id[slot.id] = record_from_slot(slot)
            return slot

    def find_by_id(self, slot_id: str) -> Slot | None:
        with self._lock:
            record = self._records_by_id.get(slot_id)
            if not record:
                return None
            return slot_from_record(record)

    def find_by_session_id(self, session_id: str) -> Slot | None:
        with self._lock:
            for record in self._records_by_id.values():
                if record.get("session_id") != session_id:
                    continue
                if record["status"] != SlotStatus.booked.value:
                    continue
                return slot_from_record(record)
        return None

    def count_overlapping(self, subject_id: str, window: TimeRange) -> int:
        with self._lock:
            return len(self._booked_records(subject_id, window))

    def find_booked(self, subject_id: str, subject_type: str, window: TimeRange) -> list[Slot]:
        with self._lock:
            records = [
                record
                for record in self._booked_records(subject_id, window)
                if record["subject_type"] == str(subject_type)
            ]
        records.sort(key=lambda record: record["start_time"])
        return [slot_from_record(record) for record in records]

    def update_status(
        self,
        slot_id: str,
        status: SlotStatus,
        *,
        expected_status: SlotStatus | None = None,
    ) -> Slot | None:
        with self._lock:
            record = self._records_by_id.get(slot_id)
            if not record:
                return None
            if expected_status is not None and record["status"] != expected_status.value:
                return None
            record["status"] = status.value
            record["updated_at"] = utc_now()
            return slot_from_record(record)

    def update_session_id(
        self,
        slot_id: str,
        session_id: str,
        *,
        expected_status: SlotStatus | None = None,
    ) -> Slot | None:
        with self._lock:
            record = self._records_by_id.get(slot_id)
            if not record:
                return None
            if expected_status is not None and record["status"] != expected_status.value:
                return None
            record["session_id"] = session_id
            record["updated_at"] = utc_now()
            return slot_from_record(record)

    def with_transaction(self, fn: Callable[[SlotStore], T]) -> T:
        with self._lock:
            if self._transaction_depth:
                return fn(self)
            snapshot = copy.deepcopy(self._records_by_id)
            self._transaction_depth += 1
            self._transaction_conflicted = False
            try:
                result = fn(self)
            except BaseException:
                self._records_by_id = snapshot
                raise
            finally:
                self._transaction_depth -= 1
            if self._transaction_conflicted:
                self._records_by_id = snapshot
            return result

    def ping(self) -> None:
        return None

    def _booked_records(self, subject_id: str, window: TimeRange) -> list[dict[str, Any]]:
        return [
            record
            for record in self._records_by_id.values()
            if record["subject_id"] == subject_id
            and record["status"] == SlotStatus.booked.value
            and _record_range(record).overlaps(window)
        ]


def _record_range(record: Mapping[str, Any]) -> TimeRange:
    return TimeRange(start=record["start_time"], end=record["end_time"])


class _OverlapDetected(Exception):
    def __init__(self, conflict: SlotConflict) -> None:
        super().__init__(conflict.constraint)
        self.conflict = conflict


class _TransactionRolledBack(Exception):
    """Aborts a transaction whose callback saw an overlap conflict."""

    def __init__(self, result: Any) -> None:
        super().__init__("transaction rolled back after overlap conflict")
        self.result = result


class MongoSlotStore(SlotStore):
    """Slots plus a per-minute occupancy collection whose unique index excludes overlaps.

    Inserts and status changes touch both collections inside one multi-document
    transaction, so the deployment must be a replica set.
    """

    def __init__(
        self,
        *,
        uri: str,
        db_name: str,
        slots_collection_name: str,
        occupancy_collection_name: str,
        connect_timeout_ms: int = 2000,
        client: Any | None = None,
    ) -> None:
        if client is None:
            from pymongo import MongoClient

            client = MongoClient(
                uri,
                serverSelectionTimeoutMS=connect_timeout_ms,
                connectTimeoutMS=connect_timeout_ms,
                tz_aware=True,
            )
        self._client = client
        self._session: Any | None = None
        self._conflicted = False
        database = self._client[db_name]
        self._slots = database[slots_collection_name]
        self._occupancy = database[occupancy_collection_name]

        with self._store_errors("create_indexes"):
            self._slots.create_index([("subject_id", 1), ("status", 1), ("start_time", 1)])
            self._slots.create_index("session_id")
            self._occupancy.create_index(
                [("subject_id", 1), ("minute", 1)],
                unique=True,
                name=OVERLAP_CONSTRAINT_NAME,
            )
            self._occupancy.create_index("slot_id")

    def insert(self, request: SlotRequest) -> Slot | SlotConflict:
        try:
            if self._session is not None:
                return self._insert_in_session(request, self._session)
            with self._store_errors("insert"):
                return self._run_transaction(lambda session: self._insert_in_session(request, session))
        except _OverlapDetected as exc:
            if self._session is not None:
                self._conflicted = True
            return exc.conflict

    def find_by_id(self, slot_id: str) -> Slot | None:
        with self._store_errors("find_by_id"):
            record = self._slots.find_one({"_id": slot_id}, session=self._session)
        return _to_slot(record)

    def find_by_session_id(self, session_id: str) -> Slot | None:
        with self._store_errors("find_by_session_id"):
            record = self._slots.find_one(
                {"session_id": session_id, "status": SlotStatus.booked.value},
                session=self._session,
            )
        return _to_slot(record)

    def count_overlapping(self, subject_id: str, window: TimeRange) -> int:
        with self._store_errors("count_overlapping"):
            return int(
                self._slots.count_documents(
                    _booked_overlap_query(subject_id, window),
                    session=self._session,
                ),
            )

    def find_booked(self, subject_id: str, subject_type: str, window: TimeRange) -> list[Slot]:
        query = _booked_overlap_query(subject_id, window)
        query["subject_type"] = str(subject_type)
        with self._store_errors("find_booked"):
            records = list(self._slots.find(query, session=self._session).sort("start_time", 1))
        return [slot_from_record(record) for record in records]

    def update_status(
        self,
        slot_id: str,
        status: SlotStatus,
        *,
        expected_status: SlotStatus | None = None,
    ) -> Slot | None:
        def _apply(session: Any) -> dict[str, Any] | None:
            query: dict[str, Any] = {"_id": slot_id}
            if expected_status is not None:
                query["status"] = expected_status.value
            updated = self._find_and_set(
                query,
                {"status": status.value, "updated_at": utc_now()},
                session,
            )
            if updated and status != SlotStatus.booked:
                self._occupancy.delete_many({"slot_id": slot_id}, session=session)
            return updated

        if self._session is not None:
            return _to_slot(_apply(self._session))
        with self._store_errors("update_status"):
            return _to_slot(self._run_transaction(_apply))

    def update_session_id(
        self,
        slot_id: str,
        session_id: str,
        *,
        expected_status: SlotStatus | None = None,
    ) -> Slot | None:
        query: dict[str, Any] = {"_id": slot_id}
        if expected_status is not None:
            query["status"] = expected_status.value
        with self._store_errors("update_session_id"):
            record = self._find_and_set(
                query,
                {"session_id": session_id, "updated_at": utc_now()},
                self._session,
            )
        return _to_slot(record)

    def with_transaction(self, fn: Callable[[SlotStore], T]) -> T:
        if self._session is not None:
            return fn(self)

        def _callback(session: Any) -> T:
            bound = self._bound_to(session)
            result = fn(bound)
            if bound._conflicted:
                raise _TransactionRolledBack(result)
            return result

        try:
            with self._store_errors("transaction"):
                return self._run_transaction(_callback)
        except _TransactionRolledBack as exc:
            return exc.result

    def ping(self) -> None:
        with self._store_errors("ping"):
            self._client.admin.command("ping")

    def _insert_in_session(self, request: SlotRequest, session: Any) -> Slot:
        from pymongo.errors import BulkWriteError, DuplicateKeyError

        slot = _new_slot(request)
        self._slots.insert_one(record_from_slot(slot), session=session)
        occupancy = [
            {"subject_id": slot.subject_id, "minute": minute, "slot_id": slot.id}
            for minute in slot.time_range.minutes()
        ]
        try:
            self._occupancy.insert_many(occupancy, ordered=True, session=session)
        except (BulkWriteError, DuplicateKeyError) as exc:
            if not _is_overlap_violation(exc):
                raise
            raise _OverlapDetected(
                SlotConflict(
                    subject_id=request.subject_id,
                    time_range=request.time_range,
                    constraint=OVERLAP_CONSTRAINT_NAME,
                ),
            ) from exc
        return slot

    def _find_and_set(
        self,
        query: Mapping[str, Any],
        updates: Mapping[str, Any],
        session: Any | None,
    ) -> dict[str, Any] | None:
        from pymongo import ReturnDocument

        return self._slots.find_one_and_update(
            dict(query),
            {"$set": dict(updates)},
            return_document=ReturnDocument.AFTER,
            session=session,
        )

    def _run_transaction(self, callback: Callable[[Any], T]) -> T:
        with self._client.start_session() as session:
            return session.with_transaction(callback)

    def _bound_to(self, session: Any) -> MongoSlotStore:
        bound = copy.copy(self)
        bound._session = session
        bound._conflicted = False
        return bound

    @contextmanager
    def _store_errors(self, operation: str) -> Iterator[None]:
        from pymongo.errors import PyMongoError

        # Inside a transaction raw driver errors must reach with_transaction so
        # transient ones are retried.
        if self._session is not None:
            yield
            return
        try:
            yield
        except PyMongoError as exc:
            logger.exception("Slot store operation failed operation=%s", operation)
            raise StoreError(f"Slot store operation '{operation}' failed.") from exc


def _is_overlap_violation(exc: Exception) -> bool:
    details = getattr(exc, "details", None) or {}
    write_errors = details.get("writeErrors")
    if write_errors:
        return any(error.get("code") == DUPLICATE_KEY_ERROR_CODE for error in write_errors)
    return getattr(exc, "code", None) == DUPLICATE_KEY_ERROR_CODE


def _booked_overlap_query(subject_id: str, window: TimeRange) -> dict[str, Any]:
    return {
        "subject_id": subject_id,
        "status": SlotStatus.booked.value,
        "start_time": {"$lt": window.end},
        "end_time": {"$gt": window.start},
    }


def _to_slot(record: Mapping[str, Any] | None) -> Slot | None:
    if not record:
        return None
    return slot_from_record(record)


def create_slot_store(settings: Settings) -> SlotStore:
    return _create_slot_store_cached(
        slot_store=settings.slot_store,
        mongodb_uri=settings.mongodb_uri,
        mongodb_db_name=settings.mongodb_db_name,
        mongodb_slots_collection=settings.mongodb_slots_collection,
        mongodb_slot_occupancy_collection=settings.mongodb_slot_occupancy_collection,
        mongodb_connect_timeout_ms=settings.mongodb_connect_timeout_ms,
    )


@lru_cache
def _create_slot_store_cached(
    *,
    slot_store: str,
    mongodb_uri: str,
    mongodb_db_name: str,
    mongodb_slots_collection: str,
    mongodb_slot_occupancy_collection: str,
    mongodb_connect_timeout_ms: int,
) -> SlotStore:
    if slot_store == "mongodb":
        return MongoSlotStore(
            uri=mongodb_uri,
            db_name=mongodb_db_name,
            slots_collection_name=mongodb_slots_collection,
            occupancy_collection_name=mongodb_slot_occupancy_collection,
            connect_timeout_ms=mongodb_connect_timeout_ms,
        )

    return InMemorySlotStore()


def clear_slot_store_cache() -> None:
    _create_slot_store_cached.cache_clear()
