from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from booking_engine.core.config import (
    DEFAULT_MAX_DURATION_MINUTES,
    DEFAULT_MIN_DURATION_MINUTES,
    DEFAULT_QUERY_WINDOW_DAYS,
    Settings,
)
from booking_engine.services.slot_errors import SlotValidationError
from booking_engine.services.slot_models import TimeRange


@dataclass(frozen=True)
class SlotValidator:
    """Stateless request checks that run before any store call."""

    min_duration_minutes: int = DEFAULT_MIN_DURATION_MINUTES
    max_duration_minutes: int = DEFAULT_MAX_DURATION_MINUTES
    query_window_days: int = DEFAULT_QUERY_WINDOW_DAYS

    @classmethod
    def from_settings(cls, settings: Settings) -> SlotValidator:
        return cls(
            min_duration_minutes=settings.slot_min_duration_minutes,
            max_duration_minutes=settings.slot_max_duration_minutes,
            query_window_days=settings.slot_query_window_days,
        )

    @property
    def query_window(self) -> timedelta:
        return timedelta(days=self.query_window_days)

    def validate_booking(self, start_time: datetime, duration_minutes: int, *, now: datetime) -> TimeRange:
        self.validate_duration(duration_minutes)
        if start_time <= now:
            raise SlotValidationError("Start time must be in the future.")
        if start_time.second or start_time.microsecond:
            raise SlotValidationError("Start time must be on a whole minute.")
        time_range = TimeRange.from_duration(start_time, duration_minutes)
        self.validate_range(time_range.start, time_range.end)
        return time_range

    def validate_duration(self, duration_minutes: int) -> None:
        if isinstance(duration_minutes, bool) or not isinstance(duration_minutes, int):
            raise SlotValidationError("Duration must be a whole number of minutes.")
        if duration_minutes < self.min_duration_minutes or duration_minutes > self.max_duration_minutes:
            raise SlotValidationError(
                f"Duration must be between {self.min_duration_minutes} and "
                f"{self.max_duration_minutes} minutes.",
            )

    def validate_range(self, start: datetime, end: datetime) -> None:
        if end <= start:
            raise SlotValidationError("Invalid time range: end time must be after start time.")

    def validate_query_window(self, date_from: datetime, date_to: datetime) -> None:
        self.validate_range(date_from, date_to)
        if date_to - date_from > self.query_window:
            raise SlotValidationError(f"Date range cannot exceed {self.query_window_days} days.")
