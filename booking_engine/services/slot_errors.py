class BookingError(Exception):
    """Base class for booking engine errors."""


class SlotValidationError(BookingError):
    """Raised when a booking request or query is rejected before reaching the store."""


class SlotNotFoundError(BookingError):
    """Raised when an operation targets an unknown slot id."""

    def __init__(self, slot_id: str) -> None:
        super().__init__(f"Slot not found: {slot_id}")
        self.slot_id = slot_id


class SlotStateConflictError(BookingError):
    """Raised when the caller's view of a slot's status is stale, e.g. releasing it twice."""

    def __init__(self, slot_id: str, message: str) -> None:
        super().__init__(message)
        self.slot_id = slot_id


class StoreError(BookingError):
    """Raised when the persistence backend fails for any reason other than an overlap."""
