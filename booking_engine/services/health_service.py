import logging
from datetime import UTC, datetime

from booking_engine.core.config import Settings
from booking_engine.schemas.health import HealthResponse
from booking_engine.services.slot_errors import StoreError
from booking_engine.services.slot_store import SlotStore, create_slot_store

logger = logging.getLogger(__name__)


class HealthService:
    """Reports the app name plus whether the configured slot store answers a ping."""

    def __init__(self, settings: Settings, *, store: SlotStore | None = None) -> None:
        self.settings = settings
        self._store = store

    def get_status(self) -> HealthResponse:
        try:
            store = self._store or create_slot_store(self.settings)
            store.ping()
            store_status = "ok"
        except StoreError:
            logger.warning("Slot store ping failed slot_store=%s", self.settings.slot_store)
            store_status = "unavailable"

        return HealthResponse(
            status="ok" if store_status == "ok" else "degraded",
            service=self.settings.app_name,
            slot_store=self.settings.slot_store,
            slot_store_status=store_status,
            timestamp=datetime.now(UTC),
        )
