import pytest
from fastapi.testclient import TestClient

from booking_engine.core.config import get_settings
from booking_engine.main import app
from booking_engine.services.health_service import HealthService
from booking_engine.services.slot_errors import StoreError
from booking_engine.services.slot_store import InMemorySlotStore, clear_slot_store_cache


@pytest.fixture(autouse=True)
def reset_slot_state(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SLOT_STORE", "memory")
    clear_slot_store_cache()
    get_settings.cache_clear()
    yield
    clear_slot_store_cache()
    get_settings.cache_clear()


def test_health_endpoint_returns_expected_shape() -> None:
    client = TestClient(app)
    response = client.get("/api/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["slot_store"] == "memory"
    assert "service" in data
    assert "timestamp" in data
    assert data["slot_store_status"] == "ok"


class _UnreachableStore(InMemorySlotStore):
    def ping(self) -> None:
        raise StoreError("Slot store operation 'ping' failed.")


def test_health_reports_degraded_when_store_ping_fails() -> None:
    service = HealthService(get_settings(), store=_UnreachableStore())

    health = service.get_status()

    assert health.status == "degraded"
    assert health.slot_store_status == "unavailable"
    assert health.slot_store == "memory"


def test_health_endpoint_returns_503_when_store_is_down(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(InMemorySlotStore, "ping", _UnreachableStore.ping)
    client = TestClient(app)

    response = client.get("/api/health")

    assert response.status_code == 503
    assert response.json()["status"] == "degraded"
