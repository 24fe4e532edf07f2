from datetime import UTC, datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from booking_engine.core.config import get_settings
from booking_engine.main import app
from booking_engine.services.slot_store import clear_slot_store_cache


@pytest.fixture(autouse=True)
def reset_slot_state(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SLOT_STORE", "memory")
    clear_slot_store_cache()
    get_settings.cache_clear()
    yield
    clear_slot_store_cache()
    get_settings.cache_clear()


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def _future_start(days: int = 7, hour: int = 10) -> datetime:
    base = datetime.now(UTC) + timedelta(days=days)
    return base.replace(hour=hour, minute=0, second=0, microsecond=0)


def _create_slot(
    client: TestClient,
    *,
    start_time: datetime,
    duration_minutes: int = 60,
    subject_id: str = "mentor-1",
):  # type: ignore[no-untyped-def]
    return client.post(
        "/api/slots",
        json={
            "subject_id": subject_id,
            "subject_type": "mentor",
            "start_time": start_time.isoformat(),
            "duration_minutes": duration_minutes,
            "slot_type": "regular_mentoring",
            "title": "Weekly mentoring",
            "metadata": {"other_party_name": "Student One"},
        },
    )


def test_slot_booking_flow(client: TestClient) -> None:
    start = _future_start()

    create_response = _create_slot(client, start_time=start)
    assert create_response.status_code == 201
    slot = create_response.json()
    assert slot["status"] == "booked"
    assert slot["title"] == "Weekly mentoring"
    assert slot["metadata"] == {"other_party_name": "Student One"}
    assert datetime.fromisoformat(slot["time_range"]["end"]) == start + timedelta(minutes=60)

    conflict_response = _create_slot(client, start_time=start + timedelta(minutes=30))
    assert conflict_response.status_code == 409
    conflict = conflict_response.json()
    assert conflict["status"] == "conflict"
    assert conflict["subject_id"] == "mentor-1"

    availability_response = client.get(
        "/api/slots/availability",
        params={
            "subject_id": "mentor-1",
            "subject_type": "mentor",
            "start_time": start.isoformat(),
            "duration_minutes": 30,
        },
    )
    assert availability_response.status_code == 200
    assert availability_response.json()["available"] is False
    assert availability_response.json()["advisory"] is True

    release_response = client.post(f"/api/slots/{slot['id']}/release")
    assert release_response.status_code == 200
    assert release_response.json()["status"] == "cancelled"

    second_release_response = client.post(f"/api/slots/{slot['id']}/release")
    assert second_release_response.status_code == 409

    rebook_response = _create_slot(client, start_time=start)
    assert rebook_response.status_code == 201


def test_slot_reschedule_and_session_endpoints(client: TestClient) -> None:
    start = _future_start()
    slot = _create_slot(client, start_time=start).json()
    blocker = _create_slot(client, start_time=start + timedelta(hours=3)).json()

    attach_response = client.post(f"/api/slots/{slot['id']}/session", json={"session_id": "session-1"})
    assert attach_response.status_code == 200
    assert attach_response.json()["session_id"] == "session-1"

    conflict_response = client.post(
        f"/api/slots/{slot['id']}/reschedule",
        json={
            "new_start_time": (start + timedelta(hours=3, minutes=30)).isoformat(),
            "new_duration_minutes": 60,
        },
    )
    assert conflict_response.status_code == 409
    assert client.get(f"/api/slots/{slot['id']}").json()["status"] == "booked"

    reschedule_response = client.post(
        f"/api/slots/{slot['id']}/reschedule",
        json={
            "new_start_time": (start + timedelta(days=1)).isoformat(),
            "new_duration_minutes": 90,
        },
    )
    assert reschedule_response.status_code == 200
    moved = reschedule_response.json()
    assert moved["session_id"] == "session-1"
    assert moved["duration_minutes"] == 90

    by_session_response = client.get("/api/slots/by-session/session-1")
    assert by_session_response.status_code == 200
    assert by_session_response.json()["id"] == moved["id"]

    list_response = client.get(
        "/api/slots",
        params={"subject_id": "mentor-1", "subject_type": "mentor"},
    )
    assert list_response.status_code == 200
    assert [item["id"] for item in list_response.json()["items"]] == [blocker["id"], moved["id"]]

    complete_response = client.post(f"/api/v1/slots/{blocker['id']}/complete")
    assert complete_response.status_code == 200
    assert complete_response.json()["status"] == "completed"


def test_slot_errors_map_to_status_codes(client: TestClient) -> None:
    too_long_response = _create_slot(client, start_time=_future_start(), duration_minutes=240)
    assert too_long_response.status_code == 422

    past_response = _create_slot(client, start_time=datetime.now(UTC) - timedelta(days=1))
    assert past_response.status_code == 422

    wide_window_response = client.get(
        "/api/slots",
        params={
            "subject_id": "mentor-1",
            "subject_type": "mentor",
            "date_from": "2025-12-01T00:00:00+00:00",
            "date_to": "2026-03-01T00:00:01+00:00",
        },
    )
    assert wide_window_response.status_code == 422

    assert client.get("/api/slots/missing").status_code == 404
    assert client.get("/api/slots/by-session/missing").status_code == 404
    assert client.post("/api/slots/missing/release").status_code == 404
    assert client.post("/api/slots/missing/session", json={"session_id": "s-1"}).status_code == 404
