from __future__ import annotations

import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))
TESTS_DIR = Path(__file__).resolve().parent
if str(TESTS_DIR) not in sys.path:
    sys.path.insert(0, str(TESTS_DIR))

from api import app, get_session_factory  # noqa: E402
from database import init_database  # noqa: E402
from test_booking_flow import DATE, SITE, seed_site  # noqa: E402


@pytest.fixture()
def client():
    engine = create_engine(
        "sqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_database(engine)
    Session = sessionmaker(bind=engine, expire_on_commit=False, future=True)
    with Session() as session:
        seed_site(session)
    app.dependency_overrides[get_session_factory] = lambda: Session
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
        engine.dispose()


def _booking(**overrides):
    payload = {
        "date": DATE,
        "time": "10:00",
        "items": ["p-color"],
        "clientName": "Noa",
        "clientPhone": "050-0000000",
    }
    payload.update(overrides)
    return payload


def test_health(client) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_slots_lists_offers(client) -> None:
    response = client.get(f"/api/v1/sites/{SITE}/slots", params={"date": DATE, "items": "p-color"})
    assert response.status_code == 200
    body = response.json()
    assert body["date"] == DATE
    assert "09:00" in body["times"]
    assert "12:30" not in body["times"]
    blocked = next(offer for offer in body["offers"] if offer["time"] == "12:30")
    assert blocked == {"time": "12:30", "available": False, "reason": "break"}


@pytest.mark.parametrize(
    "params",
    [
        {"date": "07/01/2030", "items": "p-color"},
        {"items": "p-color"},
        {"date": DATE},
        {"date": DATE, "items": "missing"},
    ],
)
def test_slots_rejects_bad_queries(client, params) -> None:
    response = client.get(f"/api/v1/sites/{SITE}/slots", params=params)
    assert response.status_code == 400


def test_booking_is_created_then_conflicts(client) -> None:
    response = client.post(f"/api/v1/sites/{SITE}/bookings", json=_booking())
    assert response.status_code == 201
    body = response.json()
    assert body["state"] == "COMMITTED"
    assert body["bookingId"]
    assert body["phases"][0]["workerId"] == "avi"
    assert body["phases"][0]["followUp"]["workerId"] == "bob"

    again = client.post(f"/api/v1/sites/{SITE}/bookings", json=_booking())
    assert again.status_code == 409
    assert again.json()["detail"] == "10:00 is no longer available; please pick another time."

    slots = client.get(f"/api/v1/sites/{SITE}/slots", params={"date": DATE, "items": "p-color"}).json()
    assert "10:00" not in slots["times"]


def test_preferred_worker_is_honoured(client) -> None:
    response = client.post(f"/api/v1/sites/{SITE}/bookings", json=_booking(items=["p-fen"], workerId="bob"))
    assert response.status_code == 201
    assert response.json()["phases"][0]["workerId"] == "bob"


@pytest.mark.parametrize(
    "overrides",
    [
        {"time": "10am"},
        {"time": None},
        {"date": "2030-13-01"},
        {"items": []},
        {"items": ["missing"]},
    ],
)
def test_booking_rejects_bad_payloads(client, overrides) -> None:
    response = client.post(f"/api/v1/sites/{SITE}/bookings", json=_booking(**overrides))
    assert response.status_code == 400


def test_booking_status_update(client) -> None:
    created = client.post(f"/api/v1/sites/{SITE}/bookings", json=_booking()).json()
    response = client.post(f"/api/v1/bookings/{created['bookingId']}/status", json={"status": "cancelled"})
    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"
    assert client.post(f"/api/v1/sites/{SITE}/bookings", json=_booking()).status_code == 201

    bad = client.post(f"/api/v1/bookings/{created['bookingId']}/status", json={"status": "pending"})
    assert bad.status_code == 400


def test_settings_round_trip(client) -> None:
    current = client.get(f"/api/v1/sites/{SITE}/settings").json()
    assert current["params"]["days"]["1"]["breaks"] == [{"start": "13:00", "end": "13:30"}]

    params = current["params"]
    params["closed_dates"] = [{"date": DATE, "label": "Holiday"}]
    updated = client.put(f"/api/v1/sites/{SITE}/settings", json={"name": current["name"], "params": params, "editedBy": "owner"})
    assert updated.status_code == 200
    assert updated.json()["lastEditedBy"] == "owner"

    slots = client.get(f"/api/v1/sites/{SITE}/slots", params={"date": DATE, "items": "p-color"}).json()
    assert slots["times"] == []
    assert client.put(f"/api/v1/sites/{SITE}/settings", json={"params": "nope"}).status_code == 400
