from __future__ import annotations

import sys
from pathlib import Path

import pytest

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from capability import can_worker_perform_service, workers_who_can_perform_service  # noqa: E402
from models import ServiceKey, Worker  # noqa: E402

AVI = Worker(id="w-avi", name="Avi", services=("גוונים", "svc-blowdry"))
BOB = Worker(id="w-bob", name="Bob", services=(" פן ",))
IDLE = Worker(id="w-idle", name="Idle", services=())
GONE = Worker(id="w-gone", name="Gone", active=False, services=("גוונים",))


@pytest.mark.parametrize(
    "worker, service, expected",
    [
        (AVI, "גוונים", True),
        (AVI, " גוונים ", True),
        (AVI, "פן", False),
        (BOB, "פן", True),
        (BOB, "פ", False),
        (AVI, ServiceKey(id="svc-blowdry", name="פן"), True),
        (BOB, ServiceKey(id="svc-blowdry", name="פן"), True),
        (IDLE, "גוונים", False),
        (GONE, "גוונים", False),
        (None, "גוונים", False),
    ],
)
def test_can_worker_perform_service(worker, service, expected) -> None:
    assert can_worker_perform_service(worker, service) is expected


def test_mapping_workers_are_accepted() -> None:
    assert can_worker_perform_service({"id": "x", "services": ["פן"]}, "פן")
    assert not can_worker_perform_service({"id": "x", "services": ["פן"], "active": False}, "פן")
    assert not can_worker_perform_service({"id": "x"}, "פן")


def test_matching_is_case_sensitive() -> None:
    worker = Worker(id="w", name="W", services=("Cut",))
    assert can_worker_perform_service(worker, "Cut")
    assert not can_worker_perform_service(worker, "cut")


def test_capable_workers_keep_roster_order() -> None:
    roster = [BOB, GONE, AVI, IDLE]
    capable = workers_who_can_perform_service(roster, ServiceKey(id="svc-blowdry", name="פן"))
    assert [worker.id for worker in capable] == ["w-bob", "w-avi"]
