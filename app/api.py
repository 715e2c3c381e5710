"""FastAPI surface over the booking engine.

Offer and commit are the only public booking operations; settings and status
changes are small admin helpers around the same database.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

# Ensure flat absolute imports (e.g., "import database") still resolve.
APP_DIR = Path(__file__).resolve().parent
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from chain.api import BookingRequest, offer_times_for_site, place_booking  # noqa: E402
from database import (  # noqa: E402
    SessionLocal,
    get_active_settings,
    init_database,
    record_audit_log,
    set_booking_status,
    upsert_settings,
)
from settings import normalize_settings  # noqa: E402
from timewindows import parse_date_str, time_to_minutes  # noqa: E402


@asynccontextmanager
async def lifespan(_: FastAPI):
    init_database()
    yield


app = FastAPI(title="Booking Chain API", version="0.1", lifespan=lifespan)


def get_session_factory():
    return SessionLocal


def get_db(session_factory=Depends(get_session_factory)):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


def _parse_date(value: Optional[str]) -> str:
    if not value:
        raise HTTPException(status_code=400, detail="date is required")
    try:
        return parse_date_str(value).isoformat()
    except ValueError:
        raise HTTPException(status_code=400, detail="date must be YYYY-MM-DD")


def _parse_items(value: Any) -> List[str]:
    if isinstance(value, str):
        value = value.split(",")
    items = [str(item).strip() for item in value or [] if str(item).strip()]
    if not items:
        raise HTTPException(status_code=400, detail="at least one item is required")
    return items


def _settings_payload(site_id: str, db) -> Dict[str, Any]:
    record = get_active_settings(db, site_id)
    return {
        "siteId": site_id,
        "name": record.name if record else None,
        "params": normalize_settings(record.params_dict() if record else {}),
        "lastEditedBy": record.lastEditedBy if record else None,
        "lastEditedAt": record.lastEditedAt.isoformat() if record and record.lastEditedAt else None,
    }


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/api/v1/sites/{site_id}/slots")
def available_slots(
    site_id: str,
    date: Optional[str] = Query(None),
    items: Optional[str] = Query(None),
    worker: Optional[str] = Query(None),
    session_factory=Depends(get_session_factory),
) -> JSONResponse:
    date_str = _parse_date(date)
    pricing_item_ids = _parse_items(items)
    try:
        attempt = offer_times_for_site(session_factory, site_id, date_str, pricing_item_ids, worker)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return JSONResponse(
        content=jsonable_encoder(
            {
                "date": date_str,
                "times": [offer.time for offer in attempt.offers if offer.available],
                "offers": [offer.to_dict() for offer in attempt.offers],
            }
        )
    )


@app.post("/api/v1/sites/{site_id}/bookings")
def create_booking(
    site_id: str,
    payload: Dict[str, Any],
    session_factory=Depends(get_session_factory),
) -> JSONResponse:
    date_str = _parse_date(payload.get("date"))
    time_label = payload.get("time")
    try:
        time_to_minutes(time_label)
    except ValueError:
        raise HTTPException(status_code=400, detail="time must be HH:mm")
    request = BookingRequest(
        site_id=site_id,
        date_str=date_str,
        pricing_item_ids=_parse_items(payload.get("items")),
        time=time_label,
        preferred_worker_id=payload.get("workerId"),
        client_name=(payload.get("clientName") or "").strip(),
        client_phone=(payload.get("clientPhone") or "").strip(),
    )
    actor = (payload.get("actor") or "public").strip() or "public"
    try:
        attempt = place_booking(session_factory, request, actor=actor)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if not attempt.committed:
        raise HTTPException(status_code=409, detail=attempt.message)
    return JSONResponse(status_code=201, content=jsonable_encoder(attempt.to_dict()))


@app.post("/api/v1/bookings/{booking_id}/status")
def update_booking_status(booking_id: str, payload: Dict[str, Any], db=Depends(get_db)) -> JSONResponse:
    actor = (payload.get("actor") or "api").strip() or "api"
    try:
        booking = set_booking_status(db, booking_id, payload.get("status") or "")
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    record_audit_log(
        db,
        user_id=actor,
        action="BOOKING_STATUS",
        target_id=booking.id,
        payload={"status": booking.status},
        site_id=booking.site_id,
    )
    return JSONResponse(content=jsonable_encoder({"id": booking.id, "status": booking.status}))


@app.get("/api/v1/sites/{site_id}/settings")
def active_settings(site_id: str, db=Depends(get_db)) -> JSONResponse:
    return JSONResponse(content=jsonable_encoder(_settings_payload(site_id, db)))


@app.put("/api/v1/sites/{site_id}/settings")
def set_active_settings(site_id: str, payload: Dict[str, Any], db=Depends(get_db)) -> JSONResponse:
    params = payload.get("params")
    actor = (payload.get("editedBy") or payload.get("actor") or "api").strip() or "api"
    if not isinstance(params, dict):
        raise HTTPException(status_code=400, detail="params must be an object")
    record = upsert_settings(
        db,
        site_id,
        normalize_settings(params),
        name=payload.get("name") or "Default Booking Settings",
        edited_by=actor,
    )
    record_audit_log(
        db,
        user_id=actor,
        action="SETTINGS_EDIT",
        target_type="Settings",
        target_id=str(record.id),
        payload={"name": record.name},
        site_id=site_id,
    )
    return JSONResponse(content=jsonable_encoder(_settings_payload(site_id, db)))
