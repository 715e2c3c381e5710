from __future__ import annotations

import copy
import datetime
import logging
import re
from typing import Any, Dict, List, Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from database import get_active_settings
from models import BreakRange
from timewindows import SLOT_GRANULARITY_MINUTES, parse_time_label

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "Asia/Jerusalem"
DAY_KEYS = ["0", "1", "2", "3", "4", "5", "6"]  # "0" = Sunday
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

DEFAULT_DAYS: Dict[str, Dict[str, Any]] = {
    "0": {"enabled": False, "start": "09:00", "end": "17:00", "breaks": []},
    "1": {"enabled": True, "start": "09:00", "end": "17:00", "breaks": []},
    "2": {"enabled": True, "start": "09:00", "end": "17:00", "breaks": []},
    "3": {"enabled": True, "start": "09:00", "end": "17:00", "breaks": []},
    "4": {"enabled": True, "start": "09:00", "end": "17:00", "breaks": []},
    "5": {"enabled": True, "start": "09:00", "end": "13:00", "breaks": []},
    "6": {"enabled": False, "start": "09:00", "end": "17:00", "breaks": []},
}


def build_default_settings(name: str = "Default Booking Settings") -> Dict[str, Any]:
    return {
        "name": name,
        "timezone": DEFAULT_TIMEZONE,
        "slot_minutes": SLOT_GRANULARITY_MINUTES,
        "days": copy.deepcopy(DEFAULT_DAYS),
        "closed_dates": [],
    }


def load_active_settings(conn, site_id: str) -> Dict[str, Any]:
    """Return the site's booking settings as a normalized dict.

    ``conn`` may be a session or a session factory. A site with nothing
    stored gets the defaults.
    """
    if conn is None:
        return normalize_settings({})
    if callable(conn):
        with conn() as session:
            record = get_active_settings(session, site_id)
            return normalize_settings(record.params_dict() if record else {})
    record = get_active_settings(conn, site_id)
    return normalize_settings(record.params_dict() if record else {})


def _normalize_breaks(raw: Any) -> List[Dict[str, str]]:
    breaks: List[Dict[str, str]] = []
    if not isinstance(raw, list):
        return breaks
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        start = parse_time_label(entry.get("start"))
        end = parse_time_label(entry.get("end"))
        if start is None or end is None or end <= start:
            logger.warning("Ignoring malformed break %r", entry)
            continue
        breaks.append({"start": str(entry["start"]).strip(), "end": str(entry["end"]).strip()})
    return breaks


def normalize_settings(settings: Any) -> Dict[str, Any]:
    """Apply defaults so runtime code can rely on every key being present.

    Accepts the camelCase payloads stored by older clients (``slotMinutes``,
    ``closedDates``).
    """
    if not isinstance(settings, dict):
        settings = {}
    normalized = copy.deepcopy(settings)
    if "slotMinutes" in normalized:
        normalized.setdefault("slot_minutes", normalized.pop("slotMinutes"))
    if "closedDates" in normalized:
        normalized.setdefault("closed_dates", normalized.pop("closedDates"))
    normalized.setdefault("name", "Default Booking Settings")
    normalized.setdefault("timezone", DEFAULT_TIMEZONE)
    try:
        slot_minutes = int(normalized.get("slot_minutes", SLOT_GRANULARITY_MINUTES))
    except (TypeError, ValueError):
        slot_minutes = SLOT_GRANULARITY_MINUTES
    normalized["slot_minutes"] = slot_minutes if slot_minutes > 0 else SLOT_GRANULARITY_MINUTES

    raw_days = normalized.get("days")
    days: Dict[str, Dict[str, Any]] = {}
    for key in DAY_KEYS:
        source = raw_days.get(key) if isinstance(raw_days, dict) else None
        if not isinstance(raw_days, dict):
            days[key] = copy.deepcopy(DEFAULT_DAYS[key])
            continue
        if not isinstance(source, dict):
            # A stored days map without this weekday means closed.
            days[key] = {"enabled": False, "start": "", "end": "", "breaks": []}
            continue
        days[key] = {
            "enabled": bool(source.get("enabled", False)),
            "start": source.get("start") or "",
            "end": source.get("end") or "",
            "breaks": _normalize_breaks(source.get("breaks")),
        }
    normalized["days"] = days

    closed: List[Dict[str, str]] = []
    for entry in normalized.get("closed_dates") or []:
        if not isinstance(entry, dict):
            continue
        date_str = str(entry.get("date") or "").strip()
        if not _DATE_RE.match(date_str):
            continue
        closed.append({"date": date_str, "label": str(entry.get("label") or "")})
    normalized["closed_dates"] = closed
    return normalized


def day_key(date_: datetime.date) -> str:
    return str((date_.weekday() + 1) % 7)


def day_config(settings: Dict[str, Any], date_: datetime.date) -> Optional[Dict[str, Any]]:
    days = settings.get("days") if isinstance(settings, dict) else None
    if not isinstance(days, dict):
        return None
    config = days.get(day_key(date_))
    return config if isinstance(config, dict) else None


def business_breaks(settings: Dict[str, Any], date_: datetime.date) -> List[BreakRange]:
    config = day_config(settings, date_)
    if not config or not config.get("enabled"):
        return []
    return [BreakRange(start=entry["start"], end=entry["end"]) for entry in _normalize_breaks(config.get("breaks"))]


def _date_label(value: Union[str, datetime.date]) -> Optional[str]:
    if isinstance(value, datetime.datetime):
        return value.date().isoformat()
    if isinstance(value, datetime.date):
        return value.isoformat()
    if isinstance(value, str) and _DATE_RE.match(value.strip()):
        return value.strip()
    return None


def is_closed_date(settings: Optional[Dict[str, Any]], date_str: Union[str, datetime.date]) -> bool:
    label = _date_label(date_str)
    if not settings or not label:
        return False
    return any((entry or {}).get("date", "").strip() == label for entry in settings.get("closed_dates") or [])


def is_business_closed_all_day(settings: Optional[Dict[str, Any]], date_: Union[str, datetime.date]) -> bool:
    """True when the business has zero working minutes on the date."""
    if not settings:
        return True
    label = _date_label(date_)
    if label is None:
        return True
    if is_closed_date(settings, label):
        return True
    config = day_config(settings, datetime.date.fromisoformat(label))
    if not config or not config.get("enabled"):
        return True
    start = parse_time_label(config.get("start"))
    end = parse_time_label(config.get("end"))
    if start is None or end is None or end <= start:
        return True
    return False


def site_timezone(settings: Optional[Dict[str, Any]]) -> ZoneInfo:
    name = (settings or {}).get("timezone") or DEFAULT_TIMEZONE
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r; falling back to %s", name, DEFAULT_TIMEZONE)
        return ZoneInfo(DEFAULT_TIMEZONE)


def site_now(settings: Optional[Dict[str, Any]], *, now: Optional[datetime.datetime] = None) -> datetime.datetime:
    """Current wall-clock time in the site's timezone, returned naive."""
    moment = now or datetime.datetime.now(datetime.timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=datetime.timezone.utc)
    return moment.astimezone(site_timezone(settings)).replace(tzinfo=None)
