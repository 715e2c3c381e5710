from __future__ import annotations

import datetime
from dataclasses import dataclass
from typing import Optional

MINUTES_PER_DAY = 24 * 60
SLOT_GRANULARITY_MINUTES = 15


@dataclass(frozen=True)
class Window:
    """Half-open ``[start_min, end_min)`` span in minutes since local midnight."""

    start_min: int
    end_min: int

    @property
    def is_empty(self) -> bool:
        return self.end_min <= self.start_min

    def contains(self, start_min: int, end_min: int) -> bool:
        return self.start_min <= start_min and end_min <= self.end_min

    def label(self) -> str:
        return f"{minutes_to_time(self.start_min)}-{minutes_to_time(self.end_min)}"


def parse_time_label(value: Optional[str]) -> Optional[int]:
    """Return minutes since midnight for an "HH:mm" label, or None when unusable."""
    if value is None:
        return None
    label = str(value).strip()
    if not label or ":" not in label:
        return None
    hour_str, minute_str = label.split(":", 1)
    try:
        hours = int(hour_str)
        minutes = int(minute_str)
    except ValueError:
        return None
    if hours < 0 or minutes < 0 or minutes > 59 or hours > 24:
        return None
    total = hours * 60 + minutes
    if total > MINUTES_PER_DAY:
        return None
    return total


def time_to_minutes(value: str) -> int:
    parsed = parse_time_label(value)
    if parsed is None:
        raise ValueError(f"Invalid time label {value!r}; expected HH:mm.")
    return parsed


def minutes_to_time(value: int) -> str:
    value = int(value)
    hours = value // 60
    minutes = value % 60
    return f"{hours:02d}:{minutes:02d}"


def overlaps(a_start: int, a_end: int, b_start: int, b_end: int) -> bool:
    return a_start < b_end and b_start < a_end


def intersect(*windows: Optional[Window]) -> Optional[Window]:
    """Intersect windows; None (or an empty result) means no usable time."""
    present = [window for window in windows if window is not None]
    if not present or len(present) != len(windows):
        return None
    result = Window(max(w.start_min for w in present), min(w.end_min for w in present))
    if result.is_empty:
        return None
    return result


def day_start(date_value: datetime.date) -> datetime.datetime:
    if isinstance(date_value, datetime.datetime):
        date_value = date_value.date()
    return datetime.datetime.combine(date_value, datetime.time.min)


def parse_date_str(value: str) -> datetime.date:
    try:
        return datetime.date.fromisoformat(str(value).strip())
    except ValueError:
        raise ValueError(f"Invalid date {value!r}; expected YYYY-MM-DD.") from None


def minutes_since_day_start(moment: datetime.datetime, date_value: datetime.date) -> int:
    """Wall-clock minutes of ``moment`` relative to midnight of ``date_value``."""
    if moment.tzinfo is not None:
        moment = moment.replace(tzinfo=None)
    delta = moment - day_start(date_value)
    return int(round(delta.total_seconds() / 60))


def minutes_to_datetime(date_value: datetime.date, minutes: int) -> datetime.datetime:
    return day_start(date_value) + datetime.timedelta(minutes=int(minutes))
