from __future__ import annotations

import datetime
import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence

from models import WEEKDAY_KEYS, BreakRange, OpeningHours, Worker
from settings import business_breaks, day_config, is_closed_date
from timewindows import Window, intersect, overlaps, parse_time_label

logger = logging.getLogger(__name__)


def weekday_key(date_: datetime.date) -> str:
    return WEEKDAY_KEYS[(date_.weekday() + 1) % 7]


def _window_from_labels(start: Optional[str], end: Optional[str]) -> Optional[Window]:
    start_min = parse_time_label(start)
    end_min = parse_time_label(end)
    if start_min is None or end_min is None or end_min <= start_min:
        return None
    return Window(start_min, end_min)


def resolve_business_window(settings: Dict[str, Any], date_: datetime.date) -> Optional[Window]:
    """Opening window for the business on ``date_`` or None when closed.

    Closed dates, disabled weekdays and malformed hours all read as closed.
    """
    if is_closed_date(settings, date_):
        return None
    config = day_config(settings, date_)
    if not config or not config.get("enabled"):
        return None
    window = _window_from_labels(config.get("start"), config.get("end"))
    if window is None:
        logger.warning("Business hours for %s are malformed: %r", date_.isoformat(), config)
    return window


def worker_day_config(worker: Worker, date_: datetime.date) -> Optional[OpeningHours]:
    key = weekday_key(date_)
    for entry in worker.availability or ():
        if entry.day == key:
            return entry
    return None


def has_availability_config(worker: Worker) -> bool:
    return bool(worker.availability)


def resolve_worker_window(
    worker: Worker,
    date_: datetime.date,
    business_window: Optional[Window] = None,
) -> Optional[Window]:
    """Individual working window for ``worker`` on ``date_``.

    A worker without any schedule works whenever the business is open. A
    worker with a schedule but no entry for the weekday is off that day.
    """
    if not has_availability_config(worker):
        return business_window
    entry = worker_day_config(worker, date_)
    if entry is None or entry.is_closed:
        return None
    window = _window_from_labels(entry.open, entry.close)
    if window is None:
        logger.warning("Worker %s has malformed hours on %s: %r", worker.id, entry.day, entry)
    return window


def effective_window(business: Optional[Window], worker: Optional[Window]) -> Optional[Window]:
    if business is None:
        return None
    if worker is None:
        return business
    return intersect(business, worker)


def worker_breaks(worker: Worker, date_: datetime.date) -> List[BreakRange]:
    entry = worker_day_config(worker, date_)
    if entry is None or entry.is_closed:
        return []
    return list(entry.breaks)


def break_windows(breaks: Optional[Iterable[BreakRange]]) -> List[Window]:
    windows: List[Window] = []
    for entry in breaks or ():
        window = _window_from_labels(entry.start, entry.end)
        if window is not None:
            windows.append(window)
    return windows


def segment_hits_breaks(start_min: int, end_min: int, breaks: Optional[Iterable[BreakRange]]) -> Optional[Window]:
    """First break overlapping the service segment ``[start_min, end_min)``."""
    for window in break_windows(breaks):
        if overlaps(start_min, end_min, window.start_min, window.end_min):
            return window
    return None


def build_worker_windows(
    workers: Sequence[Worker],
    date_: datetime.date,
    business_window: Optional[Window],
) -> Dict[str, Optional[Window]]:
    return {worker.id: resolve_worker_window(worker, date_, business_window) for worker in workers}


def build_worker_breaks(workers: Sequence[Worker], date_: datetime.date) -> Dict[str, List[BreakRange]]:
    return {worker.id: worker_breaks(worker, date_) for worker in workers}


class DayAvailability:
    """Business and per-worker windows and breaks for one date."""

    def __init__(self, settings: Dict[str, Any], workers: Sequence[Worker], date_: datetime.date) -> None:
        self.date = date_
        self.business_window = resolve_business_window(settings, date_)
        self.breaks = business_breaks(settings, date_) if self.business_window else []
        self.worker_windows = build_worker_windows(workers, date_, self.business_window)
        self.worker_breaks = build_worker_breaks(workers, date_)

    @property
    def is_open(self) -> bool:
        return self.business_window is not None
