from __future__ import annotations

import datetime
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from models import BookingForDate
from timewindows import minutes_since_day_start, parse_date_str, parse_time_label, overlaps

DEFAULT_BOOKING_MINUTES = 60


@dataclass(frozen=True)
class BusyInterval:
    start_min: int
    end_min: int
    booking_id: Optional[str] = None
    phase: int = 1


def _legacy_primary_start(booking: BookingForDate, date_: datetime.date) -> Optional[datetime.datetime]:
    if booking.start_at is not None:
        return booking.start_at
    minutes = parse_time_label(booking.time)
    if minutes is None:
        return None
    booked_on = parse_date_str(booking.date) if booking.date else date_
    return datetime.datetime.combine(booked_on, datetime.time.min) + datetime.timedelta(minutes=minutes)


def _segments(booking: BookingForDate, date_: datetime.date) -> List[tuple]:
    """``(phase, worker_id, start, end)`` for every worked segment of a booking."""
    if booking.phases:
        return [
            (entry.phase, entry.worker_id or booking.worker_id, entry.start_at, entry.end_at)
            for entry in booking.phases
        ]

    segments: List[tuple] = []
    primary_start = _legacy_primary_start(booking, date_)
    if primary_start is None or not booking.worker_id:
        return segments
    duration = booking.duration_min or DEFAULT_BOOKING_MINUTES
    primary_end = booking.end_at or primary_start + datetime.timedelta(minutes=duration)
    segments.append((1, booking.worker_id, primary_start, primary_end))

    secondary_worker = booking.secondary_worker_id or booking.worker_id
    if booking.secondary_start_at is not None and booking.secondary_end_at is not None:
        segments.append((2, secondary_worker, booking.secondary_start_at, booking.secondary_end_at))
    elif booking.secondary_duration_min > 0:
        secondary_start = primary_end + datetime.timedelta(minutes=booking.wait_min)
        secondary_end = secondary_start + datetime.timedelta(minutes=booking.secondary_duration_min)
        segments.append((2, secondary_worker, secondary_start, secondary_end))

    if booking.follow_up_start_at is not None and booking.follow_up_end_at is not None:
        follow_up_worker = booking.follow_up_worker_id or secondary_worker
        segment = (2, follow_up_worker, booking.follow_up_start_at, booking.follow_up_end_at)
        if segment not in segments:
            segments.append(segment)
    return segments


def _booking_on_date(booking: BookingForDate, date_str: str) -> bool:
    if booking.date:
        return booking.date == date_str
    return True


def get_worker_busy_intervals(
    bookings: Iterable[BookingForDate],
    worker_id: str,
    date_str: str,
) -> List[BusyInterval]:
    """Blocking intervals for ``worker_id`` on ``date_str``, in minutes since midnight.

    Cancelled and archived bookings are skipped. Only worked segments are
    emitted; the wait between a phase and its follow-up never blocks.
    """
    date_ = parse_date_str(date_str)
    intervals: List[BusyInterval] = []
    for booking in bookings:
        if not booking.is_active or not _booking_on_date(booking, date_str):
            continue
        for phase, segment_worker, start, end in _segments(booking, date_):
            if segment_worker != worker_id or start is None or end is None:
                continue
            start_min = minutes_since_day_start(start, date_)
            end_min = minutes_since_day_start(end, date_)
            if end_min <= start_min:
                continue
            intervals.append(BusyInterval(start_min, end_min, booking.id, phase))
    return intervals


def get_conflicting_busy_interval(
    bookings: Sequence[BookingForDate],
    worker_id: str,
    date_str: str,
    start_min: int,
    end_min: int,
) -> Optional[BusyInterval]:
    for interval in get_worker_busy_intervals(bookings, worker_id, date_str):
        if overlaps(start_min, end_min, interval.start_min, interval.end_min):
            return interval
    return None
