from __future__ import annotations

import datetime
from typing import List, Optional

from timewindows import SLOT_GRANULARITY_MINUTES, Window, minutes_since_day_start, minutes_to_time


def generate_candidate_minutes(
    business_window: Optional[Window],
    total_duration: int,
    *,
    granularity: int = SLOT_GRANULARITY_MINUTES,
    date: Optional[datetime.date] = None,
    now: Optional[datetime.datetime] = None,
) -> List[int]:
    """Start minutes from open to ``close - total_duration`` inclusive.

    When ``now`` falls on ``date`` every start at or before it is dropped.
    Feasibility beyond the business window is left to the resolver.
    """
    if business_window is None or business_window.is_empty:
        return []
    if granularity <= 0:
        raise ValueError("granularity must be a positive number of minutes.")
    total_duration = max(0, int(total_duration))
    last_start = business_window.end_min - total_duration
    if last_start < business_window.start_min:
        return []
    floor_minute: Optional[int] = None
    if date is not None and now is not None and now.date() == date:
        floor_minute = minutes_since_day_start(now, date)
    minutes: List[int] = []
    for start in range(business_window.start_min, last_start + 1, granularity):
        if floor_minute is not None and start <= floor_minute:
            continue
        minutes.append(start)
    return minutes


def generate_candidate_times(
    business_window: Optional[Window],
    total_duration: int,
    *,
    granularity: int = SLOT_GRANULARITY_MINUTES,
    date: Optional[datetime.date] = None,
    now: Optional[datetime.datetime] = None,
) -> List[str]:
    return [
        minutes_to_time(value)
        for value in generate_candidate_minutes(
            business_window,
            total_duration,
            granularity=granularity,
            date=date,
            now=now,
        )
    ]
