from __future__ import annotations

import logging
from typing import List, Mapping, Optional, Sequence, Tuple, Union

from capability import can_worker_perform_service, workers_who_can_perform_service
from models import BookingForDate, BreakRange, ResolvedFollowUp, ResolvedPhase, ServiceKey, Worker
from timewindows import Window, minutes_since_day_start

from .engine import DayInputs, phase_blocker

logger = logging.getLogger(__name__)

PhaseItem = Union[ResolvedPhase, ResolvedFollowUp]


def _key(item: PhaseItem) -> ServiceKey:
    service_id = (item.service_id or "").strip() or None
    return ServiceKey(id=service_id, name=(item.service_name or "").strip())


def _items(phases: Sequence[ResolvedPhase]) -> List[PhaseItem]:
    items: List[PhaseItem] = []
    for phase in phases:
        items.append(phase)
        if phase.follow_up is not None and phase.follow_up.service_name and phase.follow_up.duration_min >= 1:
            items.append(phase.follow_up)
    return items


def _span(item: PhaseItem, inputs: DayInputs) -> Tuple[int, int]:
    date_ = inputs.date
    return minutes_since_day_start(item.start_at, date_), minutes_since_day_start(item.end_at, date_)


def _other_spans(items: Sequence[PhaseItem], skip: int, inputs: DayInputs) -> List[Tuple[str, int, int]]:
    spans: List[Tuple[str, int, int]] = []
    for index, item in enumerate(items):
        if index == skip or not item.worker_id:
            continue
        start, end = _span(item, inputs)
        spans.append((item.worker_id, start, end))
    return spans


def _assignment_holds(item: PhaseItem, workers: Sequence[Worker], inputs: DayInputs, taken) -> bool:
    if not item.worker_id:
        return False
    worker = next((candidate for candidate in workers if candidate.id == item.worker_id), None)
    if worker is None or not can_worker_perform_service(worker, _key(item)):
        return False
    start, end = _span(item, inputs)
    return phase_blocker(inputs, worker.id, start, end, taken) is None


def repair_for_inputs(
    resolved_phases: Sequence[ResolvedPhase],
    inputs: DayInputs,
) -> Optional[List[ResolvedPhase]]:
    repaired = [phase.copy() for phase in resolved_phases]
    items = _items(repaired)
    for index, item in enumerate(items):
        taken = _other_spans(items, index, inputs)
        if _assignment_holds(item, inputs.workers, inputs, taken):
            continue
        start, end = _span(item, inputs)
        replacement = next(
            (
                worker
                for worker in workers_who_can_perform_service(inputs.workers, _key(item))
                if phase_blocker(inputs, worker.id, start, end, taken) is None
            ),
            None,
        )
        if replacement is None:
            logger.info(
                "No replacement worker for %s at %s on %s",
                item.service_name,
                item.start_at.strftime("%H:%M"),
                inputs.date_str,
            )
            return None
        logger.debug("Reassigned %s from %s to %s", item.service_name, item.worker_id, replacement.id)
        item.worker_id = replacement.id
        item.worker_name = replacement.name
    return repaired


def repair_invalid_assignments(
    resolved_phases: Sequence[ResolvedPhase],
    workers: Sequence[Worker],
    *,
    date_str: str,
    bookings_for_date: Sequence[BookingForDate],
    worker_window_by_worker_id: Optional[Mapping[str, Optional[Window]]] = None,
    business_window: Optional[Window] = None,
    breaks: Sequence[BreakRange] = (),
    worker_breaks_by_worker_id: Optional[Mapping[str, Sequence[BreakRange]]] = None,
) -> Optional[List[ResolvedPhase]]:
    """Re-check every phase and follow-up; swap out workers that no longer fit.

    Replacements are searched in roster order. Returns None when some phase
    has no valid worker left. Valid input comes back unchanged.
    """
    inputs = DayInputs(
        date_str=date_str,
        workers=list(workers),
        bookings_for_date=list(bookings_for_date),
        worker_window_by_worker_id=dict(worker_window_by_worker_id or {}),
        business_window=business_window,
        breaks=list(breaks or ()),
        worker_breaks_by_worker_id=dict(worker_breaks_by_worker_id or {}),
    )
    return repair_for_inputs(resolved_phases, inputs)
