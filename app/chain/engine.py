from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass, field
from functools import reduce
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from availability import effective_window, segment_hits_breaks
from busy import BusyInterval, get_conflicting_busy_interval
from capability import can_worker_perform_service, workers_who_can_perform_service
from models import (
    AnyWorker,
    BookingForDate,
    BreakRange,
    ChainServiceInput,
    Preferred,
    ResolvedFollowUp,
    ResolvedPhase,
    Worker,
    WorkerSelection,
    worker_selection,
)
from timewindows import (
    Window,
    minutes_since_day_start,
    minutes_to_datetime,
    minutes_to_time,
    overlaps,
    parse_date_str,
    time_to_minutes,
)

from .builder import PlannedPhase, compute_chain_phases

logger = logging.getLogger(__name__)

REJECT_NO_ELIGIBLE = "no_eligible"
REJECT_BREAK = "break"
REJECT_NO_AVAILABLE = "no_available"

StartAt = Union[datetime.datetime, str, int]


@dataclass
class SlotValidity:
    valid: bool
    reject_reason: Optional[str] = None
    reject_service_name: Optional[str] = None
    reject_item_index: Optional[int] = None
    overlapping: Optional[BusyInterval] = None


@dataclass(frozen=True)
class SlotOffer:
    time: str
    available: bool
    reject_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"time": self.time, "available": self.available, "reason": self.reject_reason}


@dataclass(frozen=True)
class DayInputs:
    """Everything the resolver reads for one date, taken as one snapshot."""

    date_str: str
    workers: Sequence[Worker]
    bookings_for_date: Sequence[BookingForDate]
    worker_window_by_worker_id: Mapping[str, Optional[Window]]
    business_window: Optional[Window]
    breaks: Sequence[BreakRange] = ()
    worker_breaks_by_worker_id: Mapping[str, Sequence[BreakRange]] = field(default_factory=dict)

    @property
    def date(self) -> datetime.date:
        return parse_date_str(self.date_str)


@dataclass(frozen=True)
class _Assignment:
    planned: PlannedPhase
    worker: Worker


def _start_minute(start_at: StartAt, date_: datetime.date) -> int:
    if isinstance(start_at, datetime.datetime):
        return minutes_since_day_start(start_at, date_)
    if isinstance(start_at, str):
        return time_to_minutes(start_at)
    return int(start_at)


def phase_blocker(
    inputs: DayInputs,
    worker_id: str,
    start_min: int,
    end_min: int,
    taken: Sequence[Tuple[str, int, int]] = (),
) -> Optional[Tuple[str, Optional[BusyInterval]]]:
    """Why ``worker_id`` cannot take ``[start_min, end_min)``, or None when free."""
    business = inputs.business_window
    if business is None or not business.contains(start_min, end_min):
        return "window", None
    windows = inputs.worker_window_by_worker_id
    if worker_id in windows and windows[worker_id] is None:
        return "window", None
    window = effective_window(business, windows.get(worker_id, business))
    if window is None or not window.contains(start_min, end_min):
        return "window", None
    if segment_hits_breaks(start_min, end_min, inputs.breaks):
        return REJECT_BREAK, None
    if segment_hits_breaks(start_min, end_min, inputs.worker_breaks_by_worker_id.get(worker_id)):
        return REJECT_BREAK, None
    conflict = get_conflicting_busy_interval(inputs.bookings_for_date, worker_id, inputs.date_str, start_min, end_min)
    if conflict is not None:
        return "busy", conflict
    for taken_worker_id, taken_start, taken_end in taken:
        if taken_worker_id == worker_id and overlaps(start_min, end_min, taken_start, taken_end):
            return "self", None
    return None


def is_worker_available_in_slot(
    inputs: DayInputs,
    worker_id: str,
    start_min: int,
    end_min: int,
) -> bool:
    return phase_blocker(inputs, worker_id, start_min, end_min) is None


def candidate_workers(
    workers: Sequence[Worker],
    planned: PlannedPhase,
    selection: WorkerSelection,
    *,
    first_phase: bool = False,
) -> List[Worker]:
    """Workers to try for one phase, in the order they are tried.

    A capable preferred worker is tried first; on the first phase nobody
    else is tried. A preferred worker who cannot do the phase is ignored for it.
    """
    eligible = workers_who_can_perform_service(workers, planned.key)
    if not isinstance(selection, Preferred):
        return eligible
    preferred = next((worker for worker in workers if worker.id == selection.worker_id), None)
    if preferred is None or not can_worker_perform_service(preferred, planned.key):
        return eligible
    if first_phase:
        return [preferred]
    return [preferred] + [worker for worker in eligible if worker.id != preferred.id]


def _spans(assignments: Sequence[_Assignment]) -> List[Tuple[str, int, int]]:
    return [(item.worker.id, item.planned.start_min, item.planned.end_min) for item in assignments]


def _reject(planned: PlannedPhase, reason: str, overlapping: Optional[BusyInterval] = None) -> SlotValidity:
    return SlotValidity(
        valid=False,
        reject_reason=reason,
        reject_service_name=planned.key.label or None,
        reject_item_index=planned.index,
        overlapping=overlapping,
    )


def _resolve(
    chain: Sequence[ChainServiceInput],
    start_minute: int,
    inputs: DayInputs,
    selection: WorkerSelection,
) -> Tuple[Optional[List[_Assignment]], SlotValidity]:
    planned_phases = compute_chain_phases(chain, start_minute)
    if not planned_phases:
        return None, SlotValidity(valid=False, reject_reason=REJECT_NO_ELIGIBLE)

    def assign(acc, planned: PlannedPhase):
        assignments, failure = acc
        if failure is not None:
            return acc
        candidates = candidate_workers(
            inputs.workers,
            planned,
            selection,
            first_phase=not assignments,
        )
        if not candidates:
            return assignments, _reject(planned, REJECT_NO_ELIGIBLE)
        reasons: List[str] = []
        overlapping: Optional[BusyInterval] = None
        for worker in candidates:
            blocker = phase_blocker(inputs, worker.id, planned.start_min, planned.end_min, _spans(assignments))
            if blocker is None:
                return assignments + (_Assignment(planned, worker),), None
            reasons.append(blocker[0])
            if overlapping is None and blocker[1] is not None:
                overlapping = blocker[1]
        reason = REJECT_BREAK if all(item == REJECT_BREAK for item in reasons) else REJECT_NO_AVAILABLE
        return assignments, _reject(planned, reason, overlapping)

    assignments, failure = reduce(assign, planned_phases, ((), None))
    if failure is not None:
        logger.debug(
            "Chain rejected at %s on %s: %s (%s, item %s)",
            minutes_to_time(start_minute),
            inputs.date_str,
            failure.reject_reason,
            failure.reject_service_name,
            failure.reject_item_index,
        )
        return None, failure
    return list(assignments), SlotValidity(valid=True)


def _to_resolved(assignments: Sequence[_Assignment], date_: datetime.date) -> List[ResolvedPhase]:
    resolved: List[ResolvedPhase] = []
    for assignment in assignments:
        planned = assignment.planned
        start_at = minutes_to_datetime(date_, planned.start_min)
        end_at = minutes_to_datetime(date_, planned.end_min)
        if planned.follow_up and resolved:
            resolved[-1].follow_up = ResolvedFollowUp(
                service_id=planned.service_id,
                service_name=planned.service_name,
                duration_min=planned.duration,
                wait_min=planned.gap,
                start_at=start_at,
                end_at=end_at,
                worker_id=assignment.worker.id,
                worker_name=assignment.worker.name,
            )
            continue
        resolved.append(
            ResolvedPhase(
                service_order=len(resolved),
                service_id=planned.service_id,
                service_name=planned.service_name,
                service_type=planned.service_type,
                duration_min=planned.duration,
                start_at=start_at,
                end_at=end_at,
                worker_id=assignment.worker.id,
                worker_name=assignment.worker.name,
                pricing_item_id=planned.pricing_item_id,
            )
        )
    return resolved


def resolve_chain_workers(
    chain: Sequence[ChainServiceInput],
    start_at: StartAt,
    date_str: str,
    workers: Sequence[Worker],
    bookings_for_date: Sequence[BookingForDate],
    preferred_worker_id: Optional[str] = None,
    worker_window_by_worker_id: Optional[Mapping[str, Optional[Window]]] = None,
    business_window: Optional[Window] = None,
    *,
    breaks: Sequence[BreakRange] = (),
    worker_breaks_by_worker_id: Optional[Mapping[str, Sequence[BreakRange]]] = None,
    selection: Optional[WorkerSelection] = None,
) -> Optional[List[ResolvedPhase]]:
    """Assign a worker to every phase of ``chain`` starting at ``start_at``.

    Returns None when any phase has no capable and free worker; there are
    no partial results.
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
    return resolve_for_inputs(chain, start_at, inputs, selection or worker_selection(preferred_worker_id))


def resolve_for_inputs(
    chain: Sequence[ChainServiceInput],
    start_at: StartAt,
    inputs: DayInputs,
    selection: WorkerSelection,
) -> Optional[List[ResolvedPhase]]:
    date_ = inputs.date
    assignments, _ = _resolve(chain, _start_minute(start_at, date_), inputs, selection)
    if assignments is None:
        return None
    return _to_resolved(assignments, date_)


def _business_break_validity(chain: Sequence[ChainServiceInput], start_minute: int, inputs: DayInputs) -> Optional[SlotValidity]:
    if not inputs.breaks:
        return None
    for planned in compute_chain_phases(chain, start_minute):
        if segment_hits_breaks(planned.start_min, planned.end_min, inputs.breaks):
            return _reject(planned, REJECT_BREAK)
    return None


def slot_validity(
    chain: Sequence[ChainServiceInput],
    start_at: StartAt,
    inputs: DayInputs,
    selection: WorkerSelection = AnyWorker(),
) -> SlotValidity:
    start_minute = _start_minute(start_at, inputs.date)
    blocked = _business_break_validity(chain, start_minute, inputs)
    if blocked is not None:
        return blocked
    _, validity = _resolve(chain, start_minute, inputs, selection)
    return validity


def slot_is_valid_for_no_preference(
    chain: Sequence[ChainServiceInput],
    start_at: StartAt,
    date_str: str,
    workers: Sequence[Worker],
    bookings_for_date: Sequence[BookingForDate],
    worker_window_by_worker_id: Optional[Mapping[str, Optional[Window]]] = None,
    business_window: Optional[Window] = None,
    *,
    breaks: Sequence[BreakRange] = (),
    worker_breaks_by_worker_id: Optional[Mapping[str, Sequence[BreakRange]]] = None,
) -> SlotValidity:
    """Offerability of one start time when any worker may take any phase.

    Phases never overlap one another, so checking every phase for at least
    one capable free worker is the same as a full resolution.
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
    return slot_validity(chain, start_at, inputs, AnyWorker())


def evaluate_candidate_times(
    chain: Sequence[ChainServiceInput],
    candidate_times: Sequence[str],
    inputs: DayInputs,
    selection: WorkerSelection = AnyWorker(),
) -> List[SlotOffer]:
    if not chain:
        return [SlotOffer(time=time_label, available=False, reject_reason=REJECT_NO_ELIGIBLE) for time_label in candidate_times]
    offers: List[SlotOffer] = []
    for time_label in candidate_times:
        validity = slot_validity(chain, time_label, inputs, selection)
        offers.append(SlotOffer(time=time_label, available=validity.valid, reject_reason=validity.reject_reason))
    logger.debug(
        "Evaluated %d candidate times on %s (%s): %d available",
        len(offers),
        inputs.date_str,
        "preferred" if isinstance(selection, Preferred) else "any worker",
        sum(1 for offer in offers if offer.available),
    )
    return offers


def compute_available_slots(
    chain: Sequence[ChainServiceInput],
    candidate_times: Sequence[str],
    inputs: DayInputs,
    selection: WorkerSelection = AnyWorker(),
) -> List[str]:
    return [offer.time for offer in evaluate_candidate_times(chain, candidate_times, inputs, selection) if offer.available]
