from __future__ import annotations

import datetime
import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from availability import DayAvailability
from database import (
    list_bookings_for_date,
    list_combos,
    list_pricing_items,
    list_services,
    list_workers,
    record_audit_log,
    save_booking,
)
from models import (
    BookingForDate,
    ChainServiceInput,
    MultiBookingCombo,
    PricingItem,
    ResolvedPhase,
    Service,
    Worker,
    worker_selection,
)
from settings import load_active_settings, site_now
from timewindows import minutes_to_datetime, minutes_to_time, parse_date_str, time_to_minutes
from validation import validate_chain_assignments

from .builder import build_chain_for_selection, compute_chain_phases, get_chain_total_duration
from .engine import DayInputs, SlotOffer, evaluate_candidate_times, resolve_for_inputs, slot_validity
from .repair import repair_for_inputs
from .slots import generate_candidate_times

logger = logging.getLogger(__name__)


class BookingState(str, enum.Enum):
    BUILDING_CHAIN = "BUILDING_CHAIN"
    GENERATING_CANDIDATES = "GENERATING_CANDIDATES"
    RESOLVING = "RESOLVING"
    REPAIRING = "REPAIRING"
    VALIDATING = "VALIDATING"
    COMMITTED = "COMMITTED"
    REJECTED = "REJECTED"


TERMINAL_STATES = {BookingState.COMMITTED, BookingState.REJECTED}
_NEXT_STATE = {
    BookingState.BUILDING_CHAIN: BookingState.GENERATING_CANDIDATES,
    BookingState.GENERATING_CANDIDATES: BookingState.RESOLVING,
    BookingState.RESOLVING: BookingState.REPAIRING,
    BookingState.REPAIRING: BookingState.VALIDATING,
    BookingState.VALIDATING: BookingState.COMMITTED,
}


@dataclass
class BookingRequest:
    site_id: str
    date_str: str
    pricing_item_ids: Sequence[str]
    time: Optional[str] = None
    preferred_worker_id: Optional[str] = None
    client_name: str = ""
    client_phone: str = ""
    # Assignment shown to the client at offer time, healed by repair at commit.
    phases: Optional[List[ResolvedPhase]] = None


@dataclass
class DaySnapshot:
    """One consistent read of everything a booking attempt needs for a date."""

    site_id: str
    date_str: str
    settings: Dict[str, Any]
    services: List[Service]
    pricing_items: List[PricingItem]
    combos: List[MultiBookingCombo]
    workers: List[Worker]
    bookings: List[BookingForDate]
    availability: DayAvailability = field(init=False)

    def __post_init__(self) -> None:
        self.availability = DayAvailability(self.settings, self.workers, parse_date_str(self.date_str))

    def inputs(self) -> DayInputs:
        return DayInputs(
            date_str=self.date_str,
            workers=self.workers,
            bookings_for_date=self.bookings,
            worker_window_by_worker_id=self.availability.worker_windows,
            business_window=self.availability.business_window,
            breaks=self.availability.breaks,
            worker_breaks_by_worker_id=self.availability.worker_breaks,
        )


@dataclass
class BookingAttempt:
    request: BookingRequest
    state: BookingState = BookingState.BUILDING_CHAIN
    history: List[BookingState] = field(default_factory=lambda: [BookingState.BUILDING_CHAIN])
    chain: List[ChainServiceInput] = field(default_factory=list)
    candidate_times: List[str] = field(default_factory=list)
    offers: List[SlotOffer] = field(default_factory=list)
    phases: Optional[List[ResolvedPhase]] = None
    reason: Optional[str] = None
    errors: List[str] = field(default_factory=list)
    booking_id: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def committed(self) -> bool:
        return self.state is BookingState.COMMITTED

    @property
    def message(self) -> Optional[str]:
        if self.errors:
            return self.errors[0]
        return self.reason

    def advance(self, target: BookingState) -> None:
        if self.is_terminal:
            raise ValueError(f"Booking attempt is already {self.state.value}; start a new attempt.")
        if target is not BookingState.REJECTED and _NEXT_STATE.get(self.state) is not target:
            raise ValueError(f"Cannot move a booking attempt from {self.state.value} to {target.value}.")
        self.state = target
        self.history.append(target)

    def reject(self, reason: str, errors: Sequence[str] = ()) -> "BookingAttempt":
        self.reason = reason
        self.errors = list(errors)
        self.advance(BookingState.REJECTED)
        logger.debug("Booking attempt rejected (%s): %s", reason, self.message)
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "bookingId": self.booking_id,
            "reason": self.reason,
            "errors": list(self.errors),
            "phases": [phase.to_dict() for phase in self.phases or []],
        }


def load_day_snapshot(session, site_id: str, date_str: str) -> DaySnapshot:
    parse_date_str(date_str)
    return DaySnapshot(
        site_id=site_id,
        date_str=date_str,
        settings=load_active_settings(session, site_id),
        services=list_services(session, site_id),
        pricing_items=list_pricing_items(session, site_id),
        combos=list_combos(session, site_id),
        workers=list_workers(session, site_id),
        bookings=list_bookings_for_date(session, site_id, date_str),
    )


def _build_chain(snapshot: DaySnapshot, attempt: BookingAttempt) -> None:
    attempt.chain = build_chain_for_selection(
        attempt.request.pricing_item_ids,
        snapshot.services,
        snapshot.pricing_items,
        snapshot.combos,
    )


def _generate_candidates(snapshot: DaySnapshot, attempt: BookingAttempt, now: Optional[datetime.datetime]) -> None:
    attempt.advance(BookingState.GENERATING_CANDIDATES)
    local_now = now if now is not None else site_now(snapshot.settings)
    attempt.candidate_times = generate_candidate_times(
        snapshot.availability.business_window,
        get_chain_total_duration(attempt.chain),
        date=parse_date_str(snapshot.date_str),
        now=local_now,
    )


def offer_times(
    snapshot: DaySnapshot,
    pricing_item_ids: Sequence[str],
    preferred_worker_id: Optional[str] = None,
    *,
    now: Optional[datetime.datetime] = None,
) -> BookingAttempt:
    """Offer side of the protocol: which start times can be shown for the selection."""
    attempt = BookingAttempt(
        request=BookingRequest(
            site_id=snapshot.site_id,
            date_str=snapshot.date_str,
            pricing_item_ids=list(pricing_item_ids),
            preferred_worker_id=preferred_worker_id,
        )
    )
    _build_chain(snapshot, attempt)
    _generate_candidates(snapshot, attempt, now)
    attempt.offers = evaluate_candidate_times(
        attempt.chain,
        attempt.candidate_times,
        snapshot.inputs(),
        worker_selection(preferred_worker_id),
    )
    return attempt


def _phases_start(phases: Sequence[ResolvedPhase]) -> Optional[str]:
    if not phases:
        return None
    return phases[0].start_at.strftime("%H:%M")


def _phase_segments(phases: Sequence[ResolvedPhase]) -> List[tuple]:
    segments = []
    for phase in phases:
        segments.append((phase.service_id, phase.service_name, phase.duration_min, phase.start_at, phase.end_at, False))
        follow_up = phase.follow_up
        if follow_up is not None:
            segments.append(
                (follow_up.service_id, follow_up.service_name, follow_up.duration_min, follow_up.start_at, follow_up.end_at, True)
            )
    return segments


def _phases_match_chain(phases: Sequence[ResolvedPhase], chain: Sequence[ChainServiceInput], date_: datetime.date, start_minute: int) -> bool:
    """Offered phases are only reused when they lay out the requested chain exactly."""
    planned = [
        (
            entry.service_id,
            entry.service_name,
            entry.duration,
            minutes_to_datetime(date_, entry.start_min),
            minutes_to_datetime(date_, entry.end_min),
            entry.follow_up and position > 0,
        )
        for position, entry in enumerate(compute_chain_phases(chain, start_minute))
    ]
    return _phase_segments(phases) == planned


def commit_booking(
    snapshot: DaySnapshot,
    request: BookingRequest,
    *,
    now: Optional[datetime.datetime] = None,
    persist: Optional[Callable[[List[ResolvedPhase]], Optional[str]]] = None,
) -> BookingAttempt:
    """Commit side of the protocol, run against a fresh snapshot.

    Every step re-checks from scratch; a rejected attempt is final and the
    caller starts over with new data. ``persist`` writes the validated phases
    and returns the new booking id.
    """
    if not request.time:
        raise ValueError("A start time is required to commit a booking.")
    time_label = minutes_to_time(time_to_minutes(request.time))
    attempt = BookingAttempt(request=request)
    _build_chain(snapshot, attempt)

    _generate_candidates(snapshot, attempt, now)
    if not snapshot.availability.is_open:
        return attempt.reject("closed", ["The business is closed on this date."])
    if time_label not in attempt.candidate_times:
        return attempt.reject("time_not_offered", [f"{time_label} is not an offered start time."])

    attempt.advance(BookingState.RESOLVING)
    inputs = snapshot.inputs()
    selection = worker_selection(request.preferred_worker_id)
    if (
        request.phases
        and _phases_start(request.phases) == time_label
        and _phases_match_chain(request.phases, attempt.chain, inputs.date, time_to_minutes(time_label))
    ):
        resolved: Optional[List[ResolvedPhase]] = [phase.copy() for phase in request.phases]
    else:
        resolved = resolve_for_inputs(attempt.chain, time_label, inputs, selection)
    if resolved is None:
        validity = slot_validity(attempt.chain, time_label, inputs, selection)
        return attempt.reject(
            validity.reject_reason or "no_available",
            [f"{time_label} is no longer available; please pick another time."],
        )

    attempt.advance(BookingState.REPAIRING)
    repaired = repair_for_inputs(resolved, inputs)
    if repaired is None:
        return attempt.reject("repair_failed", [f"{time_label} is no longer available; please pick another time."])
    attempt.phases = repaired

    attempt.advance(BookingState.VALIDATING)
    report = validate_chain_assignments(repaired, snapshot.workers)
    if not report["valid"]:
        return attempt.reject("invalid_assignment", report["errors"])

    if persist is not None:
        attempt.booking_id = persist(repaired)
    attempt.advance(BookingState.COMMITTED)
    return attempt


def offer_times_for_site(
    session_factory: Callable,
    site_id: str,
    date_str: str,
    pricing_item_ids: Sequence[str],
    preferred_worker_id: Optional[str] = None,
    *,
    now: Optional[datetime.datetime] = None,
) -> BookingAttempt:
    with session_factory() as session:
        snapshot = load_day_snapshot(session, site_id, date_str)
    return offer_times(snapshot, pricing_item_ids, preferred_worker_id, now=now)


def place_booking(
    session_factory: Callable,
    request: BookingRequest,
    *,
    actor: str = "public",
    now: Optional[datetime.datetime] = None,
) -> BookingAttempt:
    """Re-read the day, resolve, repair, validate and write in one session."""
    if request is None or not request.site_id:
        raise ValueError("site_id is required.")
    parse_date_str(request.date_str)
    with session_factory() as session:
        snapshot = load_day_snapshot(session, request.site_id, request.date_str)

        def persist(phases: List[ResolvedPhase]) -> str:
            record = save_booking(
                session,
                request.site_id,
                request.date_str,
                minutes_to_time(time_to_minutes(request.time)),
                phases,
                client_name=request.client_name,
                client_phone=request.client_phone,
                commit=False,
            )
            return record.id

        attempt = commit_booking(snapshot, request, now=now, persist=persist)
        record_audit_log(
            session,
            user_id=actor or "public",
            action="BOOKING_COMMITTED" if attempt.committed else "BOOKING_REJECTED",
            target_type="Booking",
            target_id=attempt.booking_id,
            payload={
                "date": request.date_str,
                "time": request.time,
                "items": list(request.pricing_item_ids),
                "reason": attempt.reason,
                "errors": attempt.errors,
                "states": [state.value for state in attempt.history],
            },
            site_id=request.site_id,
        )
    if attempt.committed:
        logger.info("Booking %s committed for %s %s", attempt.booking_id, request.date_str, request.time)
    return attempt
