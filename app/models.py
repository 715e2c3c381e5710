from __future__ import annotations

import datetime
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

DEFAULT_SERVICE_MINUTES = 30
WEEKDAY_KEYS = ["sun", "mon", "tue", "wed", "thu", "fri", "sat"]
INACTIVE_BOOKING_STATUSES = {"cancelled", "canceled", "archived", "deleted"}


def _pick(data: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _as_datetime(value: Any) -> Optional[datetime.datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime.datetime):
        return value
    if isinstance(value, str):
        try:
            return datetime.datetime.fromisoformat(value.strip())
        except ValueError:
            return None
    to_datetime = getattr(value, "to_datetime", None)
    if callable(to_datetime):
        return to_datetime()
    return None


@dataclass(frozen=True)
class ServiceKey:
    """Both aliases a worker's service list may use for one service."""

    id: Optional[str]
    name: str

    def candidates(self) -> List[str]:
        keys: List[str] = []
        for value in (self.name, self.id):
            text = (value or "").strip()
            if text and text not in keys:
                keys.append(text)
        return keys

    @property
    def label(self) -> str:
        return (self.name or "").strip() or (self.id or "").strip()


@dataclass(frozen=True)
class Service:
    id: str
    name: str
    category: Optional[str] = None
    duration: Optional[int] = None

    @property
    def key(self) -> ServiceKey:
        return ServiceKey(id=_as_optional_str(self.id), name=(self.name or "").strip())

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Service":
        duration = _pick(data, "duration")
        return cls(
            id=str(_pick(data, "id", default="")).strip(),
            name=str(_pick(data, "name", default="")).strip(),
            category=_as_optional_str(_pick(data, "category")),
            duration=_as_int(duration) if duration is not None else None,
        )


@dataclass(frozen=True)
class FollowUp:
    name: str
    duration_minutes: int
    wait_minutes: int = 0
    service_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FollowUp":
        return cls(
            name=str(_pick(data, "name", default="")).strip(),
            service_id=_as_optional_str(_pick(data, "service_id", "serviceId")),
            duration_minutes=_as_int(_pick(data, "duration_minutes", "durationMinutes"), 0),
            wait_minutes=max(0, _as_int(_pick(data, "wait_minutes", "waitMinutes"), 0)),
        )


@dataclass(frozen=True)
class PricingItem:
    id: str
    service_id: str
    duration_min_minutes: Optional[int] = None
    duration_max_minutes: Optional[int] = None
    type: Optional[str] = None
    price: Optional[float] = None
    price_range_min: Optional[float] = None
    price_range_max: Optional[float] = None
    has_follow_up: bool = False
    follow_up: Optional[FollowUp] = None
    service: Optional[str] = None
    legacy_duration_minutes: Optional[int] = None

    def __post_init__(self) -> None:
        if self.has_follow_up and self.follow_up is not None and self.follow_up.duration_minutes < 1:
            raise ValueError(f"Pricing item {self.id!r}: follow-up duration must be at least 1 minute.")

    @property
    def duration_minutes(self) -> int:
        for value in (self.duration_max_minutes, self.duration_min_minutes, self.legacy_duration_minutes):
            if value:
                return int(value)
        return DEFAULT_SERVICE_MINUTES

    @property
    def active_follow_up(self) -> Optional[FollowUp]:
        """The follow-up descriptor when it is switched on and usable."""
        follow_up = self.follow_up if self.has_follow_up else None
        if follow_up is None or not follow_up.name or follow_up.duration_minutes < 1:
            return None
        return follow_up

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PricingItem":
        raw_follow_up = _pick(data, "follow_up", "followUp")
        follow_up = FollowUp.from_dict(raw_follow_up) if isinstance(raw_follow_up, Mapping) else None
        has_follow_up = bool(_pick(data, "has_follow_up", "hasFollowUp", default=False))
        min_minutes = _pick(data, "duration_min_minutes", "durationMinMinutes")
        max_minutes = _pick(data, "duration_max_minutes", "durationMaxMinutes")
        legacy = _pick(data, "duration_minutes", "durationMinutes")
        return cls(
            id=str(_pick(data, "id", default="")).strip(),
            service_id=str(_pick(data, "service_id", "serviceId", "service", default="")).strip(),
            service=_as_optional_str(_pick(data, "service")),
            duration_min_minutes=_as_int(min_minutes) if min_minutes is not None else None,
            duration_max_minutes=_as_int(max_minutes) if max_minutes is not None else None,
            legacy_duration_minutes=_as_int(legacy) if legacy is not None else None,
            type=_as_optional_str(_pick(data, "type")),
            price=_pick(data, "price"),
            price_range_min=_pick(data, "price_range_min", "priceRangeMin"),
            price_range_max=_pick(data, "price_range_max", "priceRangeMax"),
            has_follow_up=has_follow_up,
            follow_up=follow_up if has_follow_up else None,
        )


@dataclass(frozen=True)
class BreakRange:
    start: str
    end: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BreakRange":
        return cls(start=str(_pick(data, "start", default="")), end=str(_pick(data, "end", default="")))


@dataclass(frozen=True)
class OpeningHours:
    day: str
    open: Optional[str] = None
    close: Optional[str] = None
    breaks: Sequence[BreakRange] = ()

    @property
    def is_closed(self) -> bool:
        return not self.open or not self.close

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "OpeningHours":
        day = str(_pick(data, "day", default="")).strip().lower()
        if day.isdigit() and int(day) < len(WEEKDAY_KEYS):
            day = WEEKDAY_KEYS[int(day)]
        raw_breaks = _pick(data, "breaks", default=[]) or []
        return cls(
            day=day,
            open=_as_optional_str(_pick(data, "open")),
            close=_as_optional_str(_pick(data, "close")),
            breaks=tuple(BreakRange.from_dict(entry) for entry in raw_breaks if isinstance(entry, Mapping)),
        )


@dataclass(frozen=True)
class Worker:
    id: str
    name: str
    active: bool = True
    services: Sequence[Any] = ()
    availability: Optional[Sequence[OpeningHours]] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Worker":
        raw_availability = _pick(data, "availability")
        availability = None
        if isinstance(raw_availability, (list, tuple)):
            availability = tuple(
                OpeningHours.from_dict(entry) for entry in raw_availability if isinstance(entry, Mapping)
            )
        return cls(
            id=str(_pick(data, "id", default="")).strip(),
            name=str(_pick(data, "name", default="")).strip(),
            active=_pick(data, "active", default=True) is not False,
            services=tuple(_pick(data, "services", default=()) or ()),
            availability=availability,
        )


@dataclass(frozen=True)
class Preferred:
    worker_id: str


@dataclass(frozen=True)
class AnyWorker:
    pass


WorkerSelection = Union[Preferred, AnyWorker]


def worker_selection(preferred_worker_id: Optional[str]) -> WorkerSelection:
    worker_id = (preferred_worker_id or "").strip() if isinstance(preferred_worker_id, str) else preferred_worker_id
    if not worker_id:
        return AnyWorker()
    return Preferred(str(worker_id))


@dataclass(frozen=True)
class ChainServiceInput:
    service: Service
    pricing_item: PricingItem
    finish_gap_before: Optional[int] = None
    follow_up: bool = False

    @property
    def duration_minutes(self) -> int:
        return self.pricing_item.duration_minutes

    @property
    def gap_minutes(self) -> int:
        return max(0, int(self.finish_gap_before or 0))


@dataclass
class ResolvedFollowUp:
    service_id: Optional[str]
    service_name: str
    duration_min: int
    wait_min: int
    start_at: datetime.datetime
    end_at: datetime.datetime
    worker_id: Optional[str]
    worker_name: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "serviceId": self.service_id,
            "serviceName": self.service_name,
            "durationMin": self.duration_min,
            "waitMin": self.wait_min,
            "startAt": self.start_at.isoformat(),
            "endAt": self.end_at.isoformat(),
            "workerId": self.worker_id,
            "workerName": self.worker_name,
        }


@dataclass
class ResolvedPhase:
    service_order: int
    service_id: Optional[str]
    service_name: str
    service_type: Optional[str]
    duration_min: int
    start_at: datetime.datetime
    end_at: datetime.datetime
    worker_id: Optional[str]
    worker_name: Optional[str]
    follow_up: Optional[ResolvedFollowUp] = None
    pricing_item_id: Optional[str] = None

    def copy(self) -> "ResolvedPhase":
        follow_up = replace(self.follow_up) if self.follow_up is not None else None
        return replace(self, follow_up=follow_up)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "serviceOrder": self.service_order,
            "serviceId": self.service_id,
            "serviceName": self.service_name,
            "serviceType": self.service_type,
            "durationMin": self.duration_min,
            "startAt": self.start_at.isoformat(),
            "endAt": self.end_at.isoformat(),
            "workerId": self.worker_id,
            "workerName": self.worker_name,
            "pricingItemId": self.pricing_item_id,
            "followUp": self.follow_up.to_dict() if self.follow_up else None,
        }


@dataclass(frozen=True)
class StoredPhase:
    phase: int
    start_at: datetime.datetime
    end_at: datetime.datetime
    duration_min: int = 0
    worker_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Optional["StoredPhase"]:
        phase = _pick(data, "phase")
        if phase is None:
            kind = str(_pick(data, "kind", default="")).lower()
            phase = {"primary": 1, "secondary": 2}.get(kind)
        start_at = _as_datetime(_pick(data, "start_at", "startAt"))
        end_at = _as_datetime(_pick(data, "end_at", "endAt"))
        if phase not in (1, 2) or start_at is None or end_at is None:
            return None
        return cls(
            phase=int(phase),
            start_at=start_at,
            end_at=end_at,
            duration_min=_as_int(_pick(data, "duration_min", "durationMin"), 0),
            worker_id=_as_optional_str(_pick(data, "worker_id", "workerId")),
        )


@dataclass(frozen=True)
class BookingForDate:
    id: str
    worker_id: Optional[str] = None
    start_at: Optional[datetime.datetime] = None
    end_at: Optional[datetime.datetime] = None
    duration_min: Optional[int] = None
    wait_min: int = 0
    secondary_worker_id: Optional[str] = None
    secondary_start_at: Optional[datetime.datetime] = None
    secondary_end_at: Optional[datetime.datetime] = None
    secondary_duration_min: int = 0
    follow_up_worker_id: Optional[str] = None
    follow_up_start_at: Optional[datetime.datetime] = None
    follow_up_end_at: Optional[datetime.datetime] = None
    phases: Sequence[StoredPhase] = ()
    status: str = "confirmed"
    date: Optional[str] = None
    time: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return (self.status or "").strip().lower() not in INACTIVE_BOOKING_STATUSES

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BookingForDate":
        raw_phases = _pick(data, "phases", default=[]) or []
        phases = [StoredPhase.from_dict(entry) for entry in raw_phases if isinstance(entry, Mapping)]
        duration = _pick(data, "duration_min", "durationMin", "primaryDurationMin")
        return cls(
            id=str(_pick(data, "id", default="")),
            worker_id=_as_optional_str(_pick(data, "worker_id", "workerId")),
            start_at=_as_datetime(_pick(data, "start_at", "startAt", "start")),
            end_at=_as_datetime(_pick(data, "end_at", "endAt", "end")),
            duration_min=_as_int(duration) if duration is not None else None,
            wait_min=max(0, _as_int(_pick(data, "wait_min", "waitMin", "waitMinutes"), 0)),
            secondary_worker_id=_as_optional_str(_pick(data, "secondary_worker_id", "secondaryWorkerId")),
            secondary_start_at=_as_datetime(_pick(data, "secondary_start_at", "secondaryStartAt")),
            secondary_end_at=_as_datetime(_pick(data, "secondary_end_at", "secondaryEndAt")),
            secondary_duration_min=max(0, _as_int(_pick(data, "secondary_duration_min", "secondaryDurationMin"), 0)),
            follow_up_worker_id=_as_optional_str(_pick(data, "follow_up_worker_id", "followUpWorkerId")),
            follow_up_start_at=_as_datetime(_pick(data, "follow_up_start_at", "followUpStartAt")),
            follow_up_end_at=_as_datetime(_pick(data, "follow_up_end_at", "followUpEndAt")),
            phases=tuple(phase for phase in phases if phase is not None),
            status=str(_pick(data, "status", default="confirmed")),
            date=_as_optional_str(_pick(data, "date", "date_str", "dateStr")),
            time=_as_optional_str(_pick(data, "time", "timeHHmm")),
        )


@dataclass(frozen=True)
class AutoStep:
    service_id: str
    duration_minutes_override: int
    position: Union[str, int] = "end"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AutoStep":
        position = _pick(data, "position", default="end")
        if position != "end":
            position = _as_int(position, -1)
        return cls(
            service_id=str(_pick(data, "service_id", "serviceId", default="")).strip(),
            duration_minutes_override=_as_int(_pick(data, "duration_minutes_override", "durationMinutesOverride"), 0),
            position=position,
        )


@dataclass(frozen=True)
class MultiBookingCombo:
    id: str
    name: str
    is_active: bool
    trigger_service_type_ids: Sequence[str]
    ordered_service_type_ids: Sequence[str]
    auto_steps: Sequence[AutoStep] = ()
    updated_at: Optional[datetime.datetime] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MultiBookingCombo":
        raw_steps = _pick(data, "auto_steps", "autoSteps", default=[]) or []
        return cls(
            id=str(_pick(data, "id", default="")),
            name=str(_pick(data, "name", default="")),
            is_active=_pick(data, "is_active", "isActive", default=False) is True,
            trigger_service_type_ids=tuple(str(v) for v in _pick(data, "trigger_service_type_ids", "triggerServiceTypeIds", default=[]) or []),
            ordered_service_type_ids=tuple(str(v) for v in _pick(data, "ordered_service_type_ids", "orderedServiceTypeIds", default=[]) or []),
            auto_steps=tuple(AutoStep.from_dict(step) for step in raw_steps if isinstance(step, Mapping)),
            updated_at=_as_datetime(_pick(data, "updated_at", "updatedAt")),
        )
