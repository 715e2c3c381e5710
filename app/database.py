from __future__ import annotations

import datetime
import json
import uuid
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
    select,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship, selectinload, sessionmaker

from models import (
    BookingForDate,
    MultiBookingCombo,
    PricingItem,
    ResolvedPhase,
    Service,
    StoredPhase,
    Worker,
)

DATA_DIR = Path(__file__).resolve().parent / "data"
DATA_DIR.mkdir(parents=True, exist_ok=True)
BOOKING_DATABASE_URL = f"sqlite:///{(DATA_DIR / 'bookings.db').as_posix()}"
BOOKING_STATUS_CHOICES = {"confirmed", "cancelled", "canceled", "archived"}


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


def _loads(value: Optional[str], default: Any) -> Any:
    try:
        parsed = json.loads(value) if value else default
    except json.JSONDecodeError:
        return default
    return parsed if isinstance(parsed, type(default)) else default


class Base(DeclarativeBase):
    """Metadata for every booking table living in bookings.db."""

    pass


class BookingSettingsRecord(Base):
    __tablename__ = "booking_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    site_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    paramsJSON: Mapped[str] = mapped_column(String(8000), nullable=False, default="{}")
    lastEditedBy: Mapped[str] = mapped_column(String(60), nullable=False, default="system")
    lastEditedAt: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        UniqueConstraint("site_id", "name", name="uq_booking_settings_site_name"),
    )

    def params_dict(self) -> Dict:
        return _loads(self.paramsJSON, {})


class ServiceRecord(Base):
    __tablename__ = "services"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    site_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    category: Mapped[str | None] = mapped_column(String(120), nullable=True)
    duration: Mapped[int | None] = mapped_column(Integer, nullable=True)

    def to_model(self) -> Service:
        return Service(id=self.id, name=self.name, category=self.category, duration=self.duration)


class PricingItemRecord(Base):
    __tablename__ = "pricing_items"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    site_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    service_id: Mapped[str] = mapped_column(ForeignKey("services.id", ondelete="CASCADE"), nullable=False)
    type: Mapped[str | None] = mapped_column(String(120), nullable=True)
    duration_min_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    duration_max_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    price: Mapped[float | None] = mapped_column(Float, nullable=True)
    has_follow_up: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    followUpJSON: Mapped[str] = mapped_column(String(2000), nullable=False, default="{}")

    def to_model(self) -> PricingItem:
        return PricingItem.from_dict(
            {
                "id": self.id,
                "serviceId": self.service_id,
                "type": self.type,
                "durationMinMinutes": self.duration_min_minutes,
                "durationMaxMinutes": self.duration_max_minutes,
                "price": self.price,
                "hasFollowUp": self.has_follow_up,
                "followUp": _loads(self.followUpJSON, {}) or None,
            }
        )


class ComboRecord(Base):
    __tablename__ = "multi_booking_combos"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    site_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    triggerJSON: Mapped[str] = mapped_column(String(2000), nullable=False, default="[]")
    orderedJSON: Mapped[str] = mapped_column(String(2000), nullable=False, default="[]")
    autoStepsJSON: Mapped[str] = mapped_column(String(2000), nullable=False, default="[]")
    updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_model(self) -> MultiBookingCombo:
        return MultiBookingCombo.from_dict(
            {
                "id": self.id,
                "name": self.name,
                "isActive": bool(self.is_active),
                "triggerServiceTypeIds": _loads(self.triggerJSON, []),
                "orderedServiceTypeIds": _loads(self.orderedJSON, []),
                "autoSteps": _loads(self.autoStepsJSON, []),
                "updatedAt": self.updated_at,
            }
        )


class WorkerRecord(Base):
    __tablename__ = "workers"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    site_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    servicesJSON: Mapped[str] = mapped_column(String(4000), nullable=False, default="[]")
    availabilityJSON: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    def to_model(self) -> Worker:
        payload: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "active": bool(self.active),
            "services": _loads(self.servicesJSON, []),
        }
        if self.availabilityJSON:
            payload["availability"] = _loads(self.availabilityJSON, [])
        return Worker.from_dict(payload)


class BookingRecord(Base):
    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    site_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    date: Mapped[str] = mapped_column(String(10), nullable=False, index=True)
    time: Mapped[str] = mapped_column(String(5), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="confirmed")
    client_name: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    client_phone: Mapped[str] = mapped_column(String(40), nullable=False, default="")
    worker_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    start_at: Mapped[datetime.datetime] = mapped_column(DateTime, nullable=False)
    end_at: Mapped[datetime.datetime] = mapped_column(DateTime, nullable=False)
    duration_min: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    phases: Mapped[List["BookingPhaseRecord"]] = relationship(
        back_populates="booking",
        cascade="all, delete-orphan",
        order_by="BookingPhaseRecord.position",
    )

    def to_model(self) -> BookingForDate:
        return BookingForDate(
            id=self.id,
            worker_id=self.worker_id,
            start_at=self.start_at,
            end_at=self.end_at,
            duration_min=self.duration_min,
            phases=tuple(
                StoredPhase(
                    phase=phase.phase,
                    start_at=phase.start_at,
                    end_at=phase.end_at,
                    duration_min=phase.duration_min,
                    worker_id=phase.worker_id,
                )
                for phase in self.phases
            ),
            status=self.status,
            date=self.date,
            time=self.time,
        )


class BookingPhaseRecord(Base):
    __tablename__ = "booking_phases"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    booking_id: Mapped[str] = mapped_column(ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    phase: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    service_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    service_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    service_name: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    pricing_item_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    worker_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    worker_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    start_at: Mapped[datetime.datetime] = mapped_column(DateTime, nullable=False)
    end_at: Mapped[datetime.datetime] = mapped_column(DateTime, nullable=False)
    duration_min: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    wait_min: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    booking: Mapped[BookingRecord] = relationship(back_populates="phases")


class AuditLog(Base):
    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    site_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_id: Mapped[str] = mapped_column(String(60), nullable=False)
    action: Mapped[str] = mapped_column(String(60), nullable=False)
    target_type: Mapped[str] = mapped_column(String(32), nullable=False, default="Booking")
    target_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    payloadJSON: Mapped[str] = mapped_column(String(4000), nullable=False, default="{}")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


booking_engine = create_engine(
    BOOKING_DATABASE_URL,
    echo=False,
    future=True,
)
SessionLocal = sessionmaker(bind=booking_engine, expire_on_commit=False, future=True)


def init_database(engine=None) -> None:
    Base.metadata.create_all(engine or booking_engine)


def get_active_settings(session, site_id: str) -> Optional[BookingSettingsRecord]:
    stmt = (
        select(BookingSettingsRecord)
        .where(BookingSettingsRecord.site_id == site_id)
        .order_by(BookingSettingsRecord.lastEditedAt.desc(), BookingSettingsRecord.id.desc())
    )
    return session.scalars(stmt).first()


def upsert_settings(
    session,
    site_id: str,
    params_dict: Dict,
    *,
    name: str = "Default Booking Settings",
    edited_by: str = "system",
) -> BookingSettingsRecord:
    existing: Optional[BookingSettingsRecord] = session.execute(
        select(BookingSettingsRecord).where(
            BookingSettingsRecord.site_id == site_id,
            BookingSettingsRecord.name == name,
        )
    ).scalars().first()
    payload = params_dict if isinstance(params_dict, dict) else {}
    record = existing or BookingSettingsRecord(site_id=site_id, name=name)
    record.paramsJSON = json.dumps(payload)
    record.lastEditedBy = edited_by
    record.lastEditedAt = _utcnow()
    if existing is None:
        session.add(record)
    session.commit()
    session.refresh(record)
    return record


def upsert_service(session, site_id: str, payload: Dict[str, Any]) -> ServiceRecord:
    service = Service.from_dict(payload)
    if not service.name:
        raise ValueError("Service name is required.")
    record = session.get(ServiceRecord, service.id) if service.id else None
    if record is None:
        record = ServiceRecord(id=service.id or _new_id(), site_id=site_id)
        session.add(record)
    record.name = service.name
    record.category = service.category
    record.duration = service.duration
    session.commit()
    return record


def upsert_pricing_item(session, site_id: str, payload: Dict[str, Any]) -> PricingItemRecord:
    item = PricingItem.from_dict(payload)
    if not item.service_id or session.get(ServiceRecord, item.service_id) is None:
        raise ValueError(f"Pricing item refers to unknown service {item.service_id!r}.")
    record = session.get(PricingItemRecord, item.id) if item.id else None
    if record is None:
        record = PricingItemRecord(id=item.id or _new_id(), site_id=site_id, service_id=item.service_id)
        session.add(record)
    record.service_id = item.service_id
    record.type = item.type
    record.duration_min_minutes = item.duration_min_minutes
    record.duration_max_minutes = item.duration_max_minutes
    record.price = item.price
    record.has_follow_up = item.has_follow_up
    follow_up = item.follow_up
    record.followUpJSON = json.dumps(
        {
            "name": follow_up.name,
            "serviceId": follow_up.service_id,
            "durationMinutes": follow_up.duration_minutes,
            "waitMinutes": follow_up.wait_minutes,
        }
        if follow_up
        else {}
    )
    session.commit()
    return record


def upsert_worker(session, site_id: str, payload: Dict[str, Any]) -> WorkerRecord:
    worker = Worker.from_dict(payload)
    if not worker.name:
        raise ValueError("Worker name is required.")
    record = session.get(WorkerRecord, worker.id) if worker.id else None
    if record is None:
        record = WorkerRecord(id=worker.id or _new_id(), site_id=site_id)
        session.add(record)
    record.name = worker.name
    record.active = worker.active
    record.servicesJSON = json.dumps([str(entry) for entry in worker.services])
    availability = payload.get("availability")
    record.availabilityJSON = json.dumps(availability) if isinstance(availability, list) else None
    session.commit()
    return record


def upsert_combo(session, site_id: str, payload: Dict[str, Any]) -> ComboRecord:
    combo = MultiBookingCombo.from_dict(payload)
    record = session.get(ComboRecord, combo.id) if combo.id else None
    if record is None:
        record = ComboRecord(id=combo.id or _new_id(), site_id=site_id)
        session.add(record)
    record.name = combo.name
    record.is_active = combo.is_active
    record.triggerJSON = json.dumps(list(combo.trigger_service_type_ids))
    record.orderedJSON = json.dumps(list(combo.ordered_service_type_ids))
    record.autoStepsJSON = json.dumps(
        [
            {
                "serviceId": step.service_id,
                "durationMinutesOverride": step.duration_minutes_override,
                "position": step.position,
            }
            for step in combo.auto_steps
        ]
    )
    session.commit()
    return record


def list_services(session, site_id: str) -> List[Service]:
    stmt = select(ServiceRecord).where(ServiceRecord.site_id == site_id).order_by(ServiceRecord.name.asc())
    return [record.to_model() for record in session.scalars(stmt)]


def list_pricing_items(session, site_id: str) -> List[PricingItem]:
    stmt = select(PricingItemRecord).where(PricingItemRecord.site_id == site_id).order_by(PricingItemRecord.id.asc())
    return [record.to_model() for record in session.scalars(stmt)]


def list_combos(session, site_id: str) -> List[MultiBookingCombo]:
    stmt = select(ComboRecord).where(ComboRecord.site_id == site_id)
    return [record.to_model() for record in session.scalars(stmt)]


def list_workers(session, site_id: str) -> List[Worker]:
    """Roster in a stable order (by name, then id)."""
    stmt = select(WorkerRecord).where(WorkerRecord.site_id == site_id).order_by(WorkerRecord.name.asc(), WorkerRecord.id.asc())
    return [record.to_model() for record in session.scalars(stmt)]


def list_bookings_for_date(session, site_id: str, date_str: str) -> List[BookingForDate]:
    stmt = (
        select(BookingRecord)
        .options(selectinload(BookingRecord.phases))
        .where(BookingRecord.site_id == site_id, BookingRecord.date == date_str)
        .order_by(BookingRecord.start_at.asc())
    )
    return [record.to_model() for record in session.scalars(stmt)]


def save_booking(
    session,
    site_id: str,
    date_str: str,
    time_label: str,
    phases: Iterable[ResolvedPhase],
    *,
    client_name: str = "",
    client_phone: str = "",
    commit: bool = True,
) -> BookingRecord:
    phases = list(phases)
    if not phases:
        raise ValueError("A booking needs at least one phase.")
    first = phases[0]
    last = phases[-1]
    end_at = last.follow_up.end_at if last.follow_up else last.end_at
    booking = BookingRecord(
        site_id=site_id,
        date=date_str,
        time=time_label,
        status="confirmed",
        client_name=client_name or "",
        client_phone=client_phone or "",
        worker_id=first.worker_id,
        start_at=first.start_at,
        end_at=end_at,
        duration_min=int((end_at - first.start_at).total_seconds() // 60),
    )
    position = 0
    for phase in phases:
        booking.phases.append(
            BookingPhaseRecord(
                position=position,
                phase=1,
                service_order=phase.service_order,
                service_id=phase.service_id,
                service_name=phase.service_name,
                pricing_item_id=phase.pricing_item_id,
                worker_id=phase.worker_id,
                worker_name=phase.worker_name,
                start_at=phase.start_at,
                end_at=phase.end_at,
                duration_min=phase.duration_min,
            )
        )
        position += 1
        if phase.follow_up is not None:
            follow_up = phase.follow_up
            booking.phases.append(
                BookingPhaseRecord(
                    position=position,
                    phase=2,
                    service_order=phase.service_order,
                    service_id=follow_up.service_id,
                    service_name=follow_up.service_name,
                    worker_id=follow_up.worker_id,
                    worker_name=follow_up.worker_name,
                    start_at=follow_up.start_at,
                    end_at=follow_up.end_at,
                    duration_min=follow_up.duration_min,
                    wait_min=follow_up.wait_min,
                )
            )
            position += 1
    session.add(booking)
    if commit:
        session.commit()
    else:
        session.flush()
    return booking


def set_booking_status(session, booking_id: str, status: str) -> BookingRecord:
    normalized = (status or "").strip().lower()
    if normalized not in BOOKING_STATUS_CHOICES:
        raise ValueError(f"Unsupported booking status '{status}'.")
    booking = session.get(BookingRecord, booking_id)
    if booking is None:
        raise ValueError(f"Booking with id {booking_id} was not found.")
    booking.status = normalized
    session.commit()
    return booking


def record_audit_log(
    session,
    user_id: str,
    action: str,
    target_type: str = "Booking",
    target_id: Optional[str] = None,
    payload: Optional[Dict[str, Any]] = None,
    *,
    site_id: Optional[str] = None,
) -> AuditLog:
    log = AuditLog(
        site_id=site_id,
        user_id=user_id,
        action=action,
        target_type=target_type,
        target_id=target_id,
        payloadJSON=json.dumps(payload or {}, default=str),
    )
    session.add(log)
    session.commit()
    return log
