from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy import and_, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .auth_models import User, UserRole
from .config import SchedulingConfig
from .db import Base, db_session, engine
from .enums import AppointmentStatus, AppointmentType
from .lifecycle import TransitionContext, is_terminal, transition
from .models import Appointment, Patient, Service
from .results import STORAGE_ERROR_MESSAGE, ErrorKind, Failure, InfrastructureFailure, Rejected
from .scheduling import ExistingAppointment, Proposal, validate, validate_slot

logger = logging.getLogger(__name__)


# =========================
# Bootstrap DB
# =========================
def init_db() -> None:
    """Create the tables if they do not exist."""
    Base.metadata.create_all(bind=engine)


# =========================
# Helper / DTO
# =========================
@dataclass(frozen=True)
class AppointmentOutcome:
    ok: bool
    appointment: dict[str, Any] | None = None
    error: Failure | None = None

    @property
    def message(self) -> str:
        if self.error is not None:
            return self.error.message
        return "OK"

    @classmethod
    def success(cls, appointment: dict[str, Any]) -> AppointmentOutcome:
        return cls(True, appointment, None)

    @classmethod
    def failed(cls, error: Failure) -> AppointmentOutcome:
        return cls(False, None, error)


def _next_number(s: Session, column, prefix: str, width: int = 4) -> str:
    """Running counter per prefix: highest existing number + 1."""
    last = s.execute(
        select(column).where(column.like(f"{prefix}%")).order_by(column.desc()).limit(1)
    ).scalar_one_or_none()
    n = int(last[len(prefix):]) + 1 if last else 1
    return f"{prefix}{n:0{width}d}"


def _end_time(day: date, at: time, duration: int) -> time:
    return (datetime.combine(day, at) + timedelta(minutes=duration)).time()


def _appointment_flat(a: Appointment) -> dict[str, Any]:
    return {
        "id": a.id,
        "appointment_number": a.appointment_number,
        "patient_id": a.patient_id,
        "patient_name": f"{a.patient.first_name} {a.patient.last_name}" if a.patient else None,
        "dentist_id": a.dentist_id,
        "dentist_name": a.dentist.display_name if a.dentist else None,
        "service_id": a.service_id,
        "service_name": a.service.name if a.service else None,
        "date": a.appointment_date.isoformat(),
        "time": a.appointment_time.strftime("%H:%M"),
        "end_time": _end_time(a.appointment_date, a.appointment_time, a.duration_minutes).strftime("%H:%M"),
        "duration_minutes": a.duration_minutes,
        "status": a.status.value,
        "appointment_type": a.appointment_type.value,
        "chief_complaint": a.chief_complaint,
        "notes": a.notes,
        "created_at": a.created_at.isoformat() if a.created_at else None,
        "updated_at": a.updated_at.isoformat() if a.updated_at else None,
    }


def _not_found(appointment_id: str) -> Rejected:
    return Rejected(ErrorKind.NOT_FOUND, {"entity": "Appointment", "id": appointment_id})


def _is_active_dentist(s: Session, dentist_id: str) -> bool:
    d = s.get(User, dentist_id)
    return d is not None and d.is_active and d.role is UserRole.DENTIST


def _unknown_reference(s: Session, patient_id=None, dentist_id=None, service_id=None) -> Rejected | None:
    """First reference (of those given) that does not resolve."""
    if patient_id is not None and s.get(Patient, patient_id) is None:
        return Rejected(ErrorKind.UNKNOWN_REFERENCE, {"field": "patient_id", "value": patient_id})
    if dentist_id is not None and not _is_active_dentist(s, dentist_id):
        return Rejected(ErrorKind.UNKNOWN_REFERENCE, {"field": "dentist_id", "value": dentist_id})
    if service_id is not None and s.get(Service, service_id) is None:
        return Rejected(ErrorKind.UNKNOWN_REFERENCE, {"field": "service_id", "value": service_id})
    return None


def _appointment_type(value: AppointmentType | str) -> AppointmentType | Rejected:
    try:
        return AppointmentType(value)
    except ValueError:
        return Rejected(ErrorKind.INVALID_VALUE, {"field": "appointment_type", "value": str(value)})


# =========================
# CRUD base
# =========================
def create_patient(
    first_name: str,
    last_name: str,
    email: str | None = None,
    phone: str | None = None,
    date_of_birth: date | None = None,
) -> str:
    first_name, last_name = first_name.strip(), last_name.strip()
    if not first_name or not last_name:
        raise ValueError("First and last name are required.")

    with db_session() as s:
        p = Patient(
            patient_number=_next_number(s, Patient.patient_number, f"P{datetime.now().year}"),
            first_name=first_name,
            last_name=last_name,
            email=email,
            phone=phone,
            date_of_birth=date_of_birth,
        )
        s.add(p)
        s.flush()
        return p.id


def create_service(
    service_code: str,
    name: str,
    duration_minutes: int = 30,
    category: str | None = None,
    base_price: Decimal | float = 0,
) -> int:
    with db_session() as s:
        sv = Service(
            service_code=service_code.strip().upper(),
            name=name.strip(),
            duration_minutes=duration_minutes,
            category=category,
            base_price=Decimal(str(base_price)),
        )
        s.add(sv)
        s.flush()
        return sv.id


def list_patients_flat() -> list[dict]:
    with db_session() as s:
        rows = s.execute(
            select(Patient.id, Patient.patient_number, Patient.first_name, Patient.last_name, Patient.email, Patient.phone)
            .where(Patient.is_active.is_(True))
            .order_by(Patient.last_name, Patient.first_name)
        ).all()
        return [
            {
                "id": r.id,
                "patient_number": r.patient_number,
                "first_name": r.first_name,
                "last_name": r.last_name,
                "email": r.email,
                "phone": r.phone,
            }
            for r in rows
        ]


def list_services_flat() -> list[dict]:
    with db_session() as s:
        rows = s.execute(
            select(Service.id, Service.service_code, Service.name, Service.category, Service.duration_minutes, Service.base_price)
            .where(Service.is_active.is_(True))
            .order_by(Service.name)
        ).all()
        return [
            {
                "id": r.id,
                "service_code": r.service_code,
                "name": r.name,
                "category": r.category,
                "duration_minutes": r.duration_minutes,
                "base_price": str(r.base_price),
            }
            for r in rows
        ]


def list_dentists_flat() -> list[dict]:
    with db_session() as s:
        rows = s.execute(
            select(User.id, User.username, User.first_name, User.last_name)
            .where(User.role == UserRole.DENTIST, User.is_active.is_(True))
            .order_by(User.last_name, User.first_name)
        ).all()
        return [
            {"id": r.id, "username": r.username, "first_name": r.first_name, "last_name": r.last_name}
            for r in rows
        ]


# =========================
# Existing bookings (input of the validator)
# =========================
def _existing(s: Session, dentist_id: str, day: date) -> list[ExistingAppointment]:
    rows = s.execute(
        select(Appointment.id, Appointment.appointment_time, Appointment.duration_minutes, Appointment.status)
        .where(and_(Appointment.dentist_id == dentist_id, Appointment.appointment_date == day))
        .order_by(Appointment.appointment_time.asc())
    ).all()
    return [ExistingAppointment(r.id, r.appointment_time, r.duration_minutes, r.status) for r in rows]


def existing_appointments_for(dentist_id: str, day: date) -> list[ExistingAppointment]:
    """The dentist's appointments on ``day`` in chronological order, cancelled included."""
    with db_session() as s:
        return _existing(s, dentist_id, day)


# =========================
# Booking (use case core)
# =========================
def book_appointment(
    patient_id: str | None,
    dentist_id: str | None,
    service_id: int | None,
    day: date | None,
    at: time | None,
    duration_minutes: int | None = None,
    appointment_type: AppointmentType | str | None = None,
    chief_complaint: str | None = None,
    notes: str | None = None,
    created_by: str | None = None,
    now: datetime | None = None,
    config: SchedulingConfig | None = None,
) -> AppointmentOutcome:
    """
    Use case: book an appointment.
    - duration defaults to the service duration
    - validates against the dentist's bookings for that date
    - checks patient / dentist / service references and the appointment type
    - persists only on acceptance, with a fresh appointment number
    """
    try:
        with db_session() as s:
            service = s.get(Service, service_id) if service_id is not None else None
            if duration_minutes is None:
                duration_minutes = service.duration_minutes if service else 30

            proposal = Proposal(
                patient_id=patient_id,
                dentist_id=dentist_id,
                service_id=service_id,
                date=day,
                time=at,
                duration_minutes=duration_minutes,
            )
            existing = _existing(s, dentist_id, day) if dentist_id and day else []
            verdict = validate(proposal, existing, now=now, config=config)
            if not verdict.ok:
                logger.info("Booking rejected for dentist %s on %s %s: %s", dentist_id, day, at, verdict.kind.value)
                return AppointmentOutcome.failed(verdict)

            missing = _unknown_reference(s, patient_id, dentist_id, service_id)
            if missing is not None:
                return AppointmentOutcome.failed(missing)

            kind = _appointment_type(appointment_type) if appointment_type else AppointmentType.CONSULTATION
            if isinstance(kind, Rejected):
                return AppointmentOutcome.failed(kind)

            booked_at = now or datetime.now()
            a = Appointment(
                appointment_number=_next_number(s, Appointment.appointment_number, f"A{booked_at:%Y%m}"),
                patient_id=patient_id,
                dentist_id=dentist_id,
                service_id=service.id,
                appointment_date=day,
                appointment_time=at.replace(second=0, microsecond=0),
                duration_minutes=duration_minutes,
                status=AppointmentStatus.SCHEDULED,
                appointment_type=kind,
                chief_complaint=chief_complaint,
                notes=notes,
                created_by=created_by,
            )
            s.add(a)
            s.flush()
            logger.info("Booked %s for dentist %s on %s %s", a.appointment_number, dentist_id, day, at)
            return AppointmentOutcome.success(_appointment_flat(a))
    except SQLAlchemyError:
        logger.exception("Storage failure while booking for dentist %s on %s", dentist_id, day)
        return AppointmentOutcome.failed(InfrastructureFailure(STORAGE_ERROR_MESSAGE))


def reschedule_appointment(
    appointment_id: str,
    new_date: date,
    new_time: time,
    dentist_id: str | None = None,
    duration_minutes: int | None = None,
    reason: str | None = None,
    now: datetime | None = None,
    config: SchedulingConfig | None = None,
) -> AppointmentOutcome:
    """
    Use case: move an appointment.
    Terminal appointments cannot move; the appointment itself is excluded from
    the conflict check so it may shift within its own slot.
    """
    try:
        with db_session() as s:
            a = s.get(Appointment, appointment_id)
            if a is None:
                return AppointmentOutcome.failed(_not_found(appointment_id))
            if is_terminal(a.status):
                return AppointmentOutcome.failed(
                    Rejected(ErrorKind.INVALID_TRANSITION, {"from": a.status.value, "to": "rescheduled"})
                )

            target_dentist = dentist_id or a.dentist_id
            proposal = Proposal(
                patient_id=a.patient_id,
                dentist_id=target_dentist,
                service_id=a.service_id,
                date=new_date,
                time=new_time,
                duration_minutes=duration_minutes if duration_minutes is not None else a.duration_minutes,
                exclude_appointment_id=a.id,
            )
            verdict = validate(proposal, _existing(s, target_dentist, new_date), now=now, config=config)
            if not verdict.ok:
                logger.info("Reschedule of %s rejected: %s", a.appointment_number, verdict.kind.value)
                return AppointmentOutcome.failed(verdict)
            if target_dentist != a.dentist_id and not _is_active_dentist(s, target_dentist):
                return AppointmentOutcome.failed(
                    Rejected(ErrorKind.UNKNOWN_REFERENCE, {"field": "dentist_id", "value": target_dentist})
                )

            old = f"{a.appointment_date.isoformat()} {a.appointment_time:%H:%M}"
            new = f"{new_date.isoformat()} {new_time:%H:%M}"
            line = f"Rescheduled from {old} to {new}"
            if reason and reason.strip():
                line += f" ({reason.strip()})"

            a.appointment_date = new_date
            a.appointment_time = new_time.replace(second=0, microsecond=0)
            a.dentist_id = target_dentist
            a.duration_minutes = proposal.duration_minutes
            a.notes = f"{a.notes}\n\n{line}" if a.notes else line
            s.flush()
            s.refresh(a)
            logger.info("Rescheduled %s: %s", a.appointment_number, line)
            return AppointmentOutcome.success(_appointment_flat(a))
    except SQLAlchemyError:
        logger.exception("Storage failure while rescheduling %s", appointment_id)
        return AppointmentOutcome.failed(InfrastructureFailure(STORAGE_ERROR_MESSAGE))


def _clean_text(value: str) -> str | None:
    value = value.strip()
    return value or None


def update_appointment(
    appointment_id: str,
    patient_id: str | None = None,
    dentist_id: str | None = None,
    service_id: int | None = None,
    day: date | None = None,
    at: time | None = None,
    duration_minutes: int | None = None,
    appointment_type: AppointmentType | str | None = None,
    chief_complaint: str | None = None,
    notes: str | None = None,
    now: datetime | None = None,
    config: SchedulingConfig | None = None,
) -> AppointmentOutcome:
    """
    Use case: edit an appointment's details.
    - ``None`` leaves a field unchanged; a blank complaint or note clears it
    - the slot is revalidated only when dentist, date, time or duration change
    - only the references being changed are checked
    - terminal appointments cannot be edited
    """
    try:
        with db_session() as s:
            a = s.get(Appointment, appointment_id)
            if a is None:
                return AppointmentOutcome.failed(_not_found(appointment_id))
            if is_terminal(a.status):
                return AppointmentOutcome.failed(
                    Rejected(ErrorKind.INVALID_TRANSITION, {"from": a.status.value, "to": "edited"})
                )

            kind = None
            if appointment_type is not None:
                kind = _appointment_type(appointment_type)
                if isinstance(kind, Rejected):
                    return AppointmentOutcome.failed(kind)

            target_dentist = dentist_id or a.dentist_id
            target_day = day or a.appointment_date
            target_time = (at or a.appointment_time).replace(second=0, microsecond=0)
            target_duration = duration_minutes if duration_minutes is not None else a.duration_minutes

            slot_changed = (
                target_dentist != a.dentist_id
                or target_day != a.appointment_date
                or target_time != a.appointment_time
                or target_duration != a.duration_minutes
            )
            if slot_changed:
                proposal = Proposal(
                    patient_id=patient_id or a.patient_id,
                    dentist_id=target_dentist,
                    service_id=service_id if service_id is not None else a.service_id,
                    date=target_day,
                    time=at or a.appointment_time,
                    duration_minutes=target_duration,
                    exclude_appointment_id=a.id,
                )
                verdict = validate(proposal, _existing(s, target_dentist, target_day), now=now, config=config)
                if not verdict.ok:
                    logger.info("Edit of %s rejected: %s", a.appointment_number, verdict.kind.value)
                    return AppointmentOutcome.failed(verdict)

            missing = _unknown_reference(
                s,
                patient_id=patient_id if patient_id and patient_id != a.patient_id else None,
                dentist_id=target_dentist if target_dentist != a.dentist_id else None,
                service_id=service_id if service_id is not None and service_id != a.service_id else None,
            )
            if missing is not None:
                return AppointmentOutcome.failed(missing)

            a.patient_id = patient_id or a.patient_id
            if service_id is not None:
                a.service_id = service_id
            a.dentist_id = target_dentist
            a.appointment_date = target_day
            a.appointment_time = target_time
            a.duration_minutes = target_duration
            if kind is not None:
                a.appointment_type = kind
            if chief_complaint is not None:
                a.chief_complaint = _clean_text(chief_complaint)
            if notes is not None:
                a.notes = _clean_text(notes)
            s.flush()
            s.refresh(a)
            logger.info("Updated %s (slot changed: %s)", a.appointment_number, slot_changed)
            return AppointmentOutcome.success(_appointment_flat(a))
    except SQLAlchemyError:
        logger.exception("Storage failure while updating %s", appointment_id)
        return AppointmentOutcome.failed(InfrastructureFailure(STORAGE_ERROR_MESSAGE))


def change_status(
    appointment_id: str,
    target_status: AppointmentStatus | str,
    reason: str | None = None,
    notes: str | None = None,
) -> AppointmentOutcome:
    """Use case: status change gated by the lifecycle table."""
    try:
        with db_session() as s:
            a = s.get(Appointment, appointment_id)
            if a is None:
                return AppointmentOutcome.failed(_not_found(appointment_id))

            result = transition(a, target_status, TransitionContext(reason=reason, notes=notes))
            if not result.ok:
                logger.info("Status change of %s rejected: %s", a.appointment_number, result.kind.value)
                return AppointmentOutcome.failed(result)

            if result.changed:
                previous = a.status
                a.status = result.status
                a.notes = result.notes
                s.flush()
                logger.info("%s: %s -> %s", a.appointment_number, previous.value, result.status.value)
            return AppointmentOutcome.success(_appointment_flat(a))
    except SQLAlchemyError:
        logger.exception("Storage failure while changing status of %s", appointment_id)
        return AppointmentOutcome.failed(InfrastructureFailure(STORAGE_ERROR_MESSAGE))


# =========================
# Queries
# =========================
def get_appointment_flat(appointment_id: str) -> dict | None:
    with db_session() as s:
        a = s.get(Appointment, appointment_id)
        return _appointment_flat(a) if a else None


def get_appointment_by_number_flat(appointment_number: str) -> dict | None:
    with db_session() as s:
        a = s.execute(
            select(Appointment).where(Appointment.appointment_number == appointment_number)
        ).scalar_one_or_none()
        return _appointment_flat(a) if a else None


def list_appointments_flat(
    dentist_id: str | None = None,
    patient_id: str | None = None,
    status: AppointmentStatus | str | None = None,
    on_date: date | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[dict]:
    q = select(Appointment)
    if dentist_id:
        q = q.where(Appointment.dentist_id == dentist_id)
    if patient_id:
        q = q.where(Appointment.patient_id == patient_id)
    if status:
        q = q.where(Appointment.status == AppointmentStatus(status))
    if on_date:
        q = q.where(Appointment.appointment_date == on_date)
    if start_date:
        q = q.where(Appointment.appointment_date >= start_date)
    if end_date:
        q = q.where(Appointment.appointment_date <= end_date)
    q = q.order_by(Appointment.appointment_date.asc(), Appointment.appointment_time.asc()).limit(limit).offset(offset)

    with db_session() as s:
        return [_appointment_flat(a) for a in s.scalars(q)]


def today_appointments_flat(dentist_id: str | None = None, today: date | None = None) -> list[dict]:
    return list_appointments_flat(dentist_id=dentist_id, on_date=today or date.today(), limit=500)


def upcoming_appointments_flat(
    days: int = 7,
    dentist_id: str | None = None,
    limit: int = 50,
    today: date | None = None,
) -> list[dict]:
    """Scheduled or confirmed appointments from today through ``today + days``."""
    start = today or date.today()
    q = (
        select(Appointment)
        .where(
            and_(
                Appointment.appointment_date >= start,
                Appointment.appointment_date <= start + timedelta(days=days),
                Appointment.status.in_([AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED]),
            )
        )
        .order_by(Appointment.appointment_date.asc(), Appointment.appointment_time.asc())
        .limit(limit)
    )
    if dentist_id:
        q = q.where(Appointment.dentist_id == dentist_id)

    with db_session() as s:
        return [_appointment_flat(a) for a in s.scalars(q)]


def appointment_stats(
    start_date: date | None = None,
    end_date: date | None = None,
    dentist_id: str | None = None,
) -> dict[str, int]:
    q = select(Appointment.status, func.count(Appointment.id)).group_by(Appointment.status)
    if start_date:
        q = q.where(Appointment.appointment_date >= start_date)
    if end_date:
        q = q.where(Appointment.appointment_date <= end_date)
    if dentist_id:
        q = q.where(Appointment.dentist_id == dentist_id)

    stats = {"total": 0, **{st.value: 0 for st in AppointmentStatus}}
    with db_session() as s:
        for status, count in s.execute(q).all():
            stats[status.value] = count
            stats["total"] += count
    return stats


def check_availability(
    dentist_id: str,
    day: date,
    at: time,
    duration_minutes: int = 30,
    now: datetime | None = None,
    config: SchedulingConfig | None = None,
) -> dict[str, Any]:
    """Slot rules only (no patient/service); ``reason`` carries the rejection payload."""
    verdict = validate_slot(day, at, duration_minutes, existing_appointments_for(dentist_id, day), now=now, config=config)
    return {
        "available": verdict.ok,
        "dentist_id": dentist_id,
        "date": day.isoformat(),
        "time": at.strftime("%H:%M"),
        "duration_minutes": duration_minutes,
        "reason": None if verdict.ok else verdict.as_payload(),
    }
