"""
Scheduling validator.

Pure decision function: given a proposed appointment and the dentist's
appointments on the same date, either accept it or report the first rule it
breaks. No I/O and no state; the caller fetches ``existing`` and persists on
acceptance. The same function backs the server check and the client pre-check.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any, Iterable

from .config import DEFAULT_DURATION_MINUTES, SchedulingConfig
from .enums import AppointmentStatus
from .results import Accepted, ErrorKind, Rejected, ValidationResult

DEFAULT_CONFIG = SchedulingConfig()


@dataclass(frozen=True)
class Proposal:
    patient_id: str | None
    dentist_id: str | None
    service_id: int | str | None
    date: date | None
    time: time | None
    duration_minutes: int | None = DEFAULT_DURATION_MINUTES
    exclude_appointment_id: str | None = None


@dataclass(frozen=True)
class ExistingAppointment:
    id: str
    time: time
    duration_minutes: int
    status: AppointmentStatus | str

    @property
    def is_cancelled(self) -> bool:
        status = self.status.value if isinstance(self.status, AppointmentStatus) else str(self.status)
        return status == AppointmentStatus.CANCELLED.value

    def as_context(self) -> dict[str, Any]:
        status = self.status.value if isinstance(self.status, AppointmentStatus) else str(self.status)
        return {
            "id": self.id,
            "time": self.time.strftime("%H:%M"),
            "duration_minutes": self.duration_minutes,
            "status": status,
        }


def minutes_of_day(t: time) -> int:
    return t.hour * 60 + t.minute


def has_overlap(start_a: time, duration_a: int, start_b: time, duration_b: int) -> bool:
    """Half-open intervals [start, start+duration) on the same day."""
    a0 = minutes_of_day(start_a)
    b0 = minutes_of_day(start_b)
    return a0 < b0 + duration_b and b0 < a0 + duration_a


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def validate(
    proposal: Proposal,
    existing: Iterable[ExistingAppointment] = (),
    *,
    now: datetime | None = None,
    config: SchedulingConfig | None = None,
) -> ValidationResult:
    for name in ("patient_id", "service_id", "date", "time", "dentist_id"):
        if _is_blank(getattr(proposal, name)):
            return Rejected(ErrorKind.MISSING_FIELD, {"field": name})

    return validate_slot(
        proposal.date,
        proposal.time,
        proposal.duration_minutes,
        existing,
        exclude_appointment_id=proposal.exclude_appointment_id,
        now=now,
        config=config,
    )


def validate_slot(
    day: date,
    at: time,
    duration: int | None,
    existing: Iterable[ExistingAppointment] = (),
    *,
    exclude_appointment_id: str | None = None,
    now: datetime | None = None,
    config: SchedulingConfig | None = None,
) -> ValidationResult:
    """Duration, date, time-of-day and overlap rules for one dentist's slot."""
    cfg = config or DEFAULT_CONFIG
    now = now or datetime.now()
    today = now.date()

    if (
        not isinstance(duration, int)
        or isinstance(duration, bool)
        or not cfg.min_duration <= duration <= cfg.max_duration
    ):
        return Rejected(
            ErrorKind.INVALID_DURATION,
            {"duration_minutes": duration, "min": cfg.min_duration, "max": cfg.max_duration},
        )

    if day < today:
        return Rejected(ErrorKind.PAST_DATE, {"date": day.isoformat(), "today": today.isoformat()})
    if day > today + timedelta(days=cfg.max_advance_days):
        return Rejected(ErrorKind.DATE_TOO_FAR, {"date": day.isoformat(), "max_advance_days": cfg.max_advance_days})

    if day == today and datetime.combine(day, at) < now:
        return Rejected(ErrorKind.PAST_TIME, {"time": at.strftime("%H:%M"), "now": now.strftime("%H:%M")})

    start = at.replace(second=0, microsecond=0)

    start_min = minutes_of_day(start)
    if start_min < minutes_of_day(cfg.business_start) or start_min + duration > minutes_of_day(cfg.business_end):
        return Rejected(
            ErrorKind.OUTSIDE_BUSINESS_HOURS,
            {
                "time": start.strftime("%H:%M"),
                "duration_minutes": duration,
                "business_start": cfg.business_start.strftime("%H:%M"),
                "business_end": cfg.business_end.strftime("%H:%M"),
            },
        )

    # first conflict in caller order wins
    for other in existing:
        if other.is_cancelled:
            continue
        if exclude_appointment_id is not None and other.id == exclude_appointment_id:
            continue
        if has_overlap(start, duration, other.time, other.duration_minutes):
            return Rejected(ErrorKind.APPOINTMENT_CONFLICT, {"conflicting_appointment": other.as_context()})

    return Accepted()
