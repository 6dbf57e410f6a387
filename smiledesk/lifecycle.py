from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Union

from .enums import AppointmentStatus
from .results import ErrorKind, Rejected

S = AppointmentStatus

TERMINAL_STATUSES: frozenset[AppointmentStatus] = frozenset({S.COMPLETED, S.CANCELLED, S.NO_SHOW})

ALLOWED_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    S.SCHEDULED: frozenset({S.CONFIRMED, S.IN_PROGRESS, S.COMPLETED, S.CANCELLED, S.NO_SHOW}),
    S.CONFIRMED: frozenset({S.IN_PROGRESS, S.COMPLETED, S.CANCELLED, S.NO_SHOW}),
    S.IN_PROGRESS: frozenset({S.COMPLETED, S.CANCELLED}),
    S.COMPLETED: frozenset(),
    S.CANCELLED: frozenset(),
    S.NO_SHOW: frozenset(),
}


@dataclass(frozen=True)
class TransitionContext:
    reason: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class Transitioned:
    """Status and notes to persist; ``changed`` is False for a same-status no-op."""
    status: AppointmentStatus
    notes: str | None
    changed: bool = True
    ok: ClassVar[bool] = True


TransitionResult = Union[Transitioned, Rejected]


def as_status(value: AppointmentStatus | str) -> AppointmentStatus:
    if isinstance(value, AppointmentStatus):
        return value
    return AppointmentStatus(str(value).strip().lower())


def is_terminal(status: AppointmentStatus | str) -> bool:
    return as_status(status) in TERMINAL_STATUSES


def allowed_targets(status: AppointmentStatus | str) -> frozenset[AppointmentStatus]:
    return ALLOWED_TRANSITIONS[as_status(status)]


def _append(notes: str | None, line: str) -> str:
    return f"{notes}\n\n{line}" if notes else line


def transition(appointment: Any, target_status: AppointmentStatus | str, context: TransitionContext | None = None) -> TransitionResult:
    """
    Gate one status change.
    - same status: no-op success
    - terminal source or target outside the table: InvalidTransition
    - cancellation needs a non-blank reason: MissingReason
    Does not touch ``appointment``; the caller persists the returned values.
    """
    ctx = context or TransitionContext()
    current = as_status(appointment.status)
    try:
        target = as_status(target_status)
    except ValueError:
        return Rejected(ErrorKind.INVALID_TRANSITION, {"from": current.value, "to": str(target_status)})

    if target is current:
        return Transitioned(status=current, notes=appointment.notes, changed=False)

    if target not in ALLOWED_TRANSITIONS[current]:
        return Rejected(
            ErrorKind.INVALID_TRANSITION,
            {"from": current.value, "to": target.value, "terminal": current in TERMINAL_STATUSES},
        )

    notes = appointment.notes
    if target is S.CANCELLED:
        reason = (ctx.reason or "").strip()
        if not reason:
            return Rejected(ErrorKind.MISSING_REASON, {"from": current.value, "to": target.value})
        notes = _append(notes, f"Cancellation reason: {reason}")
    elif target is S.COMPLETED:
        if ctx.notes and ctx.notes.strip():
            notes = ctx.notes.strip()
    elif target is S.NO_SHOW:
        if ctx.notes and ctx.notes.strip():
            notes = _append(notes, f"No-show notes: {ctx.notes.strip()}")

    return Transitioned(status=target, notes=notes)
