from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, ClassVar, Union

STORAGE_ERROR_MESSAGE = "The appointment store is temporarily unavailable. Please try again."


class ErrorKind(enum.Enum):
    MISSING_FIELD = "MissingField"
    INVALID_DURATION = "InvalidDuration"
    PAST_DATE = "PastDate"
    DATE_TOO_FAR = "DateTooFar"
    PAST_TIME = "PastTime"
    OUTSIDE_BUSINESS_HOURS = "OutsideBusinessHours"
    APPOINTMENT_CONFLICT = "AppointmentConflict"
    MISSING_REASON = "MissingReason"
    INVALID_TRANSITION = "InvalidTransition"
    # malformed request values (wrong type or format)
    INVALID_VALUE = "InvalidValue"
    # Record Store
    NOT_FOUND = "NotFound"
    UNKNOWN_REFERENCE = "UnknownReference"


HTTP_STATUS: dict[ErrorKind, int] = {
    ErrorKind.MISSING_FIELD: 422,
    ErrorKind.INVALID_DURATION: 422,
    ErrorKind.PAST_DATE: 422,
    ErrorKind.DATE_TOO_FAR: 422,
    ErrorKind.PAST_TIME: 422,
    ErrorKind.OUTSIDE_BUSINESS_HOURS: 422,
    ErrorKind.MISSING_REASON: 422,
    ErrorKind.INVALID_VALUE: 422,
    ErrorKind.APPOINTMENT_CONFLICT: 409,
    ErrorKind.INVALID_TRANSITION: 409,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.UNKNOWN_REFERENCE: 404,
}


def message_for(kind: ErrorKind, context: dict[str, Any] | None = None) -> str:
    """One user-displayable sentence per kind, filled from the rejection context."""
    ctx = context or {}

    if kind is ErrorKind.MISSING_FIELD:
        return f"The field '{ctx.get('field', 'unknown')}' is required."
    if kind is ErrorKind.INVALID_DURATION:
        return (
            f"Duration must be between {ctx.get('min', 15)} and {ctx.get('max', 480)} minutes."
        )
    if kind is ErrorKind.PAST_DATE:
        return "Cannot schedule appointments in the past. Please select a future date."
    if kind is ErrorKind.DATE_TOO_FAR:
        return f"Appointments cannot be booked more than {ctx.get('max_advance_days', 365)} days ahead."
    if kind is ErrorKind.PAST_TIME:
        return "This time has already passed today. Please select a later time."
    if kind is ErrorKind.OUTSIDE_BUSINESS_HOURS:
        start = ctx.get("business_start", "08:00")
        end = ctx.get("business_end", "18:00")
        return f"Appointments can only be scheduled during business hours ({start}-{end})."
    if kind is ErrorKind.APPOINTMENT_CONFLICT:
        other = ctx.get("conflicting_appointment") or {}
        if other.get("time"):
            return (
                f"This time slot conflicts with an existing appointment at {other['time']}; "
                "choose a different time"
            )
        return "This time slot conflicts with an existing appointment; choose a different time"
    if kind is ErrorKind.MISSING_REASON:
        return "A reason is required to cancel an appointment."
    if kind is ErrorKind.INVALID_TRANSITION:
        if ctx.get("from") and ctx.get("to"):
            return f"An appointment cannot move from '{ctx['from']}' to '{ctx['to']}'."
        return "This status change is not allowed."
    if kind is ErrorKind.INVALID_VALUE:
        return f"Invalid value for '{ctx.get('field', 'unknown')}'."
    if kind is ErrorKind.NOT_FOUND:
        return f"{ctx.get('entity', 'Record')} not found."
    if kind is ErrorKind.UNKNOWN_REFERENCE:
        return f"Unknown {ctx.get('field', 'reference')}: {ctx.get('value')}. Please verify the selection."
    raise ValueError(f"Unhandled error kind: {kind}")


@dataclass(frozen=True)
class Accepted:
    ok: ClassVar[bool] = True


@dataclass(frozen=True)
class Rejected:
    kind: ErrorKind
    context: dict[str, Any] = field(default_factory=dict)
    ok: ClassVar[bool] = False

    @property
    def message(self) -> str:
        return message_for(self.kind, self.context)

    @property
    def http_status(self) -> int:
        return HTTP_STATUS[self.kind]

    def as_payload(self) -> dict[str, Any]:
        return {"ok": False, "kind": self.kind.value, "message": self.message, "context": self.context}


@dataclass(frozen=True)
class InfrastructureFailure:
    """Storage or network failure around the pure core; retryable by resubmission."""
    message: str
    ok: ClassVar[bool] = False
    http_status: ClassVar[int] = 503

    def as_payload(self) -> dict[str, Any]:
        return {"ok": False, "kind": "InfrastructureFailure", "message": self.message, "context": {}}


ValidationResult = Union[Accepted, Rejected]
Failure = Union[Rejected, InfrastructureFailure]
