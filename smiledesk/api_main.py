from __future__ import annotations

import logging
from datetime import date, time
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from pydantic import BaseModel, Field

from .auth_models import User, UserRole
from .auth_security import get_subject, token_for
from .auth_service import authenticate, create_user, get_user_by_id
from .config import (
    ROLE_PERMISSIONS_FILE,
    SEED_DENTIST_PASSWORD,
    SchedulingConfig,
    configure_logging,
    load_scheduling_config,
)
from .enums import AppointmentType
from .permissions import Permission, has_permission, load_role_permissions, permissions_for
from .results import ErrorKind, Rejected
from .seed import seed_base
from .services import (
    AppointmentOutcome,
    appointment_stats,
    book_appointment,
    change_status,
    check_availability,
    create_patient,
    get_appointment_by_number_flat,
    get_appointment_flat,
    init_db,
    list_appointments_flat,
    list_dentists_flat,
    list_patients_flat,
    list_services_flat,
    reschedule_appointment,
    today_appointments_flat,
    upcoming_appointments_flat,
    update_appointment,
)

logger = logging.getLogger(__name__)

# OAuth2 Bearer (Authorization: Bearer <token>)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")

ROLE_PERMISSIONS = load_role_permissions(ROLE_PERMISSIONS_FILE)
SCHEDULING = load_scheduling_config()

app = FastAPI(title="SmileDesk API", version="1.0.0")


# Startup

@app.on_event("startup")
def startup() -> None:
    configure_logging()
    # tables + idempotent seed
    init_db()
    seed_base(dentist_password=SEED_DENTIST_PASSWORD)
    logger.info("Scheduling window %s", SCHEDULING.as_options())


# Auth schemas

class RegisterIn(BaseModel):
    username: str
    password: str


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"


class MeOut(BaseModel):
    id: str
    username: str
    role: str
    is_active: bool
    permissions: list[str]


class UserCreateIn(BaseModel):
    username: str
    password: str = Field(..., min_length=8, max_length=72)
    role: UserRole
    first_name: str | None = None
    last_name: str | None = None


# Domain schemas

class PatientCreateIn(BaseModel):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    email: str | None = None
    phone: str | None = None
    date_of_birth: date | None = None


class AppointmentCreateIn(BaseModel):
    # optional so that missing fields come back as a MissingField rejection
    patient_id: str | None = None
    dentist_id: str | None = None
    service_id: int | None = None
    appointment_date: date | None = None
    appointment_time: time | None = None
    duration_minutes: int | None = None
    appointment_type: AppointmentType | None = None
    chief_complaint: str | None = None
    notes: str | None = None


class AppointmentUpdateIn(BaseModel):
    # every field optional: absent means unchanged
    patient_id: str | None = None
    dentist_id: str | None = None
    service_id: int | None = None
    appointment_date: date | None = None
    appointment_time: time | None = None
    duration_minutes: int | None = None
    appointment_type: AppointmentType | None = None
    chief_complaint: str | None = None
    notes: str | None = None


class StatusChangeIn(BaseModel):
    target_status: str
    reason: str | None = None
    notes: str | None = None


class RescheduleIn(BaseModel):
    new_date: date
    new_time: time
    dentist_id: str | None = None
    duration_minutes: int | None = None
    reason: str | None = None


class AvailabilityIn(BaseModel):
    dentist_id: str
    day: date = Field(..., alias="date")
    at: time = Field(..., alias="time")
    duration_minutes: int = 30


# Auth dependencies

def get_current_user(token: str = Depends(oauth2_scheme)) -> User:
    # strip stray quotes/spaces pasted along with the token
    token = token.strip().strip('"').strip("'")

    user_id = get_subject(token)
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    u = get_user_by_id(user_id)
    if not u or not u.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid user")
    return u


def require_permission(permission: str):
    def checker(user: User = Depends(get_current_user)) -> User:
        if not has_permission(ROLE_PERMISSIONS, user.role.value, permission):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Missing permission {permission}")
        return user

    return checker


def get_scheduling_config() -> SchedulingConfig:
    return SCHEDULING


def _outcome_response(outcome: AppointmentOutcome, success_status: int = 200) -> JSONResponse:
    if outcome.ok:
        return JSONResponse(status_code=success_status, content=outcome.appointment)
    return JSONResponse(status_code=outcome.error.http_status, content=outcome.error.as_payload())


def _not_found(entity: str, key: str) -> JSONResponse:
    err = Rejected(ErrorKind.NOT_FOUND, {"entity": entity, "id": key})
    return JSONResponse(status_code=err.http_status, content=err.as_payload())


def _rejection_for(error: dict[str, Any]) -> Rejected:
    """Map one pydantic body error onto the booking error taxonomy (input never echoed)."""
    field = ".".join(str(part) for part in error["loc"][1:]) or "body"
    if error["type"] == "missing":
        return Rejected(ErrorKind.MISSING_FIELD, {"field": field})
    if field == "duration_minutes":
        return Rejected(
            ErrorKind.INVALID_DURATION,
            {"duration_minutes": None, "min": SCHEDULING.min_duration, "max": SCHEDULING.max_duration},
        )
    return Rejected(ErrorKind.INVALID_VALUE, {"field": field, "detail": error.get("msg", "")})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    body_errors = [e for e in exc.errors() if e.get("loc") and e["loc"][0] == "body"]
    if not body_errors:
        return await request_validation_exception_handler(request, exc)
    err = _rejection_for(body_errors[0])
    logger.info("Malformed request to %s: %s", request.url.path, err.kind.value)
    return JSONResponse(status_code=err.http_status, content=err.as_payload())


# AUTH endpoints

@app.post("/api/auth/register", response_model=dict)
def register(payload: RegisterIn) -> dict[str, Any]:
    try:
        user_id = create_user(payload.username, payload.password, UserRole.STAFF)
        return {"ok": True, "user_id": user_id}
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/api/auth/login", response_model=TokenOut)
def login(form: OAuth2PasswordRequestForm = Depends()) -> TokenOut:
    u = authenticate(form.username, form.password)
    if not u:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    return TokenOut(access_token=token_for(u))


@app.get("/api/me", response_model=MeOut)
def me(user: User = Depends(get_current_user)) -> MeOut:
    return MeOut(
        id=user.id,
        username=user.username,
        role=user.role.value,
        is_active=user.is_active,
        permissions=sorted(permissions_for(ROLE_PERMISSIONS, user.role.value)),
    )


@app.post("/api/users", status_code=201)
def api_create_user(payload: UserCreateIn, user: User = Depends(require_permission(Permission.USERS_CREATE))) -> dict[str, Any]:
    try:
        user_id = create_user(payload.username, payload.password, payload.role, payload.first_name, payload.last_name)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"ok": True, "user_id": user_id}


# PUBLIC endpoints (no JWT)

@app.get("/api/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/api/config/scheduling")
def api_scheduling_config(config: SchedulingConfig = Depends(get_scheduling_config)) -> dict[str, Any]:
    return config.as_options()


@app.get("/api/dentists")
def api_dentists() -> list[dict]:
    return list_dentists_flat()


@app.get("/api/services")
def api_services() -> list[dict]:
    return list_services_flat()


# PROTECTED endpoints (JWT + permission)

@app.get("/api/patients")
def api_patients(user: User = Depends(require_permission(Permission.PATIENTS_VIEW))) -> list[dict]:
    return list_patients_flat()


@app.post("/api/patients", status_code=201)
def api_create_patient(
    payload: PatientCreateIn,
    user: User = Depends(require_permission(Permission.PATIENTS_CREATE)),
) -> dict[str, Any]:
    pid = create_patient(payload.first_name, payload.last_name, payload.email, payload.phone, payload.date_of_birth)
    return {"ok": True, "patient_id": pid}


@app.get("/api/appointments")
def api_appointments(
    dentist_id: str | None = Query(None),
    patient_id: str | None = Query(None),
    status_filter: str | None = Query(None, alias="status"),
    on_date: date | None = Query(None, alias="date"),
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    user: User = Depends(require_permission(Permission.APPOINTMENTS_VIEW)),
) -> list[dict]:
    """Chronological list; with ``dentist_id`` and ``date`` this is the validator's input."""
    try:
        return list_appointments_flat(
            dentist_id=dentist_id,
            patient_id=patient_id,
            status=status_filter,
            on_date=on_date,
            start_date=start_date,
            end_date=end_date,
            limit=limit,
            offset=offset,
        )
    except ValueError:
        raise HTTPException(status_code=422, detail=f"Unknown status: {status_filter}")


@app.get("/api/appointments/upcoming")
def api_upcoming(
    days: int = Query(7, ge=0, le=366),
    dentist_id: str | None = Query(None),
    limit: int = Query(50, ge=1, le=500),
    user: User = Depends(require_permission(Permission.APPOINTMENTS_VIEW)),
) -> list[dict]:
    return upcoming_appointments_flat(days=days, dentist_id=dentist_id, limit=limit)


@app.get("/api/appointments/today")
def api_today(
    dentist_id: str | None = Query(None),
    user: User = Depends(require_permission(Permission.APPOINTMENTS_VIEW)),
) -> list[dict]:
    return today_appointments_flat(dentist_id=dentist_id)


@app.get("/api/appointments/stats")
def api_stats(
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    dentist_id: str | None = Query(None),
    user: User = Depends(require_permission(Permission.APPOINTMENTS_VIEW)),
) -> dict[str, int]:
    return appointment_stats(start_date=start_date, end_date=end_date, dentist_id=dentist_id)


@app.post("/api/appointments/availability")
def api_availability(
    payload: AvailabilityIn,
    config: SchedulingConfig = Depends(get_scheduling_config),
    user: User = Depends(require_permission(Permission.APPOINTMENTS_VIEW)),
) -> dict[str, Any]:
    return check_availability(payload.dentist_id, payload.day, payload.at, payload.duration_minutes, config=config)


@app.get("/api/appointments/number/{appointment_number}")
def api_appointment_by_number(
    appointment_number: str,
    user: User = Depends(require_permission(Permission.APPOINTMENTS_VIEW)),
):
    found = get_appointment_by_number_flat(appointment_number)
    return found if found is not None else _not_found("Appointment", appointment_number)


@app.get("/api/appointments/{appointment_id}")
def api_appointment(
    appointment_id: str,
    user: User = Depends(require_permission(Permission.APPOINTMENTS_VIEW)),
):
    found = get_appointment_flat(appointment_id)
    return found if found is not None else _not_found("Appointment", appointment_id)


@app.post("/api/appointments")
def api_create_appointment(
    payload: AppointmentCreateIn,
    config: SchedulingConfig = Depends(get_scheduling_config),
    user: User = Depends(require_permission(Permission.APPOINTMENTS_CREATE)),
) -> JSONResponse:
    outcome = book_appointment(
        patient_id=payload.patient_id,
        dentist_id=payload.dentist_id,
        service_id=payload.service_id,
        day=payload.appointment_date,
        at=payload.appointment_time,
        duration_minutes=payload.duration_minutes,
        appointment_type=payload.appointment_type,
        chief_complaint=payload.chief_complaint,
        notes=payload.notes,
        created_by=user.id,
        config=config,
    )
    return _outcome_response(outcome, success_status=201)


@app.patch("/api/appointments/{appointment_id}/status")
def api_change_status(
    appointment_id: str,
    payload: StatusChangeIn,
    user: User = Depends(require_permission(Permission.APPOINTMENTS_EDIT)),
) -> JSONResponse:
    outcome = change_status(appointment_id, payload.target_status, reason=payload.reason, notes=payload.notes)
    return _outcome_response(outcome)


@app.patch("/api/appointments/{appointment_id}/reschedule")
def api_reschedule(
    appointment_id: str,
    payload: RescheduleIn,
    config: SchedulingConfig = Depends(get_scheduling_config),
    user: User = Depends(require_permission(Permission.APPOINTMENTS_EDIT)),
) -> JSONResponse:
    outcome = reschedule_appointment(
        appointment_id,
        payload.new_date,
        payload.new_time,
        dentist_id=payload.dentist_id,
        duration_minutes=payload.duration_minutes,
        reason=payload.reason,
        config=config,
    )
    return _outcome_response(outcome)


@app.put("/api/appointments/{appointment_id}")
def api_update_appointment(
    appointment_id: str,
    payload: AppointmentUpdateIn,
    config: SchedulingConfig = Depends(get_scheduling_config),
    user: User = Depends(require_permission(Permission.APPOINTMENTS_EDIT)),
) -> JSONResponse:
    outcome = update_appointment(
        appointment_id,
        patient_id=payload.patient_id,
        dentist_id=payload.dentist_id,
        service_id=payload.service_id,
        day=payload.appointment_date,
        at=payload.appointment_time,
        duration_minutes=payload.duration_minutes,
        appointment_type=payload.appointment_type,
        chief_complaint=payload.chief_complaint,
        notes=payload.notes,
        config=config,
    )
    return _outcome_response(outcome)
