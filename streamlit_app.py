from __future__ import annotations

import base64
import json
import os
from datetime import date, datetime, timezone

import requests
import streamlit as st

from smiledesk.config import SchedulingConfig, parse_hhmm
from smiledesk.scheduling import ExistingAppointment, Proposal, validate

st.set_page_config(page_title="SmileDesk", layout="wide")

API_BASE = os.getenv("API_BASE", "http://127.0.0.1:8000")

STATUSES = ["scheduled", "confirmed", "in_progress", "completed", "cancelled", "no_show"]
TYPES = ["consultation", "checkup", "cleaning", "treatment", "emergency", "follow_up"]


# JWT helpers (UI only, no signature check)

def _b64url_decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


def jwt_payload(token: str) -> dict:
    parts = token.split(".")
    if len(parts) != 3:
        return {}
    try:
        payload = json.loads(_b64url_decode(parts[1]).decode("utf-8"))
    except (ValueError, UnicodeDecodeError):
        return {}
    return payload if isinstance(payload, dict) else {}


def jwt_is_expired(token: str) -> bool:
    exp = jwt_payload(token).get("exp")
    try:
        exp_int = int(exp)
    except (TypeError, ValueError):
        return False

    now = int(datetime.now(tz=timezone.utc).timestamp())
    return now >= (exp_int - 5)


def jwt_username(token: str) -> str:
    p = jwt_payload(token)
    return str(p.get("username") or p.get("sub") or "user")


# HTTP client (with JWT)

class ApiRejection(Exception):
    """Structured rejection returned by the API (``kind`` / ``message`` / ``context``)."""

    def __init__(self, payload: dict):
        super().__init__(payload.get("message") or "Request rejected.")
        self.payload = payload


def _headers(token: str | None) -> dict:
    return {"Authorization": f"Bearer {token}"} if token else {}


def _handle(r: requests.Response) -> dict | list:
    if r.status_code == 401:
        raise PermissionError("401 Unauthorized (token invalid or expired, or backend restarted).")
    if r.status_code >= 400:
        try:
            body = r.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("ok") is False and body.get("kind"):
            raise ApiRejection(body)
    r.raise_for_status()
    return r.json()


def api_get(path: str, token: str | None = None, params: dict | None = None) -> dict | list:
    r = requests.get(f"{API_BASE}{path}", headers=_headers(token), params=params, timeout=10)
    return _handle(r)


def api_post(path: str, payload: dict, token: str | None = None) -> dict:
    r = requests.post(f"{API_BASE}{path}", headers=_headers(token), json=payload, timeout=10)
    return _handle(r)


def api_patch(path: str, payload: dict, token: str | None = None) -> dict:
    r = requests.patch(f"{API_BASE}{path}", headers=_headers(token), json=payload, timeout=10)
    return _handle(r)


def api_login(username: str, password: str) -> str:
    # OAuth2PasswordRequestForm => x-www-form-urlencoded
    r = requests.post(
        f"{API_BASE}/api/auth/login",
        data={"username": username, "password": password},
        timeout=10,
    )
    r.raise_for_status()
    return r.json()["access_token"]


def is_logged_in() -> bool:
    token = st.session_state.get("token")
    return bool(token) and isinstance(token, str)


def do_logout() -> None:
    st.session_state.pop("token", None)
    st.session_state.pop("auth_error", None)
    st.rerun()


def require_auth() -> str | None:
    token = st.session_state.get("token")
    if not token:
        st.warning("Restricted section. Log in from the sidebar.")
        return None

    if jwt_is_expired(token):
        st.error("Session expired. Log out from the sidebar and log in again.")
        return None

    return token


def session_lost(e: PermissionError) -> None:
    st.session_state["auth_error"] = str(e)
    st.error("Session no longer valid. Log out and log in again.")


# Pre-check with the shared validator

def precheck(token: str, config: SchedulingConfig, proposal: Proposal) -> str | None:
    """Runs the booking rules locally; returns the rejection message or None."""
    existing: list[ExistingAppointment] = []
    if proposal.dentist_id and proposal.date:
        items = api_get(
            "/api/appointments",
            token=token,
            params={"dentist_id": proposal.dentist_id, "date": proposal.date.isoformat(), "limit": 500},
        )
        existing = [
            ExistingAppointment(a["id"], parse_hhmm(a["time"]), a["duration_minutes"], a["status"]) for a in items
        ]
    verdict = validate(proposal, existing, config=config)
    return None if verdict.ok else verdict.message


# Sidebar login

with st.sidebar:
    st.header("Sign in")

    token = st.session_state.get("token")

    if not is_logged_in():
        u = st.text_input("Username", key="login_user")
        p = st.text_input("Password", type="password", key="login_pass")

        if st.button("Login", key="login_btn"):
            try:
                st.session_state["token"] = api_login(u.strip().lower(), p)
                st.session_state.pop("auth_error", None)
                st.success("Logged in.")
                st.rerun()
            except requests.HTTPError:
                st.error("Invalid credentials.")
            except requests.RequestException as e:
                st.error(str(e))
    else:
        # info from the token, no /api/me call on every rerun
        st.write(f"User: **{jwt_username(token)}**")

        if st.session_state.get("auth_error"):
            st.error(st.session_state["auth_error"])

        if st.button("Logout", key="logout_btn"):
            do_logout()

    st.divider()
    st.caption(f"API: {API_BASE}")


# UI

st.title("SmileDesk (REST API + JWT + Streamlit)")

tab1, tab2, tab3 = st.tabs(["Book", "Dentist agenda", "Status"])


# Public reference data

@st.cache_data(ttl=10)
def load_dentists() -> list[dict]:
    return api_get("/api/dentists")


@st.cache_data(ttl=10)
def load_services() -> list[dict]:
    return api_get("/api/services")


@st.cache_data(ttl=60)
def load_config() -> dict:
    return api_get("/api/config/scheduling")


def dentist_label(d: dict) -> str:
    return f"Dr. {d.get('last_name') or d['username']} {d.get('first_name') or ''}".strip()


# TAB 1 - Booking (PROTECTED)

with tab1:
    st.subheader("Book an appointment")

    token = require_auth()
    if token:
        try:
            dentists = load_dentists()
            services = load_services()
            config = SchedulingConfig.from_options(load_config())
            patients = api_get("/api/patients", token=token)
        except PermissionError as e:
            session_lost(e)
            st.stop()
        except requests.RequestException as e:
            st.error(f"API unreachable or failing: {e}")
            st.stop()

        st.caption(
            f"Business hours {config.business_start:%H:%M}-{config.business_end:%H:%M}, "
            f"up to {config.max_advance_days} days ahead."
        )

        colA, colB, colC = st.columns(3)
        with colA:
            patient = st.selectbox(
                "Patient",
                options=patients,
                format_func=lambda p: f"{p['last_name']} {p['first_name']} ({p['patient_number']})",
                key="book_patient",
            )
            dentist = st.selectbox("Dentist", options=dentists, format_func=dentist_label, key="book_dentist")
        with colB:
            service = st.selectbox(
                "Service",
                options=services,
                format_func=lambda sv: f"{sv['name']} ({sv['duration_minutes']} min)",
                key="book_service",
            )
            day = st.date_input("Date", value=date.today(), key="book_date")
            at = st.time_input("Time", value=config.business_start, step=900, key="book_time")
        with colC:
            duration = st.number_input(
                "Duration (min)",
                min_value=1,
                max_value=1440,
                value=int(service["duration_minutes"]) if service else 30,
                step=15,
                key="book_duration",
            )
            appointment_type = st.selectbox("Type", options=TYPES, key="book_type")
            complaint = st.text_input("Chief complaint (optional)", key="book_complaint")
            notes = st.text_area("Notes (optional)", height=80, key="book_notes")

        if st.button("Confirm booking", key="book_submit", disabled=not (patients and dentists and services)):
            proposal = Proposal(
                patient_id=patient["id"] if patient else None,
                dentist_id=dentist["id"] if dentist else None,
                service_id=service["id"] if service else None,
                date=day,
                time=at,
                duration_minutes=int(duration),
            )
            try:
                problem = precheck(token, config, proposal)
                if problem:
                    st.error(problem)
                else:
                    res = api_post(
                        "/api/appointments",
                        {
                            "patient_id": proposal.patient_id,
                            "dentist_id": proposal.dentist_id,
                            "service_id": proposal.service_id,
                            "appointment_date": day.isoformat(),
                            "appointment_time": at.strftime("%H:%M"),
                            "duration_minutes": proposal.duration_minutes,
                            "appointment_type": appointment_type,
                            "chief_complaint": complaint.strip() or None,
                            "notes": notes.strip() or None,
                        },
                        token=token,
                    )
                    st.success(f"Booked {res['appointment_number']} on {res['date']} at {res['time']}.")
            except ApiRejection as e:
                # the server has the final word (e.g. a slot taken meanwhile)
                st.error(str(e))
            except PermissionError as e:
                session_lost(e)
            except requests.RequestException as e:
                st.error(f"API unreachable or failing: {e}")


# TAB 2 - Dentist agenda (PROTECTED)

with tab2:
    st.subheader("Daily agenda")

    token = require_auth()
    if token:
        try:
            dentists = load_dentists()
        except requests.RequestException as e:
            st.error(f"API unreachable or failing: {e}")
            dentists = []

        dentist_agenda = st.selectbox("Dentist", options=dentists, format_func=dentist_label, key="agenda_dentist")
        agenda_day = st.date_input("Day", value=date.today(), key="agenda_day")

        if dentist_agenda:
            try:
                items = api_get(
                    "/api/appointments",
                    token=token,
                    params={"dentist_id": dentist_agenda["id"], "date": agenda_day.isoformat(), "limit": 500},
                )
                if not items:
                    st.info("No appointments for this day.")
                else:
                    for a in items:
                        st.write(
                            f"- **{a['time']} - {a['end_time']}** | {a['appointment_number']} | "
                            f"{a['patient_name']} | {a['service_name']} | Status: {a['status']}"
                        )
            except PermissionError as e:
                session_lost(e)
            except requests.RequestException as e:
                st.error(f"Agenda error: {e}")


# TAB 3 - Status changes (PROTECTED)

with tab3:
    st.subheader("Change appointment status")

    token = require_auth()
    if token:
        number = st.text_input("Appointment number (e.g. A2025060001)", key="status_number")
        if number.strip():
            try:
                appt = api_get(f"/api/appointments/number/{number.strip()}", token=token)
                st.write(
                    f"**{appt['appointment_number']}** | {appt['date']} {appt['time']}-{appt['end_time']} | "
                    f"{appt['patient_name']} | Status: **{appt['status']}**"
                )
                if appt.get("notes"):
                    st.text(appt["notes"])

                target = st.selectbox("New status", options=STATUSES, key="status_target")
                reason = st.text_input("Reason (required to cancel)", key="status_reason")
                status_notes = st.text_area("Notes", height=80, key="status_notes")

                if st.button("Apply", key="status_submit"):
                    res = api_patch(
                        f"/api/appointments/{appt['id']}/status",
                        {"target_status": target, "reason": reason.strip() or None, "notes": status_notes.strip() or None},
                        token=token,
                    )
                    st.success(f"{res['appointment_number']} is now {res['status']}.")
            except ApiRejection as e:
                st.error(str(e))
            except PermissionError as e:
                session_lost(e)
            except requests.RequestException as e:
                st.error(f"Status change error: {e}")
