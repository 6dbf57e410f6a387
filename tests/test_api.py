from __future__ import annotations

from datetime import date, timedelta

import pytest
from fastapi.testclient import TestClient

from smiledesk.api_main import app
from smiledesk.auth_models import UserRole
from smiledesk.auth_service import create_user

DAY = (date.today() + timedelta(days=7)).isoformat()


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


def login(client: TestClient, username: str, password: str = "password123") -> dict:
    r = client.post("/api/auth/login", data={"username": username, "password": password})
    assert r.status_code == 200, r.text
    return {"Authorization": f"Bearer {r.json()['access_token']}"}


@pytest.fixture
def reception(client):
    create_user("front.desk", "password123", UserRole.RECEPTIONIST)
    return login(client, "front.desk")


@pytest.fixture
def staff(client):
    create_user("intern", "password123", UserRole.STAFF)
    return login(client, "intern")


@pytest.fixture
def exam_id(client):
    services = client.get("/api/services").json()
    return next(sv["id"] for sv in services if sv["service_code"] == "EXAM")


@pytest.fixture
def body(dentist_id, patient_id, exam_id):
    return {
        "patient_id": patient_id,
        "dentist_id": dentist_id,
        "service_id": exam_id,
        "appointment_date": DAY,
        "appointment_time": "10:00",
        "duration_minutes": 30,
        "appointment_type": "checkup",
    }


def test_public_endpoints(client, dentist_id):
    assert client.get("/api/health").json() == {"status": "ok"}
    assert client.get("/api/config/scheduling").json()["businessStart"] == "08:00"
    assert [d["id"] for d in client.get("/api/dentists").json()] == [dentist_id]
    assert len(client.get("/api/services").json()) == 6


def test_protected_endpoints_need_a_token(client):
    assert client.get("/api/appointments").status_code == 401
    assert client.get("/api/patients", headers={"Authorization": "Bearer garbage"}).status_code == 401


def test_login_with_wrong_password(client):
    create_user("front.desk", "password123", UserRole.RECEPTIONIST)
    r = client.post("/api/auth/login", data={"username": "front.desk", "password": "wrong-password"})
    assert r.status_code == 401


def test_me_lists_permissions(client, reception):
    me = client.get("/api/me", headers=reception).json()
    assert me["username"] == "front.desk"
    assert me["role"] == "receptionist"
    assert "appointments:create" in me["permissions"]


def test_register_creates_staff(client):
    r = client.post("/api/auth/register", json={"username": "NewUser", "password": "password123"})
    assert r.status_code == 200
    headers = login(client, "newuser")
    assert client.get("/api/me", headers=headers).json()["role"] == "staff"

    dup = client.post("/api/auth/register", json={"username": "newuser", "password": "password123"})
    assert dup.status_code == 400


def test_only_admins_create_users(client, reception):
    payload = {"username": "dr.new", "password": "password123", "role": "dentist"}
    assert client.post("/api/users", json=payload, headers=reception).status_code == 403

    create_user("boss", "password123", UserRole.ADMIN)
    admin = login(client, "boss")
    r = client.post("/api/users", json=payload, headers=admin)
    assert r.status_code == 201
    assert client.post("/api/users", json=payload, headers=admin).status_code == 409


def test_create_and_list_patients(client, reception):
    r = client.post("/api/patients", json={"first_name": "Mario", "last_name": "Verdi"}, headers=reception)
    assert r.status_code == 201
    patients = client.get("/api/patients", headers=reception).json()
    assert [p["id"] for p in patients] == [r.json()["patient_id"]]


def test_book_then_conflict(client, reception, body, dentist_id):
    r = client.post("/api/appointments", json=body, headers=reception)
    assert r.status_code == 201, r.text
    created = r.json()
    assert created["status"] == "scheduled"
    assert created["appointment_number"].startswith("A")

    clash = client.post("/api/appointments", json={**body, "appointment_time": "10:15"}, headers=reception)
    assert clash.status_code == 409
    payload = clash.json()
    assert payload["ok"] is False
    assert payload["kind"] == "AppointmentConflict"
    assert payload["context"]["conflicting_appointment"]["id"] == created["id"]
    assert "10:00" in payload["message"]

    agenda = client.get("/api/appointments", params={"dentist_id": dentist_id, "date": DAY}, headers=reception).json()
    assert [(a["id"], a["time"], a["duration_minutes"], a["status"]) for a in agenda] == [
        (created["id"], "10:00", 30, "scheduled")
    ]


@pytest.mark.parametrize(
    "change,kind",
    [
        ({"patient_id": None}, "MissingField"),
        ({"duration_minutes": 5}, "InvalidDuration"),
        ({"appointment_time": "07:00"}, "OutsideBusinessHours"),
        ({"appointment_date": "2000-01-01"}, "PastDate"),
    ],
)
def test_rejections_are_structured(client, reception, body, change, kind):
    r = client.post("/api/appointments", json={**body, **change}, headers=reception)
    assert r.status_code == 422
    assert r.json()["kind"] == kind
    assert r.json()["message"]


def test_unknown_patient(client, reception, body):
    r = client.post("/api/appointments", json={**body, "patient_id": "ghost"}, headers=reception)
    assert r.status_code == 404
    assert r.json()["kind"] == "UnknownReference"
    assert r.json()["context"] == {"field": "patient_id", "value": "ghost"}


def test_staff_cannot_book_or_change_status(client, staff, body):
    assert client.post("/api/appointments", json=body, headers=staff).status_code == 403
    assert client.patch("/api/appointments/x/status", json={"target_status": "confirmed"}, headers=staff).status_code == 403
    assert client.get("/api/appointments", headers=staff).status_code == 200


def test_status_changes(client, reception, body):
    created = client.post("/api/appointments", json=body, headers=reception).json()
    url = f"/api/appointments/{created['id']}/status"

    missing = client.patch(url, json={"target_status": "cancelled", "reason": ""}, headers=reception)
    assert missing.status_code == 422
    assert missing.json()["kind"] == "MissingReason"

    ok = client.patch(url, json={"target_status": "cancelled", "reason": "patient request"}, headers=reception)
    assert ok.status_code == 200
    assert ok.json()["status"] == "cancelled"

    bad = client.patch(url, json={"target_status": "completed"}, headers=reception)
    assert bad.status_code == 409
    assert bad.json()["kind"] == "InvalidTransition"

    # the slot is free again
    assert client.post("/api/appointments", json=body, headers=reception).status_code == 201


def test_reschedule(client, reception, body):
    created = client.post("/api/appointments", json=body, headers=reception).json()
    r = client.patch(
        f"/api/appointments/{created['id']}/reschedule",
        json={"new_date": DAY, "new_time": "11:00", "reason": "dentist running late"},
        headers=reception,
    )
    assert r.status_code == 200, r.text
    assert r.json()["time"] == "11:00"
    assert "Rescheduled from" in r.json()["notes"]


def test_lookup_and_not_found(client, reception, body):
    created = client.post("/api/appointments", json=body, headers=reception).json()
    assert client.get(f"/api/appointments/{created['id']}", headers=reception).json()["id"] == created["id"]
    by_number = client.get(f"/api/appointments/number/{created['appointment_number']}", headers=reception)
    assert by_number.json()["id"] == created["id"]

    missing = client.get("/api/appointments/does-not-exist", headers=reception)
    assert missing.status_code == 404
    assert missing.json()["kind"] == "NotFound"

    patch = client.patch("/api/appointments/does-not-exist/status", json={"target_status": "confirmed"}, headers=reception)
    assert patch.status_code == 404


def test_availability_and_stats(client, reception, body, dentist_id):
    client.post("/api/appointments", json=body, headers=reception)
    busy = client.post(
        "/api/appointments/availability",
        json={"dentist_id": dentist_id, "date": DAY, "time": "10:15", "duration_minutes": 30},
        headers=reception,
    ).json()
    assert busy["available"] is False
    assert busy["reason"]["kind"] == "AppointmentConflict"

    stats = client.get("/api/appointments/stats", params={"dentist_id": dentist_id}, headers=reception).json()
    assert stats["total"] == 1 and stats["scheduled"] == 1

    upcoming = client.get("/api/appointments/upcoming", params={"days": 30}, headers=reception).json()
    assert len(upcoming) == 1


def test_unknown_status_filter(client, reception):
    assert client.get("/api/appointments", params={"status": "bogus"}, headers=reception).status_code == 422


def test_update_appointment(client, reception, staff, body):
    created = client.post("/api/appointments", json=body, headers=reception).json()
    url = f"/api/appointments/{created['id']}"

    r = client.put(url, json={"chief_complaint": "chipped tooth", "appointment_type": "emergency"}, headers=reception)
    assert r.status_code == 200, r.text
    assert (r.json()["chief_complaint"], r.json()["appointment_type"]) == ("chipped tooth", "emergency")
    assert r.json()["time"] == "10:00"

    moved = client.put(url, json={"appointment_time": "11:30", "duration_minutes": 45}, headers=reception)
    assert moved.status_code == 200, moved.text
    assert (moved.json()["time"], moved.json()["end_time"]) == ("11:30", "12:15")

    outside = client.put(url, json={"appointment_time": "17:45"}, headers=reception)
    assert outside.status_code == 422
    assert outside.json()["kind"] == "OutsideBusinessHours"

    assert client.put(url, json={"notes": "x"}, headers=staff).status_code == 403
    missing = client.put("/api/appointments/does-not-exist", json={"notes": "x"}, headers=reception)
    assert missing.status_code == 404
    assert missing.json()["kind"] == "NotFound"


def test_update_conflict_and_terminal(client, reception, body):
    first = client.post("/api/appointments", json=body, headers=reception).json()
    client.post("/api/appointments", json={**body, "appointment_time": "11:00"}, headers=reception)

    clash = client.put(f"/api/appointments/{first['id']}", json={"appointment_time": "11:15"}, headers=reception)
    assert clash.status_code == 409
    assert clash.json()["kind"] == "AppointmentConflict"

    client.patch(f"/api/appointments/{first['id']}/status", json={"target_status": "no_show"}, headers=reception)
    done = client.put(f"/api/appointments/{first['id']}", json={"notes": "late"}, headers=reception)
    assert done.status_code == 409
    assert done.json()["kind"] == "InvalidTransition"


@pytest.mark.parametrize(
    "change,kind,field",
    [
        ({"duration_minutes": 30.5}, "InvalidDuration", None),
        ({"duration_minutes": "half an hour"}, "InvalidDuration", None),
        ({"appointment_time": "25:99"}, "InvalidValue", "appointment_time"),
        ({"appointment_date": "next tuesday"}, "InvalidValue", "appointment_date"),
        ({"appointment_type": "root_canal"}, "InvalidValue", "appointment_type"),
        ({"service_id": "cleaning"}, "InvalidValue", "service_id"),
    ],
)
def test_malformed_body_values_are_structured(client, reception, body, change, kind, field):
    r = client.post("/api/appointments", json={**body, **change}, headers=reception)
    assert r.status_code == 422
    payload = r.json()
    assert payload["ok"] is False
    assert payload["kind"] == kind
    assert payload["message"]
    assert "detail" not in payload
    if field:
        assert payload["context"]["field"] == field
    else:
        assert (payload["context"]["min"], payload["context"]["max"]) == (15, 480)


def test_malformed_availability_and_missing_body_fields(client, reception, dentist_id):
    r = client.post(
        "/api/appointments/availability",
        json={"dentist_id": dentist_id, "date": DAY, "time": "10:00", "duration_minutes": 12.5},
        headers=reception,
    )
    assert r.status_code == 422
    assert r.json()["kind"] == "InvalidDuration"

    r = client.patch("/api/appointments/x/reschedule", json={"new_time": "11:00"}, headers=reception)
    assert r.status_code == 422
    assert r.json()["kind"] == "MissingField"
    assert r.json()["context"] == {"field": "new_date"}


def test_query_errors_keep_default_shape(client, reception):
    r = client.get("/api/appointments/upcoming", params={"days": "soon"}, headers=reception)
    assert r.status_code == 422
    assert "detail" in r.json()
