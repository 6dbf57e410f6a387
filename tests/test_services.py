from __future__ import annotations

from datetime import date, datetime, time

import pytest

from smiledesk.auth_models import UserRole
from smiledesk.auth_service import create_user
from smiledesk.results import ErrorKind, InfrastructureFailure
from smiledesk.services import (
    appointment_stats,
    book_appointment,
    change_status,
    check_availability,
    create_patient,
    create_service,
    existing_appointments_for,
    get_appointment_by_number_flat,
    get_appointment_flat,
    list_appointments_flat,
    list_dentists_flat,
    reschedule_appointment,
    upcoming_appointments_flat,
    update_appointment,
)

DAY = date(2025, 6, 10)


@pytest.fixture
def book(now, patient_id, dentist_id, service_id):
    def _book(at: time, day: date = DAY, **kw):
        fields = dict(
            patient_id=patient_id,
            dentist_id=dentist_id,
            service_id=service_id,
            day=day,
            at=at,
            now=now,
        )
        fields.update(kw)
        return book_appointment(**fields)

    return _book


def test_booking_persists_scheduled_appointment(book, patient_id, dentist_id):
    outcome = book(time(9, 0))
    assert outcome.ok, outcome.message

    a = outcome.appointment
    assert a["status"] == "scheduled"
    assert a["appointment_number"] == "A2025060001"
    assert a["patient_id"] == patient_id
    assert a["dentist_id"] == dentist_id
    assert a["patient_name"] == "Alice Rossi"
    assert a["dentist_name"] == "Sarah Jones"
    assert (a["date"], a["time"], a["end_time"]) == ("2025-06-10", "09:00", "09:30")
    assert a["appointment_type"] == "consultation"
    assert get_appointment_flat(a["id"]) == a


def test_duration_defaults_to_service(book):
    long_id = create_service("RCT", "Root canal", duration_minutes=90)
    outcome = book(time(9, 0), service_id=long_id)
    assert outcome.appointment["duration_minutes"] == 90
    assert outcome.appointment["end_time"] == "10:30"


def test_numbers_increase(book):
    first = book(time(9, 0)).appointment
    second = book(time(10, 0)).appointment
    assert (first["appointment_number"], second["appointment_number"]) == ("A2025060001", "A2025060002")
    assert get_appointment_by_number_flat("A2025060002")["id"] == second["id"]


def test_overlapping_booking_is_rejected(book):
    first = book(time(9, 0)).appointment
    outcome = book(time(9, 15))
    assert not outcome.ok
    assert outcome.error.kind is ErrorKind.APPOINTMENT_CONFLICT
    assert outcome.error.context["conflicting_appointment"]["id"] == first["id"]
    assert outcome.error.http_status == 409
    assert len(list_appointments_flat(on_date=DAY)) == 1


def test_other_dentist_is_independent(book, other_dentist_id):
    assert book(time(9, 0)).ok
    assert book(time(9, 0), dentist_id=other_dentist_id).ok


def test_cancel_frees_the_slot(book):
    first = book(time(9, 0)).appointment
    assert not book(time(9, 0)).ok

    cancelled = change_status(first["id"], "cancelled", reason="patient request")
    assert cancelled.ok
    assert cancelled.appointment["status"] == "cancelled"
    assert "Cancellation reason: patient request" in cancelled.appointment["notes"]

    assert book(time(9, 0)).ok


def test_validation_failures_are_not_persisted(book):
    outcome = book(time(7, 0))
    assert outcome.error.kind is ErrorKind.OUTSIDE_BUSINESS_HOURS
    assert outcome.message.startswith("Appointments can only be scheduled during business hours")
    assert list_appointments_flat() == []


def test_missing_field_reported_before_references(book):
    outcome = book(time(9, 0), patient_id=None)
    assert outcome.error.kind is ErrorKind.MISSING_FIELD
    assert outcome.error.context == {"field": "patient_id"}


@pytest.mark.parametrize("field", ["patient_id", "dentist_id", "service_id"])
def test_unknown_references(book, field):
    bogus = 9999 if field == "service_id" else "does-not-exist"
    outcome = book(time(9, 0), **{field: bogus})
    assert outcome.error.kind is ErrorKind.UNKNOWN_REFERENCE
    assert outcome.error.context == {"field": field, "value": bogus}


def test_non_dentist_user_cannot_be_booked(book):
    clerk = create_user("front.desk", "password123", UserRole.RECEPTIONIST)
    outcome = book(time(9, 0), dentist_id=clerk)
    assert outcome.error.kind is ErrorKind.UNKNOWN_REFERENCE


def test_reschedule_moves_and_logs(book, now):
    a = book(time(9, 0)).appointment
    moved = reschedule_appointment(a["id"], DAY, time(9, 15), reason="traffic", now=now)
    assert moved.ok, moved.message
    assert moved.appointment["time"] == "09:15"
    assert moved.appointment["notes"] == "Rescheduled from 2025-06-10 09:00 to 2025-06-10 09:15 (traffic)"


def test_reschedule_into_another_appointment(book, now):
    a = book(time(9, 0)).appointment
    book(time(11, 0))
    outcome = reschedule_appointment(a["id"], DAY, time(10, 45), now=now)
    assert outcome.error.kind is ErrorKind.APPOINTMENT_CONFLICT


def test_reschedule_terminal_appointment(book, now):
    a = book(time(9, 0)).appointment
    change_status(a["id"], "completed")
    outcome = reschedule_appointment(a["id"], DAY, time(14, 0), now=now)
    assert outcome.error.kind is ErrorKind.INVALID_TRANSITION


def test_reschedule_unknown_appointment(now):
    outcome = reschedule_appointment("nope", DAY, time(9, 0), now=now)
    assert outcome.error.kind is ErrorKind.NOT_FOUND
    assert outcome.error.http_status == 404


def test_unknown_appointment_type_is_rejected(book):
    outcome = book(time(9, 0), appointment_type="root_canal")
    assert outcome.error.kind is ErrorKind.INVALID_VALUE
    assert outcome.error.context == {"field": "appointment_type", "value": "root_canal"}
    assert outcome.error.http_status == 422
    assert list_appointments_flat() == []


# Editing

def test_update_details_without_touching_the_slot(book, patient_id):
    a = book(time(9, 0)).appointment
    other_patient = create_patient("Bruno", "Verdi")
    cleaning = create_service("CLEAN", "Cleaning", duration_minutes=45)
    # the slot is not rechecked, so a clock past the appointment does not matter
    later = datetime(2025, 7, 1, 12, 0)

    outcome = update_appointment(
        a["id"],
        patient_id=other_patient,
        service_id=cleaning,
        appointment_type="cleaning",
        chief_complaint="  sensitivity  ",
        notes="",
        now=later,
    )
    assert outcome.ok, outcome.message
    edited = outcome.appointment
    assert edited["patient_name"] == "Bruno Verdi"
    assert edited["service_name"] == "Cleaning"
    assert edited["appointment_type"] == "cleaning"
    assert edited["chief_complaint"] == "sensitivity"
    assert edited["notes"] is None
    assert (edited["time"], edited["duration_minutes"]) == ("09:00", 30)


def test_update_slot_is_revalidated(book, now):
    a = book(time(9, 0)).appointment
    other = book(time(11, 0)).appointment

    conflict = update_appointment(a["id"], at=time(10, 45), now=now)
    assert conflict.error.kind is ErrorKind.APPOINTMENT_CONFLICT
    assert conflict.error.context["conflicting_appointment"]["id"] == other["id"]

    longer = update_appointment(a["id"], duration_minutes=60, now=now)
    assert longer.ok, longer.message
    assert longer.appointment["end_time"] == "10:00"

    too_long = update_appointment(a["id"], duration_minutes=500, now=now)
    assert too_long.error.kind is ErrorKind.INVALID_DURATION
    assert get_appointment_flat(a["id"])["duration_minutes"] == 60


def test_update_to_another_dentist(book, now, other_dentist_id):
    a = book(time(9, 0)).appointment
    book(time(9, 0), dentist_id=other_dentist_id)

    assert update_appointment(a["id"], dentist_id=other_dentist_id, now=now).error.kind is ErrorKind.APPOINTMENT_CONFLICT
    moved = update_appointment(a["id"], dentist_id=other_dentist_id, at=time(14, 0), now=now)
    assert moved.ok, moved.message
    assert (moved.appointment["dentist_name"], moved.appointment["time"]) == ("Mark Brown", "14:00")


@pytest.mark.parametrize("field", ["patient_id", "dentist_id", "service_id"])
def test_update_unknown_references(book, now, field):
    a = book(time(9, 0)).appointment
    bogus = 9999 if field == "service_id" else "does-not-exist"
    outcome = update_appointment(a["id"], now=now, **{field: bogus})
    assert outcome.error.kind is ErrorKind.UNKNOWN_REFERENCE
    assert outcome.error.context == {"field": field, "value": bogus}


def test_update_refuses_terminal_and_bad_type(book, now):
    a = book(time(9, 0)).appointment
    assert update_appointment(a["id"], appointment_type="root_canal", now=now).error.kind is ErrorKind.INVALID_VALUE

    change_status(a["id"], "cancelled", reason="moved away")
    outcome = update_appointment(a["id"], notes="call back", now=now)
    assert outcome.error.kind is ErrorKind.INVALID_TRANSITION
    assert outcome.error.context == {"from": "cancelled", "to": "edited"}


def test_update_unknown_appointment(now):
    outcome = update_appointment("nope", notes="x", now=now)
    assert outcome.error.kind is ErrorKind.NOT_FOUND


def test_status_flow_and_terminal_rejection(book):
    a = book(time(9, 0)).appointment
    assert change_status(a["id"], "confirmed").appointment["status"] == "confirmed"
    assert change_status(a["id"], "in_progress").appointment["status"] == "in_progress"
    done = change_status(a["id"], "completed", notes="All good")
    assert done.appointment["status"] == "completed"
    assert done.appointment["notes"] == "All good"

    again = change_status(a["id"], "cancelled", reason="too late")
    assert again.error.kind is ErrorKind.INVALID_TRANSITION
    assert get_appointment_flat(a["id"])["status"] == "completed"


def test_cancel_without_reason_keeps_status(book):
    a = book(time(9, 0)).appointment
    outcome = change_status(a["id"], "cancelled", reason="  ")
    assert outcome.error.kind is ErrorKind.MISSING_REASON
    assert get_appointment_flat(a["id"])["status"] == "scheduled"


def test_change_status_unknown_appointment():
    assert change_status("missing", "confirmed").error.kind is ErrorKind.NOT_FOUND


def test_existing_appointments_in_time_order(book, dentist_id):
    book(time(14, 0))
    book(time(9, 0))
    existing = existing_appointments_for(dentist_id, DAY)
    assert [e.time for e in existing] == [time(9, 0), time(14, 0)]


def test_list_filters(book, patient_id):
    other_patient = create_patient("Bruno", "Bianchi")
    a = book(time(9, 0)).appointment
    book(time(10, 0), patient_id=other_patient)
    book(time(9, 0), day=date(2025, 6, 11))
    change_status(a["id"], "confirmed")

    assert len(list_appointments_flat(on_date=DAY)) == 2
    assert len(list_appointments_flat(patient_id=patient_id)) == 2
    assert [x["id"] for x in list_appointments_flat(status="confirmed")] == [a["id"]]
    assert len(list_appointments_flat(start_date=date(2025, 6, 11))) == 1
    assert len(list_appointments_flat(limit=1, offset=2)) == 1
    with pytest.raises(ValueError):
        list_appointments_flat(status="rescheduled")


def test_upcoming_only_open_appointments(book):
    a = book(time(9, 0)).appointment
    book(time(10, 0))
    change_status(a["id"], "cancelled", reason="moved away")
    upcoming = upcoming_appointments_flat(days=30, today=date(2025, 6, 1))
    assert [x["time"] for x in upcoming] == ["10:00"]
    assert upcoming_appointments_flat(days=3, today=date(2025, 6, 1)) == []


def test_stats(book, dentist_id):
    a = book(time(9, 0)).appointment
    book(time(10, 0))
    change_status(a["id"], "no_show")
    stats = appointment_stats(dentist_id=dentist_id)
    assert stats["total"] == 2
    assert stats["scheduled"] == 1
    assert stats["no_show"] == 1
    assert stats["completed"] == 0


def test_availability(book, dentist_id, now):
    book(time(9, 0))
    free = check_availability(dentist_id, DAY, time(9, 30), 30, now=now)
    assert free["available"] is True and free["reason"] is None

    busy = check_availability(dentist_id, DAY, time(9, 15), 30, now=now)
    assert busy["available"] is False
    assert busy["reason"]["kind"] == "AppointmentConflict"


def test_list_dentists(dentist_id):
    create_user("front.desk", "password123", UserRole.RECEPTIONIST)
    assert [d["id"] for d in list_dentists_flat()] == [dentist_id]


def test_storage_failure_becomes_infrastructure_failure(book, monkeypatch):
    from sqlalchemy.exc import OperationalError

    import smiledesk.services as services

    def broken(*args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    monkeypatch.setattr(services, "_existing", broken)
    outcome = book(time(9, 0))
    assert isinstance(outcome.error, InfrastructureFailure)
    assert outcome.error.http_status == 503
    assert outcome.error.as_payload()["kind"] == "InfrastructureFailure"
