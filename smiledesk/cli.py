from __future__ import annotations

import argparse
import sys
from datetime import date, time

from .auth_service import create_user
from .config import SEED_DENTIST_PASSWORD, configure_logging, load_scheduling_config, parse_hhmm
from .enums import AppointmentType
from .seed import seed_base
from .services import (
    AppointmentOutcome,
    appointment_stats,
    book_appointment,
    change_status,
    check_availability,
    create_patient,
    init_db,
    list_appointments_flat,
    list_dentists_flat,
    list_patients_flat,
    list_services_flat,
    reschedule_appointment,
    upcoming_appointments_flat,
    update_appointment,
)


def _time(value: str) -> time:
    try:
        return parse_hhmm(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def _date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"Invalid date {value!r} (expected YYYY-MM-DD)") from e


def _print_outcome(outcome: AppointmentOutcome) -> int:
    if outcome.ok:
        a = outcome.appointment
        print(f"{a['appointment_number']} | {a['date']} {a['time']}-{a['end_time']} | {a['status']}")
        print(f"Appointment ID: {a['id']}")
        return 0
    print(f"Rejected: {outcome.message}", file=sys.stderr)
    return 1


def cmd_init(args: argparse.Namespace) -> int:
    seed_base(dentist_password=args.dentist_password)
    print("Database initialised and seed loaded.")
    return 0


def cmd_list(args: argparse.Namespace) -> int:
    if args.entity == "dentists":
        for d in list_dentists_flat():
            print(f"{d['id']} | {d['last_name'] or ''} {d['first_name'] or ''} | {d['username']}")
    elif args.entity == "patients":
        for p in list_patients_flat():
            print(f"{p['id']} | {p['patient_number']} | {p['last_name']} {p['first_name']} | {p['email'] or '-'}")
    elif args.entity == "services":
        for sv in list_services_flat():
            print(f"{sv['id']} | {sv['service_code']} | {sv['name']} ({sv['duration_minutes']} min)")
    return 0


def cmd_add_patient(args: argparse.Namespace) -> int:
    pid = create_patient(args.first_name, args.last_name, args.email, args.phone)
    print(f"Patient created: {pid}")
    return 0


def cmd_add_user(args: argparse.Namespace) -> int:
    try:
        uid = create_user(args.username, args.password, args.role, args.first_name, args.last_name)
    except ValueError as e:
        print(str(e), file=sys.stderr)
        return 1
    print(f"User created: {uid}")
    return 0


def cmd_book(args: argparse.Namespace) -> int:
    outcome = book_appointment(
        patient_id=args.patient_id,
        dentist_id=args.dentist_id,
        service_id=args.service_id,
        day=args.date,
        at=args.time,
        duration_minutes=args.duration,
        appointment_type=args.type,
        notes=args.notes,
        config=load_scheduling_config(),
    )
    return _print_outcome(outcome)


def cmd_reschedule(args: argparse.Namespace) -> int:
    outcome = reschedule_appointment(
        args.appointment_id,
        args.date,
        args.time,
        dentist_id=args.dentist_id,
        duration_minutes=args.duration,
        reason=args.reason,
        config=load_scheduling_config(),
    )
    return _print_outcome(outcome)


def cmd_update(args: argparse.Namespace) -> int:
    outcome = update_appointment(
        args.appointment_id,
        patient_id=args.patient_id,
        dentist_id=args.dentist_id,
        service_id=args.service_id,
        day=args.date,
        at=args.time,
        duration_minutes=args.duration,
        appointment_type=args.type,
        chief_complaint=args.complaint,
        notes=args.notes,
        config=load_scheduling_config(),
    )
    return _print_outcome(outcome)


def cmd_status(args: argparse.Namespace) -> int:
    outcome = change_status(args.appointment_id, args.target, reason=args.reason, notes=args.notes)
    return _print_outcome(outcome)


def cmd_agenda(args: argparse.Namespace) -> int:
    items = list_appointments_flat(dentist_id=args.dentist_id, on_date=args.date, limit=500)
    if not items:
        print("No appointments for this day.")
        return 0
    for a in items:
        print(
            f"- {a['time']}-{a['end_time']} | {a['appointment_number']} | {a['patient_name']} | "
            f"{a['service_name']} | {a['status']}"
        )
    return 0


def cmd_upcoming(args: argparse.Namespace) -> int:
    for a in upcoming_appointments_flat(days=args.days, dentist_id=args.dentist_id):
        print(f"- {a['date']} {a['time']} | {a['appointment_number']} | {a['patient_name']} | {a['status']}")
    return 0


def cmd_availability(args: argparse.Namespace) -> int:
    res = check_availability(args.dentist_id, args.date, args.time, args.duration, config=load_scheduling_config())
    if res["available"]:
        print("Available.")
        return 0
    print(f"Not available: {res['reason']['message']}")
    return 1


def cmd_stats(args: argparse.Namespace) -> int:
    stats = appointment_stats(start_date=args.start_date, end_date=args.end_date, dentist_id=args.dentist_id)
    for key, value in stats.items():
        print(f"{key:>12}: {value}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="smiledesk", description="SmileDesk dental scheduling CLI")
    p.add_argument("--log-level", default=None, help="Overrides LOG_LEVEL")
    sub = p.add_subparsers(required=True)

    p_init = sub.add_parser("init", help="Create the database and load the seed")
    p_init.add_argument("--dentist-password", default=SEED_DENTIST_PASSWORD, help="Also seeds the demo dentist")
    p_init.set_defaults(func=cmd_init)

    p_list = sub.add_parser("list", help="List records")
    p_list.add_argument("entity", choices=["dentists", "patients", "services"])
    p_list.set_defaults(func=cmd_list)

    p_addp = sub.add_parser("add-patient", help="Create a patient")
    p_addp.add_argument("--first-name", required=True)
    p_addp.add_argument("--last-name", required=True)
    p_addp.add_argument("--email", default=None)
    p_addp.add_argument("--phone", default=None)
    p_addp.set_defaults(func=cmd_add_patient)

    p_addu = sub.add_parser("add-user", help="Create a user (dentists are users with role dentist)")
    p_addu.add_argument("--username", required=True)
    p_addu.add_argument("--password", required=True)
    p_addu.add_argument("--role", default="staff", choices=["admin", "dentist", "assistant", "receptionist", "staff"])
    p_addu.add_argument("--first-name", default=None)
    p_addu.add_argument("--last-name", default=None)
    p_addu.set_defaults(func=cmd_add_user)

    p_book = sub.add_parser("book", help="Book an appointment")
    p_book.add_argument("--patient-id", required=True)
    p_book.add_argument("--dentist-id", required=True)
    p_book.add_argument("--service-id", type=int, required=True)
    p_book.add_argument("--date", type=_date, required=True, help="YYYY-MM-DD")
    p_book.add_argument("--time", type=_time, required=True, help="HH:MM")
    p_book.add_argument("--duration", type=int, default=None, help="Minutes (defaults to the service duration)")
    p_book.add_argument(
        "--type",
        default=None,
        choices=["checkup", "cleaning", "consultation", "treatment", "emergency", "follow_up"],
    )
    p_book.add_argument("--notes", default=None)
    p_book.set_defaults(func=cmd_book)

    p_res = sub.add_parser("reschedule", help="Move an appointment")
    p_res.add_argument("--appointment-id", required=True)
    p_res.add_argument("--date", type=_date, required=True)
    p_res.add_argument("--time", type=_time, required=True)
    p_res.add_argument("--dentist-id", default=None)
    p_res.add_argument("--duration", type=int, default=None)
    p_res.add_argument("--reason", default=None)
    p_res.set_defaults(func=cmd_reschedule)

    p_upd = sub.add_parser("update", help="Edit an appointment (omitted options stay unchanged)")
    p_upd.add_argument("--appointment-id", required=True)
    p_upd.add_argument("--patient-id", default=None)
    p_upd.add_argument("--dentist-id", default=None)
    p_upd.add_argument("--service-id", type=int, default=None)
    p_upd.add_argument("--date", type=_date, default=None)
    p_upd.add_argument("--time", type=_time, default=None)
    p_upd.add_argument("--duration", type=int, default=None)
    p_upd.add_argument("--type", default=None, choices=[t.value for t in AppointmentType])
    p_upd.add_argument("--complaint", default=None)
    p_upd.add_argument("--notes", default=None, help="Replaces the notes; an empty string clears them")
    p_upd.set_defaults(func=cmd_update)

    p_status = sub.add_parser("status", help="Change the status of an appointment")
    p_status.add_argument("--appointment-id", required=True)
    p_status.add_argument(
        "--target",
        required=True,
        choices=["scheduled", "confirmed", "in_progress", "completed", "cancelled", "no_show"],
    )
    p_status.add_argument("--reason", default=None, help="Required for cancelled")
    p_status.add_argument("--notes", default=None)
    p_status.set_defaults(func=cmd_status)

    p_agenda = sub.add_parser("agenda", help="A dentist's appointments for one day")
    p_agenda.add_argument("--dentist-id", required=True)
    p_agenda.add_argument("--date", type=_date, default=date.today())
    p_agenda.set_defaults(func=cmd_agenda)

    p_up = sub.add_parser("upcoming", help="Scheduled/confirmed appointments in the next days")
    p_up.add_argument("--days", type=int, default=7)
    p_up.add_argument("--dentist-id", default=None)
    p_up.set_defaults(func=cmd_upcoming)

    p_av = sub.add_parser("availability", help="Check whether a slot is free")
    p_av.add_argument("--dentist-id", required=True)
    p_av.add_argument("--date", type=_date, required=True)
    p_av.add_argument("--time", type=_time, required=True)
    p_av.add_argument("--duration", type=int, default=30)
    p_av.set_defaults(func=cmd_availability)

    p_stats = sub.add_parser("stats", help="Appointment counts per status")
    p_stats.add_argument("--start-date", type=_date, default=None)
    p_stats.add_argument("--end-date", type=_date, default=None)
    p_stats.add_argument("--dentist-id", default=None)
    p_stats.set_defaults(func=cmd_stats)

    return p


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)
    init_db()  # tables always exist
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
