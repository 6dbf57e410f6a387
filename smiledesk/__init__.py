"""
SmileDesk: appointment scheduling backend for a dental practice.

Structure:
- config.py      : environment settings, scheduling rules, logging setup
- db.py          : SQLAlchemy engine and sessions
- enums.py       : appointment status and type enums
- models.py      : ORM models (patients, services, appointments)
- results.py     : rejection kinds, messages and HTTP mapping
- scheduling.py  : pure booking validator (shared with the Streamlit client)
- lifecycle.py   : appointment status transitions
- permissions.py : role to permission mapping
- services.py    : use cases (booking, rescheduling, edits, status changes, queries)
- seed.py        : initial data (service catalog, demo users)
- api_main.py    : REST API (FastAPI + JWT)
- cli.py         : command line front end
"""
