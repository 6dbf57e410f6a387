from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import select

from .auth_models import User, UserRole
from .auth_security import hash_password
from .config import SEED_ADMIN_PASSWORD, SEED_ADMIN_USERNAME
from .db import db_session
from .models import Service

logger = logging.getLogger(__name__)

SERVICES = [
    # code, name, category, minutes, price
    ("EXAM", "Comprehensive Exam", "diagnostic", 30, "85.00"),
    ("CLEAN", "Adult Cleaning", "preventive", 45, "120.00"),
    ("XRAY", "Bitewing X-Rays", "diagnostic", 15, "60.00"),
    ("FILL", "Composite Filling", "restorative", 60, "180.00"),
    ("RCT", "Root Canal Treatment", "endodontic", 90, "950.00"),
    ("EMRG", "Emergency Visit", "emergency", 30, "150.00"),
]

DENTISTS = [
    # username, first name, last name
    ("dr.smith", "John", "Smith"),
]


def seed_base(dentist_password: str | None = None) -> None:
    """
    Load minimal data (idempotent):
    - service catalog
    - admin user (only when SEED_ADMIN_PASSWORD is set)
    - dentists (only when a password is given)
    """
    with db_session() as s:
        for code, name, category, minutes, price in SERVICES:
            if s.execute(select(Service).where(Service.service_code == code)).scalar_one_or_none() is None:
                s.add(
                    Service(
                        service_code=code,
                        name=name,
                        category=category,
                        duration_minutes=minutes,
                        base_price=Decimal(price),
                    )
                )

        def add_user(username: str, password: str, role: UserRole, first: str | None = None, last: str | None = None) -> None:
            if s.execute(select(User).where(User.username == username)).scalar_one_or_none() is None:
                s.add(
                    User(
                        username=username,
                        password_hash=hash_password(password),
                        role=role,
                        first_name=first,
                        last_name=last,
                    )
                )
                logger.info("Seeded user %s (%s)", username, role.value)

        if SEED_ADMIN_PASSWORD:
            add_user(SEED_ADMIN_USERNAME.strip().lower(), SEED_ADMIN_PASSWORD, UserRole.ADMIN)

        if dentist_password:
            for username, first, last in DENTISTS:
                add_user(username, dentist_password, UserRole.DENTIST, first, last)
