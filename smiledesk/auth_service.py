from __future__ import annotations

import logging

from sqlalchemy import select

from .auth_models import User, UserRole
from .auth_security import hash_password, verify_password
from .db import db_session

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8


def create_user(
    username: str,
    password: str,
    role: UserRole | str = UserRole.STAFF,
    first_name: str | None = None,
    last_name: str | None = None,
) -> str:
    username = username.strip().lower()
    if not username or not password:
        raise ValueError("Username and password are required.")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    try:
        role = role if isinstance(role, UserRole) else UserRole(str(role).strip().lower())
    except ValueError:
        raise ValueError(f"Unknown role: {role}") from None

    with db_session() as s:
        exists = s.execute(select(User).where(User.username == username)).scalar_one_or_none()
        if exists:
            raise ValueError("Username already registered.")

        u = User(
            username=username,
            password_hash=hash_password(password),
            role=role,
            first_name=first_name.strip() if first_name else None,
            last_name=last_name.strip() if last_name else None,
            is_active=True,
        )
        s.add(u)
        s.flush()
        logger.info("Created user %s with role %s", username, role.value)
        return u.id


def authenticate(username: str, password: str) -> User | None:
    username = username.strip().lower()
    with db_session() as s:
        u = s.execute(select(User).where(User.username == username)).scalar_one_or_none()
        if not u or not u.is_active:
            return None
        if not verify_password(password, u.password_hash):
            return None
        return u


def get_user_by_id(user_id: str) -> User | None:
    with db_session() as s:
        return s.get(User, user_id)
