from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt
from passlib.context import CryptContext

from .auth_models import User
from .config import JWT_ALG, JWT_EXPIRE_MINUTES, JWT_SECRET

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(subject: str, extra: dict[str, Any] | None = None, expires_minutes: int | None = None) -> str:
    """
    subject: the user id.
    extra: additional claims (username, role) the client reads without a round trip.
    """
    now = datetime.now(timezone.utc)
    expire = now + timedelta(minutes=expires_minutes if expires_minutes is not None else JWT_EXPIRE_MINUTES)

    payload: dict[str, Any] = {
        "sub": subject,
        "iat": int(now.timestamp()),
        "exp": int(expire.timestamp()),
    }
    if extra:
        payload.update(extra)

    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALG)


def decode_token(token: str) -> dict[str, Any]:
    return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALG])


def get_subject(token: str) -> str | None:
    try:
        payload = decode_token(token)
        return payload.get("sub")
    except JWTError:
        return None


def verify_password(password: str, password_hash: str) -> bool:
    """False for a wrong password and for a stored hash passlib cannot parse."""
    try:
        return pwd_context.verify(password, password_hash)
    except ValueError:
        return False


def token_for(user: User) -> str:
    """Bearer token for a staff account; the client reads username and role without a round trip."""
    return create_access_token(subject=user.id, extra={"username": user.username, "role": user.role.value})
