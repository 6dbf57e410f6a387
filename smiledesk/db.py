from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from .config import DATABASE_URL, SQL_ECHO

IS_SQLITE = DATABASE_URL.startswith("sqlite")

engine = create_engine(
    DATABASE_URL,
    echo=SQL_ECHO,
    future=True,
    # the API and the CLI share one file-backed SQLite store across threads
    connect_args={"check_same_thread": False} if IS_SQLITE else {},
)


if IS_SQLITE:
    @event.listens_for(engine, "connect")
    def _enforce_foreign_keys(dbapi_connection, connection_record) -> None:
        # SQLite ignores REFERENCES clauses unless this is set per connection
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class Base(DeclarativeBase):
    """Declarative base for patients, services, appointments and staff users."""


@contextmanager
def db_session() -> Iterator[Session]:
    """
    One unit of work per use case: an appointment is written (or its status
    changed) together with everything it reads, or not at all.
    """
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
