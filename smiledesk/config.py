from __future__ import annotations

import logging
import os
import warnings
from dataclasses import dataclass
from datetime import time
from pathlib import Path
from typing import Any, Mapping

from dotenv import load_dotenv

load_dotenv()

PROJECT_ROOT = Path(__file__).resolve().parents[1]

# SQLite file in the project root unless DATABASE_URL is set
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{PROJECT_ROOT / 'smiledesk.sqlite'}")
# log every SQL statement
SQL_ECHO = os.getenv("SQL_ECHO", "false").lower() in ("1", "true", "yes")

JWT_SECRET = os.getenv("JWT_SECRET")
if not JWT_SECRET:
    warnings.warn("JWT_SECRET not set, using the development secret", RuntimeWarning, stacklevel=2)
    JWT_SECRET = "CHANGE_ME_DEV_SECRET"
JWT_ALG = "HS256"
JWT_EXPIRE_MINUTES = int(os.getenv("JWT_EXPIRE_MINUTES", "60"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

ROLE_PERMISSIONS_FILE = os.getenv("ROLE_PERMISSIONS_FILE")

SEED_ADMIN_USERNAME = os.getenv("SEED_ADMIN_USERNAME", "admin")
SEED_ADMIN_PASSWORD = os.getenv("SEED_ADMIN_PASSWORD")
SEED_DENTIST_PASSWORD = os.getenv("SEED_DENTIST_PASSWORD")

MIN_DURATION_MINUTES = 15
MAX_DURATION_MINUTES = 480
DEFAULT_DURATION_MINUTES = 30


def parse_hhmm(value: str | time) -> time:
    """Accepts ``HH:MM`` (or ``HH:MM:SS``) strings and ``time`` objects."""
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)
    parts = str(value).strip().split(":")
    if len(parts) not in (2, 3):
        raise ValueError(f"Invalid time of day: {value!r} (expected HH:MM)")
    try:
        return time(int(parts[0]), int(parts[1]))
    except ValueError as e:
        raise ValueError(f"Invalid time of day: {value!r}") from e


@dataclass(frozen=True)
class SchedulingConfig:
    """
    Business rules shared by the validator on the server and on the client.
    - business_start / business_end: daily window for bookings
    - max_advance_days: how far in the future a booking may be placed
    """
    business_start: time = time(8, 0)
    business_end: time = time(18, 0)
    max_advance_days: int = 365
    min_duration: int = MIN_DURATION_MINUTES
    max_duration: int = MAX_DURATION_MINUTES

    def __post_init__(self) -> None:
        if self.business_end <= self.business_start:
            raise ValueError("businessEnd must be later than businessStart")
        if self.max_advance_days < 0:
            raise ValueError("maxAdvanceDays cannot be negative")
        if not 0 < self.min_duration <= self.max_duration:
            raise ValueError("Invalid duration bounds")

    @classmethod
    def from_options(cls, options: Mapping[str, Any]) -> SchedulingConfig:
        """Builds a config from ``businessStart``, ``businessEnd``, ``maxAdvanceDays``."""
        defaults = cls()
        start = options.get("businessStart")
        end = options.get("businessEnd")
        days = options.get("maxAdvanceDays")
        return cls(
            business_start=parse_hhmm(start) if start is not None else defaults.business_start,
            business_end=parse_hhmm(end) if end is not None else defaults.business_end,
            max_advance_days=int(days) if days is not None else defaults.max_advance_days,
        )

    def as_options(self) -> dict[str, Any]:
        return {
            "businessStart": self.business_start.strftime("%H:%M"),
            "businessEnd": self.business_end.strftime("%H:%M"),
            "maxAdvanceDays": self.max_advance_days,
            "minDuration": self.min_duration,
            "maxDuration": self.max_duration,
        }


def load_scheduling_config() -> SchedulingConfig:
    return SchedulingConfig.from_options(
        {
            "businessStart": os.getenv("BUSINESS_START"),
            "businessEnd": os.getenv("BUSINESS_END"),
            "maxAdvanceDays": os.getenv("MAX_ADVANCE_DAYS"),
        }
    )


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(level=(level or LOG_LEVEL).upper(), format=LOG_FORMAT)
    # keep SQL echo off even with LOG_LEVEL=DEBUG
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
