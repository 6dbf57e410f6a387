from __future__ import annotations

import os
import tempfile
from datetime import datetime
from pathlib import Path

import pytest

# must be set before smiledesk.config is imported
_TMP = Path(tempfile.mkdtemp(prefix="smiledesk-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP / 'test.sqlite'}"
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.pop("SEED_ADMIN_PASSWORD", None)
os.environ.pop("SEED_DENTIST_PASSWORD", None)
os.environ.pop("ROLE_PERMISSIONS_FILE", None)

from smiledesk.auth_models import UserRole  # noqa: E402
from smiledesk.auth_service import create_user  # noqa: E402
from smiledesk.db import Base, engine  # noqa: E402
from smiledesk.services import create_patient, create_service  # noqa: E402

NOW = datetime(2025, 6, 1, 10, 0)


@pytest.fixture(autouse=True)
def fresh_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def dentist_id() -> str:
    return create_user("dr.jones", "password123", UserRole.DENTIST, "Sarah", "Jones")


@pytest.fixture
def other_dentist_id() -> str:
    return create_user("dr.brown", "password123", UserRole.DENTIST, "Mark", "Brown")


@pytest.fixture
def patient_id() -> str:
    return create_patient("Alice", "Rossi", email="alice@example.com")


@pytest.fixture
def service_id() -> int:
    return create_service("CHECK", "Routine Checkup", duration_minutes=30, category="diagnostic", base_price="75.00")
