"""
Pytest fixtures for the StableHub test suite.

Provides:
- An in-memory SQLite database per test (StaticPool, so every session sees
  the same connection)
- Employee / horse / task factories
- A TestClient wired to the test database
"""
import os

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["AUTO_CREATE_DB"] = "false"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["RATE_LIMIT"] = "10000/minute"
os.environ["ESCALATION_SWEEP_SECONDS"] = "0"
os.environ["ENABLE_PUSH"] = "true"
os.environ["ENABLE_EMAIL"] = "false"

from datetime import datetime  # noqa: E402
from itertools import count  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from stablehub.auth.security import create_access_token, get_password_hash  # noqa: E402
from stablehub.db import Base, get_db  # noqa: E402
from stablehub.main import app  # noqa: E402
from stablehub.models.models import Employee, Horse  # noqa: E402
from stablehub.services import task_service  # noqa: E402
from stablehub.services.permissions import build_permission_checker  # noqa: E402
from stablehub.services.roles import default_registry  # noqa: E402

DEFAULT_PASSWORD = "password123"

_seq = count(1)
# One hash for every factory employee; pbkdf2 is deliberately slow
_PASSWORD_HASH = get_password_hash(DEFAULT_PASSWORD)


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def client(session_factory):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    # Not used as a context manager: startup (create_all, sweeper) stays off
    yield TestClient(app)
    app.dependency_overrides.pop(get_db, None)


@pytest.fixture
def checker():
    return build_permission_checker()


@pytest.fixture
def make_employee(db):
    def _make(designation, *, supervisor=None, approved=True, status="Active", email=None, full_name=None):
        n = next(_seq)
        employee = Employee(
            email=email or f"{designation.lower().replace(' ', '.')}.{n}@stable.test",
            password_hash=_PASSWORD_HASH,
            full_name=full_name or f"{designation} {n}",
            designation=designation,
            department=default_registry.get_department(designation),
            supervisor_id=supervisor.id if supervisor else None,
            employment_status=status,
            is_approved=approved,
        )
        db.add(employee)
        db.commit()
        db.refresh(employee)
        return employee

    return _make


@pytest.fixture
def make_horse(db):
    def _make(name=None, **fields):
        n = next(_seq)
        horse = Horse(name=name or f"Horse {n}", stable_number=fields.pop("stable_number", f"T-{n:04d}"), **fields)
        db.add(horse)
        db.commit()
        db.refresh(horse)
        return horse

    return _make


@pytest.fixture
def make_task(db, checker):
    def _make(creator, assignee, horse, **overrides):
        fields = {
            "name": "Morning grooming",
            "type": "Daily",
            "horse_id": horse.id,
            "assignee_id": assignee.id,
            "scheduled_time": datetime(2026, 3, 1, 6, 30),
            "priority": "High",
            "required_proof": False,
        }
        fields.update(overrides)
        return task_service.create_task(db, creator, checker=checker, **fields)

    return _make


@pytest.fixture
def stable(make_employee, make_horse):
    """A small stable: director over a manager over a groom, plus one horse."""
    director = make_employee("Director")
    manager = make_employee("Stable Manager", supervisor=director)
    groom = make_employee("Groom", supervisor=manager)
    horse = make_horse("Tara")
    return {"director": director, "manager": manager, "groom": groom, "horse": horse}


def auth_headers(employee):
    return {"Authorization": f"Bearer {create_access_token(employee)}"}
