from __future__ import annotations

import os
from datetime import date

import pytest

# Set env before any spendtrail imports (settings/engine are created at import time).
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite:///./.spendtrail_test.db")


@pytest.fixture(autouse=True)
def _reset_db() -> None:
    import spendtrail.models  # noqa: F401
    from spendtrail.core.db import engine
    from spendtrail.core.models import Base

    # Reset DB schema
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)

    yield


@pytest.fixture
def session():
    from spendtrail.core.db import SessionLocal

    with SessionLocal() as s:
        yield s


@pytest.fixture
def make_actor(session):
    """Create a user with the given role and return its actor."""
    from spendtrail.modules.identity.models import UserRole
    from spendtrail.modules.identity.service import actor_for, create_user

    counter = {"n": 0}

    def _make(role: UserRole = UserRole.EMPLOYEE):
        counter["n"] += 1
        user = create_user(
            session,
            email=f"{role.value.lower()}{counter['n']}@example.com",
            password="pw",
            role=role,
        )
        return actor_for(user)

    return _make


@pytest.fixture
def receipt_date() -> date:
    return date(2026, 3, 14)
