from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

import spendtrail.models  # noqa: F401
from spendtrail.core.config import settings
from spendtrail.core.db import SessionLocal, engine
from spendtrail.core.logging import get_logger, log_event
from spendtrail.core.models import Base
from spendtrail.core.security import hash_password
from spendtrail.modules.identity.models import User, UserRole

logger = get_logger(__name__)


def _admin_emails() -> list[str]:
    raw = settings.init_admin_email or ""
    return [e.strip().lower() for e in raw.split(",") if e.strip()]


def _ensure_admin(session: Session, *, email: str, password: str) -> None:
    user = session.scalar(select(User).where(User.email == email))
    if user is None:
        session.add(
            User(
                email=email,
                full_name="Admin",
                password_hash=hash_password(password),
                role=UserRole.ADMIN,
                is_active=True,
            )
        )
        log_event(logger, "bootstrap.admin.created", email=email)
    elif user.role != UserRole.ADMIN:
        user.role = UserRole.ADMIN
        log_event(logger, "bootstrap.admin.promoted", email=email)


def bootstrap() -> None:
    """Dev-only schema creation, then seed admins from ``INIT_ADMIN_EMAIL``."""
    if settings.environment == "dev" and settings.database_url.startswith("sqlite"):
        Base.metadata.create_all(engine)

    emails = _admin_emails()
    if not emails or not settings.init_admin_password:
        return

    with SessionLocal() as session:
        for email in emails:
            _ensure_admin(session, email=email, password=settings.init_admin_password)
        session.commit()
