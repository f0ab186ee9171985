from __future__ import annotations

import uuid

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from spendtrail.core.security import hash_password, verify_password
from spendtrail.modules.identity.models import User, UserRole
from spendtrail.modules.workflow.actors import Actor


def get_user_by_email(session: Session, *, email: str) -> User | None:
    return session.scalar(select(User).where(User.email == email.strip().lower()))


def create_user(
    session: Session,
    *,
    email: str,
    password: str,
    role: UserRole,
    full_name: str | None = None,
    department: str | None = None,
    job_title: str | None = None,
    manager_id: uuid.UUID | None = None,
) -> User:
    existing = get_user_by_email(session, email=email)
    if existing:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already exists")

    user = User(
        email=email.strip().lower(),
        full_name=full_name,
        department=department,
        job_title=job_title,
        manager_id=manager_id,
        password_hash=hash_password(password),
        role=role,
        is_active=True,
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def authenticate_user(session: Session, *, email: str, password: str) -> User:
    user = get_user_by_email(session, email=email)
    if not user or not user.is_active or not verify_password(password, user.password_hash):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    return user


def actor_for(user: User) -> Actor:
    return Actor(user_id=user.id, role=user.role)
