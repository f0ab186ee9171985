from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

from spendtrail.api.deps import get_current_user, require_role
from spendtrail.core.db import db_session
from spendtrail.core.security import create_access_token
from spendtrail.modules.identity.models import User, UserRole
from spendtrail.modules.identity.schemas import TokenOut, UserCreate, UserOut
from spendtrail.modules.identity.service import authenticate_user, create_user

router = APIRouter(tags=["identity"])


@router.post("/auth/token", response_model=TokenOut)
def login(
    form_data: OAuth2PasswordRequestForm = Depends(),
    session: Session = Depends(db_session),
) -> TokenOut:
    user = authenticate_user(session, email=form_data.username, password=form_data.password)
    token = create_access_token(user_id=user.id)
    return TokenOut(access_token=token)


@router.get("/auth/me", response_model=UserOut)
def me(user: User = Depends(get_current_user)) -> UserOut:
    return UserOut.model_validate(user)


@router.post("/users", response_model=UserOut)
def create_user_endpoint(
    payload: UserCreate,
    session: Session = Depends(db_session),
    _: User = Depends(require_role(UserRole.ADMIN)),
) -> UserOut:
    user = create_user(
        session,
        email=str(payload.email),
        password=payload.password,
        role=payload.role,
        full_name=payload.full_name,
        department=payload.department,
        job_title=payload.job_title,
        manager_id=payload.manager_id,
    )
    return UserOut.model_validate(user)
