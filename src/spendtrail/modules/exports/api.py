from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from spendtrail.api.deps import get_current_actor, require_role
from spendtrail.core.db import db_session
from spendtrail.modules.expenses.schemas import ExpenseOut
from spendtrail.modules.exports.schemas import (
    ExpenseSelectionIn,
    ExportBatchOut,
    ExportCreateIn,
)
from spendtrail.modules.exports.service import (
    export_expenses,
    get_export_batch,
    list_export_batches,
    mark_expenses_paid,
)
from spendtrail.modules.identity.models import User, UserRole
from spendtrail.modules.workflow.actors import Actor

router = APIRouter(tags=["exports"])


@router.post("/exports", response_model=ExportBatchOut)
def create_export(
    payload: ExportCreateIn,
    session: Session = Depends(db_session),
    actor: Actor = Depends(get_current_actor),
) -> ExportBatchOut:
    batch = export_expenses(
        session, expense_ids=payload.expense_ids, actor=actor, destination=payload.destination
    )
    return ExportBatchOut.model_validate(batch, from_attributes=True)


@router.get("/exports", response_model=list[ExportBatchOut])
def list_exports(
    session: Session = Depends(db_session),
    _: User = Depends(require_role(UserRole.FINANCE, UserRole.ADMIN)),
) -> list[ExportBatchOut]:
    return [
        ExportBatchOut.model_validate(b, from_attributes=True)
        for b in list_export_batches(session)
    ]


@router.get("/exports/{batch_id}", response_model=ExportBatchOut)
def get_export(
    batch_id: uuid.UUID,
    session: Session = Depends(db_session),
    _: User = Depends(require_role(UserRole.FINANCE, UserRole.ADMIN)),
) -> ExportBatchOut:
    batch = get_export_batch(session, batch_id=batch_id)
    return ExportBatchOut.model_validate(batch, from_attributes=True)


@router.get("/exports/{batch_id}/expenses", response_model=list[ExpenseOut])
def get_export_expenses(
    batch_id: uuid.UUID,
    session: Session = Depends(db_session),
    _: User = Depends(require_role(UserRole.FINANCE, UserRole.ADMIN)),
) -> list[ExpenseOut]:
    batch = get_export_batch(session, batch_id=batch_id)
    return [ExpenseOut.model_validate(e) for e in batch.expenses]


@router.post("/payments", response_model=list[ExpenseOut])
def mark_paid(
    payload: ExpenseSelectionIn,
    session: Session = Depends(db_session),
    actor: Actor = Depends(get_current_actor),
) -> list[ExpenseOut]:
    expenses = mark_expenses_paid(session, expense_ids=payload.expense_ids, actor=actor)
    return [ExpenseOut.model_validate(e) for e in expenses]
