from __future__ import annotations

import hashlib
import uuid

from fastapi import APIRouter, Depends, File, Query, Response, UploadFile
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from spendtrail.api.deps import get_current_actor
from spendtrail.core.db import db_session
from spendtrail.core.logging import get_logger, log_event
from spendtrail.modules.expenses.models import AttachmentKind, ExpenseStatus, ExpenseType
from spendtrail.modules.expenses.schemas import (
    ExpenseCreateIn,
    ExpenseOut,
    ExpenseUpdateIn,
    ReceiptAttachmentIn,
)
from spendtrail.modules.expenses.service import (
    attach_receipt,
    create_expense,
    create_expense_from_extraction,
    delete_expense,
    detach_receipt,
    get_expense_for_actor,
    list_expenses_for_actor,
    update_expense,
)
from spendtrail.modules.extraction.service import detect_file_kind, read_receipt
from spendtrail.modules.workflow.actors import Actor

router = APIRouter(tags=["expenses"])
logger = get_logger(__name__)


@router.post("/expenses", response_model=ExpenseOut)
def create_expense_endpoint(
    payload: ExpenseCreateIn,
    session: Session = Depends(db_session),
    actor: Actor = Depends(get_current_actor),
) -> ExpenseOut:
    expense = create_expense(session, actor=actor, **payload.model_dump())
    return ExpenseOut.model_validate(expense)


@router.post("/expenses/from-receipt", response_model=ExpenseOut)
async def create_expense_from_receipt_endpoint(
    upload: UploadFile = File(...),
    session: Session = Depends(db_session),
    actor: Actor = Depends(get_current_actor),
) -> ExpenseOut:
    body = await upload.read()
    filename = upload.filename or "receipt"
    log_event(
        logger,
        "upload.received",
        filename=filename,
        content_type=upload.content_type,
        byte_size=len(body),
    )
    fields = await run_in_threadpool(
        read_receipt, body, filename=filename, content_type=upload.content_type
    )
    kind = detect_file_kind(filename=filename, content_type=upload.content_type, body=body)
    expense = create_expense_from_extraction(
        session,
        actor=actor,
        fields=fields,
        receipt_reference=f"sha256:{hashlib.sha256(body).hexdigest()}",
        receipt_kind=AttachmentKind.PDF if kind == "pdf" else AttachmentKind.IMAGE,
        receipt_filename=filename,
    )
    return ExpenseOut.model_validate(expense)


@router.get("/expenses", response_model=list[ExpenseOut])
def list_expenses_endpoint(
    status: list[ExpenseStatus] | None = Query(default=None),
    expense_type: ExpenseType | None = None,
    search: str | None = None,
    team: bool = False,
    session: Session = Depends(db_session),
    actor: Actor = Depends(get_current_actor),
) -> list[ExpenseOut]:
    expenses = list_expenses_for_actor(
        session,
        actor=actor,
        include_team=team,
        statuses=status,
        expense_type=expense_type,
        search=search,
    )
    return [ExpenseOut.model_validate(e) for e in expenses]


@router.get("/expenses/{expense_id}", response_model=ExpenseOut)
def get_expense_endpoint(
    expense_id: uuid.UUID,
    session: Session = Depends(db_session),
    actor: Actor = Depends(get_current_actor),
) -> ExpenseOut:
    expense = get_expense_for_actor(session, expense_id=expense_id, actor=actor)
    return ExpenseOut.model_validate(expense)


@router.patch("/expenses/{expense_id}", response_model=ExpenseOut)
def update_expense_endpoint(
    expense_id: uuid.UUID,
    payload: ExpenseUpdateIn,
    session: Session = Depends(db_session),
    actor: Actor = Depends(get_current_actor),
) -> ExpenseOut:
    changes = payload.model_dump(exclude_unset=True)
    expected_status = changes.pop("expected_status", None)
    expense = update_expense(
        session,
        expense_id=expense_id,
        actor=actor,
        changes=changes,
        expected_status=expected_status,
    )
    return ExpenseOut.model_validate(expense)


@router.delete("/expenses/{expense_id}")
def delete_expense_endpoint(
    expense_id: uuid.UUID,
    expected_status: ExpenseStatus | None = None,
    session: Session = Depends(db_session),
    actor: Actor = Depends(get_current_actor),
) -> Response:
    delete_expense(session, expense_id=expense_id, actor=actor, expected_status=expected_status)
    return Response(status_code=204)


@router.post("/expenses/{expense_id}/receipts", response_model=ExpenseOut)
def attach_receipt_endpoint(
    expense_id: uuid.UUID,
    payload: ReceiptAttachmentIn,
    session: Session = Depends(db_session),
    actor: Actor = Depends(get_current_actor),
) -> ExpenseOut:
    expense = attach_receipt(
        session,
        expense_id=expense_id,
        actor=actor,
        reference=payload.reference,
        kind=payload.kind,
        filename=payload.filename,
    )
    return ExpenseOut.model_validate(expense)


@router.delete("/expenses/{expense_id}/receipts/{receipt_id}", response_model=ExpenseOut)
def detach_receipt_endpoint(
    expense_id: uuid.UUID,
    receipt_id: uuid.UUID,
    session: Session = Depends(db_session),
    actor: Actor = Depends(get_current_actor),
) -> ExpenseOut:
    expense = detach_receipt(session, expense_id=expense_id, receipt_id=receipt_id, actor=actor)
    return ExpenseOut.model_validate(expense)
