from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from spendtrail.api.deps import get_current_actor
from spendtrail.core.db import db_session
from spendtrail.modules.audit.service import list_audit_events
from spendtrail.modules.expenses.schemas import ExpenseOut
from spendtrail.modules.expenses.service import get_expense_for_actor, list_pending_approvals
from spendtrail.modules.workflow.actors import Actor
from spendtrail.modules.workflow.schemas import (
    ApprovalOut,
    AuditEventOut,
    AvailableEventsOut,
    ExpenseHistoryOut,
    TransitionIn,
)
from spendtrail.modules.workflow.service import (
    available_events,
    list_approvals,
    transition_expense,
)

router = APIRouter(tags=["workflow"])


@router.post("/expenses/{expense_id}/transitions", response_model=None)
def transition_endpoint(
    expense_id: uuid.UUID,
    payload: TransitionIn,
    session: Session = Depends(db_session),
    actor: Actor = Depends(get_current_actor),
) -> ExpenseOut | Response:
    expense = transition_expense(
        session,
        expense_id=expense_id,
        event=payload.event,
        actor=actor,
        expected_status=payload.expected_status,
        reason=payload.reason,
        changes=payload.changes,
        batch_id=payload.batch_id,
    )
    if expense is None:
        return Response(status_code=204)
    return ExpenseOut.model_validate(expense)


@router.get("/expenses/{expense_id}/transitions", response_model=AvailableEventsOut)
def available_transitions_endpoint(
    expense_id: uuid.UUID,
    session: Session = Depends(db_session),
    actor: Actor = Depends(get_current_actor),
) -> AvailableEventsOut:
    expense = get_expense_for_actor(session, expense_id=expense_id, actor=actor)
    return AvailableEventsOut(status=expense.status, events=available_events(expense, actor))


@router.get("/expenses/{expense_id}/history", response_model=ExpenseHistoryOut)
def expense_history_endpoint(
    expense_id: uuid.UUID,
    session: Session = Depends(db_session),
    actor: Actor = Depends(get_current_actor),
) -> ExpenseHistoryOut:
    expense = get_expense_for_actor(session, expense_id=expense_id, actor=actor)
    return ExpenseHistoryOut(
        approvals=[
            ApprovalOut.model_validate(a, from_attributes=True)
            for a in list_approvals(session, expense_id=expense.id)
        ],
        events=[
            AuditEventOut.model_validate(e, from_attributes=True)
            for e in list_audit_events(session, expense_id=expense.id)
        ],
    )


@router.get("/approvals/inbox", response_model=list[ExpenseOut])
def approver_inbox(
    session: Session = Depends(db_session),
    actor: Actor = Depends(get_current_actor),
) -> list[ExpenseOut]:
    return [ExpenseOut.model_validate(e) for e in list_pending_approvals(session, actor=actor)]
