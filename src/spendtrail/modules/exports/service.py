"""
Batch hand-off of approved expenses.

An export batch records which approved expenses were handed to accounting. The
batch row and every expense's ``approved -> exported`` transition land in one
commit; if any expense is not exportable nothing is written. Producing the
actual export file is the receiving system's concern.
"""

from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import datetime
from decimal import Decimal

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from spendtrail.core.errors import PolicyViolation, TransitionForbidden
from spendtrail.core.logging import get_logger, log_event
from spendtrail.core.models import utcnow
from spendtrail.modules.audit.service import audit_event
from spendtrail.modules.expenses.models import Expense
from spendtrail.modules.expenses.store import ExpenseStore
from spendtrail.modules.exports.models import ExportBatch
from spendtrail.modules.workflow.actors import Actor
from spendtrail.modules.workflow.models import ExpenseEvent
from spendtrail.modules.workflow.service import TransitionPlan, plan_transition

logger = get_logger(__name__)


def export_expenses(
    session: Session,
    *,
    expense_ids: list[uuid.UUID],
    actor: Actor,
    destination: str | None = None,
) -> ExportBatch:
    if not actor.is_finance:
        raise TransitionForbidden("Only finance or admins can export expenses")

    batch_id = uuid.uuid4()
    now = utcnow()
    expenses, plans = _plan_batch(
        session,
        expense_ids=expense_ids,
        event=ExpenseEvent.EXPORT,
        actor=actor,
        batch_id=batch_id,
        now=now,
    )

    totals: dict[str, Decimal] = defaultdict(Decimal)
    for expense in expenses:
        totals[expense.currency] += Decimal(expense.amount)

    batch = ExportBatch(
        id=batch_id,
        requested_by_user_id=actor.user_id,
        expense_count=len(expenses),
        totals_json={currency: str(total) for currency, total in sorted(totals.items())},
        destination=(destination or "").strip() or None,
        exported_at=now,
    )
    # The batch row must exist before expenses reference it.
    session.add(batch)
    session.flush()
    ExpenseStore(session).save_many(
        [(e, plan.source, plan.values) for e, plan in zip(expenses, plans)],
        staged=_audit_rows(expenses, plans, actor=actor, batch_id=batch_id),
    )
    session.refresh(batch)
    log_event(
        logger,
        "export.batch.created",
        export_batch_id=str(batch.id),
        requested_by_user_id=str(actor.user_id),
        expense_count=batch.expense_count,
        totals=batch.totals_json,
    )
    return batch


def mark_expenses_paid(
    session: Session, *, expense_ids: list[uuid.UUID], actor: Actor
) -> list[Expense]:
    if not actor.is_finance:
        raise TransitionForbidden("Only finance or admins can mark expenses paid")

    now = utcnow()
    expenses, plans = _plan_batch(
        session,
        expense_ids=expense_ids,
        event=ExpenseEvent.MARK_PAID,
        actor=actor,
        batch_id=None,
        now=now,
    )
    saved = ExpenseStore(session).save_many(
        [(e, plan.source, plan.values) for e, plan in zip(expenses, plans)],
        staged=_audit_rows(expenses, plans, actor=actor, batch_id=None),
    )
    log_event(
        logger,
        "expense.batch.paid",
        actor_user_id=str(actor.user_id),
        expense_count=len(saved),
    )
    return saved


def list_export_batches(session: Session) -> list[ExportBatch]:
    return list(session.scalars(select(ExportBatch).order_by(ExportBatch.exported_at.desc())))


def get_export_batch(session: Session, *, batch_id: uuid.UUID) -> ExportBatch:
    batch = session.get(ExportBatch, batch_id)
    if not batch:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Export batch not found")
    return batch


def _plan_batch(
    session: Session,
    *,
    expense_ids: list[uuid.UUID],
    event: ExpenseEvent,
    actor: Actor,
    batch_id: uuid.UUID | None,
    now: datetime,
) -> tuple[list[Expense], list[TransitionPlan]]:
    ids = list(dict.fromkeys(expense_ids))
    if not ids:
        raise PolicyViolation(["Select at least one expense"])

    store = ExpenseStore(session)
    expenses = [store.load(expense_id) for expense_id in ids]
    # Every expense is validated before anything is written.
    plans = [plan_transition(e, event, actor, batch_id=batch_id, now=now) for e in expenses]
    return expenses, plans


def _audit_rows(
    expenses: list[Expense],
    plans: list[TransitionPlan],
    *,
    actor: Actor,
    batch_id: uuid.UUID | None,
) -> list[object]:
    return [
        audit_event(
            event_type=f"expense.{plan.event.value}",
            actor_user_id=actor.user_id,
            expense_id=expense.id,
            payload={
                "from": plan.source.value,
                "to": plan.target.value if plan.target else None,
                "batch_id": str(batch_id) if batch_id else None,
            },
        )
        for expense, plan in zip(expenses, plans)
    ]
