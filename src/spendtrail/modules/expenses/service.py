from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from spendtrail.core.config import settings
from spendtrail.core.errors import PolicyViolation
from spendtrail.core.logging import get_logger, log_event
from spendtrail.core.models import utcnow
from spendtrail.modules.audit.service import audit_event
from spendtrail.modules.expenses.models import (
    AttachmentKind,
    Expense,
    ExpenseCategory,
    ExpenseStatus,
    ExpenseType,
    ReceiptAttachment,
)
from spendtrail.modules.expenses.store import ExpenseStore
from spendtrail.modules.extraction.fields import ExtractedFields
from spendtrail.modules.policy.service import evaluate_policy, merge_policy_flags
from spendtrail.modules.workflow.actors import Actor
from spendtrail.modules.workflow.models import ExpenseEvent
from spendtrail.modules.workflow.service import (
    normalize_changes,
    submission_problems,
    transition_expense,
)

logger = get_logger(__name__)

# Receipts can be added or removed while the expense is still with its owner.
RECEIPT_MUTABLE_STATUSES = frozenset(
    {ExpenseStatus.DRAFT, ExpenseStatus.REJECTED, ExpenseStatus.UNMATCHED}
)


def build_expense(
    *,
    owner_id: uuid.UUID,
    merchant_name: str = "",
    amount: Decimal | None = None,
    currency: str | None = None,
    subtotal: Decimal | None = None,
    tax_amount: Decimal | None = None,
    expense_date: date | None = None,
    category: ExpenseCategory | str = ExpenseCategory.OTHER,
    expense_type: ExpenseType | str = ExpenseType.REIMBURSEMENT,
    notes: str | None = None,
    gl_code: str | None = None,
    card_transaction_id: uuid.UUID | None = None,
    pending_card_match: bool = False,
) -> Expense:
    """
    Validate and build a new, unsaved expense.

    New expenses start in ``draft``. A company card expense created straight
    into the card queue (``pending_card_match``) starts in ``unmatched``, so it
    must already meet every submission requirement, receipts included.
    Raises ``PolicyViolation`` listing every invalid field.
    """
    changes: dict[str, Any] = {
        "merchant_name": merchant_name,
        "currency": currency or settings.default_currency,
        "expense_date": expense_date or date.today(),
        "category": category,
        "notes": notes,
        "gl_code": gl_code,
    }
    if amount is not None:
        changes["amount"] = amount
    if subtotal is not None:
        changes["subtotal"] = subtotal
    if tax_amount is not None:
        changes["tax_amount"] = tax_amount

    blank = Expense(subtotal=None, tax_amount=None)
    values, problems = normalize_changes(blank, changes)
    try:
        expense_type = ExpenseType(expense_type)
    except ValueError:
        problems.append(f"Unknown expense type: {expense_type}")
    if pending_card_match and expense_type != ExpenseType.COMPANY_CARD:
        problems.append("Only company card expenses can wait for a card match")
    if problems:
        raise PolicyViolation(problems, message="Expense is not valid.")

    initial = ExpenseStatus.UNMATCHED if pending_card_match else ExpenseStatus.DRAFT
    values.setdefault("amount", Decimal("0.00"))
    expense = Expense(
        id=uuid.uuid4(),
        owner_id=owner_id,
        expense_type=expense_type,
        status=initial,
        card_transaction_id=card_transaction_id,
        reconciliation_ignored=False,
        **values,
    )
    if pending_card_match:
        problems = submission_problems(expense)
        if problems:
            raise PolicyViolation(problems, message="Expense is not ready for the card queue.")
    expense.policy_violations = evaluate_policy(
        category=expense.category,
        amount=expense.amount,
        receipt_count=0,
        status=initial,
    )
    return expense


def create_expense(session: Session, *, actor: Actor, **fields: Any) -> Expense:
    expense = build_expense(owner_id=actor.user_id, **fields)
    store = ExpenseStore(session)
    session.add(
        audit_event(
            event_type="expense.created",
            actor_user_id=actor.user_id,
            expense_id=expense.id,
            payload={"status": expense.status.value, "expense_type": expense.expense_type.value},
        )
    )
    store.add(expense)
    log_event(
        logger,
        "expense.created",
        expense_id=str(expense.id),
        owner_id=str(expense.owner_id),
        status=expense.status.value,
        expense_type=expense.expense_type.value,
        amount=str(expense.amount),
        currency=expense.currency,
    )
    return expense


def create_expense_from_extraction(
    session: Session,
    *,
    actor: Actor,
    fields: ExtractedFields,
    receipt_reference: str | None = None,
    receipt_kind: AttachmentKind | None = None,
    receipt_filename: str | None = None,
    overrides: dict[str, Any] | None = None,
) -> Expense:
    """Create a draft pre-filled from extracted receipt fields; ``overrides`` win over extraction."""
    values = fields.draft_values()
    values.update({k: v for k, v in (overrides or {}).items() if v is not None})
    expense = create_expense(session, actor=actor, **values)
    if receipt_reference:
        expense = attach_receipt(
            session,
            expense_id=expense.id,
            actor=actor,
            reference=receipt_reference,
            kind=receipt_kind or AttachmentKind.IMAGE,
            filename=receipt_filename,
        )
    return expense


def update_expense(
    session: Session,
    *,
    expense_id: uuid.UUID,
    actor: Actor,
    changes: dict[str, Any],
    expected_status: ExpenseStatus | None = None,
) -> Expense:
    expense = transition_expense(
        session,
        expense_id=expense_id,
        event=ExpenseEvent.EDIT,
        actor=actor,
        expected_status=expected_status,
        changes=changes,
    )
    log_event(
        logger,
        "expense.updated",
        expense_id=str(expense_id),
        actor_user_id=str(actor.user_id),
        fields=sorted(changes),
    )
    return expense


def delete_expense(
    session: Session,
    *,
    expense_id: uuid.UUID,
    actor: Actor,
    expected_status: ExpenseStatus | None = None,
) -> None:
    transition_expense(
        session,
        expense_id=expense_id,
        event=ExpenseEvent.DELETE,
        actor=actor,
        expected_status=expected_status,
    )


def attach_receipt(
    session: Session,
    *,
    expense_id: uuid.UUID,
    actor: Actor,
    reference: str,
    kind: AttachmentKind,
    filename: str | None = None,
) -> Expense:
    store = ExpenseStore(session)
    expense = store.load(expense_id)
    _assert_receipts_mutable(expense, actor)

    reference = (reference or "").strip()
    if not reference:
        raise PolicyViolation(["Receipt reference is required"], message="Receipt is not valid.")

    attachment = ReceiptAttachment(
        expense_id=expense.id,
        position=max((r.position for r in expense.receipts), default=-1) + 1,
        reference=reference,
        kind=AttachmentKind(kind),
        filename=(filename or "").strip() or None,
    )
    expense = store.save(
        expense,
        expected_status=expense.status,
        values=_receipt_change_values(expense, receipt_count=len(expense.receipts) + 1),
        staged=[
            attachment,
            audit_event(
                event_type="expense.receipt_attached",
                actor_user_id=actor.user_id,
                expense_id=expense.id,
                payload={"reference": reference, "kind": attachment.kind.value},
            ),
        ],
    )
    log_event(
        logger,
        "expense.receipt_attached",
        expense_id=str(expense.id),
        actor_user_id=str(actor.user_id),
        kind=attachment.kind.value,
        receipt_count=len(expense.receipts),
    )
    return expense


def detach_receipt(
    session: Session,
    *,
    expense_id: uuid.UUID,
    receipt_id: uuid.UUID,
    actor: Actor,
) -> Expense:
    store = ExpenseStore(session)
    expense = store.load(expense_id)
    _assert_receipts_mutable(expense, actor)

    attachment = next((r for r in expense.receipts if r.id == receipt_id), None)
    if not attachment:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Receipt not found")

    remaining = len(expense.receipts) - 1
    if (
        expense.status != ExpenseStatus.DRAFT
        and settings.require_receipt_for_submit
        and remaining == 0
    ):
        raise PolicyViolation(
            ["At least one receipt must be attached"],
            message="The last receipt can only be removed from a draft.",
        )

    values = _receipt_change_values(expense, receipt_count=remaining)
    expense.receipts.remove(attachment)
    expense = store.save(
        expense,
        expected_status=expense.status,
        values=values,
        staged=[
            audit_event(
                event_type="expense.receipt_detached",
                actor_user_id=actor.user_id,
                expense_id=expense.id,
                payload={"reference": attachment.reference},
            )
        ],
    )
    log_event(
        logger,
        "expense.receipt_detached",
        expense_id=str(expense.id),
        actor_user_id=str(actor.user_id),
        receipt_count=len(expense.receipts),
    )
    return expense


def get_expense_for_actor(session: Session, *, expense_id: uuid.UUID, actor: Actor) -> Expense:
    expense = ExpenseStore(session).load(expense_id)
    if expense.owner_id != actor.user_id and not actor.can_approve:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Expense not found")
    return expense


def list_expenses_for_actor(
    session: Session,
    *,
    actor: Actor,
    include_team: bool = False,
    statuses: list[ExpenseStatus] | None = None,
    expense_type: ExpenseType | None = None,
    search: str | None = None,
) -> list[Expense]:
    owner_id = None if include_team and actor.can_approve else actor.user_id
    return ExpenseStore(session).list(
        owner_id=owner_id, statuses=statuses, expense_type=expense_type, search=search
    )


def list_pending_approvals(session: Session, *, actor: Actor) -> list[Expense]:
    """Submitted expenses this actor may review (never their own unless self-approval is on)."""
    if not actor.can_approve:
        return []
    q = select(Expense).where(Expense.status == ExpenseStatus.SUBMITTED)
    if not settings.allow_self_approval:
        q = q.where(Expense.owner_id != actor.user_id)
    return list(session.scalars(q.order_by(Expense.submitted_at.asc())))


def _assert_receipts_mutable(expense: Expense, actor: Actor) -> None:
    if expense.owner_id != actor.user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only the expense owner can change receipts",
        )
    if expense.status not in RECEIPT_MUTABLE_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Receipts cannot be changed on a {expense.status.value} expense",
        )


def _receipt_change_values(expense: Expense, *, receipt_count: int) -> dict[str, Any]:
    advisory = evaluate_policy(
        category=expense.category,
        amount=expense.amount,
        receipt_count=receipt_count,
        status=expense.status,
    )
    return {
        "updated_at": utcnow(),
        "policy_violations": merge_policy_flags(expense.policy_violations, advisory),
    }
