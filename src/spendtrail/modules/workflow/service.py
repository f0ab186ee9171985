"""
Expense lifecycle state machine.

The transition table below is the single source of truth for which events are
legal from which status, who may trigger them, what must hold beforehand and
which fields change. ``plan_transition`` is pure: it validates and returns the
field values a transition would write, without touching the record.
``apply_transition`` applies a plan to an in-memory record;
``transition_expense`` persists one atomically through ``ExpenseStore``.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from spendtrail.core.config import settings
from spendtrail.core.errors import (
    IllegalTransition,
    PolicyViolation,
    StaleState,
    TransitionError,
    TransitionForbidden,
)
from spendtrail.core.logging import get_logger, log_event
from spendtrail.core.models import utcnow
from spendtrail.modules.audit.service import audit_event
from spendtrail.modules.expenses.models import (
    Expense,
    ExpenseCategory,
    ExpenseStatus,
    ExpenseType,
)
from spendtrail.modules.expenses.store import ExpenseStore
from spendtrail.modules.exports.models import ExportBatch
from spendtrail.modules.policy.service import evaluate_policy, merge_policy_flags
from spendtrail.modules.workflow.actors import Actor
from spendtrail.modules.workflow.models import Approval, ApprovalDecision, ExpenseEvent

logger = get_logger(__name__)

EDITABLE_FIELDS = frozenset(
    {
        "merchant_name",
        "amount",
        "currency",
        "subtotal",
        "tax_amount",
        "expense_date",
        "category",
        "notes",
        "gl_code",
    }
)


@dataclass(frozen=True)
class TransitionRequest:
    reason: str | None = None
    changes: dict[str, Any] = field(default_factory=dict)
    batch_id: uuid.UUID | None = None
    today: date | None = None


@dataclass(frozen=True)
class TransitionPlan:
    event: ExpenseEvent
    source: ExpenseStatus
    target: ExpenseStatus | None
    values: dict[str, Any]

    @property
    def removes_record(self) -> bool:
        return self.target is None


@dataclass(frozen=True)
class Transition:
    source: ExpenseStatus
    event: ExpenseEvent
    target: Callable[[Expense], ExpenseStatus | None]
    actor_check: Callable[[Expense, Actor], str | None]
    preconditions: tuple[Callable[[Expense, TransitionRequest], list[str]], ...] = ()
    effects: Callable[[Expense, Actor, TransitionRequest, datetime], dict[str, Any]] | None = None


# Actor checks: return a refusal message, or None when the actor may proceed.


def _owner(record: Expense, actor: Actor) -> str | None:
    if actor.user_id != record.owner_id:
        return "Only the expense owner can do this"
    return None


def _reviewer(record: Expense, actor: Actor) -> str | None:
    if not actor.can_approve:
        return "Only managers, finance or admins can review expenses"
    if actor.user_id == record.owner_id and not settings.allow_self_approval:
        return "Approvers cannot review their own expenses"
    return None


def _finance(record: Expense, actor: Actor) -> str | None:
    if not actor.is_finance:
        return "Only finance or admins can do this"
    return None


def _owner_or_finance(record: Expense, actor: Actor) -> str | None:
    if actor.user_id == record.owner_id or actor.is_finance:
        return None
    return "Only the expense owner, finance or admins can do this"


# Preconditions: return the list of unmet requirements.


def submission_problems(record: Expense, *, today: date | None = None) -> list[str]:
    """Everything an expense still lacks before it can leave ``draft``."""
    problems: list[str] = []
    if not (record.merchant_name or "").strip():
        problems.append("Merchant name is required")
    if record.amount is None or Decimal(record.amount) <= 0:
        problems.append("Amount must be greater than zero")
    if settings.require_receipt_for_submit and not record.receipts:
        problems.append("At least one receipt must be attached")
    today = today or date.today()
    if record.expense_date is None:
        problems.append("Expense date is required")
    elif record.expense_date > today:
        problems.append("Expense date cannot be in the future")
    return problems


def _ready_for_submission(record: Expense, req: TransitionRequest) -> list[str]:
    return submission_problems(record, today=req.today)


def _has_export_batch(record: Expense, req: TransitionRequest) -> list[str]:
    if req.batch_id is None:
        return ["Export must be part of an export batch"]
    return []


def _has_card_match(record: Expense, req: TransitionRequest) -> list[str]:
    if record.card_transaction_id is None:
        return ["Match a card transaction before reconciling"]
    return []


def _not_card_linked(record: Expense, req: TransitionRequest) -> list[str]:
    if record.card_transaction_id is not None:
        return ["Unmatch the card transaction before deleting this expense"]
    return []


# Targets


def _submit_target(record: Expense) -> ExpenseStatus:
    # Company card spend goes straight to the card feed queue until a charge is linked.
    if record.expense_type == ExpenseType.COMPANY_CARD and record.card_transaction_id is None:
        return ExpenseStatus.UNMATCHED
    return ExpenseStatus.SUBMITTED


def _reconcile_target(record: Expense) -> ExpenseStatus:
    return ExpenseStatus(settings.card_reconciled_status)


def _fixed(status: ExpenseStatus | None) -> Callable[[Expense], ExpenseStatus | None]:
    return lambda _record: status


# Effects


def _policy_flags(
    record: Expense,
    *,
    status: ExpenseStatus,
    category: ExpenseCategory | None = None,
    amount: Decimal | None = None,
) -> list[str]:
    advisory = evaluate_policy(
        category=category or record.category,
        amount=amount if amount is not None else Decimal(record.amount or 0),
        receipt_count=len(record.receipts or []),
        status=status,
    )
    return merge_policy_flags(record.policy_violations, advisory)


def _submit_effects(
    record: Expense, actor: Actor, req: TransitionRequest, now: datetime
) -> dict[str, Any]:
    return {
        "submitted_at": now,
        "policy_violations": _policy_flags(record, status=_submit_target(record)),
    }


def _edit_effects(
    record: Expense, actor: Actor, req: TransitionRequest, now: datetime
) -> dict[str, Any]:
    values, problems = normalize_changes(record, req.changes)
    if record.status != ExpenseStatus.DRAFT:
        merchant = values.get("merchant_name", record.merchant_name)
        if not (merchant or "").strip():
            problems.append("Merchant name is required")
    if problems:
        raise PolicyViolation(problems, message="Expense changes are not valid.")
    values["policy_violations"] = _policy_flags(
        record,
        status=record.status,
        category=values.get("category"),
        amount=values.get("amount"),
    )
    return values


def _approve_effects(
    record: Expense, actor: Actor, req: TransitionRequest, now: datetime
) -> dict[str, Any]:
    return {
        "approved_at": record.approved_at or now,
        "approver_id": record.approver_id or actor.user_id,
    }


def _reject_effects(
    record: Expense, actor: Actor, req: TransitionRequest, now: datetime
) -> dict[str, Any]:
    flags = list(record.policy_violations or [])
    reason = (req.reason or "").strip()
    if reason:
        flags.append(reason)
    return {"approver_id": record.approver_id or actor.user_id, "policy_violations": flags}


def _paid_effects(
    record: Expense, actor: Actor, req: TransitionRequest, now: datetime
) -> dict[str, Any]:
    return {"paid_at": record.paid_at or now}


def _export_effects(
    record: Expense, actor: Actor, req: TransitionRequest, now: datetime
) -> dict[str, Any]:
    return {"export_batch_id": req.batch_id}


def _reconcile_effects(
    record: Expense, actor: Actor, req: TransitionRequest, now: datetime
) -> dict[str, Any]:
    values: dict[str, Any] = {
        "submitted_at": record.submitted_at or now,
        "reconciliation_ignored": False,
    }
    if _reconcile_target(record) == ExpenseStatus.APPROVED:
        values["approved_at"] = record.approved_at or now
        if record.approver_id is None and actor.user_id != record.owner_id:
            values["approver_id"] = actor.user_id
    return values


def _ignore_effects(
    record: Expense, actor: Actor, req: TransitionRequest, now: datetime
) -> dict[str, Any]:
    return {"reconciliation_ignored": True}


S = ExpenseStatus
E = ExpenseEvent

_SUBMIT_CHECKS = (_ready_for_submission,)

# paid and exported are terminal: nothing leaves them.
TRANSITIONS: dict[tuple[ExpenseStatus, ExpenseEvent], Transition] = {
    (t.source, t.event): t
    for t in (
        Transition(S.DRAFT, E.SUBMIT, _submit_target, _owner, _SUBMIT_CHECKS, _submit_effects),
        Transition(S.DRAFT, E.EDIT, _fixed(S.DRAFT), _owner, (), _edit_effects),
        Transition(S.DRAFT, E.DELETE, _fixed(None), _owner, (_not_card_linked,)),
        Transition(S.SUBMITTED, E.APPROVE, _fixed(S.APPROVED), _reviewer, (), _approve_effects),
        Transition(S.SUBMITTED, E.REJECT, _fixed(S.REJECTED), _reviewer, (), _reject_effects),
        Transition(S.REJECTED, E.EDIT, _fixed(S.REJECTED), _owner, (), _edit_effects),
        Transition(S.REJECTED, E.SUBMIT, _submit_target, _owner, _SUBMIT_CHECKS, _submit_effects),
        Transition(S.APPROVED, E.MARK_PAID, _fixed(S.PAID), _finance, (), _paid_effects),
        Transition(
            S.APPROVED, E.EXPORT, _fixed(S.EXPORTED), _finance, (_has_export_batch,), _export_effects
        ),
        Transition(
            S.UNMATCHED,
            E.RECONCILE,
            _reconcile_target,
            _owner_or_finance,
            (_has_card_match, *_SUBMIT_CHECKS),
            _reconcile_effects,
        ),
        Transition(
            S.UNMATCHED, E.IGNORE, _fixed(S.UNMATCHED), _owner_or_finance, (), _ignore_effects
        ),
    )
}


def plan_transition(
    record: Expense,
    event: ExpenseEvent,
    actor: Actor,
    *,
    reason: str | None = None,
    changes: dict[str, Any] | None = None,
    batch_id: uuid.UUID | None = None,
    now: datetime | None = None,
    today: date | None = None,
) -> TransitionPlan:
    event = ExpenseEvent(event)
    transition = TRANSITIONS.get((record.status, event))
    if transition is None:
        raise IllegalTransition(from_status=record.status, event=event)

    refusal = transition.actor_check(record, actor)
    if refusal:
        raise TransitionForbidden(refusal)

    req = TransitionRequest(
        reason=reason, changes=dict(changes or {}), batch_id=batch_id, today=today
    )
    problems: list[str] = []
    for check in transition.preconditions:
        problems.extend(check(record, req))
    if problems:
        raise PolicyViolation(problems)

    target = transition.target(record)
    if target is None:
        return TransitionPlan(event=event, source=record.status, target=None, values={})

    now = now or utcnow()
    values = transition.effects(record, actor, req, now) if transition.effects else {}
    values["status"] = target
    values["updated_at"] = now
    return TransitionPlan(event=event, source=record.status, target=target, values=values)


def apply_transition(record: Expense, event: ExpenseEvent, actor: Actor, **kwargs: Any) -> Expense:
    """
    Validate ``event`` against ``record`` and apply it in memory.

    Raises a ``TransitionError`` subclass and leaves the record untouched when the
    transition is not allowed. ``delete`` validates only; removing the record is
    the store's job.
    """
    plan = plan_transition(record, event, actor, **kwargs)
    for key, value in plan.values.items():
        setattr(record, key, value)
    return record


def available_events(record: Expense, actor: Actor) -> list[ExpenseEvent]:
    """Events this actor could attempt from the record's current status."""
    events: list[ExpenseEvent] = []
    for (source, event), transition in TRANSITIONS.items():
        if source == record.status and transition.actor_check(record, actor) is None:
            events.append(event)
    return events


def transition_expense(
    session: Session,
    *,
    expense_id: uuid.UUID,
    event: ExpenseEvent,
    actor: Actor,
    expected_status: ExpenseStatus | None = None,
    reason: str | None = None,
    changes: dict[str, Any] | None = None,
    batch_id: uuid.UUID | None = None,
) -> Expense | None:
    """Apply ``event`` to a stored expense. Returns ``None`` when the event removed it."""
    store = ExpenseStore(session)
    expense = store.load(expense_id)
    event = ExpenseEvent(event)
    source = expense.status

    try:
        if expected_status is not None and source != ExpenseStatus(expected_status):
            raise StaleState(expected=expected_status, actual=source)
        plan = plan_transition(
            expense, event, actor, reason=reason, changes=changes, batch_id=batch_id
        )
        if event == ExpenseEvent.EXPORT and session.get(ExportBatch, batch_id) is None:
            raise PolicyViolation(["Export batch not found"])
    except TransitionError as e:
        log_event(
            logger,
            "expense.transition.rejected",
            expense_id=str(expense.id),
            transition_event=event.value,
            from_status=source.value,
            actor_user_id=str(actor.user_id),
            error=type(e).__name__,
            detail=e.detail,
        )
        raise

    # Staged rows go in with the conditional write, or not at all.
    staged: list[object] = [
        audit_event(
            event_type=f"expense.{event.value}",
            actor_user_id=actor.user_id,
            expense_id=expense.id,
            payload={
                "from": source.value,
                "to": plan.target.value if plan.target else None,
                "reason": reason,
                "changed": sorted(k for k in plan.values if k not in {"status", "updated_at"}),
            },
        )
    ]

    if plan.removes_record:
        store.remove(expense, expected_status=source, staged=staged)
        log_event(
            logger,
            "expense.deleted",
            expense_id=str(expense_id),
            actor_user_id=str(actor.user_id),
        )
        return None

    if event in {ExpenseEvent.APPROVE, ExpenseEvent.REJECT}:
        staged.append(
            Approval(
                expense_id=expense.id,
                approver_user_id=actor.user_id,
                decision=(
                    ApprovalDecision.APPROVED
                    if event == ExpenseEvent.APPROVE
                    else ApprovalDecision.REJECTED
                ),
                comment=reason,
                decided_at=plan.values["updated_at"],
            )
        )

    expense = store.save(expense, expected_status=source, values=plan.values, staged=staged)
    log_event(
        logger,
        "expense.transition",
        expense_id=str(expense.id),
        transition_event=event.value,
        from_status=source.value,
        to_status=expense.status.value,
        actor_user_id=str(actor.user_id),
    )
    return expense


def normalize_changes(record: Expense, changes: dict[str, Any]) -> tuple[dict[str, Any], list[str]]:
    """Coerce user-supplied field changes. Returns (values, problems)."""
    problems: list[str] = []
    values: dict[str, Any] = {}

    for key in sorted(k for k in changes if k not in EDITABLE_FIELDS):
        problems.append(f"{key} cannot be changed")

    if "merchant_name" in changes:
        values["merchant_name"] = str(changes["merchant_name"] or "").strip()

    for key in ("amount", "subtotal", "tax_amount"):
        if key not in changes:
            continue
        raw = changes[key]
        if raw is None:
            if key == "amount":
                problems.append("Amount is required")
            else:
                values[key] = None
            continue
        amount = _money(raw)
        if amount is None:
            problems.append(f"{key} must be a number")
        elif amount < 0:
            problems.append(f"{key} cannot be negative")
        else:
            values[key] = amount

    if "amount" not in changes and ("subtotal" in changes or "tax_amount" in changes):
        subtotal = values.get("subtotal", record.subtotal)
        tax = values.get("tax_amount", record.tax_amount)
        if subtotal is not None:
            values["amount"] = Decimal(subtotal) + Decimal(tax or 0)

    if "currency" in changes:
        currency = str(changes["currency"] or "").strip().upper()
        if len(currency) != 3 or not currency.isalpha():
            problems.append("Currency must be a 3-letter code")
        else:
            values["currency"] = currency

    if "category" in changes:
        try:
            values["category"] = ExpenseCategory(changes["category"])
        except ValueError:
            problems.append(f"Unknown category: {changes['category']}")

    if "expense_date" in changes:
        raw_date = changes["expense_date"]
        if isinstance(raw_date, str):
            try:
                raw_date = date.fromisoformat(raw_date)
            except ValueError:
                raw_date = None
        if not isinstance(raw_date, date):
            problems.append("Expense date is required")
        else:
            values["expense_date"] = raw_date

    for key in ("notes", "gl_code"):
        if key in changes:
            text = str(changes[key] or "").strip()
            values[key] = text or None

    return values, problems


def _money(raw: Any) -> Decimal | None:
    try:
        return Decimal(str(raw).replace(",", "")).quantize(Decimal("0.01"))
    except (InvalidOperation, ValueError):
        return None


def list_approvals(session: Session, *, expense_id: uuid.UUID) -> list[Approval]:
    return list(
        session.scalars(
            select(Approval)
            .where(Approval.expense_id == expense_id)
            .order_by(Approval.decided_at.asc())
        )
    )
