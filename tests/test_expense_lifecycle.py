from __future__ import annotations

import uuid
from datetime import timedelta
from decimal import Decimal

import pytest


def _draft(owner_id, **overrides):
    from spendtrail.modules.expenses.service import build_expense

    values = {
        "owner_id": owner_id,
        "merchant_name": "Corner Cafe",
        "amount": Decimal("12.50"),
        "category": "meals",
    }
    values.update(overrides)
    return build_expense(**values)


def _with_receipt(expense):
    from spendtrail.modules.expenses.models import AttachmentKind, ReceiptAttachment

    expense.receipts.append(ReceiptAttachment(reference="sha256:abc", kind=AttachmentKind.IMAGE))
    return expense


def _actor(role):
    from spendtrail.modules.workflow.actors import Actor

    return Actor(user_id=uuid.uuid4(), role=role)


def test_submit_with_missing_merchant_lists_problems_and_keeps_draft():
    from spendtrail.core.errors import PolicyViolation
    from spendtrail.modules.expenses.models import ExpenseStatus
    from spendtrail.modules.identity.models import UserRole
    from spendtrail.modules.workflow.models import ExpenseEvent
    from spendtrail.modules.workflow.service import apply_transition

    owner = _actor(UserRole.EMPLOYEE)
    expense = _draft(owner.user_id, merchant_name="")

    with pytest.raises(PolicyViolation) as exc:
        apply_transition(expense, ExpenseEvent.SUBMIT, owner)

    assert exc.value.status_code == 400
    assert "Merchant name is required" in exc.value.requirements
    assert "At least one receipt must be attached" in exc.value.requirements
    assert expense.status == ExpenseStatus.DRAFT
    assert expense.submitted_at is None


def test_submit_rejects_future_dates():
    from spendtrail.core.errors import PolicyViolation
    from spendtrail.modules.identity.models import UserRole
    from spendtrail.modules.workflow.models import ExpenseEvent
    from spendtrail.modules.workflow.service import apply_transition

    owner = _actor(UserRole.EMPLOYEE)
    expense = _with_receipt(_draft(owner.user_id))
    today = expense.expense_date - timedelta(days=1)

    with pytest.raises(PolicyViolation) as exc:
        apply_transition(expense, ExpenseEvent.SUBMIT, owner, today=today)
    assert exc.value.requirements == ["Expense date cannot be in the future"]


def test_submit_moves_draft_to_submitted_and_stamps_time():
    from spendtrail.modules.expenses.models import ExpenseStatus
    from spendtrail.modules.identity.models import UserRole
    from spendtrail.modules.workflow.models import ExpenseEvent
    from spendtrail.modules.workflow.service import apply_transition

    owner = _actor(UserRole.EMPLOYEE)
    expense = _with_receipt(_draft(owner.user_id))

    apply_transition(expense, ExpenseEvent.SUBMIT, owner)

    assert expense.status == ExpenseStatus.SUBMITTED
    assert expense.submitted_at is not None


def test_only_owner_can_submit():
    from spendtrail.core.errors import TransitionForbidden
    from spendtrail.modules.identity.models import UserRole
    from spendtrail.modules.workflow.models import ExpenseEvent
    from spendtrail.modules.workflow.service import apply_transition

    owner = _actor(UserRole.EMPLOYEE)
    expense = _with_receipt(_draft(owner.user_id))

    with pytest.raises(TransitionForbidden):
        apply_transition(expense, ExpenseEvent.SUBMIT, _actor(UserRole.ADMIN))


def test_approver_cannot_approve_own_expense():
    from spendtrail.core.errors import TransitionForbidden
    from spendtrail.modules.expenses.models import ExpenseStatus
    from spendtrail.modules.identity.models import UserRole
    from spendtrail.modules.workflow.models import ExpenseEvent
    from spendtrail.modules.workflow.service import apply_transition

    manager = _actor(UserRole.MANAGER)
    expense = _with_receipt(_draft(manager.user_id))
    apply_transition(expense, ExpenseEvent.SUBMIT, manager)

    with pytest.raises(TransitionForbidden) as exc:
        apply_transition(expense, ExpenseEvent.APPROVE, manager)
    assert exc.value.status_code == 403
    assert expense.status == ExpenseStatus.SUBMITTED


def test_self_approval_can_be_enabled(monkeypatch):
    from spendtrail.core.config import settings
    from spendtrail.modules.expenses.models import ExpenseStatus
    from spendtrail.modules.identity.models import UserRole
    from spendtrail.modules.workflow.models import ExpenseEvent
    from spendtrail.modules.workflow.service import apply_transition

    monkeypatch.setattr(settings, "allow_self_approval", True)
    manager = _actor(UserRole.MANAGER)
    expense = _with_receipt(_draft(manager.user_id))
    apply_transition(expense, ExpenseEvent.SUBMIT, manager)
    apply_transition(expense, ExpenseEvent.APPROVE, manager)
    assert expense.status == ExpenseStatus.APPROVED


def test_employee_cannot_review():
    from spendtrail.core.errors import TransitionForbidden
    from spendtrail.modules.identity.models import UserRole
    from spendtrail.modules.workflow.models import ExpenseEvent
    from spendtrail.modules.workflow.service import apply_transition

    owner = _actor(UserRole.EMPLOYEE)
    expense = _with_receipt(_draft(owner.user_id))
    apply_transition(expense, ExpenseEvent.SUBMIT, owner)

    with pytest.raises(TransitionForbidden):
        apply_transition(expense, ExpenseEvent.REJECT, _actor(UserRole.EMPLOYEE))


@pytest.mark.parametrize("terminal", ["paid", "exported"])
def test_terminal_statuses_accept_no_event(terminal):
    from spendtrail.core.errors import IllegalTransition
    from spendtrail.modules.expenses.models import ExpenseStatus
    from spendtrail.modules.identity.models import UserRole
    from spendtrail.modules.workflow.models import ExpenseEvent
    from spendtrail.modules.workflow.service import apply_transition

    finance = _actor(UserRole.FINANCE)
    expense = _with_receipt(_draft(finance.user_id))
    expense.status = ExpenseStatus(terminal)

    for event in ExpenseEvent:
        with pytest.raises(IllegalTransition) as exc:
            apply_transition(expense, event, finance, batch_id=uuid.uuid4())
        assert exc.value.status_code == 409
    assert expense.status == ExpenseStatus(terminal)


def test_approved_expense_cannot_be_edited():
    from spendtrail.core.errors import IllegalTransition
    from spendtrail.modules.expenses.models import ExpenseStatus
    from spendtrail.modules.identity.models import UserRole
    from spendtrail.modules.workflow.models import ExpenseEvent
    from spendtrail.modules.workflow.service import apply_transition

    owner = _actor(UserRole.EMPLOYEE)
    expense = _draft(owner.user_id)
    expense.status = ExpenseStatus.APPROVED

    with pytest.raises(IllegalTransition):
        apply_transition(expense, ExpenseEvent.EDIT, owner, changes={"amount": "1.00"})
    assert expense.amount == Decimal("12.50")


def test_company_card_submit_without_match_waits_in_unmatched():
    from spendtrail.modules.expenses.models import ExpenseStatus
    from spendtrail.modules.identity.models import UserRole
    from spendtrail.modules.workflow.models import ExpenseEvent
    from spendtrail.modules.workflow.service import apply_transition

    owner = _actor(UserRole.EMPLOYEE)
    expense = _with_receipt(_draft(owner.user_id, expense_type="company_card"))

    apply_transition(expense, ExpenseEvent.SUBMIT, owner)
    assert expense.status == ExpenseStatus.UNMATCHED


def test_reconcile_needs_a_card_match():
    from spendtrail.core.errors import PolicyViolation
    from spendtrail.modules.identity.models import UserRole
    from spendtrail.modules.workflow.models import ExpenseEvent
    from spendtrail.modules.workflow.service import apply_transition

    owner = _actor(UserRole.EMPLOYEE)
    expense = _with_receipt(_draft(owner.user_id, expense_type="company_card"))
    apply_transition(expense, ExpenseEvent.SUBMIT, owner)

    with pytest.raises(PolicyViolation) as exc:
        apply_transition(expense, ExpenseEvent.RECONCILE, owner)
    assert exc.value.requirements == ["Match a card transaction before reconciling"]


def test_export_requires_batch():
    from spendtrail.core.errors import PolicyViolation
    from spendtrail.modules.expenses.models import ExpenseStatus
    from spendtrail.modules.identity.models import UserRole
    from spendtrail.modules.workflow.models import ExpenseEvent
    from spendtrail.modules.workflow.service import apply_transition

    expense = _draft(uuid.uuid4())
    expense.status = ExpenseStatus.APPROVED

    with pytest.raises(PolicyViolation):
        apply_transition(expense, ExpenseEvent.EXPORT, _actor(UserRole.FINANCE))
    assert expense.status == ExpenseStatus.APPROVED


def test_available_events_depend_on_actor():
    from spendtrail.modules.expenses.models import ExpenseStatus
    from spendtrail.modules.identity.models import UserRole
    from spendtrail.modules.workflow.models import ExpenseEvent
    from spendtrail.modules.workflow.service import available_events

    owner = _actor(UserRole.EMPLOYEE)
    expense = _draft(owner.user_id)
    assert set(available_events(expense, owner)) == {
        ExpenseEvent.SUBMIT,
        ExpenseEvent.EDIT,
        ExpenseEvent.DELETE,
    }
    assert available_events(expense, _actor(UserRole.MANAGER)) == []

    expense.status = ExpenseStatus.SUBMITTED
    assert available_events(expense, owner) == []
    assert set(available_events(expense, _actor(UserRole.MANAGER))) == {
        ExpenseEvent.APPROVE,
        ExpenseEvent.REJECT,
    }


def test_build_expense_reports_every_invalid_field():
    from spendtrail.core.errors import PolicyViolation

    with pytest.raises(PolicyViolation) as exc:
        _draft(uuid.uuid4(), amount="-1", currency="dollars", category="snacks")
    assert exc.value.requirements == [
        "amount cannot be negative",
        "Currency must be a 3-letter code",
        "Unknown category: snacks",
    ]


def test_full_round_trip_with_rejection(session, make_actor, receipt_date):
    from spendtrail.modules.audit.service import list_audit_events
    from spendtrail.modules.expenses.models import AttachmentKind, ExpenseStatus
    from spendtrail.modules.expenses.service import attach_receipt, create_expense, update_expense
    from spendtrail.modules.identity.models import UserRole
    from spendtrail.modules.workflow.models import ApprovalDecision, ExpenseEvent
    from spendtrail.modules.workflow.service import list_approvals, transition_expense

    employee = make_actor(UserRole.EMPLOYEE)
    manager = make_actor(UserRole.MANAGER)
    finance = make_actor(UserRole.FINANCE)

    expense = create_expense(
        session,
        actor=employee,
        merchant_name="Corner Cafe",
        amount=Decimal("42.50"),
        expense_date=receipt_date,
        category="meals",
    )
    assert expense.status == ExpenseStatus.DRAFT
    expense = attach_receipt(
        session,
        expense_id=expense.id,
        actor=employee,
        reference="sha256:feed",
        kind=AttachmentKind.IMAGE,
        filename="lunch.jpg",
    )
    assert [r.filename for r in expense.receipts] == ["lunch.jpg"]

    def step(event, actor, **kwargs):
        return transition_expense(
            session, expense_id=expense.id, event=event, actor=actor, **kwargs
        )

    submitted = step(ExpenseEvent.SUBMIT, employee)
    assert submitted.status == ExpenseStatus.SUBMITTED
    first_submitted_at = submitted.submitted_at
    rejected = step(ExpenseEvent.REJECT, manager, reason="Missing itemization")
    assert rejected.status == ExpenseStatus.REJECTED
    assert "Missing itemization" in rejected.policy_violations

    edited = update_expense(
        session,
        expense_id=expense.id,
        actor=employee,
        changes={"notes": "Itemized receipt attached"},
        expected_status=ExpenseStatus.REJECTED,
    )
    assert edited.status == ExpenseStatus.REJECTED
    assert edited.notes == "Itemized receipt attached"

    resubmitted = step(ExpenseEvent.SUBMIT, employee)
    assert resubmitted.status == ExpenseStatus.SUBMITTED
    assert resubmitted.submitted_at >= first_submitted_at
    approved = step(ExpenseEvent.APPROVE, manager)
    assert approved.status == ExpenseStatus.APPROVED
    assert approved.approver_id == manager.user_id

    paid = step(ExpenseEvent.MARK_PAID, finance)
    assert paid.status == ExpenseStatus.PAID
    assert paid.submitted_at <= paid.approved_at <= paid.paid_at

    decisions = [a.decision for a in list_approvals(session, expense_id=expense.id)]
    assert decisions == [ApprovalDecision.REJECTED, ApprovalDecision.APPROVED]

    event_types = [e.event_type for e in list_audit_events(session, expense_id=expense.id)]
    assert event_types[0] == "expense.created"
    assert event_types[-1] == "expense.mark_paid"
    assert event_types.count("expense.submit") == 2


def test_expected_status_mismatch_is_stale(session, make_actor, receipt_date):
    from spendtrail.core.errors import StaleState
    from spendtrail.modules.expenses.models import ExpenseStatus
    from spendtrail.modules.expenses.service import create_expense
    from spendtrail.modules.identity.models import UserRole
    from spendtrail.modules.workflow.models import ExpenseEvent
    from spendtrail.modules.workflow.service import transition_expense

    employee = make_actor(UserRole.EMPLOYEE)
    expense = create_expense(
        session, actor=employee, merchant_name="Taxi", amount="18.00", expense_date=receipt_date
    )

    with pytest.raises(StaleState) as exc:
        transition_expense(
            session,
            expense_id=expense.id,
            event=ExpenseEvent.EDIT,
            actor=employee,
            expected_status=ExpenseStatus.SUBMITTED,
            changes={"amount": "20.00"},
        )
    assert exc.value.status_code == 409
    assert exc.value.detail["actual_status"] == "draft"
    session.refresh(expense)
    assert expense.amount == Decimal("18.00")


def test_concurrent_write_loses_compare_and_swap(session, make_actor, receipt_date):
    from spendtrail.core.db import SessionLocal
    from spendtrail.core.errors import StaleState
    from spendtrail.modules.expenses.models import AttachmentKind, ExpenseStatus
    from spendtrail.modules.expenses.service import attach_receipt, create_expense
    from spendtrail.modules.expenses.store import ExpenseStore
    from spendtrail.modules.identity.models import UserRole
    from spendtrail.modules.workflow.models import ExpenseEvent
    from spendtrail.modules.workflow.service import transition_expense

    employee = make_actor(UserRole.EMPLOYEE)
    expense = create_expense(
        session, actor=employee, merchant_name="Hotel", amount="180.00", expense_date=receipt_date
    )
    attach_receipt(
        session, expense_id=expense.id, actor=employee, reference="r1", kind=AttachmentKind.PDF
    )

    with SessionLocal() as other:
        stale_copy = ExpenseStore(other).load(expense.id)
        assert stale_copy.status == ExpenseStatus.DRAFT

        transition_expense(session, expense_id=expense.id, event=ExpenseEvent.SUBMIT, actor=employee)

        with pytest.raises(StaleState) as exc:
            ExpenseStore(other).save(
                stale_copy,
                expected_status=ExpenseStatus.DRAFT,
                values={"merchant_name": "Overwritten"},
            )
        assert exc.value.detail["actual_status"] == "submitted"

    session.refresh(expense)
    assert expense.status == ExpenseStatus.SUBMITTED
    assert expense.merchant_name == "Hotel"


def test_delete_only_from_draft(session, make_actor, receipt_date):
    from fastapi import HTTPException

    from spendtrail.core.errors import IllegalTransition, TransitionForbidden
    from spendtrail.modules.expenses.models import AttachmentKind
    from spendtrail.modules.expenses.service import attach_receipt, create_expense, delete_expense
    from spendtrail.modules.expenses.store import ExpenseStore
    from spendtrail.modules.identity.models import UserRole
    from spendtrail.modules.workflow.models import ExpenseEvent
    from spendtrail.modules.workflow.service import transition_expense

    employee = make_actor(UserRole.EMPLOYEE)
    other = make_actor(UserRole.EMPLOYEE)

    draft = create_expense(
        session, actor=employee, merchant_name="Parking", amount="9.00", expense_date=receipt_date
    )
    with pytest.raises(TransitionForbidden):
        delete_expense(session, expense_id=draft.id, actor=other)
    draft_id = draft.id
    delete_expense(session, expense_id=draft_id, actor=employee)
    with pytest.raises(HTTPException) as exc:
        ExpenseStore(session).load(draft_id)
    assert exc.value.status_code == 404

    submitted = create_expense(
        session, actor=employee, merchant_name="Train", amount="54.00", expense_date=receipt_date
    )
    attach_receipt(
        session, expense_id=submitted.id, actor=employee, reference="r2", kind=AttachmentKind.PDF
    )
    transition_expense(session, expense_id=submitted.id, event=ExpenseEvent.SUBMIT, actor=employee)
    with pytest.raises(IllegalTransition):
        delete_expense(session, expense_id=submitted.id, actor=employee)
    assert ExpenseStore(session).load(submitted.id) is not None


def test_edit_recomputes_amount_from_subtotal_and_tax(session, make_actor, receipt_date):
    from spendtrail.modules.expenses.service import create_expense, update_expense
    from spendtrail.modules.identity.models import UserRole

    employee = make_actor(UserRole.EMPLOYEE)
    expense = create_expense(
        session, actor=employee, merchant_name="Office Depot", amount="5.00", expense_date=receipt_date
    )
    updated = update_expense(
        session,
        expense_id=expense.id,
        actor=employee,
        changes={"subtotal": "10.00", "tax_amount": "0.80"},
    )
    assert updated.amount == Decimal("10.80")
    assert updated.subtotal == Decimal("10.00")
    assert updated.tax_amount == Decimal("0.80")


def test_edit_rejects_locked_fields(session, make_actor, receipt_date):
    from spendtrail.core.errors import PolicyViolation
    from spendtrail.modules.expenses.service import create_expense, update_expense
    from spendtrail.modules.identity.models import UserRole

    employee = make_actor(UserRole.EMPLOYEE)
    expense = create_expense(
        session, actor=employee, merchant_name="Cafe", amount="5.00", expense_date=receipt_date
    )
    with pytest.raises(PolicyViolation) as exc:
        update_expense(
            session,
            expense_id=expense.id,
            actor=employee,
            changes={"status": "paid", "amount": "abc"},
        )
    assert exc.value.requirements == ["status cannot be changed", "amount must be a number"]


def test_last_receipt_is_kept_once_submitted(session, make_actor, receipt_date):
    from spendtrail.core.errors import PolicyViolation
    from spendtrail.modules.expenses.models import AttachmentKind
    from spendtrail.modules.expenses.service import (
        attach_receipt,
        create_expense,
        detach_receipt,
    )
    from spendtrail.modules.identity.models import UserRole
    from spendtrail.modules.workflow.models import ExpenseEvent
    from spendtrail.modules.workflow.service import transition_expense

    employee = make_actor(UserRole.EMPLOYEE)
    manager = make_actor(UserRole.MANAGER)
    expense = create_expense(
        session, actor=employee, merchant_name="Cafe", amount="5.00", expense_date=receipt_date
    )
    expense = attach_receipt(
        session, expense_id=expense.id, actor=employee, reference="r1", kind=AttachmentKind.IMAGE
    )
    receipt_id = expense.receipts[0].id
    transition_expense(session, expense_id=expense.id, event=ExpenseEvent.SUBMIT, actor=employee)
    transition_expense(
        session, expense_id=expense.id, event=ExpenseEvent.REJECT, actor=manager, reason="Blurry"
    )

    with pytest.raises(PolicyViolation):
        detach_receipt(session, expense_id=expense.id, receipt_id=receipt_id, actor=employee)

    expense = attach_receipt(
        session, expense_id=expense.id, actor=employee, reference="r2", kind=AttachmentKind.IMAGE
    )
    expense = detach_receipt(session, expense_id=expense.id, receipt_id=receipt_id, actor=employee)
    assert [r.reference for r in expense.receipts] == ["r2"]


def test_approver_is_the_first_reviewer(session, make_actor, receipt_date):
    from spendtrail.modules.expenses.models import AttachmentKind, ExpenseStatus
    from spendtrail.modules.expenses.service import attach_receipt, create_expense
    from spendtrail.modules.identity.models import UserRole
    from spendtrail.modules.workflow.models import ApprovalDecision, ExpenseEvent
    from spendtrail.modules.workflow.service import list_approvals, transition_expense

    employee = make_actor()
    first = make_actor(UserRole.MANAGER)
    second = make_actor(UserRole.FINANCE)
    expense = create_expense(
        session,
        actor=employee,
        merchant_name="Hotel Arts",
        amount=Decimal("180.00"),
        expense_date=receipt_date,
        category="lodging",
    )
    attach_receipt(
        session, expense_id=expense.id, actor=employee, reference="r", kind=AttachmentKind.PDF
    )

    def step(event, actor, **kwargs):
        return transition_expense(
            session, expense_id=expense.id, event=event, actor=actor, **kwargs
        )

    step(ExpenseEvent.SUBMIT, employee)
    rejected = step(ExpenseEvent.REJECT, first, reason="Wrong dates")
    assert rejected.approver_id == first.user_id

    step(ExpenseEvent.SUBMIT, employee)
    approved = step(ExpenseEvent.APPROVE, second)
    assert approved.status == ExpenseStatus.APPROVED
    assert approved.approver_id == first.user_id

    history = [(a.approver_user_id, a.decision) for a in list_approvals(session, expense_id=expense.id)]
    assert history == [
        (first.user_id, ApprovalDecision.REJECTED),
        (second.user_id, ApprovalDecision.APPROVED),
    ]
