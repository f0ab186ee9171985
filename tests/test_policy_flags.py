from __future__ import annotations

from decimal import Decimal


def test_meal_and_lodging_limits():
    from spendtrail.modules.expenses.models import ExpenseCategory, ExpenseStatus
    from spendtrail.modules.policy.service import evaluate_policy

    meal = evaluate_policy(
        category=ExpenseCategory.MEALS,
        amount=Decimal("75.01"),
        receipt_count=1,
        status=ExpenseStatus.DRAFT,
    )
    assert meal == ["This exceeds the daily meal limit of $75. Please add justification."]

    at_limit = evaluate_policy(
        category=ExpenseCategory.MEALS,
        amount=Decimal("75.00"),
        receipt_count=1,
        status=ExpenseStatus.DRAFT,
    )
    assert at_limit == []

    lodging = evaluate_policy(
        category=ExpenseCategory.LODGING,
        amount=Decimal("250"),
        receipt_count=1,
        status=ExpenseStatus.SUBMITTED,
    )
    assert lodging == ["This exceeds the nightly lodging limit of $200. Please add justification."]


def test_missing_receipt_is_flagged_after_draft_only():
    from spendtrail.modules.expenses.models import ExpenseCategory, ExpenseStatus
    from spendtrail.modules.policy.service import MISSING_RECEIPT_MESSAGE, evaluate_policy

    kwargs = {"category": ExpenseCategory.OTHER, "amount": Decimal("5"), "receipt_count": 0}
    assert evaluate_policy(status=ExpenseStatus.DRAFT, **kwargs) == []
    assert evaluate_policy(status=ExpenseStatus.UNMATCHED, **kwargs) == [MISSING_RECEIPT_MESSAGE]


def test_limits_follow_settings(monkeypatch):
    from spendtrail.core.config import settings
    from spendtrail.modules.expenses.models import ExpenseCategory, ExpenseStatus
    from spendtrail.modules.policy.service import evaluate_policy

    monkeypatch.setattr(settings, "meal_daily_limit", Decimal("50"))
    flags = evaluate_policy(
        category=ExpenseCategory.MEALS,
        amount=Decimal("60"),
        receipt_count=1,
        status=ExpenseStatus.DRAFT,
    )
    assert flags == ["This exceeds the daily meal limit of $50. Please add justification."]


def test_merge_replaces_advisory_flags_and_keeps_rejection_reasons():
    from spendtrail.modules.policy.service import MISSING_RECEIPT_MESSAGE, merge_policy_flags

    existing = [MISSING_RECEIPT_MESSAGE, "Missing itemization"]
    assert merge_policy_flags(existing, []) == ["Missing itemization"]
    assert merge_policy_flags(existing, [MISSING_RECEIPT_MESSAGE]) == [
        "Missing itemization",
        MISSING_RECEIPT_MESSAGE,
    ]
    assert merge_policy_flags(None, ["x", "x"]) == ["x"]


def test_flags_never_block_submission(session, make_actor, receipt_date):
    from spendtrail.modules.expenses.models import AttachmentKind, ExpenseStatus
    from spendtrail.modules.expenses.service import attach_receipt, create_expense
    from spendtrail.modules.workflow.models import ExpenseEvent
    from spendtrail.modules.workflow.service import transition_expense

    employee = make_actor()
    expense = create_expense(
        session,
        actor=employee,
        merchant_name="Steakhouse",
        amount="180.00",
        expense_date=receipt_date,
        category="meals",
    )
    assert len(expense.policy_violations) == 1

    attach_receipt(
        session, expense_id=expense.id, actor=employee, reference="r", kind=AttachmentKind.IMAGE
    )
    expense = transition_expense(
        session, expense_id=expense.id, event=ExpenseEvent.SUBMIT, actor=employee
    )
    assert expense.status == ExpenseStatus.SUBMITTED
    assert expense.policy_violations == [
        "This exceeds the daily meal limit of $75. Please add justification."
    ]


def test_editing_amount_clears_stale_limit_flag(session, make_actor, receipt_date):
    from spendtrail.modules.expenses.service import create_expense, update_expense

    employee = make_actor()
    expense = create_expense(
        session,
        actor=employee,
        merchant_name="Hotel",
        amount="320.00",
        expense_date=receipt_date,
        category="lodging",
    )
    assert expense.policy_violations

    expense = update_expense(
        session, expense_id=expense.id, actor=employee, changes={"amount": "180.00"}
    )
    assert expense.policy_violations == []
