"""
Advisory policy checks.

Flags produced here are stored on ``Expense.policy_violations`` for display.
They never block a lifecycle transition.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from decimal import Decimal

from spendtrail.core.config import settings
from spendtrail.modules.expenses.models import ExpenseCategory, ExpenseStatus

MISSING_RECEIPT_MESSAGE = "No receipt attached. Attach a receipt before submitting."


@dataclass(frozen=True)
class PolicyInput:
    category: ExpenseCategory
    amount: Decimal
    receipt_count: int
    status: ExpenseStatus


@dataclass(frozen=True)
class PolicyRule:
    rule_id: str
    check: Callable[[PolicyInput], str | None]


def _meal_limit_message() -> str:
    return (
        f"This exceeds the daily meal limit of ${settings.meal_daily_limit:,.0f}. "
        "Please add justification."
    )


def _lodging_limit_message() -> str:
    return (
        f"This exceeds the nightly lodging limit of ${settings.lodging_nightly_limit:,.0f}. "
        "Please add justification."
    )


def _meal_limit(p: PolicyInput) -> str | None:
    if p.category == ExpenseCategory.MEALS and p.amount > settings.meal_daily_limit:
        return _meal_limit_message()
    return None


def _lodging_limit(p: PolicyInput) -> str | None:
    if p.category == ExpenseCategory.LODGING and p.amount > settings.lodging_nightly_limit:
        return _lodging_limit_message()
    return None


def _missing_receipt(p: PolicyInput) -> str | None:
    if p.status != ExpenseStatus.DRAFT and p.receipt_count == 0:
        return MISSING_RECEIPT_MESSAGE
    return None


RULES: tuple[PolicyRule, ...] = (
    PolicyRule("P001", _meal_limit),
    PolicyRule("P002", _lodging_limit),
    PolicyRule("P003", _missing_receipt),
)


def evaluate_policy(
    *,
    category: ExpenseCategory,
    amount: Decimal,
    receipt_count: int,
    status: ExpenseStatus,
) -> list[str]:
    p = PolicyInput(
        category=category, amount=Decimal(amount), receipt_count=receipt_count, status=status
    )
    flags: list[str] = []
    for rule in RULES:
        message = rule.check(p)
        if message:
            flags.append(message)
    return flags


def _advisory_messages() -> set[str]:
    return {_meal_limit_message(), _lodging_limit_message(), MISSING_RECEIPT_MESSAGE}


def merge_policy_flags(existing: Iterable[str] | None, advisory: Iterable[str]) -> list[str]:
    """Replace previously computed advisory flags, keeping everything else (e.g. rejection reasons)."""
    computed = _advisory_messages()
    kept = [v for v in (existing or []) if v not in computed]
    merged = list(kept)
    for message in advisory:
        if message not in merged:
            merged.append(message)
    return merged
