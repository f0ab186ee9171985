"""
Card transaction reconciliation.

A card transaction and an expense point at each other while matched
(``CardTransaction.matched_expense_id`` / ``Expense.card_transaction_id``).
Both sides are written in one commit, and each side is guarded on the state it
was read in, so two concurrent matches cannot both win.
"""

from __future__ import annotations

import re
import uuid
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

from fastapi import HTTPException, status
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from spendtrail.core.config import settings
from spendtrail.core.errors import PolicyViolation, ReconciliationConflict, ReconciliationError
from spendtrail.core.logging import get_logger, log_event
from spendtrail.core.models import utcnow
from spendtrail.modules.audit.service import audit_event
from spendtrail.modules.cards.models import CardTransaction, CardTransactionStatus
from spendtrail.modules.expenses.models import Expense, ExpenseStatus, ExpenseType
from spendtrail.modules.expenses.service import build_expense
from spendtrail.modules.expenses.store import ExpenseStore
from spendtrail.modules.identity.models import User
from spendtrail.modules.workflow.actors import Actor
from spendtrail.modules.workflow.models import ExpenseEvent
from spendtrail.modules.workflow.service import submission_problems, transition_expense

logger = get_logger(__name__)

MATCHABLE_STATUSES = frozenset(
    {ExpenseStatus.DRAFT, ExpenseStatus.SUBMITTED, ExpenseStatus.UNMATCHED}
)
UNMATCHABLE_STATUSES = frozenset({ExpenseStatus.DRAFT, ExpenseStatus.SUBMITTED})


def record_card_transaction(
    session: Session,
    *,
    owner_id: uuid.UUID,
    merchant: str,
    amount: Decimal,
    posted_date: date,
    currency: str | None = None,
    card_last4: str | None = None,
    external_ref: str | None = None,
) -> CardTransaction:
    if not session.get(User, owner_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Cardholder not found")

    merchant = (merchant or "").strip()
    if not merchant:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Merchant is required")
    try:
        amount = Decimal(str(amount)).quantize(Decimal("0.01"))
    except InvalidOperation as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Amount must be a number"
        ) from e
    if amount <= 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Amount must be greater than zero"
        )
    currency = (currency or settings.default_currency).strip().upper()
    # Feeds send either the last four digits or a masked number ("**** 4242").
    if card_last4 is not None:
        digits = re.sub(r"\D", "", card_last4)
        if len(digits) < 4:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Card number must end in four digits",
            )
        card_last4 = digits[-4:]

    external_ref = (external_ref or "").strip() or None
    if external_ref:
        existing = session.scalar(
            select(CardTransaction).where(
                CardTransaction.owner_id == owner_id,
                CardTransaction.external_ref == external_ref,
            )
        )
        if existing:
            return existing

    txn = CardTransaction(
        owner_id=owner_id,
        merchant=merchant[:200],
        amount=amount,
        currency=currency,
        posted_date=posted_date,
        card_last4=card_last4,
        external_ref=external_ref,
        status=CardTransactionStatus.UNMATCHED,
    )
    session.add(txn)
    session.commit()
    session.refresh(txn)
    log_event(
        logger,
        "card.recorded",
        card_transaction_id=str(txn.id),
        owner_id=str(owner_id),
        amount=str(txn.amount),
        currency=txn.currency,
    )
    return txn


def list_card_transactions(
    session: Session,
    *,
    actor: Actor,
    status_filter: CardTransactionStatus | None = None,
    include_all: bool = False,
) -> list[CardTransaction]:
    q = select(CardTransaction)
    if not (include_all and actor.is_finance):
        q = q.where(CardTransaction.owner_id == actor.user_id)
    if status_filter is not None:
        q = q.where(CardTransaction.status == status_filter)
    return list(
        session.scalars(q.order_by(CardTransaction.posted_date.desc(), CardTransaction.created_at.desc()))
    )


def get_card_transaction(
    session: Session, *, transaction_id: uuid.UUID, actor: Actor
) -> CardTransaction:
    txn = session.get(CardTransaction, transaction_id, populate_existing=True)
    if not txn or (txn.owner_id != actor.user_id and not actor.is_finance):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Card transaction not found")
    return txn


def check_match(transaction: CardTransaction, expense: Expense, *, override: bool = False) -> bool:
    """
    Validate linking ``transaction`` to ``expense``.

    Returns False when the two are already linked to each other (nothing to
    do). Raises ``ReconciliationConflict`` when either side is linked elsewhere
    and ``override`` is not set, or when the transaction was ignored.
    """
    if transaction.status == CardTransactionStatus.IGNORED:
        raise ReconciliationConflict("Ignored card transactions cannot be matched")
    if transaction.owner_id != expense.owner_id:
        raise ReconciliationError("Card transaction and expense belong to different people")
    if expense.status not in MATCHABLE_STATUSES:
        raise ReconciliationError(
            f"Cannot match a card transaction to a {expense.status.value} expense",
            status_code=status.HTTP_409_CONFLICT,
        )

    if (
        transaction.status == CardTransactionStatus.MATCHED
        and transaction.matched_expense_id == expense.id
        and expense.card_transaction_id == transaction.id
    ):
        return False
    if transaction.status == CardTransactionStatus.MATCHED and not override:
        raise ReconciliationConflict("Card transaction is already matched to another expense")
    if expense.card_transaction_id not in (None, transaction.id) and not override:
        raise ReconciliationConflict("Expense is already matched to another card transaction")
    return True


def match_transaction(
    session: Session,
    *,
    transaction_id: uuid.UUID,
    expense_id: uuid.UUID,
    actor: Actor,
    override: bool = False,
) -> CardTransaction:
    txn = get_card_transaction(session, transaction_id=transaction_id, actor=actor)
    store = ExpenseStore(session)
    expense = store.load(expense_id)
    if not check_match(txn, expense, override=override):
        return txn

    now = utcnow()
    source_status = expense.status
    if source_status == ExpenseStatus.UNMATCHED:
        # The reconcile that follows must not fail after the link is written.
        problems = submission_problems(expense)
        if problems:
            raise PolicyViolation(problems, message="Expense is not ready to be reconciled.")
    previous_expense_id = (
        txn.matched_expense_id if txn.status == CardTransactionStatus.MATCHED else None
    )
    previous_txn_id = (
        expense.card_transaction_id
        if expense.card_transaction_id not in (None, txn.id)
        else None
    )

    _swap_transaction_state(
        session,
        txn,
        expected=txn.status,
        expected_expense_id=txn.matched_expense_id,
        new_status=CardTransactionStatus.MATCHED,
        new_expense_id=expense.id,
        now=now,
    )
    if previous_expense_id and previous_expense_id != expense.id:
        session.execute(
            update(Expense)
            .where(Expense.id == previous_expense_id, Expense.card_transaction_id == txn.id)
            .values(card_transaction_id=None, updated_at=now)
            .execution_options(synchronize_session=False)
        )
    if previous_txn_id:
        session.execute(
            update(CardTransaction)
            .where(
                CardTransaction.id == previous_txn_id,
                CardTransaction.matched_expense_id == expense.id,
            )
            .values(status=CardTransactionStatus.UNMATCHED, matched_expense_id=None, updated_at=now)
            .execution_options(synchronize_session=False)
        )

    store.save(
        expense,
        expected_status=source_status,
        values={"card_transaction_id": txn.id, "updated_at": now},
        staged=[
            audit_event(
                event_type="card.matched",
                actor_user_id=actor.user_id,
                expense_id=expense.id,
                card_transaction_id=txn.id,
                payload={
                    "override": override,
                    "previous_expense_id": str(previous_expense_id) if previous_expense_id else None,
                    "previous_transaction_id": str(previous_txn_id) if previous_txn_id else None,
                },
            )
        ],
    )
    session.refresh(txn)
    log_event(
        logger,
        "card.matched",
        card_transaction_id=str(txn.id),
        expense_id=str(expense.id),
        actor_user_id=str(actor.user_id),
        override=override,
    )

    if source_status == ExpenseStatus.UNMATCHED:
        transition_expense(
            session,
            expense_id=expense.id,
            event=ExpenseEvent.RECONCILE,
            actor=actor,
            expected_status=ExpenseStatus.UNMATCHED,
        )
    return txn


def unmatch_transaction(
    session: Session, *, transaction_id: uuid.UUID, actor: Actor
) -> CardTransaction:
    """Break a match so either side can be matched again (or the draft deleted)."""
    txn = get_card_transaction(session, transaction_id=transaction_id, actor=actor)
    if txn.status != CardTransactionStatus.MATCHED:
        raise ReconciliationError(
            "Card transaction is not matched", status_code=status.HTTP_409_CONFLICT
        )

    now = utcnow()
    expense_id = txn.matched_expense_id
    expense = session.get(Expense, expense_id, populate_existing=True) if expense_id else None
    if expense is not None and expense.status not in UNMATCHABLE_STATUSES:
        raise ReconciliationError(
            f"Cannot unmatch a card transaction from a {expense.status.value} expense",
            status_code=status.HTTP_409_CONFLICT,
        )

    _swap_transaction_state(
        session,
        txn,
        expected=CardTransactionStatus.MATCHED,
        expected_expense_id=expense_id,
        new_status=CardTransactionStatus.UNMATCHED,
        new_expense_id=None,
        now=now,
    )
    staged = [
        audit_event(
            event_type="card.unmatched",
            actor_user_id=actor.user_id,
            expense_id=expense_id,
            card_transaction_id=txn.id,
        )
    ]
    if expense is not None:
        ExpenseStore(session).save(
            expense,
            expected_status=expense.status,
            values={"card_transaction_id": None, "updated_at": now},
            staged=staged,
        )
    else:
        session.add_all(staged)
        session.commit()
    session.refresh(txn)
    log_event(
        logger,
        "card.unmatched",
        card_transaction_id=str(txn.id),
        expense_id=str(expense_id) if expense_id else None,
        actor_user_id=str(actor.user_id),
    )
    return txn


def ignore_transaction(
    session: Session, *, transaction_id: uuid.UUID, actor: Actor
) -> CardTransaction:
    """Mark a charge as not needing an expense. There is no way back."""
    txn = get_card_transaction(session, transaction_id=transaction_id, actor=actor)
    if txn.status == CardTransactionStatus.IGNORED:
        return txn
    if txn.status == CardTransactionStatus.MATCHED:
        raise ReconciliationConflict("Matched card transactions cannot be ignored")

    _swap_transaction_state(
        session,
        txn,
        expected=CardTransactionStatus.UNMATCHED,
        expected_expense_id=None,
        new_status=CardTransactionStatus.IGNORED,
        new_expense_id=None,
        now=utcnow(),
    )
    session.add(
        audit_event(
            event_type="card.ignored",
            actor_user_id=actor.user_id,
            card_transaction_id=txn.id,
        )
    )
    session.commit()
    session.refresh(txn)
    log_event(
        logger,
        "card.ignored",
        card_transaction_id=str(txn.id),
        actor_user_id=str(actor.user_id),
    )
    return txn


def create_expense_from_transaction(
    session: Session, *, transaction_id: uuid.UUID, actor: Actor
) -> Expense:
    """
    Create a draft company card expense from a charge and match the two.

    The draft still goes through the normal submit and approve path.
    """
    txn = get_card_transaction(session, transaction_id=transaction_id, actor=actor)
    if txn.status == CardTransactionStatus.IGNORED:
        raise ReconciliationConflict("Ignored card transactions cannot be matched")
    if txn.status == CardTransactionStatus.MATCHED:
        raise ReconciliationConflict("Card transaction is already matched to another expense")

    expense = build_expense(
        owner_id=txn.owner_id,
        merchant_name=txn.merchant,
        amount=txn.amount,
        currency=txn.currency,
        expense_date=txn.posted_date,
        expense_type=ExpenseType.COMPANY_CARD,
        card_transaction_id=txn.id,
    )
    _swap_transaction_state(
        session,
        txn,
        expected=CardTransactionStatus.UNMATCHED,
        expected_expense_id=None,
        new_status=CardTransactionStatus.MATCHED,
        new_expense_id=expense.id,
        now=utcnow(),
    )
    session.add(expense)
    session.add(
        audit_event(
            event_type="expense.created",
            actor_user_id=actor.user_id,
            expense_id=expense.id,
            card_transaction_id=txn.id,
            payload={"status": expense.status.value, "source": "card_transaction"},
        )
    )
    session.commit()
    session.refresh(expense)
    session.refresh(txn)
    log_event(
        logger,
        "expense.created",
        expense_id=str(expense.id),
        owner_id=str(expense.owner_id),
        status=expense.status.value,
        expense_type=expense.expense_type.value,
        card_transaction_id=str(txn.id),
    )
    log_event(
        logger,
        "card.matched",
        card_transaction_id=str(txn.id),
        expense_id=str(expense.id),
        actor_user_id=str(actor.user_id),
        override=False,
    )
    return expense


def _swap_transaction_state(
    session: Session,
    txn: CardTransaction,
    *,
    expected: CardTransactionStatus,
    expected_expense_id: uuid.UUID | None,
    new_status: CardTransactionStatus,
    new_expense_id: uuid.UUID | None,
    now: datetime,
) -> None:
    same_link = (
        CardTransaction.matched_expense_id.is_(None)
        if expected_expense_id is None
        else CardTransaction.matched_expense_id == expected_expense_id
    )
    result = session.execute(
        update(CardTransaction)
        .where(CardTransaction.id == txn.id, CardTransaction.status == expected, same_link)
        .values(status=new_status, matched_expense_id=new_expense_id, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        session.rollback()
        raise ReconciliationConflict("Card transaction changed since it was read; reload and retry")
