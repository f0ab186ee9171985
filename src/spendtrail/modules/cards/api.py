from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from spendtrail.api.deps import get_current_actor, require_role
from spendtrail.core.db import db_session
from spendtrail.modules.cards.models import CardTransactionStatus
from spendtrail.modules.cards.schemas import CardTransactionIn, CardTransactionOut, MatchIn
from spendtrail.modules.cards.service import (
    create_expense_from_transaction,
    get_card_transaction,
    ignore_transaction,
    list_card_transactions,
    match_transaction,
    record_card_transaction,
    unmatch_transaction,
)
from spendtrail.modules.expenses.schemas import ExpenseOut
from spendtrail.modules.identity.models import User, UserRole
from spendtrail.modules.workflow.actors import Actor

router = APIRouter(tags=["cards"])


@router.post("/cards/transactions", response_model=CardTransactionOut)
def record_transaction_endpoint(
    payload: CardTransactionIn,
    session: Session = Depends(db_session),
    _: User = Depends(require_role(UserRole.FINANCE, UserRole.ADMIN)),
) -> CardTransactionOut:
    txn = record_card_transaction(session, **payload.model_dump())
    return CardTransactionOut.model_validate(txn, from_attributes=True)


@router.get("/cards/transactions", response_model=list[CardTransactionOut])
def list_transactions_endpoint(
    status: CardTransactionStatus | None = None,
    all: bool = False,
    session: Session = Depends(db_session),
    actor: Actor = Depends(get_current_actor),
) -> list[CardTransactionOut]:
    txns = list_card_transactions(session, actor=actor, status_filter=status, include_all=all)
    return [CardTransactionOut.model_validate(t, from_attributes=True) for t in txns]


@router.get("/cards/transactions/{transaction_id}", response_model=CardTransactionOut)
def get_transaction_endpoint(
    transaction_id: uuid.UUID,
    session: Session = Depends(db_session),
    actor: Actor = Depends(get_current_actor),
) -> CardTransactionOut:
    txn = get_card_transaction(session, transaction_id=transaction_id, actor=actor)
    return CardTransactionOut.model_validate(txn, from_attributes=True)


@router.post("/cards/transactions/{transaction_id}/match", response_model=CardTransactionOut)
def match_endpoint(
    transaction_id: uuid.UUID,
    payload: MatchIn,
    session: Session = Depends(db_session),
    actor: Actor = Depends(get_current_actor),
) -> CardTransactionOut:
    txn = match_transaction(
        session,
        transaction_id=transaction_id,
        expense_id=payload.expense_id,
        actor=actor,
        override=payload.override,
    )
    return CardTransactionOut.model_validate(txn, from_attributes=True)


@router.post("/cards/transactions/{transaction_id}/unmatch", response_model=CardTransactionOut)
def unmatch_endpoint(
    transaction_id: uuid.UUID,
    session: Session = Depends(db_session),
    actor: Actor = Depends(get_current_actor),
) -> CardTransactionOut:
    txn = unmatch_transaction(session, transaction_id=transaction_id, actor=actor)
    return CardTransactionOut.model_validate(txn, from_attributes=True)


@router.post("/cards/transactions/{transaction_id}/ignore", response_model=CardTransactionOut)
def ignore_endpoint(
    transaction_id: uuid.UUID,
    session: Session = Depends(db_session),
    actor: Actor = Depends(get_current_actor),
) -> CardTransactionOut:
    txn = ignore_transaction(session, transaction_id=transaction_id, actor=actor)
    return CardTransactionOut.model_validate(txn, from_attributes=True)


@router.post("/cards/transactions/{transaction_id}/expense", response_model=ExpenseOut)
def create_expense_endpoint(
    transaction_id: uuid.UUID,
    session: Session = Depends(db_session),
    actor: Actor = Depends(get_current_actor),
) -> ExpenseOut:
    expense = create_expense_from_transaction(session, transaction_id=transaction_id, actor=actor)
    return ExpenseOut.model_validate(expense)
