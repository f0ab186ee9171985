from __future__ import annotations

import uuid
from collections.abc import Iterable
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from spendtrail.core.errors import StaleState
from spendtrail.modules.expenses.models import (
    Expense,
    ExpenseStatus,
    ExpenseType,
    ReceiptAttachment,
)


class ExpenseStore:
    """
    Persistence handle for expense records.

    Writes are compare-and-swap on ``(id, expected_status)``: a record whose
    status moved since it was read is never overwritten.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def load(self, expense_id: uuid.UUID) -> Expense:
        expense = self.session.get(Expense, expense_id, populate_existing=True)
        if not expense:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Expense not found")
        return expense

    def add(self, expense: Expense) -> Expense:
        self.session.add(expense)
        self.session.commit()
        self.session.refresh(expense)
        return expense

    def save(
        self,
        expense: Expense,
        *,
        expected_status: ExpenseStatus,
        values: dict[str, Any],
        staged: Iterable[object] = (),
    ) -> Expense:
        return self.save_many([(expense, expected_status, values)], staged=staged)[0]

    def save_many(
        self,
        writes: Iterable[tuple[Expense, ExpenseStatus, dict[str, Any]]],
        *,
        staged: Iterable[object] = (),
    ) -> list[Expense]:
        """All writes land in one commit, or none do."""
        saved: list[Expense] = []
        try:
            for expense, expected_status, values in writes:
                result = self.session.execute(
                    update(Expense)
                    .where(Expense.id == expense.id, Expense.status == expected_status)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if not result.rowcount:
                    self.session.rollback()
                    current = self.session.scalar(
                        select(Expense.status).where(Expense.id == expense.id)
                    )
                    raise StaleState(expected=expected_status, actual=current)
                saved.append(expense)
            for obj in staged:
                self.session.add(obj)
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise
        for expense in saved:
            self.session.refresh(expense)
        return saved

    def remove(
        self,
        expense: Expense,
        *,
        expected_status: ExpenseStatus,
        staged: Iterable[object] = (),
    ) -> None:
        self.session.execute(
            delete(ReceiptAttachment).where(ReceiptAttachment.expense_id == expense.id)
        )
        result = self.session.execute(
            delete(Expense)
            .where(Expense.id == expense.id, Expense.status == expected_status)
            .execution_options(synchronize_session=False)
        )
        if not result.rowcount:
            self.session.rollback()
            raise StaleState(expected=expected_status)
        for obj in staged:
            self.session.add(obj)
        self.session.commit()
        self.session.expunge(expense)

    def list(
        self,
        *,
        owner_id: uuid.UUID | None = None,
        statuses: Iterable[ExpenseStatus] | None = None,
        expense_type: ExpenseType | None = None,
        search: str | None = None,
    ) -> list[Expense]:
        q = select(Expense)
        if owner_id is not None:
            q = q.where(Expense.owner_id == owner_id)
        if statuses:
            q = q.where(Expense.status.in_(tuple(statuses)))
        if expense_type is not None:
            q = q.where(Expense.expense_type == expense_type)
        if search:
            needle = f"%{search.strip().lower()}%"
            q = q.where(Expense.merchant_name.ilike(needle) | Expense.notes.ilike(needle))
        return list(
            self.session.scalars(q.order_by(Expense.expense_date.desc(), Expense.created_at.desc()))
        )
