from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Enum, ForeignKey, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from spendtrail.core.models import Base, Timestamped, UUIDPrimaryKey, utcnow


class ExpenseEvent(str, enum.Enum):
    SUBMIT = "submit"
    EDIT = "edit"
    DELETE = "delete"
    APPROVE = "approve"
    REJECT = "reject"
    MARK_PAID = "mark_paid"
    EXPORT = "export"
    RECONCILE = "reconcile"
    IGNORE = "ignore"


class ApprovalDecision(str, enum.Enum):
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class Approval(UUIDPrimaryKey, Timestamped, Base):
    __tablename__ = "workflow_approval"

    expense_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("expenses_expense.id"), index=True
    )
    approver_user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("identity_user.id")
    )
    decision: Mapped[ApprovalDecision] = mapped_column(
        Enum(ApprovalDecision, native_enum=False), index=True
    )
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    decided_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    expense = relationship("Expense")
    approver = relationship("User")
