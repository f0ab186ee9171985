from __future__ import annotations

import enum
import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from spendtrail.core.models import Base, Timestamped, UUIDPrimaryKey


class ExpenseStatus(str, enum.Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    PAID = "paid"
    EXPORTED = "exported"
    UNMATCHED = "unmatched"


class ExpenseType(str, enum.Enum):
    REIMBURSEMENT = "reimbursement"
    COMPANY_CARD = "company_card"


class ExpenseCategory(str, enum.Enum):
    MEALS = "meals"
    TRAVEL = "travel"
    TRANSPORTATION = "transportation"
    LODGING = "lodging"
    SUPPLIES = "supplies"
    TOOLS = "tools"
    SOFTWARE = "software"
    ENTERTAINMENT = "entertainment"
    OTHER = "other"


class AttachmentKind(str, enum.Enum):
    IMAGE = "image"
    PDF = "pdf"


TERMINAL_STATUSES = frozenset({ExpenseStatus.PAID, ExpenseStatus.EXPORTED})
EDITABLE_STATUSES = frozenset({ExpenseStatus.DRAFT, ExpenseStatus.REJECTED})


class Expense(UUIDPrimaryKey, Timestamped, Base):
    __tablename__ = "expenses_expense"

    owner_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("identity_user.id"), index=True
    )
    approver_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("identity_user.id"), nullable=True
    )

    merchant_name: Mapped[str] = mapped_column(String(200), default="")
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"))
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    subtotal: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    tax_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    expense_date: Mapped[date] = mapped_column(Date)
    category: Mapped[ExpenseCategory] = mapped_column(
        Enum(ExpenseCategory, native_enum=False), default=ExpenseCategory.OTHER
    )
    expense_type: Mapped[ExpenseType] = mapped_column(
        Enum(ExpenseType, native_enum=False), index=True
    )
    status: Mapped[ExpenseStatus] = mapped_column(
        Enum(ExpenseStatus, native_enum=False), index=True
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    gl_code: Mapped[str | None] = mapped_column(String(20), nullable=True)

    policy_violations: Mapped[list] = mapped_column(JSON, default=list)

    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    card_transaction_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), nullable=True, index=True
    )
    reconciliation_ignored: Mapped[bool] = mapped_column(Boolean, default=False)
    export_batch_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("exports_export_batch.id"), nullable=True
    )

    owner = relationship("User", foreign_keys=[owner_id])
    approver = relationship("User", foreign_keys=[approver_id])
    receipts = relationship(
        "ReceiptAttachment",
        back_populates="expense",
        cascade="all, delete-orphan",
        order_by="ReceiptAttachment.position",
    )


class ReceiptAttachment(UUIDPrimaryKey, Timestamped, Base):
    __tablename__ = "expenses_receipt_attachment"

    expense_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("expenses_expense.id"), index=True
    )
    position: Mapped[int] = mapped_column(Integer, default=0)
    reference: Mapped[str] = mapped_column(String(1024))
    kind: Mapped[AttachmentKind] = mapped_column(Enum(AttachmentKind, native_enum=False))
    filename: Mapped[str | None] = mapped_column(String(255), nullable=True)

    expense = relationship("Expense", back_populates="receipts")
