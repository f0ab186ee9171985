from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict

from spendtrail.modules.expenses.models import (
    AttachmentKind,
    ExpenseCategory,
    ExpenseStatus,
    ExpenseType,
)


class ExpenseCreateIn(BaseModel):
    merchant_name: str = ""
    amount: Decimal | None = None
    currency: str | None = None
    subtotal: Decimal | None = None
    tax_amount: Decimal | None = None
    expense_date: date | None = None
    category: ExpenseCategory = ExpenseCategory.OTHER
    expense_type: ExpenseType = ExpenseType.REIMBURSEMENT
    notes: str | None = None
    gl_code: str | None = None
    pending_card_match: bool = False


class ExpenseUpdateIn(BaseModel):
    merchant_name: str | None = None
    amount: Decimal | None = None
    currency: str | None = None
    subtotal: Decimal | None = None
    tax_amount: Decimal | None = None
    expense_date: date | None = None
    category: ExpenseCategory | None = None
    notes: str | None = None
    gl_code: str | None = None
    expected_status: ExpenseStatus | None = None


class ReceiptAttachmentIn(BaseModel):
    reference: str
    kind: AttachmentKind = AttachmentKind.IMAGE
    filename: str | None = None


class ReceiptAttachmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    position: int
    reference: str
    kind: AttachmentKind
    filename: str | None


class ExpenseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    owner_id: uuid.UUID
    approver_id: uuid.UUID | None
    merchant_name: str
    amount: Decimal
    currency: str
    subtotal: Decimal | None
    tax_amount: Decimal | None
    expense_date: date
    category: ExpenseCategory
    expense_type: ExpenseType
    status: ExpenseStatus
    notes: str | None
    gl_code: str | None
    policy_violations: list[str]
    submitted_at: datetime | None
    approved_at: datetime | None
    paid_at: datetime | None
    card_transaction_id: uuid.UUID | None
    reconciliation_ignored: bool
    export_batch_id: uuid.UUID | None
    receipts: list[ReceiptAttachmentOut]
    created_at: datetime
    updated_at: datetime
