from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from spendtrail.modules.expenses.models import ExpenseStatus
from spendtrail.modules.workflow.models import ApprovalDecision, ExpenseEvent


class TransitionIn(BaseModel):
    event: ExpenseEvent
    expected_status: ExpenseStatus | None = None
    reason: str | None = None
    changes: dict[str, Any] = Field(default_factory=dict)
    batch_id: uuid.UUID | None = None


class AvailableEventsOut(BaseModel):
    status: ExpenseStatus
    events: list[ExpenseEvent]


class ApprovalOut(BaseModel):
    id: uuid.UUID
    expense_id: uuid.UUID
    approver_user_id: uuid.UUID
    decision: ApprovalDecision
    comment: str | None
    decided_at: datetime


class AuditEventOut(BaseModel):
    id: uuid.UUID
    expense_id: uuid.UUID | None
    card_transaction_id: uuid.UUID | None
    actor_user_id: uuid.UUID | None
    event_type: str
    payload_json: dict
    occurred_at: datetime


class ExpenseHistoryOut(BaseModel):
    approvals: list[ApprovalOut]
    events: list[AuditEventOut]
