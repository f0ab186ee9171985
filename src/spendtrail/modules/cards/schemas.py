from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel

from spendtrail.modules.cards.models import CardTransactionStatus


class CardTransactionIn(BaseModel):
    owner_id: uuid.UUID
    merchant: str
    amount: Decimal
    posted_date: date
    currency: str | None = None
    card_last4: str | None = None
    external_ref: str | None = None


class MatchIn(BaseModel):
    expense_id: uuid.UUID
    override: bool = False


class CardTransactionOut(BaseModel):
    id: uuid.UUID
    owner_id: uuid.UUID
    merchant: str
    amount: Decimal
    currency: str
    posted_date: date
    card_last4: str | None
    external_ref: str | None
    status: CardTransactionStatus
    matched_expense_id: uuid.UUID | None
    created_at: datetime
    updated_at: datetime
