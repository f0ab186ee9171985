from __future__ import annotations

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, Field

from spendtrail.modules.extraction.fields import ExtractedFields


class ExtractedFieldsOut(BaseModel):
    merchant_name: str | None = None
    subtotal: Decimal | None = None
    tax: Decimal | None = None
    total: Decimal | None = None
    transaction_date: date | None = None
    suggested_amount: Decimal | None = None
    sources: dict[str, str] = Field(default_factory=dict)
    raw_text: str = ""

    @classmethod
    def from_fields(cls, fields: ExtractedFields) -> "ExtractedFieldsOut":
        return cls(
            merchant_name=fields.merchant_name,
            subtotal=fields.subtotal,
            tax=fields.tax,
            total=fields.total,
            transaction_date=fields.transaction_date,
            suggested_amount=fields.suggested_amount,
            sources=dict(fields.sources),
            raw_text=fields.raw_text,
        )
