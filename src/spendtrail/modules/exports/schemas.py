from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, Field


class ExpenseSelectionIn(BaseModel):
    expense_ids: list[uuid.UUID] = Field(min_length=1)


class ExportCreateIn(ExpenseSelectionIn):
    destination: str | None = None


class ExportBatchOut(BaseModel):
    id: uuid.UUID
    requested_by_user_id: uuid.UUID
    expense_count: int
    totals_json: dict[str, str]
    destination: str | None
    exported_at: datetime
    created_at: datetime
