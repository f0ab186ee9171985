from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from spendtrail.core.models import Base, Timestamped, UUIDPrimaryKey, utcnow


class ExportBatch(UUIDPrimaryKey, Timestamped, Base):
    __tablename__ = "exports_export_batch"

    requested_by_user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("identity_user.id")
    )
    expense_count: Mapped[int] = mapped_column(Integer, default=0)
    # currency -> total as a decimal string, e.g. {"USD": "1234.50"}
    totals_json: Mapped[dict] = mapped_column(JSON, default=dict)
    destination: Mapped[str | None] = mapped_column(String(100), nullable=True)
    exported_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    requested_by = relationship("User")
    expenses = relationship("Expense", order_by="Expense.expense_date")
