from __future__ import annotations

import enum
import uuid
from datetime import date
from decimal import Decimal

from sqlalchemy import Date, Enum, ForeignKey, Numeric, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from spendtrail.core.models import Base, Timestamped, UUIDPrimaryKey


class CardTransactionStatus(str, enum.Enum):
    UNMATCHED = "unmatched"
    MATCHED = "matched"
    IGNORED = "ignored"


class CardTransaction(UUIDPrimaryKey, Timestamped, Base):
    __tablename__ = "cards_card_transaction"
    __table_args__ = (
        UniqueConstraint("owner_id", "external_ref", name="uq_card_txn_owner_external_ref"),
    )

    owner_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("identity_user.id"), index=True
    )
    merchant: Mapped[str] = mapped_column(String(200))
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    posted_date: Mapped[date] = mapped_column(Date)
    card_last4: Mapped[str | None] = mapped_column(String(4), nullable=True)
    # Issuer's id for the charge, used to make feed imports idempotent.
    external_ref: Mapped[str | None] = mapped_column(String(100), nullable=True)

    status: Mapped[CardTransactionStatus] = mapped_column(
        Enum(CardTransactionStatus, native_enum=False),
        default=CardTransactionStatus.UNMATCHED,
        index=True,
    )
    # Set only while status is MATCHED. Not a foreign key: drafts can be deleted after unmatching.
    matched_expense_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), nullable=True, index=True
    )

    owner = relationship("User")
