"""initial expense schema

Revision ID: 0a1c3e5f7b92
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0a1c3e5f7b92"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "identity_user",
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("full_name", sa.String(length=200), nullable=True),
        sa.Column("department", sa.String(length=100), nullable=True),
        sa.Column("job_title", sa.String(length=100), nullable=True),
        sa.Column("manager_id", sa.Uuid(), nullable=True),
        sa.Column("password_hash", sa.String(length=200), nullable=False),
        sa.Column(
            "role",
            sa.Enum("EMPLOYEE", "MANAGER", "FINANCE", "ADMIN", name="userrole", native_enum=False),
            nullable=False,
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("id", sa.Uuid(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["manager_id"], ["identity_user.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_identity_user_email"), "identity_user", ["email"], unique=True)
    op.create_index(op.f("ix_identity_user_role"), "identity_user", ["role"])

    op.create_table(
        "exports_export_batch",
        sa.Column("requested_by_user_id", sa.Uuid(), nullable=False),
        sa.Column("expense_count", sa.Integer(), nullable=False),
        sa.Column("totals_json", sa.JSON(), nullable=False),
        sa.Column("destination", sa.String(length=100), nullable=True),
        sa.Column("exported_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("id", sa.Uuid(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["requested_by_user_id"], ["identity_user.id"]),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "expenses_expense",
        sa.Column("owner_id", sa.Uuid(), nullable=False),
        sa.Column("approver_id", sa.Uuid(), nullable=True),
        sa.Column("merchant_name", sa.String(length=200), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("subtotal", sa.Numeric(12, 2), nullable=True),
        sa.Column("tax_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("expense_date", sa.Date(), nullable=False),
        sa.Column(
            "category",
            sa.Enum(
                "MEALS",
                "TRAVEL",
                "TRANSPORTATION",
                "LODGING",
                "SUPPLIES",
                "TOOLS",
                "SOFTWARE",
                "ENTERTAINMENT",
                "OTHER",
                name="expensecategory",
                native_enum=False,
            ),
            nullable=False,
        ),
        sa.Column(
            "expense_type",
            sa.Enum("REIMBURSEMENT", "COMPANY_CARD", name="expensetype", native_enum=False),
            nullable=False,
        ),
        sa.Column(
            "status",
            sa.Enum(
                "DRAFT",
                "SUBMITTED",
                "APPROVED",
                "REJECTED",
                "PAID",
                "EXPORTED",
                "UNMATCHED",
                name="expensestatus",
                native_enum=False,
            ),
            nullable=False,
        ),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("gl_code", sa.String(length=20), nullable=True),
        sa.Column("policy_violations", sa.JSON(), nullable=False),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("card_transaction_id", sa.Uuid(), nullable=True),
        sa.Column("reconciliation_ignored", sa.Boolean(), nullable=False),
        sa.Column("export_batch_id", sa.Uuid(), nullable=True),
        sa.Column("id", sa.Uuid(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["owner_id"], ["identity_user.id"]),
        sa.ForeignKeyConstraint(["approver_id"], ["identity_user.id"]),
        sa.ForeignKeyConstraint(["export_batch_id"], ["exports_export_batch.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_expenses_expense_owner_id"), "expenses_expense", ["owner_id"])
    op.create_index(op.f("ix_expenses_expense_expense_type"), "expenses_expense", ["expense_type"])
    op.create_index(op.f("ix_expenses_expense_status"), "expenses_expense", ["status"])
    op.create_index(
        op.f("ix_expenses_expense_card_transaction_id"),
        "expenses_expense",
        ["card_transaction_id"],
    )

    op.create_table(
        "expenses_receipt_attachment",
        sa.Column("expense_id", sa.Uuid(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("reference", sa.String(length=1024), nullable=False),
        sa.Column("kind", sa.Enum("IMAGE", "PDF", name="attachmentkind", native_enum=False), nullable=False),
        sa.Column("filename", sa.String(length=255), nullable=True),
        sa.Column("id", sa.Uuid(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["expense_id"], ["expenses_expense.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_expenses_receipt_attachment_expense_id"),
        "expenses_receipt_attachment",
        ["expense_id"],
    )

    op.create_table(
        "cards_card_transaction",
        sa.Column("owner_id", sa.Uuid(), nullable=False),
        sa.Column("merchant", sa.String(length=200), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("posted_date", sa.Date(), nullable=False),
        sa.Column("card_last4", sa.String(length=4), nullable=True),
        sa.Column("external_ref", sa.String(length=100), nullable=True),
        sa.Column(
            "status",
            sa.Enum(
                "UNMATCHED", "MATCHED", "IGNORED", name="cardtransactionstatus", native_enum=False
            ),
            nullable=False,
        ),
        sa.Column("matched_expense_id", sa.Uuid(), nullable=True),
        sa.Column("id", sa.Uuid(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["owner_id"], ["identity_user.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("owner_id", "external_ref", name="uq_card_txn_owner_external_ref"),
    )
    op.create_index(op.f("ix_cards_card_transaction_owner_id"), "cards_card_transaction", ["owner_id"])
    op.create_index(op.f("ix_cards_card_transaction_status"), "cards_card_transaction", ["status"])
    op.create_index(
        op.f("ix_cards_card_transaction_matched_expense_id"),
        "cards_card_transaction",
        ["matched_expense_id"],
    )

    op.create_table(
        "workflow_approval",
        sa.Column("expense_id", sa.Uuid(), nullable=False),
        sa.Column("approver_user_id", sa.Uuid(), nullable=False),
        sa.Column(
            "decision",
            sa.Enum("APPROVED", "REJECTED", name="approvaldecision", native_enum=False),
            nullable=False,
        ),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("id", sa.Uuid(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["expense_id"], ["expenses_expense.id"]),
        sa.ForeignKeyConstraint(["approver_user_id"], ["identity_user.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_workflow_approval_expense_id"), "workflow_approval", ["expense_id"])
    op.create_index(op.f("ix_workflow_approval_decision"), "workflow_approval", ["decision"])

    op.create_table(
        "audit_event",
        sa.Column("expense_id", sa.Uuid(), nullable=True),
        sa.Column("card_transaction_id", sa.Uuid(), nullable=True),
        sa.Column("actor_user_id", sa.Uuid(), nullable=True),
        sa.Column("event_type", sa.String(length=50), nullable=False),
        sa.Column("payload_json", sa.JSON(), nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.ForeignKeyConstraint(["actor_user_id"], ["identity_user.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_audit_event_expense_id"), "audit_event", ["expense_id"])
    op.create_index(
        op.f("ix_audit_event_card_transaction_id"), "audit_event", ["card_transaction_id"]
    )
    op.create_index(op.f("ix_audit_event_actor_user_id"), "audit_event", ["actor_user_id"])
    op.create_index(op.f("ix_audit_event_event_type"), "audit_event", ["event_type"])


def downgrade() -> None:
    op.drop_table("audit_event")
    op.drop_table("workflow_approval")
    op.drop_table("cards_card_transaction")
    op.drop_table("expenses_receipt_attachment")
    op.drop_table("expenses_expense")
    op.drop_table("exports_export_batch")
    op.drop_index(op.f("ix_identity_user_role"), table_name="identity_user")
    op.drop_index(op.f("ix_identity_user_email"), table_name="identity_user")
    op.drop_table("identity_user")
