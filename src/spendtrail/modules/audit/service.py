from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.orm import Session

from spendtrail.modules.audit.models import AuditEvent


def audit_event(
    *,
    event_type: str,
    actor_user_id: uuid.UUID | None,
    expense_id: uuid.UUID | None = None,
    card_transaction_id: uuid.UUID | None = None,
    payload: dict | None = None,
) -> AuditEvent:
    """Build an unsaved audit row; the caller writes it together with its own change."""
    return AuditEvent(
        expense_id=expense_id,
        card_transaction_id=card_transaction_id,
        actor_user_id=actor_user_id,
        event_type=event_type,
        payload_json=payload or {},
    )


def list_audit_events(session: Session, *, expense_id: uuid.UUID) -> list[AuditEvent]:
    return list(
        session.scalars(
            select(AuditEvent)
            .where(AuditEvent.expense_id == expense_id)
            .order_by(AuditEvent.occurred_at.asc())
        )
    )
