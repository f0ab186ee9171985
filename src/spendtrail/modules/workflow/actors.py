from __future__ import annotations

import uuid
from dataclasses import dataclass

from spendtrail.modules.identity.models import UserRole

APPROVER_ROLES = frozenset({UserRole.MANAGER, UserRole.FINANCE, UserRole.ADMIN})
FINANCE_ROLES = frozenset({UserRole.FINANCE, UserRole.ADMIN})


@dataclass(frozen=True)
class Actor:
    """Who is acting, as asserted by the caller. Nothing here looks up role tables."""

    user_id: uuid.UUID
    role: UserRole

    @property
    def can_approve(self) -> bool:
        return self.role in APPROVER_ROLES

    @property
    def is_finance(self) -> bool:
        return self.role in FINANCE_ROLES
