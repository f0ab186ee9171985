"""
Alembic model import hook.

Importing this module ensures all SQLAlchemy models are registered on Base.metadata.
"""

from __future__ import annotations

# Import User first - other models have relationships to User
from spendtrail.modules.identity.models import User  # noqa: F401

from spendtrail.modules.audit.models import AuditEvent  # noqa: F401
from spendtrail.modules.cards.models import CardTransaction  # noqa: F401
from spendtrail.modules.expenses.models import Expense, ReceiptAttachment  # noqa: F401
from spendtrail.modules.exports.models import ExportBatch  # noqa: F401
from spendtrail.modules.workflow.models import Approval  # noqa: F401
