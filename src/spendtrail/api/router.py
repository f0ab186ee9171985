from __future__ import annotations

from fastapi import APIRouter

from spendtrail.modules.cards.api import router as cards_router
from spendtrail.modules.expenses.api import router as expenses_router
from spendtrail.modules.exports.api import router as exports_router
from spendtrail.modules.extraction.api import router as extraction_router
from spendtrail.modules.identity.api import router as identity_router
from spendtrail.modules.workflow.api import router as workflow_router

router = APIRouter()

router.include_router(identity_router, prefix="/api")
router.include_router(extraction_router, prefix="/api")
router.include_router(expenses_router, prefix="/api")
router.include_router(workflow_router, prefix="/api")
router.include_router(cards_router, prefix="/api")
router.include_router(exports_router, prefix="/api")


@router.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}
