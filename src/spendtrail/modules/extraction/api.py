from __future__ import annotations

from fastapi import APIRouter, Depends, File, UploadFile
from starlette.concurrency import run_in_threadpool

from spendtrail.api.deps import get_current_user
from spendtrail.core.logging import get_logger, log_event
from spendtrail.modules.extraction.schemas import ExtractedFieldsOut
from spendtrail.modules.extraction.service import read_receipt
from spendtrail.modules.identity.models import User

router = APIRouter(tags=["extraction"])
logger = get_logger(__name__)


@router.post("/receipts/extract", response_model=ExtractedFieldsOut)
async def extract_receipt(
    upload: UploadFile = File(...),
    _: User = Depends(get_current_user),
) -> ExtractedFieldsOut:
    body = await upload.read()
    log_event(
        logger,
        "upload.received",
        filename=upload.filename,
        content_type=upload.content_type,
        byte_size=len(body),
    )
    fields = await run_in_threadpool(
        read_receipt,
        body,
        filename=upload.filename or "upload",
        content_type=upload.content_type,
    )
    return ExtractedFieldsOut.from_fields(fields)
