from __future__ import annotations

import hashlib
import logging
import re
import time

from spendtrail.core.config import settings
from spendtrail.core.errors import ExtractionUnavailable
from spendtrail.core.logging import get_logger, log_event, monotonic_ms
from spendtrail.modules.extraction import ocr
from spendtrail.modules.extraction.fields import ExtractedFields, extract_fields

logger = get_logger(__name__)


def read_receipt(body: bytes, *, filename: str, content_type: str | None = None) -> ExtractedFields:
    """
    Read an uploaded receipt and extract its fields.

    PDFs use their embedded text layer when present and fall back to OCR of
    the rasterized first page. Images go straight to OCR. Plain text and HTML
    receipts are decoded as-is. Raises ``ExtractionUnavailable`` when the file
    cannot be read at all; a readable receipt with nothing recognizable yields
    an empty ``ExtractedFields``.
    """
    start = time.monotonic()
    kind = detect_file_kind(filename=filename, content_type=content_type, body=body)
    log_event(
        logger,
        "extraction.start",
        filename=filename,
        content_type=content_type,
        byte_size=len(body),
        sha256=hashlib.sha256(body).hexdigest(),
        file_kind=kind,
    )

    method = kind
    try:
        if kind == "pdf":
            text = ocr.first_page_text(body)
            if not text.strip():
                method = "pdf_ocr"
                text = ocr.recognize(ocr.rasterize_first_page(body, settings.pdf_raster_scale))
        elif kind == "image":
            method = "ocr"
            text = ocr.recognize(body)
        elif kind == "text":
            text = decode_text_bytes(body=body, filename=filename, content_type=content_type)
        elif kind == "bad_pdf_upload":
            raise ocr.RecognitionError("file is named as a PDF but is not one")
        else:
            raise ocr.RecognitionError("unsupported file type")
    except ocr.RecognitionError as e:
        log_event(
            logger,
            "extraction.unavailable",
            level=logging.WARNING,
            filename=filename,
            file_kind=kind,
            reason=str(e),
            duration_ms=monotonic_ms(start),
        )
        raise ExtractionUnavailable(str(e)) from e

    fields = extract_fields(text)
    log_event(
        logger,
        "extraction.finish",
        filename=filename,
        file_kind=kind,
        method=method,
        text_chars=len(text),
        found=sorted(fields.sources),
        duration_ms=monotonic_ms(start),
    )
    return fields


def decode_text_bytes(*, body: bytes, filename: str, content_type: str | None) -> str:
    ctype = (content_type or "").lower()
    is_html = ctype.startswith("text/html") or filename.lower().endswith((".html", ".htm"))
    text = body.decode("utf-8", errors="replace")
    if text.startswith("\ufeff"):
        text = text[1:]
    if is_html or looks_like_html(text):
        text = html_to_text(text)
    return text


def looks_like_html(text: str) -> bool:
    t = (text or "").lstrip().lower()
    if not t:
        return False
    if t.startswith("<!doctype html") or t.startswith("<html"):
        return True
    head = t[:2000]
    return bool(re.search(r"<(html|body|div|p|br|table|tr|td|span)(\s|>)", head, re.I))


def detect_file_kind(*, filename: str, content_type: str | None, body: bytes) -> str:
    """One of ``pdf``, ``image``, ``text``, ``bad_pdf_upload`` or ``unknown``."""
    if looks_like_pdf_bytes(body):
        return "pdf"
    if looks_like_image_bytes(body):
        return "image"
    if looks_like_text_bytes(body):
        return "text"

    # Content sniffing failed; trust the declared type only for images.
    if is_supported_image(filename, content_type):
        return "image"

    # Never hand non-PDF bytes to the PDF reader.
    if filename.lower().endswith(".pdf") or (content_type or "").lower().endswith("/pdf"):
        return "bad_pdf_upload"

    return "unknown"


def looks_like_pdf_bytes(body: bytes) -> bool:
    if not body:
        return False
    b = body.lstrip()
    if b.startswith(b"\xef\xbb\xbf"):
        b = b[3:].lstrip()
    return b.startswith(b"%PDF")


def looks_like_image_bytes(body: bytes) -> bool:
    if not body:
        return False
    b = body.lstrip()
    return (
        b.startswith(b"\x89PNG\r\n\x1a\n")
        or b.startswith(b"\xff\xd8\xff")
        or b.startswith(b"II*\x00")
        or b.startswith(b"MM\x00*")
        or b.startswith(b"BM")
        or b.startswith((b"GIF87a", b"GIF89a"))
        or (len(b) >= 12 and b.startswith(b"RIFF") and b[8:12] == b"WEBP")
    )


def looks_like_text_bytes(body: bytes) -> bool:
    if not body:
        return False
    sample = body[:4096]
    if b"\x00" in sample:
        return False
    stripped = sample.lstrip()
    if stripped.startswith(b"\xef\xbb\xbf"):
        stripped = stripped[3:]
    try:
        stripped.decode("utf-8", errors="strict")
    except UnicodeDecodeError:
        return False

    # control characters other than tab/newline/carriage return
    nontext = sum(1 for ch in stripped if ch < 32 and ch not in {9, 10, 13})
    return (nontext / max(1, len(stripped))) <= 0.02


def is_supported_image(filename: str, content_type: str | None) -> bool:
    if (content_type or "").lower().startswith("image/"):
        return True
    return filename.lower().endswith(
        (".png", ".jpg", ".jpeg", ".tif", ".tiff", ".bmp", ".gif", ".webp")
    )


def html_to_text(html: str) -> str:
    from html import unescape

    html = re.sub(r"(?is)<(script|style).*?>.*?</\1>", "", html)
    html = re.sub(r"(?i)<br\s*/?>", "\n", html)
    html = re.sub(r"(?i)</p\s*>", "\n\n", html)
    html = re.sub(r"(?i)</(div|tr)\s*>", "\n", html)
    html = re.sub(r"(?s)<[^>]+>", " ", html)
    html = unescape(html)
    lines = [re.sub(r"\s+", " ", ln).strip() for ln in html.splitlines()]
    return "\n".join([ln for ln in lines if ln])
