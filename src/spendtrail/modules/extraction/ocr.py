from __future__ import annotations

from io import BytesIO

import pytesseract
from PIL import Image, UnidentifiedImageError
from pypdf import PdfReader
from pypdf.errors import PdfReadError

from spendtrail.core.config import settings


class RecognitionError(Exception):
    """The recognizer (or the rasterizer feeding it) could not produce text."""


def _normalize_spaces(text: str) -> str:
    return text.replace("\u202f", " ").replace("\xa0", " ")


def recognize(image_bytes: bytes, *, lang: str | None = None) -> str:
    try:
        image = Image.open(BytesIO(image_bytes))
        image.load()
    except (UnidentifiedImageError, OSError) as e:
        raise RecognitionError(f"unreadable image: {e}") from e

    if image.mode not in {"RGB", "L"}:
        image = image.convert("RGB")
    try:
        text = pytesseract.image_to_string(image, lang=lang or settings.tesseract_lang)
    except (pytesseract.TesseractError, OSError, RuntimeError, ValueError) as e:
        raise RecognitionError(f"ocr failed: {e}") from e
    return _normalize_spaces(text or "")


def _open_pdf(pdf_bytes: bytes) -> PdfReader:
    try:
        reader = PdfReader(BytesIO(pdf_bytes))
        if not reader.pages:
            raise RecognitionError("pdf has no pages")
        return reader
    except (PdfReadError, ValueError, OSError) as e:
        raise RecognitionError(f"unreadable pdf: {e}") from e


def first_page_text(pdf_bytes: bytes) -> str:
    """Embedded text layer of page 1, empty for scanned documents."""
    reader = _open_pdf(pdf_bytes)
    try:
        return _normalize_spaces(reader.pages[0].extract_text() or "")
    except (PdfReadError, ValueError, KeyError) as e:
        raise RecognitionError(f"unreadable pdf text: {e}") from e


def rasterize_first_page(pdf_bytes: bytes, scale: float | None = None) -> bytes:
    """
    Render page 1 of a scanned PDF as PNG bytes.

    Scanned receipts are a single embedded image per page, so the largest image
    on the page is taken as the page itself and resized by ``scale``.
    """
    page = _open_pdf(pdf_bytes).pages[0]
    scale = scale or settings.pdf_raster_scale

    best_image = None
    best_area = 0
    try:
        page_images = list(page.images)
    except (PdfReadError, ValueError, KeyError, NotImplementedError) as e:
        raise RecognitionError(f"cannot read page images: {e}") from e
    for image_file in page_images:
        try:
            image = image_file.image
        except (OSError, ValueError, NotImplementedError):
            continue
        if image is None:
            continue
        area = image.width * image.height
        if area > best_area:
            best_area = area
            best_image = image

    if best_image is None:
        raise RecognitionError("pdf page has no raster content")

    if scale != 1:
        size = (max(1, int(best_image.width * scale)), max(1, int(best_image.height * scale)))
        best_image = best_image.resize(size)
    if best_image.mode not in {"RGB", "L"}:
        best_image = best_image.convert("RGB")

    out = BytesIO()
    best_image.save(out, format="PNG")
    return out.getvalue()
