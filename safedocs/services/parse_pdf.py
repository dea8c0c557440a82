from __future__ import annotations

import io
import logging
from typing import BinaryIO, Optional, Union

import pdfplumber

logger = logging.getLogger(__name__)

EXCERPT_MAX_CHARS = 4000
EXCERPT_MAX_PAGES = 20


def extract_text_from_pdf(source: Union[str, bytes, BinaryIO], max_pages: int = EXCERPT_MAX_PAGES) -> Optional[str]:
    try:
        if isinstance(source, (bytes, bytearray)):
            buffer = io.BytesIO(source)
        elif hasattr(source, "read"):
            buffer = source
            buffer.seek(0)
        else:
            buffer = source

        with pdfplumber.open(buffer) as pdf:
            pages = [page.extract_text() or "" for page in pdf.pages[:max_pages]]
        text = "\n".join(pages).strip()
        return text if text else None
    except Exception:
        logger.warning("pdf_text_extraction_failed", exc_info=True)
        return None


def build_text_excerpt(data: bytes, mime_type: str | None) -> Optional[str]:
    """Searchable excerpt for PDFs; other formats are indexed by title only."""
    if (mime_type or "").lower() != "application/pdf":
        return None
    text = extract_text_from_pdf(data)
    if not text:
        return None
    return " ".join(text.split())[:EXCERPT_MAX_CHARS]
