from __future__ import annotations

import io

import pdfplumber
import pytest
from PIL import Image

from safedocs.services.parse_pdf import build_text_excerpt
from safedocs.services.pdf_compose import ComposeError, compose_pdf


def _image(mode: str, size=(60, 80), fmt="PNG") -> bytes:
    buffer = io.BytesIO()
    Image.new(mode, size).save(buffer, format=fmt)
    return buffer.getvalue()


def test_pages_are_kept_in_order():
    pdf = compose_pdf([_image("RGB", (60, 80)), _image("RGBA", (100, 40)), _image("L", (30, 30), "JPEG")])
    assert pdf.startswith(b"%PDF")

    with pdfplumber.open(io.BytesIO(pdf)) as document:
        assert len(document.pages) == 3
        first, second = document.pages[0], document.pages[1]
        assert first.height > first.width
        assert second.width > second.height


def test_empty_page_list_is_rejected():
    with pytest.raises(ComposeError, match="At least one image is required"):
        compose_pdf([])


def test_unreadable_page_is_reported_by_position():
    with pytest.raises(ComposeError, match="Page 2 is not a readable image"):
        compose_pdf([_image("RGB"), b"definitely not an image"])


def test_text_excerpt_only_for_pdfs():
    assert build_text_excerpt(b"plain text", "text/plain") is None
    # image-only PDFs carry no extractable text
    assert build_text_excerpt(compose_pdf([_image("RGB")]), "application/pdf") is None
    assert build_text_excerpt(b"%PDF-broken", "application/pdf") is None
