from __future__ import annotations

import io
import logging
from typing import Sequence

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

SUPPORTED_IMAGE_TYPES = ("image/jpeg", "image/png", "image/webp", "image/tiff", "image/bmp")


class ComposeError(ValueError):
    """Raised when the supplied pages cannot be turned into a PDF."""


def compose_pdf(pages: Sequence[bytes], resolution: float = 150.0) -> bytes:
    """Render image pages, in order, into a single multi-page PDF."""
    if not pages:
        raise ComposeError("At least one image is required")

    images: list[Image.Image] = []
    try:
        for index, data in enumerate(pages, start=1):
            try:
                with Image.open(io.BytesIO(data)) as img:
                    img.load()
                    images.append(img.convert("RGB"))
            except (UnidentifiedImageError, OSError) as exc:
                raise ComposeError(f"Page {index} is not a readable image") from exc

        output = io.BytesIO()
        first, rest = images[0], images[1:]
        first.save(output, format="PDF", save_all=True, append_images=rest, resolution=resolution)
        logger.info("pdf_composed pages=%s bytes=%s", len(images), output.tell())
        return output.getvalue()
    finally:
        for img in images:
            img.close()
