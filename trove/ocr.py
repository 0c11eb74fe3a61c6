"""
trove/ocr.py — Gated OCR via pytesseract + Pillow.

Only used when ocr.enabled is true in config.yaml.
Requires: Tesseract binary installed + pytesseract + Pillow packages.
Both functions return "" on any failure; OCR never fails a processing run.
"""

from __future__ import annotations

import io
import logging

logger = logging.getLogger(__name__)


def _configure(tesseract_cmd: str | None) -> None:
    import pytesseract  # type: ignore

    if tesseract_cmd and tesseract_cmd != "tesseract":
        pytesseract.pytesseract.tesseract_cmd = tesseract_cmd


def ocr_image(image_bytes: bytes, tesseract_cmd: str | None = None) -> str:
    """Run OCR on raw image bytes. Returns extracted text or empty string."""
    try:
        import pytesseract  # type: ignore
        from PIL import Image  # type: ignore

        _configure(tesseract_cmd)
        with Image.open(io.BytesIO(image_bytes)) as img:
            return pytesseract.image_to_string(img).strip()
    except ImportError as e:
        logger.error("OCR dependencies not installed: %s", e)
        return ""
    except Exception as e:
        logger.warning("OCR failed: %s", e)
        return ""


def ocr_pdf_images(pdf_bytes: bytes, tesseract_cmd: str | None = None) -> str:
    """
    OCR the images embedded in each PDF page.
    For scanned PDFs where pypdf returns no text layer.
    """
    try:
        import pypdf  # type: ignore
        import pytesseract  # type: ignore

        _configure(tesseract_cmd)
        reader = pypdf.PdfReader(io.BytesIO(pdf_bytes), strict=False)
        pages: list[str] = []
        for page in reader.pages:
            for image_file in page.images:
                text = pytesseract.image_to_string(image_file.image).strip()
                if text:
                    pages.append(text)
        return "\n".join(pages).strip()
    except ImportError as e:
        logger.error("OCR dependencies not installed: %s", e)
        return ""
    except Exception as e:
        logger.warning("PDF OCR failed: %s", e)
        return ""
