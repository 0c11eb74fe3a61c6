"""
trove/extract.py — Content extraction per file type.

ContentExtractor.extract(data, file_type, mime_type) -> Extraction
  image: one vision pass returns description + tags + summary together
         (OCR text appended when ocr.enabled)
  pdf:   pypdf text layer, pages joined with blank lines
         (OCR of embedded page images when the text layer is empty and
          ocr.enabled)

A PDF that pypdf cannot parse is logged and yields empty text; the
processing run continues without enrichment. No side effects beyond
reading the bytes.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field

from trove.enrich import MAX_TAGS, analyze_image
from trove.ocr import ocr_image, ocr_pdf_images
from trove.providers import EnrichmentProvider

logger = logging.getLogger(__name__)


@dataclass
class Extraction:
    text:    str = ""
    tags:    list[str] = field(default_factory=list)
    summary: str | None = None
    # True when tags/summary came from the extraction pass itself (images).
    enriched: bool = False


def extract_pdf_text(data: bytes) -> str:
    """Text layer of every page, joined. Raises on unreadable PDFs."""
    import pypdf  # type: ignore

    reader = pypdf.PdfReader(io.BytesIO(data), strict=False)
    pages: list[str] = []
    for page in reader.pages:
        try:
            text = (page.extract_text() or "").strip()
        except Exception:
            text = ""
        if text:
            pages.append(text)
    return "\n\n".join(pages)


class ContentExtractor:
    def __init__(
        self,
        provider: EnrichmentProvider,
        *,
        max_tags: int = MAX_TAGS,
        ocr_enabled: bool = False,
        tesseract_cmd: str | None = None,
    ) -> None:
        self.provider = provider
        self.max_tags = max_tags
        self.ocr_enabled = ocr_enabled
        self.tesseract_cmd = tesseract_cmd

    def extract(self, data: bytes, file_type: str, mime_type: str = "") -> Extraction:
        if file_type == "image":
            return self._extract_image(data, mime_type)
        if file_type == "pdf":
            return Extraction(text=self._extract_pdf(data))
        raise ValueError(f"Unsupported file type: {file_type}")

    def _extract_image(self, data: bytes, mime_type: str) -> Extraction:
        analysis = analyze_image(self.provider, data, mime_type, max_tags=self.max_tags)
        text = analysis.description
        if self.ocr_enabled:
            ocr_text = ocr_image(data, self.tesseract_cmd)
            if ocr_text:
                text = f"{text}\n\n{ocr_text}".strip()
        return Extraction(
            text=text,
            tags=analysis.tags,
            summary=analysis.summary,
            enriched=True,
        )

    def _extract_pdf(self, data: bytes) -> str:
        try:
            text = extract_pdf_text(data)
        except Exception as e:
            logger.warning("PDF parsing failed, continuing without text: %s", e)
            return ""
        if not text and self.ocr_enabled:
            text = ocr_pdf_images(data, self.tesseract_cmd)
        return text
