"""Plain-text extraction for uploaded travel documents."""

from __future__ import annotations

import logging
from io import BytesIO
from pathlib import Path

logger = logging.getLogger(__name__)

ALLOWED_DOC_TYPES = ("application/pdf", "text/plain", "text/markdown", "text/csv")


def extract_pdf_text(content: bytes) -> str:
    """Extract text content from PDF bytes, one block per non-empty page."""
    from pypdf import PdfReader

    reader = PdfReader(BytesIO(content))
    pages = []
    for page in reader.pages:
        text = page.extract_text()
        if text and text.strip():
            pages.append(text.strip())
    return "\n\n".join(pages)


def extract_text(content: bytes, filename: str, mime_type: str = "") -> str:
    """Return the text of an upload; '' if a PDF cannot be parsed.

    Anything that is not a PDF is decoded as UTF-8 (invalid bytes replaced).
    """
    ext = Path(filename).suffix.lower()
    if mime_type == "application/pdf" or ext == ".pdf":
        try:
            return extract_pdf_text(content)
        except Exception as exc:
            logger.warning("PDF text extraction failed for %s: %s", filename, exc)
            return ""
    return content.decode("utf-8", errors="replace")
