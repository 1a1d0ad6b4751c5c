"""Extraction adapter implementations and contracts."""

from .base import ExtractionAdapter
from .epub_adapter import EPUB_MEDIA_TYPE, EPUBAdapter
from .pdf_adapter import PDF_MEDIA_TYPE, PDFAdapter


def build_default_adapters() -> dict[str, ExtractionAdapter]:
    """Return the adapter map for the supported media types."""
    return {
        PDF_MEDIA_TYPE: PDFAdapter(),
        EPUB_MEDIA_TYPE: EPUBAdapter(),
    }


__all__ = [
    "EPUB_MEDIA_TYPE",
    "EPUBAdapter",
    "ExtractionAdapter",
    "PDF_MEDIA_TYPE",
    "PDFAdapter",
    "build_default_adapters",
]
