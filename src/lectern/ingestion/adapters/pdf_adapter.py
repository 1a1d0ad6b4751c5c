"""PDF adapter producing page-ranged segments split at detected chapter headings."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
import logging
import re

import pymupdf

from lectern.errors import CorruptFile
from lectern.ingestion.models import ExtractedDocument, ExtractedMetadata, Segment
from lectern.ingestion.normalization import (
    first_non_empty,
    join_paragraphs,
    normalize_whitespace,
    title_from_filename,
)

logger = logging.getLogger(__name__)

PDF_MEDIA_TYPE = "application/pdf"

_PDF_MAGIC = b"%PDF-"
_HEADING_SCAN_LINES = 5
_MAX_HEADING_CHARS = 80
# Identical heading text on this many pages is a running header, not a chapter.
_RUNNING_HEADER_PAGES = 3

_CHAPTER_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"^Chapter\s+([IVXLCDM]+|\d+)\b", re.IGNORECASE),
    re.compile(r"^PART\s+([IVXLCDM]+|\d+)\b", re.IGNORECASE),
    re.compile(r"^(Prologue|Epilogue|Introduction|Preface)$", re.IGNORECASE),
    re.compile(r"^\d+\.\s+\S"),
    re.compile(r"^[A-Z][A-Z\s]{4,}$"),
]


@dataclass(slots=True)
class _Page:
    number: int
    paragraphs: list[str]
    heading: str | None


def _detect_heading(lines: list[str]) -> str | None:
    for line in lines[:_HEADING_SCAN_LINES]:
        candidate = normalize_whitespace(line)
        if not candidate or len(candidate) > _MAX_HEADING_CHARS:
            continue
        if any(pattern.match(candidate) for pattern in _CHAPTER_PATTERNS):
            return candidate
    return None


def _read_page(page: pymupdf.Page, number: int) -> _Page:
    blocks = [block for block in page.get_text("blocks") if len(block) < 7 or block[6] == 0]
    ordered_blocks = sorted(blocks, key=lambda row: (row[1], row[0], row[5]))

    paragraphs: list[str] = []
    leading_lines: list[str] = []
    for block in ordered_blocks:
        raw_text = block[4]
        if len(leading_lines) < _HEADING_SCAN_LINES:
            leading_lines.extend(line for line in raw_text.splitlines() if line.strip())
        text = normalize_whitespace(raw_text)
        if text:
            paragraphs.append(text)

    return _Page(number=number, paragraphs=paragraphs, heading=_detect_heading(leading_lines))


def _segment_from_pages(pages: list[_Page], title: str | None) -> Segment:
    text = join_paragraphs([paragraph for page in pages for paragraph in page.paragraphs])
    return Segment(text=text, title=title, page_start=pages[0].number, page_end=pages[-1].number)


def _group_pages(pages: list[_Page]) -> list[Segment]:
    heading_counts = Counter(page.heading for page in pages if page.heading)
    boundaries = [
        index
        for index, page in enumerate(pages)
        if page.heading and heading_counts[page.heading] < _RUNNING_HEADER_PAGES
    ]

    if not boundaries:
        return [_segment_from_pages([page], None) for page in pages]

    segments: list[Segment] = []
    if boundaries[0] > 0:
        segments.append(_segment_from_pages(pages[: boundaries[0]], None))

    for position, start in enumerate(boundaries):
        end = boundaries[position + 1] if position + 1 < len(boundaries) else len(pages)
        segments.append(_segment_from_pages(pages[start:end], pages[start].heading))
    return segments


class PDFAdapter:
    """Extract reading-order text from PDF pages, grouped into chapter segments."""

    media_type = PDF_MEDIA_TYPE

    def supports(self, sniffed_bytes: bytes) -> bool:
        return sniffed_bytes.startswith(_PDF_MAGIC)

    def extract(self, payload: bytes, *, filename: str | None = None) -> ExtractedDocument:
        try:
            doc = pymupdf.open(stream=payload, filetype="pdf")
        except Exception as exc:
            raise CorruptFile(f"Cannot open PDF container: {exc}") from exc

        with doc:
            # PyMuPDF sniffs the stream and opens other containers (EPUB, XPS) despite filetype="pdf".
            if not doc.is_pdf:
                raise CorruptFile("Payload is not a PDF container")
            if doc.needs_pass:
                raise CorruptFile("PDF is encrypted and requires a password")
            if doc.page_count == 0:
                raise CorruptFile("PDF container has no pages")
            metadata = self._extract_metadata(doc, filename)
            pages = [
                page
                for page in (_read_page(pdf_page, number) for number, pdf_page in enumerate(doc, start=1))
                if page.paragraphs
            ]

        segments = _group_pages(pages) if pages else []
        logger.debug("Extracted %d segments from %d text pages", len(segments), len(pages))
        return ExtractedDocument(media_type=self.media_type, metadata=metadata, segments=segments)

    def _extract_metadata(self, doc: pymupdf.Document, filename: str | None) -> ExtractedMetadata:
        doc_metadata = doc.metadata or {}
        title = first_non_empty(doc_metadata.get("title")) or title_from_filename(filename)
        author = first_non_empty(doc_metadata.get("author"))
        return ExtractedMetadata(
            title=title,
            author=author,
            format_name="pdf",
            page_count=doc.page_count,
        )
