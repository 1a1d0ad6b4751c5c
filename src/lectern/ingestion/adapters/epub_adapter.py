"""EPUB adapter turning each spine document into one titled segment."""

from __future__ import annotations

import logging
from pathlib import Path
import tempfile
from urllib.parse import unquote

import ebooklib
from ebooklib import epub
from bs4 import BeautifulSoup

from lectern.errors import CorruptFile
from lectern.ingestion.models import ExtractedDocument, ExtractedMetadata, Segment
from lectern.ingestion.normalization import (
    first_non_empty,
    join_paragraphs,
    normalize_whitespace,
    title_from_filename,
)

logger = logging.getLogger(__name__)

EPUB_MEDIA_TYPE = "application/epub+zip"

_ZIP_MAGIC = b"PK\x03\x04"
# 500 words of 5 characters per printed page.
_CHARS_PER_ESTIMATED_PAGE = 2500
_BLOCK_TAGS = ["h1", "h2", "h3", "h4", "h5", "h6", "p", "li", "blockquote"]


def _first_metadata_value(values: list[tuple[str, dict[str, str]]] | None) -> str | None:
    if not values:
        return None
    for value, _attrs in values:
        cleaned = first_non_empty(value)
        if cleaned:
            return cleaned
    return None


def _href_key(href: str) -> str:
    return unquote(href.split("#", 1)[0]).lstrip("./")


def _collect_toc_titles(entries: object, titles: dict[str, str]) -> None:
    """Walk an ebooklib TOC tree (links, sections, nested tuples) into href -> title."""

    if isinstance(entries, (list, tuple)) and not _is_section_pair(entries):
        for entry in entries:
            _collect_toc_titles(entry, titles)
        return

    if _is_section_pair(entries):
        section, children = entries  # type: ignore[misc]
        _collect_toc_titles(section, titles)
        _collect_toc_titles(children, titles)
        return

    href = getattr(entries, "href", None)
    if not href and hasattr(entries, "get_name"):
        href = entries.get_name()
    title = first_non_empty(getattr(entries, "title", None))
    if href and title:
        titles.setdefault(_href_key(href), title)


def _is_section_pair(entry: object) -> bool:
    return (
        isinstance(entry, tuple)
        and len(entry) == 2
        and isinstance(entry[0], epub.Section)
        and isinstance(entry[1], (list, tuple))
    )


def _item_paragraphs(xhtml: bytes) -> list[str]:
    soup = BeautifulSoup(xhtml, "xml")
    body = soup.body or soup

    parts: list[str] = []
    for node in body.find_all(_BLOCK_TAGS):
        # Nested block tags (a <p> inside a <blockquote>) are read once, from the innermost node.
        if node.find(_BLOCK_TAGS) is not None:
            continue
        text = normalize_whitespace(node.get_text(" ", strip=True))
        if text:
            parts.append(text)

    if parts:
        return parts

    fallback = normalize_whitespace(body.get_text(" ", strip=True))
    return [fallback] if fallback else []


def _read_book(payload: bytes) -> epub.EpubBook:
    with tempfile.TemporaryDirectory(prefix="lectern-epub-") as workdir:
        path = Path(workdir) / "upload.epub"
        path.write_bytes(payload)
        return epub.read_epub(str(path))


class EPUBAdapter:
    """Extract text from EPUB document items in spine order."""

    media_type = EPUB_MEDIA_TYPE

    def supports(self, sniffed_bytes: bytes) -> bool:
        return sniffed_bytes.startswith(_ZIP_MAGIC)

    def extract(self, payload: bytes, *, filename: str | None = None) -> ExtractedDocument:
        try:
            book = _read_book(payload)
        except Exception as exc:
            raise CorruptFile(f"Cannot open EPUB container: {exc}") from exc

        segments = self._extract_segments(book)
        metadata = self._extract_metadata(book, filename, segments)
        logger.debug("Extracted %d segments from EPUB spine", len(segments))
        return ExtractedDocument(media_type=self.media_type, metadata=metadata, segments=segments)

    def _extract_metadata(
        self,
        book: epub.EpubBook,
        filename: str | None,
        segments: list[Segment],
    ) -> ExtractedMetadata:
        title = _first_metadata_value(book.get_metadata("DC", "title")) or title_from_filename(filename)
        author = _first_metadata_value(book.get_metadata("DC", "creator"))
        language = _first_metadata_value(book.get_metadata("DC", "language"))
        total_chars = sum(len(segment.text) for segment in segments)
        return ExtractedMetadata(
            title=title,
            author=author,
            language=language.lower() if language else None,
            format_name="epub",
            page_count=max(1, round(total_chars / _CHARS_PER_ESTIMATED_PAGE)),
        )

    def _extract_segments(self, book: epub.EpubBook) -> list[Segment]:
        toc_titles: dict[str, str] = {}
        _collect_toc_titles(book.toc, toc_titles)
        titles_by_basename = {Path(key).name: title for key, title in toc_titles.items()}

        segments: list[Segment] = []
        for spine_entry in book.spine:
            item_id = spine_entry[0] if isinstance(spine_entry, tuple) else spine_entry
            item = book.get_item_with_id(item_id)
            if item is None or item.get_type() != ebooklib.ITEM_DOCUMENT:
                continue
            # The navigation document is a table of contents, not reading content.
            if isinstance(item, epub.EpubNav):
                continue

            text = join_paragraphs(_item_paragraphs(item.get_content()))
            if not text:
                continue

            name = _href_key(item.get_name())
            title = toc_titles.get(name) or titles_by_basename.get(Path(name).name)
            segments.append(Segment(text=text, title=title))

        return segments
