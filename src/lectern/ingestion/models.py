"""Canonical data structures shared by all extraction adapters."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(slots=True)
class ExtractedMetadata:
    """Normalized metadata extracted from a source document."""

    title: str | None = None
    author: str | None = None
    language: str | None = None
    format_name: str | None = None
    page_count: int | None = None


@dataclass(slots=True)
class Segment:
    """A titled run of readable text emitted by a format adapter.

    PDF segments carry the 1-based page range they were read from; EPUB
    segments map to one spine document and leave the page range empty.
    """

    text: str
    title: str | None = None
    page_start: int | None = None
    page_end: int | None = None


@dataclass(slots=True)
class ExtractedDocument:
    """Canonical extraction output consumed by chunking."""

    media_type: str
    metadata: ExtractedMetadata = field(default_factory=ExtractedMetadata)
    segments: list[Segment] = field(default_factory=list)

    def has_text(self) -> bool:
        return any(segment.text.strip() for segment in self.segments)
