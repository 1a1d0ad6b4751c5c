"""Text normalization helpers used during extraction and chunking."""

from __future__ import annotations

from pathlib import Path
import re

_WHITESPACE_RE = re.compile(r"\s+")
_PARAGRAPH_BREAK_RE = re.compile(r"\n\s*\n")
_TITLE_SPLIT_RE = re.compile(r"[._\-]+")

PARAGRAPH_SEPARATOR = "\n\n"


def normalize_whitespace(text: str) -> str:
    """Collapse repeated whitespace and trim boundaries."""

    return _WHITESPACE_RE.sub(" ", text).strip()


def split_paragraphs(text: str) -> list[str]:
    """Split on blank lines and normalize each paragraph to a single line."""

    paragraphs: list[str] = []
    for raw in _PARAGRAPH_BREAK_RE.split(text):
        paragraph = normalize_whitespace(raw)
        if paragraph:
            paragraphs.append(paragraph)
    return paragraphs


def join_paragraphs(parts: list[str]) -> str:
    """Join already-normalized paragraphs, dropping empty ones."""

    return PARAGRAPH_SEPARATOR.join(part for part in parts if part)


def first_non_empty(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = normalize_whitespace(value)
    return cleaned or None


def title_from_filename(filename: str | None) -> str | None:
    """Derive a display title from an upload name: ``my-awesome_book.pdf`` -> ``My Awesome Book``."""

    if not filename:
        return None
    stem = _TITLE_SPLIT_RE.sub(" ", Path(filename).stem)
    title = normalize_whitespace(stem).title()
    return title or None
