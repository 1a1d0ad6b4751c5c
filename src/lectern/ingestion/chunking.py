"""Chunk builder splitting titled segments into bounded, densely indexed chunks."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from razdel import sentenize

from lectern.ingestion.models import Segment
from lectern.ingestion.normalization import PARAGRAPH_SEPARATOR, normalize_whitespace, split_paragraphs

DEFAULT_MAX_CHARS = 2500
DEFAULT_OVERLAP_CHARS = 0


@dataclass(slots=True)
class TextChunk:
    """Chunk ready for storage, carrying the attribution of the segment it was cut from."""

    chunk_index: int
    text: str
    chapter_title: str | None = None
    page_start: int | None = None
    page_end: int | None = None

    @property
    def word_count(self) -> int:
        return len(self.text.split())


@dataclass(slots=True)
class _Unit:
    text: str
    paragraph_end: bool = False


def _split_oversized(text: str, max_chars: int) -> list[str]:
    """Split a sentence longer than ``max_chars`` at spaces, hard-cutting giant words."""

    pieces: list[str] = []
    current = ""
    for word in text.split(" "):
        while len(word) > max_chars:
            if current:
                pieces.append(current)
                current = ""
            pieces.append(word[:max_chars])
            word = word[max_chars:]
        if not word:
            continue
        candidate = f"{current} {word}" if current else word
        if len(candidate) > max_chars:
            pieces.append(current)
            current = word
        else:
            current = candidate
    if current:
        pieces.append(current)
    return pieces


def _split_sentences(paragraph: str) -> list[str]:
    sentences = [normalize_whitespace(match.text) for match in sentenize(paragraph)]
    sentences = [sentence for sentence in sentences if sentence]
    return sentences or [paragraph]


def _segment_units(text: str, max_chars: int) -> list[_Unit]:
    units: list[_Unit] = []
    for paragraph in split_paragraphs(text):
        for sentence in _split_sentences(paragraph):
            if len(sentence) > max_chars:
                units.extend(_Unit(piece) for piece in _split_oversized(sentence, max_chars))
            else:
                units.append(_Unit(sentence))
        units[-1].paragraph_end = True
    return units


def _separator(previous: _Unit) -> str:
    return PARAGRAPH_SEPARATOR if previous.paragraph_end else " "


def _join_units(units: list[_Unit]) -> str:
    parts = [units[0].text]
    for previous, unit in zip(units, units[1:]):
        parts.append(_separator(previous))
        parts.append(unit.text)
    return "".join(parts)


def _build_windows(units: list[_Unit], max_chars: int, overlap_chars: int) -> list[list[_Unit]]:
    windows: list[list[_Unit]] = []
    index = 0
    # Units before this position were already emitted and only repeat as overlap.
    fresh_start = 0

    while index < len(units):
        end = index
        length = 0
        paragraph_break: tuple[int, int] | None = None

        while end < len(units):
            unit = units[end]
            addition = len(unit.text) if end == index else len(unit.text) + len(_separator(units[end - 1]))
            if end > index and length + addition > max_chars:
                break
            length += addition
            end += 1
            if unit.paragraph_end:
                paragraph_break = (end, length)

        # A full window prefers the last paragraph end when it sits in the back half.
        if end < len(units) and paragraph_break is not None:
            break_end, break_length = paragraph_break
            if fresh_start < break_end < end and break_length * 2 >= max_chars:
                end = break_end

        windows.append(units[index:end])
        if end >= len(units):
            break

        next_index = end
        fresh_start = end
        overlap_len = 0
        next_unit_len = len(units[end].text) + len(PARAGRAPH_SEPARATOR)
        for back in range(end - 1, index, -1):
            addition = len(units[back].text) + len(_separator(units[back]))
            if overlap_len + addition > overlap_chars or overlap_len + addition + next_unit_len > max_chars:
                break
            overlap_len += addition
            next_index = back
        index = next_index

    return windows


def build_chunks(
    segments: Iterable[Segment],
    *,
    max_chars: int = DEFAULT_MAX_CHARS,
    overlap_chars: int = DEFAULT_OVERLAP_CHARS,
) -> list[TextChunk]:
    """Split segments into ordered chunks of at most ``max_chars`` characters.

    Chunks never span two segments, inherit the segment's title and page
    range, and are indexed densely from zero in reading order.
    """

    if max_chars <= 0:
        raise ValueError("max_chars must be positive")
    if overlap_chars < 0:
        raise ValueError("overlap_chars cannot be negative")
    if overlap_chars >= max_chars:
        raise ValueError("overlap_chars must be smaller than max_chars")

    chunks: list[TextChunk] = []

    for segment in segments:
        units = _segment_units(segment.text, max_chars)
        if not units:
            continue

        for window in _build_windows(units, max_chars=max_chars, overlap_chars=overlap_chars):
            chunk_text = _join_units(window).strip()
            if not chunk_text:
                continue
            chunks.append(
                TextChunk(
                    chunk_index=len(chunks),
                    text=chunk_text,
                    chapter_title=segment.title,
                    page_start=segment.page_start,
                    page_end=segment.page_end,
                )
            )

    return chunks
