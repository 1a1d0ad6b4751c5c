"""Shared adapter contract for per-format extraction parsers."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from lectern.ingestion.models import ExtractedDocument


@runtime_checkable
class ExtractionAdapter(Protocol):
    """Protocol that every format adapter must implement."""

    media_type: str

    def supports(self, sniffed_bytes: bytes) -> bool:
        """Return True when the leading bytes look like this adapter's container."""

    def extract(self, payload: bytes, *, filename: str | None = None) -> ExtractedDocument:
        """Parse raw file bytes into the canonical segment schema.

        Raises ``CorruptFile`` when the container cannot be opened.
        """
