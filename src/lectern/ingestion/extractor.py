"""Routing entrypoint from a declared media type to its extraction adapter."""

from __future__ import annotations

import logging

from lectern.errors import CorruptFile, EmptyDocument, UnsupportedFormat
from lectern.ingestion.adapters import build_default_adapters
from lectern.ingestion.adapters.base import ExtractionAdapter
from lectern.ingestion.models import ExtractedDocument

logger = logging.getLogger(__name__)


def normalize_media_type(media_type: str | None) -> str:
    """Lower-case a MIME string and drop parameters such as ``; charset=``."""

    if not media_type:
        return ""
    return media_type.split(";", 1)[0].strip().lower()


class DocumentExtractor:
    """Resolve the adapter for a media type and return canonical segments."""

    def __init__(self, sniff_bytes: int = 8) -> None:
        self._sniff_bytes = sniff_bytes
        self._adapter_map: dict[str, ExtractionAdapter] = {}

    @property
    def adapter_map(self) -> dict[str, ExtractionAdapter]:
        """Registered adapters keyed by media type."""

        return dict(self._adapter_map)

    @property
    def supported_media_types(self) -> frozenset[str]:
        return frozenset(self._adapter_map)

    def register_adapter(self, media_type: str, adapter: ExtractionAdapter) -> None:
        """Register an adapter implementation for a media type."""

        key = normalize_media_type(media_type)
        if not key:
            raise ValueError("Media type cannot be empty")
        self._adapter_map[key] = adapter

    def extract(
        self,
        payload: bytes,
        media_type: str,
        *,
        filename: str | None = None,
    ) -> ExtractedDocument:
        """Extract segments from raw bytes, failing on unsupported, corrupt, or empty input."""

        key = normalize_media_type(media_type)
        adapter = self._adapter_map.get(key)
        if adapter is None:
            raise UnsupportedFormat(f"Media type {media_type!r} is not supported")

        if not payload:
            raise CorruptFile("File is empty")
        if not adapter.supports(payload[: self._sniff_bytes]):
            # Parsers are still given the chance to open mislabeled-but-valid files.
            logger.warning("Payload signature does not match declared media type %s", key)

        document = adapter.extract(payload, filename=filename)
        if not isinstance(document, ExtractedDocument):
            raise CorruptFile("Adapter returned non-canonical output")
        if not document.has_text():
            raise EmptyDocument("No extractable text found in document")
        return document


def build_default_extractor() -> DocumentExtractor:
    extractor = DocumentExtractor()
    for media_type, adapter in build_default_adapters().items():
        extractor.register_adapter(media_type, adapter)
    return extractor
