"""Ingestion package interfaces."""

from .chunking import TextChunk, build_chunks
from .extractor import DocumentExtractor, build_default_extractor, normalize_media_type
from .models import ExtractedDocument, ExtractedMetadata, Segment

__all__ = [
    "DocumentExtractor",
    "ExtractedDocument",
    "ExtractedMetadata",
    "Segment",
    "TextChunk",
    "build_chunks",
    "build_default_extractor",
    "normalize_media_type",
]
