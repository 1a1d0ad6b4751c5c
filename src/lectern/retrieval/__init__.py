"""Search and context selection over stored chunks."""

from .matching import TextMatch
from .retriever import (
    BookRetriever,
    ContextWindow,
    ScoredChunk,
    SearchOptions,
    SearchResponse,
    SearchResult,
    render_context,
)

__all__ = [
    "BookRetriever",
    "ContextWindow",
    "ScoredChunk",
    "SearchOptions",
    "SearchResponse",
    "SearchResult",
    "TextMatch",
    "render_context",
]
