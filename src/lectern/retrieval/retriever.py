"""Read-side queries over a book's chunk set: search and context selection."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
import logging
import math
import re

from lectern.errors import InvalidQuery
from lectern.retrieval.matching import (
    TextMatch,
    compile_any_word_pattern,
    compile_literal_pattern,
    find_matches,
    fuzzy_words,
    overlap_score,
    query_variations,
    unique_terms,
)
from lectern.store.repository import ChunkRepository, StoredChunk

logger = logging.getLogger(__name__)

MAX_QUERY_CHARS = 500
DEFAULT_MAX_RESULTS = 50
MAX_RESULTS_CAP = 100
DEFAULT_QA_MAX_CHUNKS = 5
MIN_VARIATION_QUERY_CHARS = 3


@dataclass(frozen=True, slots=True)
class SearchOptions:
    case_sensitive: bool = False
    whole_words: bool = False
    max_results: int = DEFAULT_MAX_RESULTS
    fuzzy: bool = False


@dataclass(slots=True)
class SearchResult:
    chunk_id: str
    chunk_index: int
    text_content: str
    chapter_title: str | None
    matches: list[TextMatch] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {
            "chunk_id": self.chunk_id,
            "chunk_index": self.chunk_index,
            "text_content": self.text_content,
            "chapter_title": self.chapter_title,
            "matches": [match.to_dict() for match in self.matches],
        }


@dataclass(slots=True)
class SearchResponse:
    book_id: str
    query: str
    results: list[SearchResult]
    fuzzy_fallback: bool = False
    success: bool = True

    @property
    def count(self) -> int:
        return len(self.results)


@dataclass(slots=True)
class ContextWindow:
    book_id: str
    progress: float
    chunks: list[StoredChunk]
    total_chunks: int

    @property
    def chunk_end_index(self) -> int | None:
        if not self.chunks:
            return None
        return self.chunks[-1].chunk_index


@dataclass(slots=True)
class ScoredChunk:
    chunk: StoredChunk
    distinct_terms: int
    occurrences: int

    @property
    def score(self) -> tuple[int, int]:
        return (self.distinct_terms, self.occurrences)


def render_context(chunks: Sequence[StoredChunk], *, max_chars: int) -> str:
    """Join chunk texts with blank lines, prefixing chapter titles when they change.

    Stops before the chunk that would exceed ``max_chars``; a single oversized
    first chunk is truncated.
    """

    if max_chars <= 0:
        return ""

    parts: list[str] = []
    used = 0
    last_title: str | None = None
    for chunk in chunks:
        block = chunk.text_content
        if chunk.chapter_title and chunk.chapter_title != last_title:
            block = f"{chunk.chapter_title}\n\n{block}"
        addition = len(block) + (2 if parts else 0)
        if parts and used + addition > max_chars:
            break
        if not parts and addition > max_chars:
            block = block[:max_chars]
            addition = len(block)
        parts.append(block)
        used += addition
        last_title = chunk.chapter_title
    return "\n\n".join(parts)


class BookRetriever:
    """Answer search and context queries from the last committed chunk set."""

    def __init__(self, repository: ChunkRepository) -> None:
        self._repository = repository

    def search(self, book_id: str, query: str, options: SearchOptions | None = None) -> SearchResponse:
        options = options or SearchOptions()
        search_query = (query or "").strip()
        if not search_query:
            raise InvalidQuery("Search query is required and must be a non-empty string")
        if len(query) > MAX_QUERY_CHARS:
            raise InvalidQuery(f"Search query is too long; maximum {MAX_QUERY_CHARS} characters allowed")
        if options.max_results < 1:
            raise InvalidQuery("max_results must be >= 1")
        limit = min(options.max_results, MAX_RESULTS_CAP)

        chunks = self._repository.list_chunks(book_id)
        if not chunks:
            return SearchResponse(book_id=book_id, query=search_query, results=[])

        pattern = compile_literal_pattern(
            search_query,
            case_sensitive=options.case_sensitive,
            whole_words=options.whole_words,
        )
        results = self._collect(chunks, pattern, limit)

        if results or not options.fuzzy:
            return SearchResponse(book_id=book_id, query=search_query, results=results)

        results = self._fuzzy_collect(chunks, search_query, limit)
        return SearchResponse(book_id=book_id, query=search_query, results=results, fuzzy_fallback=True)

    def _fuzzy_collect(self, chunks: list[StoredChunk], search_query: str, limit: int) -> list[SearchResult]:
        """Retry a query that matched nothing: word by word, then with near spellings."""

        if len(search_query.split()) > 1:
            words = fuzzy_words(search_query)
            if words:
                logger.debug("Falling back to word search for %r: %s", search_query, words)
                results = self._collect(chunks, compile_any_word_pattern(words), limit)
                if results:
                    return results

        if len(search_query) <= MIN_VARIATION_QUERY_CHARS:
            return []
        for variation in query_variations(search_query):
            pattern = compile_literal_pattern(variation, case_sensitive=False, whole_words=False)
            results = self._collect(chunks, pattern, limit)
            if results:
                logger.debug("Variation %r matched for query %r", variation, search_query)
                return results
        return []

    @staticmethod
    def _collect(chunks: list[StoredChunk], pattern: re.Pattern[str], limit: int) -> list[SearchResult]:
        results: list[SearchResult] = []
        for chunk in chunks:
            matches = find_matches(chunk.text_content, pattern)
            if not matches:
                continue
            results.append(
                SearchResult(
                    chunk_id=chunk.id,
                    chunk_index=chunk.chunk_index,
                    text_content=chunk.text_content,
                    chapter_title=chunk.chapter_title,
                    matches=matches,
                )
            )
            if len(results) >= limit:
                break
        return results

    def context_for_progress(self, book_id: str, progress: float) -> ContextWindow:
        """Chunks covering the first ``progress`` percent of the book."""

        if not 0 <= progress <= 100:
            raise InvalidQuery("progress must be between 0 and 100")

        chunks = self._repository.list_chunks(book_id)
        included = math.ceil(progress * len(chunks) / 100)
        return ContextWindow(
            book_id=book_id,
            progress=progress,
            chunks=chunks[:included],
            total_chunks=len(chunks),
        )

    def context_for_question(
        self,
        book_id: str,
        question: str,
        max_chunks: int = DEFAULT_QA_MAX_CHUNKS,
    ) -> list[ScoredChunk]:
        """Rank chunks by keyword overlap with the question, best first."""

        if not question or not question.strip():
            raise InvalidQuery("Question is required and must be a non-empty string")
        if max_chunks < 1:
            raise InvalidQuery("max_chunks must be >= 1")

        terms = unique_terms(question)
        if not terms:
            return []

        scored: list[ScoredChunk] = []
        for chunk in self._repository.list_chunks(book_id):
            distinct, occurrences = overlap_score(terms, chunk.text_content)
            if distinct == 0:
                continue
            scored.append(ScoredChunk(chunk=chunk, distinct_terms=distinct, occurrences=occurrences))

        scored.sort(key=lambda item: (-item.distinct_terms, -item.occurrences, item.chunk.chunk_index))
        return scored[:max_chunks]
