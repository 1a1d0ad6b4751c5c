from __future__ import annotations

import pytest

from lectern.errors import InvalidQuery
from lectern.retrieval import BookRetriever, SearchOptions
from lectern.retrieval.retriever import MAX_QUERY_CHARS, MAX_RESULTS_CAP
from lectern.store import ChunkRepository


@pytest.fixture
def retriever(repository: ChunkRepository) -> BookRetriever:
    return BookRetriever(repository)


def test_case_insensitive_search_matches_any_case(retriever: BookRetriever, seed_chunks) -> None:
    seed_chunks("book-1", ["In my younger years Gatsby smiled.", "Nothing to see.", "gatsby again, and Gatsby."])

    response = retriever.search("book-1", "gatsby")

    assert response.success is True
    assert [result.chunk_index for result in response.results] == [0, 2]
    assert len(response.results[1].matches) == 2


def test_case_sensitive_search_respects_case(retriever: BookRetriever, seed_chunks) -> None:
    seed_chunks("book-1", ["In my younger years Gatsby smiled."])

    assert retriever.search("book-1", "gatsby", SearchOptions(case_sensitive=True)).count == 0
    assert retriever.search("book-1", "Gatsby", SearchOptions(case_sensitive=True)).count == 1


def test_whole_words_skip_partial_matches(retriever: BookRetriever, seed_chunks) -> None:
    seed_chunks("book-1", ["The category was wide.", "A cat slept."])

    partial = retriever.search("book-1", "cat")
    whole = retriever.search("book-1", "cat", SearchOptions(whole_words=True))

    assert [result.chunk_index for result in partial.results] == [0, 1]
    assert [result.chunk_index for result in whole.results] == [1]


def test_match_offsets_and_context_window(retriever: BookRetriever, seed_chunks) -> None:
    text = "x" * 200 + "needle" + "y" * 200
    stored = seed_chunks("book-1", [text], title="Chapter 1")

    result = retriever.search("book-1", "needle").results[0]

    assert result.chunk_id == stored[0].id
    assert result.chapter_title == "Chapter 1"
    match = result.matches[0]
    assert (match.start, match.end) == (200, 206)
    assert match.context == text[50:356]
    assert text[match.start : match.end] == "needle"


def test_context_is_clipped_at_text_edges(retriever: BookRetriever, seed_chunks) -> None:
    seed_chunks("book-1", ["needle at the start"])

    match = retriever.search("book-1", "needle").results[0].matches[0]

    assert match.start == 0
    assert match.context == "needle at the start"


def test_results_follow_reading_order_and_limit(retriever: BookRetriever, seed_chunks) -> None:
    seed_chunks("book-1", [f"word number {index}" for index in range(5)])

    response = retriever.search("book-1", "word", SearchOptions(max_results=2))

    assert [result.chunk_index for result in response.results] == [0, 1]


def test_result_limit_is_capped(retriever: BookRetriever, seed_chunks) -> None:
    seed_chunks("book-1", [f"word number {index}" for index in range(MAX_RESULTS_CAP + 20)])

    response = retriever.search("book-1", "word", SearchOptions(max_results=500))

    assert response.count == MAX_RESULTS_CAP


def test_query_is_matched_literally(retriever: BookRetriever, seed_chunks) -> None:
    seed_chunks("book-1", ["Compute a+b (c) now.", "axb is not it."])

    assert [result.chunk_index for result in retriever.search("book-1", "a+b (c)").results] == [0]
    assert retriever.search("book-1", "a.b").count == 0


@pytest.mark.parametrize(
    ("query", "options"),
    [
        ("", SearchOptions()),
        ("   ", SearchOptions()),
        ("a" * (MAX_QUERY_CHARS + 1), SearchOptions()),
        ("word", SearchOptions(max_results=0)),
    ],
)
def test_invalid_queries_are_rejected(retriever: BookRetriever, seed_chunks, query: str, options: SearchOptions) -> None:
    seed_chunks("book-1", ["word"])

    with pytest.raises(InvalidQuery):
        retriever.search("book-1", query, options)


def test_unprocessed_book_returns_empty_success(retriever: BookRetriever) -> None:
    response = retriever.search("never-processed", "anything")

    assert response.success is True
    assert response.count == 0
    assert response.results == []


def test_fuzzy_fallback_matches_individual_words(retriever: BookRetriever, seed_chunks) -> None:
    seed_chunks("book-1", ["The old lighthouse stood.", "Bread and jam.", "A keeper lived alone."])

    strict = retriever.search("book-1", "lighthouse keeper")
    fuzzy = retriever.search("book-1", "lighthouse keeper", SearchOptions(fuzzy=True))

    assert strict.count == 0
    assert strict.fuzzy_fallback is False
    assert fuzzy.fuzzy_fallback is True
    assert [result.chunk_index for result in fuzzy.results] == [0, 2]


def test_fuzzy_fallback_is_not_used_when_literal_matches(retriever: BookRetriever, seed_chunks) -> None:
    seed_chunks("book-1", ["The lighthouse keeper waved.", "A keeper lived alone."])

    response = retriever.search("book-1", "lighthouse keeper", SearchOptions(fuzzy=True))

    assert response.fuzzy_fallback is False
    assert [result.chunk_index for result in response.results] == [0]


@pytest.mark.parametrize(
    ("query", "expected_span"),
    [
        ("lighthousez", "lighthouse"),
        ("xkeeper", "keeper"),
    ],
)
def test_fuzzy_fallback_tries_near_spellings(
    retriever: BookRetriever,
    seed_chunks,
    query: str,
    expected_span: str,
) -> None:
    seed_chunks("book-1", ["Bread and jam.", "The lighthouses and their keepers."])

    strict = retriever.search("book-1", query)
    fuzzy = retriever.search("book-1", query, SearchOptions(fuzzy=True))

    assert strict.count == 0
    assert fuzzy.fuzzy_fallback is True
    assert [result.chunk_index for result in fuzzy.results] == [1]
    match = fuzzy.results[0].matches[0]
    assert fuzzy.results[0].text_content[match.start : match.end].lower() == expected_span


def test_near_spellings_ignore_case_only_when_fuzzy(retriever: BookRetriever, seed_chunks) -> None:
    seed_chunks("book-1", ["In my younger years Gatsby smiled."])

    exact = retriever.search("book-1", "GATSBY", SearchOptions(case_sensitive=True))
    fuzzy = retriever.search("book-1", "GATSBY", SearchOptions(case_sensitive=True, fuzzy=True))

    assert exact.count == 0
    assert fuzzy.count == 1
    assert fuzzy.fuzzy_fallback is True


def test_short_queries_get_no_near_spellings(retriever: BookRetriever, seed_chunks) -> None:
    seed_chunks("book-1", ["The cat sat."])

    response = retriever.search("book-1", "cax", SearchOptions(fuzzy=True))

    assert response.count == 0
