from __future__ import annotations

from pathlib import Path
import sqlite3

import pytest

from lectern.errors import ConstraintViolation, StorageUnavailable
from lectern.ingestion.chunking import TextChunk
from lectern.store import BookRecord, ChunkRepository


def _chunks(*texts: str, title: str | None = None) -> list[TextChunk]:
    return [TextChunk(chunk_index=index, text=text, chapter_title=title) for index, text in enumerate(texts)]


def _snapshot(repository: ChunkRepository, book_id: str) -> list[tuple[str, int, str]]:
    return [(chunk.id, chunk.chunk_index, chunk.text_content) for chunk in repository.list_chunks(book_id)]


def test_replace_and_list_chunks_in_index_order(repository: ChunkRepository) -> None:
    chunks = _chunks("alpha", "beta gamma", "delta", title="One")
    stored = repository.replace_chunks("book-1", list(reversed(chunks)))

    listed = repository.list_chunks("book-1")

    assert [chunk.chunk_index for chunk in listed] == [0, 1, 2]
    assert [chunk.text_content for chunk in listed] == ["alpha", "beta gamma", "delta"]
    assert [chunk.id for chunk in listed] == [chunk.id for chunk in stored]
    assert listed[1].word_count == 2
    assert listed[0].chapter_title == "One"
    assert repository.has_chunks("book-1") is True
    assert repository.count_chunks("book-1") == 3
    assert repository.get_chunk(listed[2].id) == listed[2]


def test_unknown_book_has_no_chunks(repository: ChunkRepository) -> None:
    assert repository.list_chunks("missing") == []
    assert repository.has_chunks("missing") is False
    assert repository.count_chunks("missing") == 0


def test_replacement_issues_fresh_ids_and_drops_old_ones(repository: ChunkRepository) -> None:
    old = repository.replace_chunks("book-1", _chunks("one", "two", "three"))
    new = repository.replace_chunks("book-1", _chunks("uno", "dos"))

    assert repository.count_chunks("book-1") == 2
    assert {chunk.id for chunk in old}.isdisjoint({chunk.id for chunk in new})
    assert all(repository.get_chunk(chunk.id) is None for chunk in old)


@pytest.mark.parametrize("indices", [[0, 2], [1, 2], [0, 0]])
def test_replace_rejects_non_dense_indices_without_writing(repository: ChunkRepository, indices: list[int]) -> None:
    repository.replace_chunks("book-1", _chunks("kept one", "kept two"))
    before = _snapshot(repository, "book-1")

    bad = [TextChunk(chunk_index=index, text=f"text {index}") for index in indices]
    with pytest.raises(ConstraintViolation):
        repository.replace_chunks("book-1", bad)

    assert _snapshot(repository, "book-1") == before


def test_failed_insert_rolls_back_to_previous_set(repository: ChunkRepository) -> None:
    repository.replace_chunks("book-1", _chunks("kept one", "kept two"))
    before = _snapshot(repository, "book-1")

    with pytest.raises(ConstraintViolation):
        repository.replace_chunks("book-1", _chunks("fine", ""))

    assert _snapshot(repository, "book-1") == before


def test_books_do_not_share_chunks(repository: ChunkRepository) -> None:
    repository.replace_chunks("book-1", _chunks("first book"))
    repository.replace_chunks("book-2", _chunks("second book", "more"))

    assert [chunk.text_content for chunk in repository.list_chunks("book-1")] == ["first book"]
    assert repository.count_chunks("book-2") == 2


def test_processing_state_lifecycle(repository: ChunkRepository) -> None:
    assert repository.get_state("book-1").status == "unprocessed"

    assert repository.try_claim("book-1", stale_after_seconds=60) is True
    assert repository.get_state("book-1").status == "processing"
    assert repository.try_claim("book-1", stale_after_seconds=60) is False

    repository.record_failed("book-1", "CorruptFile", "bad xref")
    failed = repository.get_state("book-1")
    assert (failed.status, failed.reason, failed.detail) == ("failed", "CorruptFile", "bad xref")

    assert repository.try_claim("book-1", stale_after_seconds=60) is True
    repository.record_processed("book-1", 7)
    processed = repository.get_state("book-1")
    assert (processed.status, processed.chunk_count, processed.reason) == ("processed", 7, None)
    assert processed.updated_at is not None


def test_stale_claim_can_be_taken_over(repository: ChunkRepository) -> None:
    assert repository.try_claim("book-1", stale_after_seconds=60) is True

    with sqlite3.connect(repository.db_path) as connection:
        connection.execute("UPDATE processing_state SET updated_at = updated_at - 3600")

    assert repository.try_claim("book-1", stale_after_seconds=60) is True


def test_book_catalog_round_trip_and_cascade(repository: ChunkRepository) -> None:
    repository.upsert_book(
        BookRecord(id="book-1", title="Dune", file_path="book-1/dune.epub", file_type="application/epub+zip", user_id="u1")
    )
    repository.upsert_book(
        BookRecord(id="book-1", title="Dune Messiah", file_path="book-1/dune.epub", file_type="application/epub+zip", user_id="u1")
    )
    repository.replace_chunks("book-1", _chunks("spice"))
    repository.record_processed("book-1", 1)

    book = repository.get_book("book-1")
    assert book is not None
    assert book.title == "Dune Messiah"
    assert book.user_id == "u1"

    assert repository.delete_book("book-1") is True
    assert repository.get_book("book-1") is None
    assert repository.count_chunks("book-1") == 0
    assert repository.get_state("book-1").status == "unprocessed"
    assert repository.delete_book("book-1") is False


def test_unreadable_database_is_storage_unavailable(tmp_path: Path) -> None:
    db_path = tmp_path / "broken.db"
    db_path.write_bytes(b"this is not a sqlite database" * 100)

    with pytest.raises(StorageUnavailable) as exc_info:
        ChunkRepository(db_path)

    assert exc_info.value.retryable is True
