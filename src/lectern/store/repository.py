"""Repository primitives for chunk persistence and per-book processing state."""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
import logging
from pathlib import Path
import sqlite3
import time
import uuid

from lectern.errors import ConstraintViolation, StorageUnavailable
from lectern.ingestion.chunking import TextChunk
from lectern.store.schema import PRAGMA_BUSY_TIMEOUT_MS, apply_runtime_pragmas, ensure_schema

logger = logging.getLogger(__name__)

STATUS_UNPROCESSED = "unprocessed"
STATUS_PROCESSING = "processing"
STATUS_PROCESSED = "processed"
STATUS_FAILED = "failed"


@dataclass(slots=True)
class StoredChunk:
    id: str
    book_id: str
    chunk_index: int
    text_content: str
    chapter_title: str | None
    page_start: int | None = None
    page_end: int | None = None
    word_count: int = 0


@dataclass(slots=True)
class ProcessingState:
    book_id: str
    status: str
    chunk_count: int = 0
    reason: str | None = None
    detail: str | None = None
    updated_at: float | None = None


@dataclass(slots=True)
class BookRecord:
    id: str
    title: str | None = None
    file_path: str | None = None
    file_type: str | None = None
    user_id: str | None = None
    author: str | None = None


_CHUNK_COLUMNS = """
    id, book_id, chunk_index, text_content, chapter_title, page_start, page_end, word_count
"""


def _chunk_from_row(row: sqlite3.Row) -> StoredChunk:
    return StoredChunk(
        id=row["id"],
        book_id=row["book_id"],
        chunk_index=int(row["chunk_index"]),
        text_content=row["text_content"],
        chapter_title=row["chapter_title"],
        page_start=row["page_start"],
        page_end=row["page_end"],
        word_count=int(row["word_count"]),
    )


def _validate_indices(chunks: Sequence[TextChunk]) -> None:
    indices = sorted(chunk.chunk_index for chunk in chunks)
    if indices != list(range(len(chunks))):
        raise ConstraintViolation(
            f"Chunk indices must be exactly 0..{len(chunks) - 1} without gaps or duplicates"
        )


class ChunkRepository:
    """Transactional chunk store; every call runs on its own short-lived connection."""

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as connection:
            ensure_schema(connection)

    @property
    def db_path(self) -> Path:
        return self._db_path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            connection = sqlite3.connect(str(self._db_path), timeout=PRAGMA_BUSY_TIMEOUT_MS / 1000)
        except sqlite3.Error as exc:
            raise StorageUnavailable(f"Cannot open chunk database {self._db_path}: {exc}") from exc

        try:
            connection.row_factory = sqlite3.Row
            apply_runtime_pragmas(connection)
            yield connection
        except sqlite3.IntegrityError as exc:
            raise ConstraintViolation(str(exc)) from exc
        except sqlite3.DatabaseError as exc:
            raise StorageUnavailable(str(exc)) from exc
        finally:
            connection.close()

    @staticmethod
    def _ensure_book_row(connection: sqlite3.Connection, book_id: str) -> None:
        connection.execute(
            "INSERT INTO books(id) VALUES(?) ON CONFLICT(id) DO NOTHING",
            (book_id,),
        )

    # Chunks

    def replace_chunks(self, book_id: str, chunks: Sequence[TextChunk]) -> list[StoredChunk]:
        """Atomically swap a book's chunk set; the previous set survives any failure."""

        _validate_indices(chunks)
        stored = [
            StoredChunk(
                id=uuid.uuid4().hex,
                book_id=book_id,
                chunk_index=chunk.chunk_index,
                text_content=chunk.text,
                chapter_title=chunk.chapter_title,
                page_start=chunk.page_start,
                page_end=chunk.page_end,
                word_count=chunk.word_count,
            )
            for chunk in sorted(chunks, key=lambda item: item.chunk_index)
        ]

        with self._connect() as connection:
            with connection:
                self._ensure_book_row(connection, book_id)
                deleted = connection.execute(
                    "DELETE FROM book_chunks WHERE book_id = ?",
                    (book_id,),
                ).rowcount
                connection.executemany(
                    """
                    INSERT INTO book_chunks(
                        id,
                        book_id,
                        chunk_index,
                        text_content,
                        chapter_title,
                        page_start,
                        page_end,
                        word_count
                    )
                    VALUES(?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (
                            chunk.id,
                            chunk.book_id,
                            chunk.chunk_index,
                            chunk.text_content,
                            chunk.chapter_title,
                            chunk.page_start,
                            chunk.page_end,
                            chunk.word_count,
                        )
                        for chunk in stored
                    ],
                )

        logger.debug("Replaced %d chunks with %d for book %s", deleted, len(stored), book_id)
        return stored

    def list_chunks(self, book_id: str) -> list[StoredChunk]:
        with self._connect() as connection:
            rows = connection.execute(
                f"""
                SELECT {_CHUNK_COLUMNS}
                FROM book_chunks
                WHERE book_id = ?
                ORDER BY chunk_index ASC
                """,
                (book_id,),
            ).fetchall()
        return [_chunk_from_row(row) for row in rows]

    def has_chunks(self, book_id: str) -> bool:
        with self._connect() as connection:
            row = connection.execute(
                "SELECT 1 FROM book_chunks WHERE book_id = ? LIMIT 1",
                (book_id,),
            ).fetchone()
        return row is not None

    def count_chunks(self, book_id: str) -> int:
        with self._connect() as connection:
            row = connection.execute(
                "SELECT COUNT(*) AS c FROM book_chunks WHERE book_id = ?",
                (book_id,),
            ).fetchone()
        return int(row["c"])

    def get_chunk(self, chunk_id: str) -> StoredChunk | None:
        with self._connect() as connection:
            row = connection.execute(
                f"SELECT {_CHUNK_COLUMNS} FROM book_chunks WHERE id = ?",
                (chunk_id,),
            ).fetchone()
        if row is None:
            return None
        return _chunk_from_row(row)

    # Processing state

    def get_state(self, book_id: str) -> ProcessingState:
        with self._connect() as connection:
            row = connection.execute(
                """
                SELECT book_id, status, chunk_count, reason, detail, updated_at
                FROM processing_state
                WHERE book_id = ?
                """,
                (book_id,),
            ).fetchone()
        if row is None:
            return ProcessingState(book_id=book_id, status=STATUS_UNPROCESSED)
        return ProcessingState(
            book_id=row["book_id"],
            status=row["status"],
            chunk_count=int(row["chunk_count"]),
            reason=row["reason"],
            detail=row["detail"],
            updated_at=float(row["updated_at"]),
        )

    def try_claim(self, book_id: str, *, stale_after_seconds: float) -> bool:
        """Move a book to ``processing`` unless another live claim holds it.

        A ``processing`` row older than ``stale_after_seconds`` belongs to a
        crashed run and is taken over.
        """

        now = time.time()
        with self._connect() as connection:
            with connection:
                self._ensure_book_row(connection, book_id)
                cursor = connection.execute(
                    """
                    INSERT INTO processing_state(book_id, status, chunk_count, reason, detail, updated_at)
                    VALUES(?, 'processing', 0, NULL, NULL, ?)
                    ON CONFLICT(book_id) DO UPDATE SET
                        status = 'processing',
                        reason = NULL,
                        detail = NULL,
                        updated_at = excluded.updated_at
                    WHERE processing_state.status != 'processing'
                       OR processing_state.updated_at < ?
                    """,
                    (book_id, now, now - stale_after_seconds),
                )
                return cursor.rowcount == 1

    def record_processed(self, book_id: str, chunk_count: int) -> None:
        self._write_state(book_id, STATUS_PROCESSED, chunk_count=chunk_count)

    def record_failed(self, book_id: str, reason: str, detail: str | None) -> None:
        self._write_state(book_id, STATUS_FAILED, reason=reason, detail=detail)

    def _write_state(
        self,
        book_id: str,
        status: str,
        *,
        chunk_count: int | None = None,
        reason: str | None = None,
        detail: str | None = None,
    ) -> None:
        with self._connect() as connection:
            with connection:
                self._ensure_book_row(connection, book_id)
                connection.execute(
                    """
                    INSERT INTO processing_state(book_id, status, chunk_count, reason, detail, updated_at)
                    VALUES(?, ?, COALESCE(?, 0), ?, ?, ?)
                    ON CONFLICT(book_id) DO UPDATE SET
                        status = excluded.status,
                        chunk_count = COALESCE(?, processing_state.chunk_count),
                        reason = excluded.reason,
                        detail = excluded.detail,
                        updated_at = excluded.updated_at
                    """,
                    (book_id, status, chunk_count, reason, detail, time.time(), chunk_count),
                )

    # Book catalog

    def upsert_book(self, book: BookRecord) -> None:
        with self._connect() as connection:
            with connection:
                connection.execute(
                    """
                    INSERT INTO books(id, title, author, file_path, file_type, user_id)
                    VALUES(?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        title = excluded.title,
                        author = excluded.author,
                        file_path = excluded.file_path,
                        file_type = excluded.file_type,
                        user_id = excluded.user_id,
                        updated_at = CURRENT_TIMESTAMP
                    """,
                    (book.id, book.title, book.author, book.file_path, book.file_type, book.user_id),
                )

    def get_book(self, book_id: str) -> BookRecord | None:
        with self._connect() as connection:
            row = connection.execute(
                """
                SELECT id, title, author, file_path, file_type, user_id
                FROM books
                WHERE id = ?
                """,
                (book_id,),
            ).fetchone()
        if row is None:
            return None
        return BookRecord(
            id=row["id"],
            title=row["title"],
            author=row["author"],
            file_path=row["file_path"],
            file_type=row["file_type"],
            user_id=row["user_id"],
        )

    def delete_book(self, book_id: str) -> bool:
        """Delete a catalog entry together with its chunks and processing state."""

        with self._connect() as connection:
            with connection:
                deleted = connection.execute("DELETE FROM books WHERE id = ?", (book_id,)).rowcount
        return deleted > 0
