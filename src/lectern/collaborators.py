"""Book lookup and file storage contracts with local default implementations."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol, runtime_checkable

from lectern.errors import BookNotFound, StorageUnavailable, Unauthorized
from lectern.store.repository import BookRecord, ChunkRepository

logger = logging.getLogger(__name__)

Book = BookRecord


@runtime_checkable
class BookLookup(Protocol):
    def get_book(self, book_id: str, user_id: str | None) -> Book:
        """Return the book visible to ``user_id`` or raise BookNotFound / Unauthorized."""


@runtime_checkable
class FileStorage(Protocol):
    def save(self, book_id: str, filename: str, payload: bytes) -> str:
        """Persist uploaded bytes and return an opaque storage reference."""

    def read_bytes(self, file_path: str) -> bytes:
        """Read the bytes behind a storage reference."""


class CatalogBookLookup:
    """Resolve books from the catalog table kept next to the chunks."""

    def __init__(self, repository: ChunkRepository) -> None:
        self._repository = repository

    def get_book(self, book_id: str, user_id: str | None) -> Book:
        book = self._repository.get_book(book_id)
        if book is None or not book.file_path:
            raise BookNotFound(f"Book {book_id} does not exist")
        # Books registered without an owner (for example from the CLI) are shared.
        if book.user_id is not None and book.user_id != user_id:
            raise Unauthorized(f"Book {book_id} belongs to another user")
        return book


class LocalFileStorage:
    """Keep uploaded files under ``root/<book_id>/<filename>``."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def _resolve(self, file_path: str) -> Path:
        root = self._root.resolve()
        candidate = (root / file_path).resolve()
        if candidate != root and root not in candidate.parents:
            raise StorageUnavailable(f"Storage reference escapes the storage root: {file_path}")
        return candidate

    def save(self, book_id: str, filename: str, payload: bytes) -> str:
        safe_book = Path(book_id).name or "book"
        safe_name = Path(filename).name or "upload"
        reference = f"{safe_book}/{safe_name}"
        target = self._resolve(reference)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(payload)
        except OSError as exc:
            raise StorageUnavailable(f"Cannot write {reference}: {exc}") from exc
        logger.info("Stored %d bytes for book %s at %s", len(payload), book_id, target)
        return reference

    def read_bytes(self, file_path: str) -> bytes:
        target = self._resolve(file_path)
        try:
            return target.read_bytes()
        except OSError as exc:
            raise StorageUnavailable(f"Cannot read {file_path}: {exc}") from exc
