"""SQLite schema and pragmas for the chunk store."""

from __future__ import annotations

import sqlite3


PRAGMA_BUSY_TIMEOUT_MS = 5000


def apply_runtime_pragmas(connection: sqlite3.Connection) -> None:
    """Apply pragmas for concurrent readers alongside a single writer."""

    connection.execute("PRAGMA journal_mode=WAL;")
    connection.execute(f"PRAGMA busy_timeout={PRAGMA_BUSY_TIMEOUT_MS};")
    connection.execute("PRAGMA synchronous=NORMAL;")
    connection.execute("PRAGMA foreign_keys=ON;")


def _add_column_if_missing(
    connection: sqlite3.Connection,
    table: str,
    column: str,
    column_def: str,
) -> None:
    """Add a column to a table if it does not yet exist (idempotent)."""
    try:
        connection.execute(f"ALTER TABLE {table} ADD COLUMN {column} {column_def}")
    except sqlite3.OperationalError as exc:
        if "duplicate column name" not in str(exc).lower():
            raise


def ensure_schema(connection: sqlite3.Connection) -> None:
    """Create catalog, chunk, and processing state tables if missing."""

    connection.executescript(
        """
        CREATE TABLE IF NOT EXISTS books (
            id TEXT PRIMARY KEY,
            title TEXT,
            file_path TEXT,
            file_type TEXT,
            user_id TEXT,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS book_chunks (
            id TEXT PRIMARY KEY,
            book_id TEXT NOT NULL,
            chunk_index INTEGER NOT NULL CHECK(chunk_index >= 0),
            text_content TEXT NOT NULL CHECK(length(text_content) > 0),
            chapter_title TEXT,
            page_start INTEGER,
            page_end INTEGER,
            word_count INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY(book_id) REFERENCES books(id) ON DELETE CASCADE,
            UNIQUE(book_id, chunk_index)
        );

        CREATE TABLE IF NOT EXISTS processing_state (
            book_id TEXT PRIMARY KEY,
            status TEXT NOT NULL CHECK(status IN ('processing','processed','failed')),
            chunk_count INTEGER NOT NULL DEFAULT 0,
            reason TEXT,
            detail TEXT,
            updated_at REAL NOT NULL,
            FOREIGN KEY(book_id) REFERENCES books(id) ON DELETE CASCADE
        );

        CREATE INDEX IF NOT EXISTS idx_book_chunks_book_id ON book_chunks(book_id, chunk_index);
        CREATE INDEX IF NOT EXISTS idx_books_user_id ON books(user_id);
        """
    )

    # Additive migrations: add columns to existing tables without breaking old DBs
    _add_column_if_missing(connection, "books", "author", "TEXT")
