"""SQLite chunk store."""

from .repository import (
    STATUS_FAILED,
    STATUS_PROCESSED,
    STATUS_PROCESSING,
    STATUS_UNPROCESSED,
    BookRecord,
    ChunkRepository,
    ProcessingState,
    StoredChunk,
)
from .schema import apply_runtime_pragmas, ensure_schema

__all__ = [
    "BookRecord",
    "ChunkRepository",
    "ProcessingState",
    "STATUS_FAILED",
    "STATUS_PROCESSED",
    "STATUS_PROCESSING",
    "STATUS_UNPROCESSED",
    "StoredChunk",
    "apply_runtime_pragmas",
    "ensure_schema",
]
