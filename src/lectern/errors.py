"""Domain error taxonomy shared by ingestion, storage, and retrieval."""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar


@dataclass(slots=True, eq=False)
class LecternError(Exception):
    """Base error carrying a machine-readable reason and a human-readable detail."""

    detail: str

    reason: ClassVar[str] = "LecternError"
    retryable: ClassVar[bool] = False

    def __str__(self) -> str:
        return f"{self.reason}: {self.detail}"


class UnsupportedFormat(LecternError):
    reason = "UnsupportedFormat"


class CorruptFile(LecternError):
    reason = "CorruptFile"


class EmptyDocument(LecternError):
    reason = "EmptyDocument"


class ProcessingTimeout(LecternError):
    reason = "Timeout"


class StorageUnavailable(LecternError):
    reason = "StorageUnavailable"
    retryable = True


class ConstraintViolation(LecternError):
    reason = "ConstraintViolation"


class ConcurrentProcessingInProgress(LecternError):
    reason = "ConcurrentProcessingInProgress"


class BookNotFound(LecternError):
    reason = "BookNotFound"


class Unauthorized(LecternError):
    reason = "Unauthorized"


class InvalidQuery(LecternError):
    reason = "InvalidQuery"


EXTRACTION_ERRORS: tuple[type[LecternError], ...] = (
    UnsupportedFormat,
    CorruptFile,
    EmptyDocument,
    ProcessingTimeout,
)

__all__ = [
    "BookNotFound",
    "ConcurrentProcessingInProgress",
    "ConstraintViolation",
    "CorruptFile",
    "EXTRACTION_ERRORS",
    "EmptyDocument",
    "InvalidQuery",
    "LecternError",
    "ProcessingTimeout",
    "StorageUnavailable",
    "Unauthorized",
    "UnsupportedFormat",
]
