"""Extract, chunk, and atomically store a book, at most one run per book at a time."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
import logging
from pathlib import Path

from lectern.collaborators import BookLookup, FileStorage
from lectern.config import Settings
from lectern.errors import (
    EXTRACTION_ERRORS,
    BookNotFound,
    ConcurrentProcessingInProgress,
    ConstraintViolation,
    EmptyDocument,
    LecternError,
    ProcessingTimeout,
    StorageUnavailable,
)
from lectern.ingestion.chunking import DEFAULT_MAX_CHARS, DEFAULT_OVERLAP_CHARS, TextChunk, build_chunks
from lectern.ingestion.extractor import DocumentExtractor, build_default_extractor
from lectern.store.repository import (
    STATUS_PROCESSED,
    STATUS_PROCESSING,
    STATUS_UNPROCESSED,
    ChunkRepository,
)

logger = logging.getLogger(__name__)

DEFAULT_PROCESSING_TIMEOUT_SECONDS = 120.0
DEFAULT_STALE_CLAIM_SECONDS = 900.0
CANCELLED_REASON = "Cancelled"


class ProcessingStatus(str, Enum):
    ALREADY_PROCESSED = "already_processed"
    PROCESSED = "processed"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class ProcessingOutcome:
    book_id: str
    status: ProcessingStatus
    chunk_count: int = 0
    reason: str | None = None
    detail: str | None = None

    @property
    def success(self) -> bool:
        return self.status is not ProcessingStatus.FAILED

    @property
    def already_processed(self) -> bool:
        return self.status is ProcessingStatus.ALREADY_PROCESSED


@dataclass(frozen=True, slots=True)
class ProcessingStatusReport:
    book_id: str
    status: str
    chunk_count: int
    reason: str | None = None
    detail: str | None = None
    updated_at: float | None = None
    in_flight: bool = False

    @property
    def is_processed(self) -> bool:
        return self.status == STATUS_PROCESSED and self.chunk_count > 0


class IngestionOrchestrator:
    """Drive extraction and chunk replacement for one book at a time."""

    def __init__(
        self,
        repository: ChunkRepository,
        *,
        extractor: DocumentExtractor | None = None,
        book_lookup: BookLookup | None = None,
        file_storage: FileStorage | None = None,
        max_chars: int = DEFAULT_MAX_CHARS,
        overlap_chars: int = DEFAULT_OVERLAP_CHARS,
        processing_timeout_seconds: float = DEFAULT_PROCESSING_TIMEOUT_SECONDS,
        stale_claim_seconds: float = DEFAULT_STALE_CLAIM_SECONDS,
    ) -> None:
        if processing_timeout_seconds <= 0:
            raise ValueError("processing_timeout_seconds must be positive")
        self._repository = repository
        self._extractor = extractor or build_default_extractor()
        self._book_lookup = book_lookup
        self._file_storage = file_storage
        self._max_chars = max_chars
        self._overlap_chars = overlap_chars
        self._timeout = processing_timeout_seconds
        self._stale_claim_seconds = stale_claim_seconds
        self._in_flight: set[str] = set()
        self._queued: set[str] = set()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        repository: ChunkRepository,
        *,
        book_lookup: BookLookup | None = None,
        file_storage: FileStorage | None = None,
    ) -> "IngestionOrchestrator":
        return cls(
            repository,
            book_lookup=book_lookup,
            file_storage=file_storage,
            max_chars=settings.chunk_max_chars,
            overlap_chars=settings.chunk_overlap_chars,
            processing_timeout_seconds=settings.processing_timeout_seconds,
            stale_claim_seconds=settings.stale_claim_seconds,
        )

    @property
    def repository(self) -> ChunkRepository:
        return self._repository

    def is_in_flight(self, book_id: str) -> bool:
        return book_id in self._in_flight

    def mark_queued(self, book_id: str) -> None:
        """Report a book waiting for a deferred run as processing."""

        self._queued.add(book_id)

    def clear_queued(self, book_id: str) -> None:
        self._queued.discard(book_id)

    async def process(
        self,
        book_id: str,
        payload: bytes,
        file_type: str,
        *,
        force_refresh: bool = False,
        filename: str | None = None,
    ) -> ProcessingOutcome:
        """Turn a book file into its stored chunk set.

        Without ``force_refresh`` a book that already has chunks is left
        untouched. A second run for a book that is still being processed
        raises ConcurrentProcessingInProgress; extraction and storage
        failures come back as a FAILED outcome. A cancelled run releases its
        claim by recording a ``Cancelled`` failure.
        """

        if not force_refresh:
            existing = await asyncio.to_thread(self._repository.count_chunks, book_id)
            if existing:
                return ProcessingOutcome(
                    book_id=book_id,
                    status=ProcessingStatus.ALREADY_PROCESSED,
                    chunk_count=existing,
                )

        if book_id in self._in_flight:
            raise ConcurrentProcessingInProgress(f"Book {book_id} is already being processed")
        # Taken before the first await so a concurrent caller on this loop sees it.
        self._in_flight.add(book_id)
        try:
            await self._claim(book_id)
            try:
                return await self._run_claimed(
                    book_id,
                    payload,
                    file_type,
                    force_refresh=force_refresh,
                    filename=filename,
                )
            except asyncio.CancelledError:
                logger.warning("Processing cancelled for book %s; releasing claim", book_id)
                self._record_failed(book_id, CANCELLED_REASON, "Processing was cancelled before it finished")
                raise
        finally:
            self._in_flight.discard(book_id)

    async def process_book(
        self,
        book_id: str,
        user_id: str | None,
        *,
        force_refresh: bool = False,
    ) -> ProcessingOutcome:
        """Resolve a catalog book and its stored file, then process it."""

        if self._book_lookup is None or self._file_storage is None:
            raise RuntimeError("process_book requires a book lookup and a file storage")

        book = await asyncio.to_thread(self._book_lookup.get_book, book_id, user_id)

        if not force_refresh:
            existing = await asyncio.to_thread(self._repository.count_chunks, book_id)
            if existing:
                return ProcessingOutcome(
                    book_id=book_id,
                    status=ProcessingStatus.ALREADY_PROCESSED,
                    chunk_count=existing,
                )

        try:
            payload = await asyncio.to_thread(self._file_storage.read_bytes, book.file_path or "")
        except StorageUnavailable as exc:
            logger.warning("Cannot read stored file for book %s: %s", book_id, exc.detail)
            await asyncio.to_thread(self.record_rejection, book_id, exc)
            return ProcessingOutcome(
                book_id=book_id,
                status=ProcessingStatus.FAILED,
                reason=exc.reason,
                detail=exc.detail,
            )

        return await self.process(
            book_id,
            payload,
            book.file_type or "",
            force_refresh=force_refresh,
            filename=Path(book.file_path or "").name or None,
        )

    async def reprocess(self, book_id: str, user_id: str | None) -> ProcessingOutcome:
        return await self.process_book(book_id, user_id, force_refresh=True)

    def status(self, book_id: str) -> ProcessingStatusReport:
        state = self._repository.get_state(book_id)
        chunk_count = self._repository.count_chunks(book_id)

        status = state.status
        # Chunk sets written before state tracking have chunks but no state row.
        if status == STATUS_UNPROCESSED and chunk_count:
            status = STATUS_PROCESSED

        queued = book_id in self._queued
        if queued and status != STATUS_PROCESSED:
            status = STATUS_PROCESSING

        return ProcessingStatusReport(
            book_id=book_id,
            status=status,
            chunk_count=chunk_count,
            reason=None if queued else state.reason,
            detail=None if queued else state.detail,
            updated_at=state.updated_at,
            in_flight=queued or book_id in self._in_flight,
        )

    def record_rejection(self, book_id: str, error: LecternError) -> None:
        """Record a deferred job that failed before processing started.

        Unknown books get no state row, and a book held by a live claim keeps
        the claim's state.
        """

        if isinstance(error, (BookNotFound, ConcurrentProcessingInProgress)):
            return
        try:
            if self._repository.get_book(book_id) is None:
                return
            if self._repository.get_state(book_id).status == STATUS_PROCESSING:
                return
        except StorageUnavailable as exc:
            logger.warning("Could not record rejection for book %s: %s", book_id, exc.detail)
            return
        self._record_failed(book_id, error.reason, error.detail)

    async def _claim(self, book_id: str) -> None:
        previous = await asyncio.to_thread(self._repository.get_state, book_id)
        claimed = await asyncio.to_thread(
            self._repository.try_claim,
            book_id,
            stale_after_seconds=self._stale_claim_seconds,
        )
        if not claimed:
            raise ConcurrentProcessingInProgress(
                f"Book {book_id} is being processed by another worker"
            )
        if previous.status == STATUS_PROCESSING:
            logger.warning("Took over stale processing claim for book %s", book_id)

    async def _run_claimed(
        self,
        book_id: str,
        payload: bytes,
        file_type: str,
        *,
        force_refresh: bool,
        filename: str | None,
    ) -> ProcessingOutcome:
        if not force_refresh:
            # Another process may have finished between the first check and the claim.
            existing = await asyncio.to_thread(self._repository.count_chunks, book_id)
            if existing:
                await asyncio.to_thread(self._repository.record_processed, book_id, existing)
                return ProcessingOutcome(
                    book_id=book_id,
                    status=ProcessingStatus.ALREADY_PROCESSED,
                    chunk_count=existing,
                )

        logger.info("Processing book %s (%s, %d bytes)", book_id, file_type, len(payload))
        try:
            chunks = await asyncio.wait_for(
                asyncio.to_thread(self._extract_chunks, payload, file_type, filename),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            return await self._fail(
                book_id,
                ProcessingTimeout(f"Extraction did not finish within {self._timeout:g}s"),
            )
        except EXTRACTION_ERRORS as exc:
            return await self._fail(book_id, exc)
        except Exception as exc:
            logger.exception("Unexpected extraction failure for book %s", book_id)
            await asyncio.to_thread(self._record_failed, book_id, type(exc).__name__, str(exc))
            raise

        try:
            stored = await asyncio.to_thread(self._repository.replace_chunks, book_id, chunks)
        except (StorageUnavailable, ConstraintViolation) as exc:
            return await self._fail(book_id, exc)

        try:
            await asyncio.to_thread(self._repository.record_processed, book_id, len(stored))
        except StorageUnavailable as exc:
            logger.warning("Chunks stored but state not updated for book %s: %s", book_id, exc.detail)

        logger.info("Stored %d chunks for book %s", len(stored), book_id)
        return ProcessingOutcome(
            book_id=book_id,
            status=ProcessingStatus.PROCESSED,
            chunk_count=len(stored),
        )

    def _extract_chunks(self, payload: bytes, file_type: str, filename: str | None) -> list[TextChunk]:
        document = self._extractor.extract(payload, file_type, filename=filename)
        chunks = build_chunks(
            document.segments,
            max_chars=self._max_chars,
            overlap_chars=self._overlap_chars,
        )
        if not chunks:
            raise EmptyDocument("Document produced no chunks")
        return chunks

    async def _fail(self, book_id: str, error: LecternError) -> ProcessingOutcome:
        logger.warning("Processing failed for book %s: %s", book_id, error)
        await asyncio.to_thread(self._record_failed, book_id, error.reason, error.detail)
        return ProcessingOutcome(
            book_id=book_id,
            status=ProcessingStatus.FAILED,
            reason=error.reason,
            detail=error.detail,
        )

    def _record_failed(self, book_id: str, reason: str, detail: str | None) -> None:
        try:
            self._repository.record_failed(book_id, reason, detail)
        except StorageUnavailable as exc:
            logger.warning("Could not record failure for book %s: %s", book_id, exc.detail)
