from __future__ import annotations

import asyncio
from pathlib import Path
import time

import pytest

from lectern.collaborators import CatalogBookLookup, LocalFileStorage
from lectern.ingestion.extractor import build_default_extractor
from lectern.ingestion.models import ExtractedDocument, Segment
from lectern.pipeline import IngestionOrchestrator, ProcessingJob, ProcessingQueue, ProcessingStatus
from lectern.store import BookRecord, ChunkRepository

PDF = "application/pdf"
SLOW = "application/x-slow"


def _queue_for(repository: ChunkRepository, storage_root: Path, *, worker_count: int = 2) -> tuple[ProcessingQueue, LocalFileStorage]:
    storage = LocalFileStorage(storage_root)
    orchestrator = IngestionOrchestrator(
        repository,
        book_lookup=CatalogBookLookup(repository),
        file_storage=storage,
    )
    return ProcessingQueue(orchestrator, worker_count=worker_count), storage


def _register(repository: ChunkRepository, storage: LocalFileStorage, book_id: str, payload: bytes) -> None:
    file_path = storage.save(book_id, f"{book_id}.pdf", payload)
    repository.upsert_book(BookRecord(id=book_id, title=book_id, file_path=file_path, file_type=PDF, user_id="reader"))


@pytest.mark.asyncio
async def test_submitted_job_is_processed_in_background(repository: ChunkRepository, tmp_path: Path, make_pdf) -> None:
    queue, storage = _queue_for(repository, tmp_path / "books")
    _register(repository, storage, "book-1", make_pdf([["Chapter 1", "Waves broke on the rocks."]]))

    await queue.start()
    try:
        handle = queue.submit(ProcessingJob(book_id="book-1", user_id="reader"))
        outcome = await asyncio.wait_for(handle.wait(), timeout=30)
    finally:
        await queue.stop()

    assert outcome.status is ProcessingStatus.PROCESSED
    assert handle.done() is True
    assert repository.count_chunks("book-1") == outcome.chunk_count > 0
    assert queue.pending_book_ids() == set()


@pytest.mark.asyncio
async def test_duplicate_submissions_share_one_handle(repository: ChunkRepository, tmp_path: Path, make_pdf) -> None:
    queue, storage = _queue_for(repository, tmp_path / "books")
    _register(repository, storage, "book-1", make_pdf([["Some text to index."]]))

    await queue.start()
    try:
        first = queue.submit(ProcessingJob(book_id="book-1", user_id="reader", force_refresh=True))
        second = queue.submit(ProcessingJob(book_id="book-1", user_id="reader", force_refresh=True))
        assert first is second
        assert queue.pending_book_ids() == {"book-1"}
        outcome = await asyncio.wait_for(first.wait(), timeout=30)
    finally:
        await queue.stop()

    assert outcome.status is ProcessingStatus.PROCESSED
    assert repository.get_state("book-1").status == "processed"


@pytest.mark.asyncio
async def test_join_waits_for_every_book(repository: ChunkRepository, tmp_path: Path, make_pdf) -> None:
    queue, storage = _queue_for(repository, tmp_path / "books", worker_count=1)
    for book_id in ("book-1", "book-2", "book-3"):
        _register(repository, storage, book_id, make_pdf([[f"Text of {book_id}."]]))

    await queue.start()
    try:
        handles = [queue.submit(ProcessingJob(book_id=book_id, user_id="reader")) for book_id in ("book-1", "book-2", "book-3")]
        await asyncio.wait_for(queue.join(), timeout=60)
    finally:
        await queue.stop()

    assert all(handle.done() for handle in handles)
    assert all(repository.has_chunks(handle.book_id) for handle in handles)


@pytest.mark.asyncio
async def test_failures_resolve_the_handle_instead_of_raising(repository: ChunkRepository, tmp_path: Path) -> None:
    queue, _ = _queue_for(repository, tmp_path / "books")

    await queue.start()
    try:
        handle = queue.submit(ProcessingJob(book_id="missing", user_id="reader"))
        outcome = await asyncio.wait_for(handle.wait(), timeout=30)
    finally:
        await queue.stop()

    assert outcome.status is ProcessingStatus.FAILED
    assert outcome.reason == "BookNotFound"


@pytest.mark.asyncio
async def test_stop_cancels_jobs_that_never_ran(repository: ChunkRepository, tmp_path: Path, make_pdf) -> None:
    queue, storage = _queue_for(repository, tmp_path / "books")
    _register(repository, storage, "book-1", make_pdf([["Unread text."]]))

    await queue.start()
    handle = queue.submit(ProcessingJob(book_id="book-1", user_id="reader"))
    await queue.stop()

    assert queue.running is False
    assert handle.done() is True
    with pytest.raises(asyncio.CancelledError):
        await handle.wait()
    with pytest.raises(RuntimeError):
        queue.submit(ProcessingJob(book_id="book-1"))


def test_submit_requires_started_queue(repository: ChunkRepository, tmp_path: Path) -> None:
    queue, _ = _queue_for(repository, tmp_path / "books")

    with pytest.raises(RuntimeError):
        queue.submit(ProcessingJob(book_id="book-1"))


def test_worker_count_must_be_positive(repository: ChunkRepository) -> None:
    with pytest.raises(ValueError):
        ProcessingQueue(IngestionOrchestrator(repository), worker_count=0)


class _SlowAdapter:
    media_type = SLOW

    def supports(self, sniffed_bytes: bytes) -> bool:
        return True

    def extract(self, payload: bytes, *, filename: str | None = None) -> ExtractedDocument:
        time.sleep(0.3)
        return ExtractedDocument(media_type=self.media_type, segments=[Segment(text="finished slowly")])


def _slow_setup(repository: ChunkRepository, storage_root: Path) -> tuple[ProcessingQueue, IngestionOrchestrator, LocalFileStorage]:
    extractor = build_default_extractor()
    extractor.register_adapter(SLOW, _SlowAdapter())
    storage = LocalFileStorage(storage_root)
    orchestrator = IngestionOrchestrator(
        repository,
        extractor=extractor,
        book_lookup=CatalogBookLookup(repository),
        file_storage=storage,
    )
    return ProcessingQueue(orchestrator, worker_count=1), orchestrator, storage


@pytest.mark.asyncio
async def test_stop_lets_running_jobs_finish(repository: ChunkRepository, tmp_path: Path, make_pdf) -> None:
    queue, orchestrator, storage = _slow_setup(repository, tmp_path / "books")
    file_path = storage.save("slow-book", "slow-book.bin", b"slow payload")
    repository.upsert_book(BookRecord(id="slow-book", file_path=file_path, file_type=SLOW, user_id="reader"))
    _register(repository, storage, "book-2", make_pdf([["Waiting in line."]]))

    await queue.start()
    running = queue.submit(ProcessingJob(book_id="slow-book", user_id="reader"))
    waiting = queue.submit(ProcessingJob(book_id="book-2", user_id="reader"))
    while not orchestrator.is_in_flight("slow-book"):
        await asyncio.sleep(0.01)
    await queue.stop()

    outcome = await running.wait()
    assert outcome.status is ProcessingStatus.PROCESSED
    assert repository.get_state("slow-book").status == "processed"
    assert [chunk.text_content for chunk in repository.list_chunks("slow-book")] == ["finished slowly"]
    with pytest.raises(asyncio.CancelledError):
        await waiting.wait()
    assert orchestrator.status("book-2").status == "unprocessed"
    assert orchestrator.status("book-2").in_flight is False

    again = await IngestionOrchestrator(repository).process(
        "slow-book", make_pdf([["Replaced after restart."]]), PDF, force_refresh=True
    )
    assert again.status is ProcessingStatus.PROCESSED


@pytest.mark.asyncio
async def test_submitted_book_reports_processing_until_done(repository: ChunkRepository, tmp_path: Path, make_pdf) -> None:
    queue, orchestrator, storage = _slow_setup(repository, tmp_path / "books")
    _register(repository, storage, "book-1", make_pdf([["Chapter 1", "Waves broke on the rocks."]]))

    await queue.start()
    try:
        handle = queue.submit(ProcessingJob(book_id="book-1", user_id="reader"))
        queued = orchestrator.status("book-1")
        await asyncio.wait_for(handle.wait(), timeout=30)
    finally:
        await queue.stop()

    assert (queued.status, queued.in_flight) == ("processing", True)
    finished = orchestrator.status("book-1")
    assert (finished.status, finished.in_flight) == ("processed", False)


@pytest.mark.asyncio
async def test_rejected_jobs_record_failure_for_known_books(repository: ChunkRepository, tmp_path: Path, make_pdf) -> None:
    queue, storage = _queue_for(repository, tmp_path / "books")
    _register(repository, storage, "book-1", make_pdf([["Private text."]]))

    await queue.start()
    try:
        denied = queue.submit(ProcessingJob(book_id="book-1", user_id="intruder"))
        missing = queue.submit(ProcessingJob(book_id="missing", user_id="reader"))
        denied_outcome = await asyncio.wait_for(denied.wait(), timeout=30)
        missing_outcome = await asyncio.wait_for(missing.wait(), timeout=30)
    finally:
        await queue.stop()

    assert denied_outcome.reason == "Unauthorized"
    state = repository.get_state("book-1")
    assert (state.status, state.reason) == ("failed", "Unauthorized")
    assert missing_outcome.reason == "BookNotFound"
    assert repository.get_book("missing") is None
    assert repository.get_state("missing").status == "unprocessed"
