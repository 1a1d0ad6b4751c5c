"""Deferred processing: an asyncio queue drained by a pool of worker tasks."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging

from lectern.errors import LecternError
from lectern.pipeline.orchestrator import IngestionOrchestrator, ProcessingOutcome, ProcessingStatus

logger = logging.getLogger(__name__)

DEFAULT_WORKER_COUNT = 2


@dataclass(frozen=True, slots=True)
class ProcessingJob:
    book_id: str
    user_id: str | None = None
    force_refresh: bool = False


class ProcessingHandle:
    """Submitter-side view of a queued job; resolves to the job's outcome."""

    def __init__(self, job: ProcessingJob, future: asyncio.Future[ProcessingOutcome]) -> None:
        self._job = job
        self._future = future

    @property
    def job(self) -> ProcessingJob:
        return self._job

    @property
    def book_id(self) -> str:
        return self._job.book_id

    def done(self) -> bool:
        return self._future.done()

    async def wait(self) -> ProcessingOutcome:
        return await asyncio.shield(self._future)

    def _resolve(self, outcome: ProcessingOutcome) -> None:
        if not self._future.done():
            self._future.set_result(outcome)

    def _cancel(self) -> None:
        if not self._future.done():
            self._future.cancel()


class ProcessingQueue:
    """Run processing jobs in the background, one pending job per book."""

    def __init__(self, orchestrator: IngestionOrchestrator, *, worker_count: int = DEFAULT_WORKER_COUNT) -> None:
        if worker_count < 1:
            raise ValueError("worker_count must be >= 1")
        self._orchestrator = orchestrator
        self._worker_count = worker_count
        self._queue: asyncio.Queue[ProcessingHandle] | None = None
        self._workers: list[asyncio.Task[None]] = []
        self._pending: dict[str, ProcessingHandle] = {}
        self._active: set[ProcessingHandle] = set()

    @property
    def running(self) -> bool:
        return bool(self._workers)

    def pending_book_ids(self) -> set[str]:
        return set(self._pending)

    async def start(self) -> None:
        if self._workers:
            return
        self._queue = asyncio.Queue()
        self._workers = [
            asyncio.create_task(self._consume(), name=f"lectern-worker-{number}")
            for number in range(self._worker_count)
        ]
        logger.info("Started %d processing workers", self._worker_count)

    async def stop(self) -> None:
        """Stop accepting jobs, finish the ones already running and cancel the rest."""

        queue = self._queue
        self._queue = None
        if queue is not None:
            while not queue.empty():
                handle = queue.get_nowait()
                handle._cancel()
                self._pending.pop(handle.book_id, None)
                self._orchestrator.clear_queued(handle.book_id)
                queue.task_done()

        if self._active:
            logger.info("Waiting for %d running jobs before stopping", len(self._active))
            await asyncio.gather(*(handle.wait() for handle in list(self._active)), return_exceptions=True)

        workers = self._workers
        self._workers = []
        for task in workers:
            task.cancel()
        if workers:
            await asyncio.gather(*workers, return_exceptions=True)

        for handle in self._pending.values():
            handle._cancel()
            self._orchestrator.clear_queued(handle.book_id)
        self._pending.clear()

    async def join(self) -> None:
        """Wait until every submitted job has finished."""

        if self._queue is not None:
            await self._queue.join()

    def submit(self, job: ProcessingJob) -> ProcessingHandle:
        """Queue a job; a book that is already queued or running shares the existing handle."""

        if self._queue is None:
            raise RuntimeError("ProcessingQueue is not running; call start() first")

        existing = self._pending.get(job.book_id)
        if existing is not None:
            logger.debug("Coalesced processing request for book %s", job.book_id)
            return existing

        handle = ProcessingHandle(job, asyncio.get_running_loop().create_future())
        self._pending[job.book_id] = handle
        self._orchestrator.mark_queued(job.book_id)
        self._queue.put_nowait(handle)
        return handle

    async def _consume(self) -> None:
        assert self._queue is not None
        queue = self._queue
        while True:
            handle = await queue.get()
            self._active.add(handle)
            try:
                outcome = await self._run(handle.job)
                handle._resolve(outcome)
            except asyncio.CancelledError:
                handle._cancel()
                raise
            finally:
                self._active.discard(handle)
                self._pending.pop(handle.book_id, None)
                self._orchestrator.clear_queued(handle.book_id)
                queue.task_done()

    async def _run(self, job: ProcessingJob) -> ProcessingOutcome:
        try:
            outcome = await self._orchestrator.process_book(
                job.book_id,
                job.user_id,
                force_refresh=job.force_refresh,
            )
        except LecternError as exc:
            logger.warning("Deferred processing rejected for book %s: %s", job.book_id, exc)
            await asyncio.to_thread(self._orchestrator.record_rejection, job.book_id, exc)
            return ProcessingOutcome(
                book_id=job.book_id,
                status=ProcessingStatus.FAILED,
                reason=exc.reason,
                detail=exc.detail,
            )
        except Exception as exc:
            logger.exception("Deferred processing crashed for book %s", job.book_id)
            return ProcessingOutcome(
                book_id=job.book_id,
                status=ProcessingStatus.FAILED,
                reason=type(exc).__name__,
                detail=str(exc),
            )

        if not outcome.success:
            logger.warning(
                "Deferred processing failed for book %s: %s (%s)",
                job.book_id,
                outcome.reason,
                outcome.detail,
            )
        return outcome
