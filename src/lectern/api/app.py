"""FastAPI application factory and server entrypoint."""

from __future__ import annotations

import argparse
from contextlib import asynccontextmanager
import logging
from typing import AsyncIterator

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import uvicorn

from lectern import __version__
from lectern.api.routes import router
from lectern.collaborators import CatalogBookLookup, LocalFileStorage
from lectern.config import Settings
from lectern.errors import LecternError
from lectern.ingestion.extractor import build_default_extractor
from lectern.pipeline import IngestionOrchestrator, ProcessingQueue
from lectern.retrieval import BookRetriever
from lectern.store import ChunkRepository

logger = logging.getLogger(__name__)

_STATUS_BY_REASON = {
    "BookNotFound": 404,
    "Unauthorized": 403,
    "InvalidQuery": 400,
    "ConcurrentProcessingInProgress": 409,
    "ConstraintViolation": 409,
    "StorageUnavailable": 503,
    "UnsupportedFormat": 415,
}


async def _handle_domain_error(request: Request, exc: LecternError) -> JSONResponse:
    status_code = _STATUS_BY_REASON.get(exc.reason, 422)
    if status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": exc.reason, "details": exc.detail},
    )


@asynccontextmanager
async def _lifespan(application: FastAPI) -> AsyncIterator[None]:
    queue: ProcessingQueue = application.state.processing_queue
    await queue.start()
    logger.info("Lectern API started (db=%s)", application.state.settings.db_path)
    try:
        yield
    finally:
        await queue.stop()
        logger.info("Lectern API stopped")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Wire the store, pipeline, and retriever into a FastAPI application."""

    settings = settings or Settings.from_env()

    repository = ChunkRepository(settings.db_path)
    file_storage = LocalFileStorage(settings.storage_root)
    book_lookup = CatalogBookLookup(repository)
    extractor = build_default_extractor()
    orchestrator = IngestionOrchestrator(
        repository,
        extractor=extractor,
        book_lookup=book_lookup,
        file_storage=file_storage,
        max_chars=settings.chunk_max_chars,
        overlap_chars=settings.chunk_overlap_chars,
        processing_timeout_seconds=settings.processing_timeout_seconds,
        stale_claim_seconds=settings.stale_claim_seconds,
    )

    application = FastAPI(title="Lectern API", version=__version__, lifespan=_lifespan)
    application.state.settings = settings
    application.state.repository = repository
    application.state.file_storage = file_storage
    application.state.book_lookup = book_lookup
    application.state.extractor = extractor
    application.state.orchestrator = orchestrator
    application.state.processing_queue = ProcessingQueue(orchestrator, worker_count=settings.worker_count)
    application.state.retriever = BookRetriever(repository)

    application.add_exception_handler(LecternError, _handle_domain_error)
    application.include_router(router)
    return application


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Serve the Lectern book API")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--log-level", default="info")
    return parser


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    uvicorn.run(create_app(), host=args.host, port=args.port, log_level=args.log_level.lower())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
