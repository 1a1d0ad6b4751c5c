"""FastAPI routes for book upload, processing, search, and context selection.

Services are resolved from ``app.state`` through ``Depends`` using the
``Annotated`` pattern. The caller's identity arrives in ``X-User-Id``.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Annotated

from fastapi import APIRouter, Depends, Form, Header, HTTPException, Query, Request, UploadFile
from fastapi.responses import JSONResponse

from lectern.api.schemas import (
    ChunkModel,
    ErrorResponse,
    MatchModel,
    ProcessingStatusResponse,
    ProcessResponse,
    ProgressContextResponse,
    QuestionContextRequest,
    QuestionContextResponse,
    ReprocessResponse,
    ScoredChunkModel,
    SearchRequest,
    SearchResponseModel,
    SearchResultModel,
    UploadResponse,
)
from lectern.collaborators import BookLookup, FileStorage
from lectern.config import Settings
from lectern.errors import StorageUnavailable, Unauthorized
from lectern.ingestion.adapters import EPUB_MEDIA_TYPE, PDF_MEDIA_TYPE
from lectern.ingestion.extractor import DocumentExtractor, normalize_media_type
from lectern.ingestion.normalization import title_from_filename
from lectern.pipeline import IngestionOrchestrator, ProcessingJob, ProcessingOutcome, ProcessingQueue
from lectern.retrieval import BookRetriever, SearchOptions, render_context
from lectern.store import BookRecord, ChunkRepository, StoredChunk

logger = logging.getLogger(__name__)

router = APIRouter()

_UPLOAD_CHUNK_SIZE = 64 * 1024
DEFAULT_CONTEXT_CHARS = 12000
_MEDIA_TYPE_BY_SUFFIX = {".pdf": PDF_MEDIA_TYPE, ".epub": EPUB_MEDIA_TYPE}
_GENERIC_MEDIA_TYPES = frozenset({"", "application/octet-stream", "binary/octet-stream"})


def _get_settings(request: Request) -> Settings:
    return request.app.state.settings


def _get_repository(request: Request) -> ChunkRepository:
    return request.app.state.repository


def _get_orchestrator(request: Request) -> IngestionOrchestrator:
    return request.app.state.orchestrator


def _get_queue(request: Request) -> ProcessingQueue:
    return request.app.state.processing_queue


def _get_retriever(request: Request) -> BookRetriever:
    return request.app.state.retriever


def _get_file_storage(request: Request) -> FileStorage:
    return request.app.state.file_storage


def _get_book_lookup(request: Request) -> BookLookup:
    return request.app.state.book_lookup


def _get_extractor(request: Request) -> DocumentExtractor:
    return request.app.state.extractor


def _get_user_id(x_user_id: Annotated[str | None, Header()] = None) -> str:
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    return user_id


SettingsDep = Annotated[Settings, Depends(_get_settings)]
RepositoryDep = Annotated[ChunkRepository, Depends(_get_repository)]
OrchestratorDep = Annotated[IngestionOrchestrator, Depends(_get_orchestrator)]
QueueDep = Annotated[ProcessingQueue, Depends(_get_queue)]
RetrieverDep = Annotated[BookRetriever, Depends(_get_retriever)]
FileStorageDep = Annotated[FileStorage, Depends(_get_file_storage)]
BookLookupDep = Annotated[BookLookup, Depends(_get_book_lookup)]
ExtractorDep = Annotated[DocumentExtractor, Depends(_get_extractor)]
UserIdDep = Annotated[str, Depends(_get_user_id)]


def _resolve_media_type(file: UploadFile) -> str:
    media_type = normalize_media_type(file.content_type)
    if media_type in _GENERIC_MEDIA_TYPES and file.filename:
        media_type = _MEDIA_TYPE_BY_SUFFIX.get(Path(file.filename).suffix.lower(), media_type)
    return media_type


def _chunk_model(chunk: StoredChunk) -> ChunkModel:
    return ChunkModel(
        chunk_id=chunk.id,
        chunk_index=chunk.chunk_index,
        text_content=chunk.text_content,
        chapter_title=chunk.chapter_title,
        page_start=chunk.page_start,
        page_end=chunk.page_end,
    )


def _failure_status(outcome: ProcessingOutcome) -> int:
    return 503 if outcome.reason == StorageUnavailable.reason else 422


@router.post(
    "/books/{book_id}/upload",
    status_code=202,
    response_model=UploadResponse,
    responses={413: {"model": ErrorResponse}, 415: {"model": ErrorResponse}},
)
async def upload_book(
    book_id: str,
    file: UploadFile,
    user_id: UserIdDep,
    settings: SettingsDep,
    repository: RepositoryDep,
    storage: FileStorageDep,
    extractor: ExtractorDep,
    queue: QueueDep,
    title: Annotated[str | None, Form()] = None,
) -> UploadResponse:
    """Store a book file and schedule its processing in the background."""

    media_type = _resolve_media_type(file)
    if media_type not in extractor.supported_media_types:
        raise HTTPException(
            status_code=415,
            detail=(
                f"Unsupported file type: {file.content_type}. "
                f"Allowed: {', '.join(sorted(extractor.supported_media_types))}"
            ),
        )

    parts: list[bytes] = []
    total_size = 0
    while True:
        part = await file.read(_UPLOAD_CHUNK_SIZE)
        if not part:
            break
        total_size += len(part)
        if total_size > settings.max_upload_bytes:
            raise HTTPException(
                status_code=413,
                detail=f"File too large. Maximum: {settings.max_upload_bytes} bytes.",
            )
        parts.append(part)
    payload = b"".join(parts)
    if not payload:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")

    existing = await asyncio.to_thread(repository.get_book, book_id)
    if existing is not None and existing.user_id not in (None, user_id):
        raise Unauthorized(f"Book {book_id} belongs to another user")

    filename = file.filename or f"{book_id}.bin"
    file_path = await asyncio.to_thread(storage.save, book_id, filename, payload)
    await asyncio.to_thread(
        repository.upsert_book,
        BookRecord(
            id=book_id,
            title=(title or "").strip() or title_from_filename(filename),
            author=existing.author if existing else None,
            file_path=file_path,
            file_type=media_type,
            user_id=user_id,
        ),
    )

    queue.submit(ProcessingJob(book_id=book_id, user_id=user_id))
    logger.info("Accepted upload for book %s (%d bytes, %s)", book_id, len(payload), media_type)
    return UploadResponse(book_id=book_id)


@router.post("/books/{book_id}/process", response_model=ProcessResponse)
async def process_book(
    book_id: str,
    user_id: UserIdDep,
    orchestrator: OrchestratorDep,
) -> JSONResponse:
    outcome = await orchestrator.process_book(book_id, user_id, force_refresh=False)
    body = ProcessResponse(
        success=outcome.success,
        already_processed=outcome.already_processed,
        chunks_created=outcome.chunk_count,
        status=outcome.status.value,
        error=outcome.reason,
        details=outcome.detail,
    )
    status_code = 200 if outcome.success else _failure_status(outcome)
    return JSONResponse(status_code=status_code, content=body.model_dump(by_alias=True))


@router.get("/books/{book_id}/process", response_model=ProcessingStatusResponse)
def get_processing_status(
    book_id: str,
    user_id: UserIdDep,
    book_lookup: BookLookupDep,
    orchestrator: OrchestratorDep,
) -> ProcessingStatusResponse:
    book_lookup.get_book(book_id, user_id)
    report = orchestrator.status(book_id)
    return ProcessingStatusResponse(
        status=report.status,
        is_processed=report.is_processed,
        chunks_count=report.chunk_count,
        reason=report.reason,
        detail=report.detail,
        in_flight=report.in_flight,
    )


@router.post("/books/{book_id}/reprocess", response_model=ReprocessResponse)
async def reprocess_book(
    book_id: str,
    user_id: UserIdDep,
    orchestrator: OrchestratorDep,
) -> JSONResponse:
    outcome = await orchestrator.reprocess(book_id, user_id)
    body = ReprocessResponse(
        success=outcome.success,
        chunks_created=outcome.chunk_count if outcome.success else 0,
        error=outcome.reason,
        details=outcome.detail,
    )
    status_code = 200 if outcome.success else _failure_status(outcome)
    return JSONResponse(status_code=status_code, content=body.model_dump(by_alias=True))


@router.post("/books/{book_id}/search", response_model=SearchResponseModel)
def search_book(
    book_id: str,
    request_body: SearchRequest,
    user_id: UserIdDep,
    settings: SettingsDep,
    book_lookup: BookLookupDep,
    retriever: RetrieverDep,
) -> SearchResponseModel:
    book_lookup.get_book(book_id, user_id)
    options = SearchOptions(
        case_sensitive=request_body.case_sensitive,
        whole_words=request_body.whole_words,
        max_results=(
            request_body.max_results
            if request_body.max_results is not None
            else settings.search_max_results
        ),
        fuzzy=request_body.fuzzy,
    )
    response = retriever.search(book_id, request_body.query, options)
    return SearchResponseModel(
        results=[
            SearchResultModel(
                chunk_id=result.chunk_id,
                chunk_index=result.chunk_index,
                text_content=result.text_content,
                chapter_title=result.chapter_title,
                matches=[
                    MatchModel(start=match.start, end=match.end, context=match.context)
                    for match in result.matches
                ],
            )
            for result in response.results
        ],
        count=response.count,
        query=response.query,
        fuzzy_fallback=response.fuzzy_fallback,
    )


@router.get("/books/{book_id}/context", response_model=ProgressContextResponse)
def progress_context(
    book_id: str,
    user_id: UserIdDep,
    book_lookup: BookLookupDep,
    retriever: RetrieverDep,
    progress: Annotated[float, Query()],
    max_chars: Annotated[int, Query(alias="maxChars", ge=1)] = DEFAULT_CONTEXT_CHARS,
) -> ProgressContextResponse:
    """Context the reader has already seen, for progress-bounded summaries."""

    book_lookup.get_book(book_id, user_id)
    window = retriever.context_for_progress(book_id, progress)
    return ProgressContextResponse(
        progress=window.progress,
        total_chunks=window.total_chunks,
        chunk_end_index=window.chunk_end_index,
        chunks=[_chunk_model(chunk) for chunk in window.chunks],
        context=render_context(window.chunks, max_chars=max_chars),
    )


@router.post("/books/{book_id}/context/question", response_model=QuestionContextResponse)
def question_context(
    book_id: str,
    request_body: QuestionContextRequest,
    user_id: UserIdDep,
    settings: SettingsDep,
    book_lookup: BookLookupDep,
    retriever: RetrieverDep,
    max_chars: Annotated[int, Query(alias="maxChars", ge=1)] = DEFAULT_CONTEXT_CHARS,
) -> QuestionContextResponse:
    """Chunks most relevant to a question, for grounded answering."""

    book_lookup.get_book(book_id, user_id)
    max_chunks = request_body.max_chunks if request_body.max_chunks is not None else settings.qa_max_chunks
    scored = retriever.context_for_question(book_id, request_body.question, max_chunks)
    return QuestionContextResponse(
        question=request_body.question,
        chunks=[
            ScoredChunkModel(
                **_chunk_model(item.chunk).model_dump(),
                distinct_terms=item.distinct_terms,
                occurrences=item.occurrences,
            )
            for item in scored
        ],
        count=len(scored),
        context=render_context([item.chunk for item in scored], max_chars=max_chars),
    )
