"""Pydantic request/response schemas for the book HTTP API.

Wire names are camelCase; Python attributes stay snake_case.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ErrorResponse(ApiModel):
    success: bool = False
    error: str
    details: str | None = None


class UploadResponse(ApiModel):
    success: bool = True
    book_id: str
    status: str = "processing"


class ProcessResponse(ApiModel):
    success: bool
    already_processed: bool = False
    chunks_created: int = 0
    status: str
    error: str | None = None
    details: str | None = None


class ProcessingStatusResponse(ApiModel):
    success: bool = True
    status: str
    is_processed: bool
    chunks_count: int
    reason: str | None = None
    detail: str | None = None
    in_flight: bool = False


class ReprocessResponse(ApiModel):
    success: bool
    chunks_created: int = 0
    error: str | None = None
    details: str | None = None


class SearchRequest(ApiModel):
    query: str
    case_sensitive: bool = False
    whole_words: bool = False
    max_results: int | None = None
    fuzzy: bool = False


class MatchModel(ApiModel):
    start: int
    end: int
    context: str


class SearchResultModel(ApiModel):
    chunk_id: str
    chunk_index: int
    text_content: str
    chapter_title: str | None = None
    matches: list[MatchModel]


class SearchResponseModel(ApiModel):
    success: bool = True
    results: list[SearchResultModel]
    count: int
    query: str
    fuzzy_fallback: bool = False


class ChunkModel(ApiModel):
    chunk_id: str
    chunk_index: int
    text_content: str
    chapter_title: str | None = None
    page_start: int | None = None
    page_end: int | None = None


class ProgressContextResponse(ApiModel):
    success: bool = True
    progress: float
    total_chunks: int
    chunk_end_index: int | None = None
    chunks: list[ChunkModel]
    context: str


class QuestionContextRequest(ApiModel):
    question: str
    max_chunks: int | None = None


class ScoredChunkModel(ChunkModel):
    distinct_terms: int
    occurrences: int


class QuestionContextResponse(ApiModel):
    success: bool = True
    question: str
    chunks: list[ScoredChunkModel]
    count: int
    context: str
