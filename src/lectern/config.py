"""Runtime configuration for ingestion and retrieval services."""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path
from typing import Mapping


DEFAULT_DB_PATH = ".lectern.db"
DEFAULT_STORAGE_ROOT = "books"
DEFAULT_CHUNK_MAX_CHARS = 2500
MIN_CHUNK_MAX_CHARS = 200
DEFAULT_CHUNK_OVERLAP_CHARS = 0
DEFAULT_MAX_UPLOAD_BYTES = 50 * 1024 * 1024
DEFAULT_PROCESSING_TIMEOUT_SECONDS = 120.0
DEFAULT_WORKER_COUNT = 2
DEFAULT_STALE_CLAIM_SECONDS = 900.0
DEFAULT_SEARCH_MAX_RESULTS = 50
DEFAULT_QA_MAX_CHUNKS = 5


def _parse_positive_int(*, name: str, raw_value: str, minimum: int = 1) -> int:
    try:
        value = int(raw_value)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw_value!r}") from exc
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}")
    return value


def _parse_positive_float(*, name: str, raw_value: str, minimum: float = 0.001) -> float:
    try:
        value = float(raw_value)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw_value!r}") from exc
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}")
    return value


def _required(source: Mapping[str, str], name: str, default: object) -> str:
    raw = source.get(name, str(default)).strip()
    if not raw:
        raise ValueError(f"{name} cannot be empty")
    return raw


@dataclass(frozen=True, slots=True)
class Settings:
    """Validated runtime settings shared by the API and CLI entry points."""

    db_path: Path
    storage_root: Path
    chunk_max_chars: int = DEFAULT_CHUNK_MAX_CHARS
    chunk_overlap_chars: int = DEFAULT_CHUNK_OVERLAP_CHARS
    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES
    processing_timeout_seconds: float = DEFAULT_PROCESSING_TIMEOUT_SECONDS
    worker_count: int = DEFAULT_WORKER_COUNT
    stale_claim_seconds: float = DEFAULT_STALE_CLAIM_SECONDS
    search_max_results: int = DEFAULT_SEARCH_MAX_RESULTS
    qa_max_chunks: int = DEFAULT_QA_MAX_CHUNKS

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        source: Mapping[str, str] = os.environ if environ is None else environ

        db_path_raw = _required(source, "LECTERN_DB_PATH", DEFAULT_DB_PATH)
        storage_root_raw = _required(source, "LECTERN_STORAGE_ROOT", DEFAULT_STORAGE_ROOT)

        chunk_max_chars = _parse_positive_int(
            name="LECTERN_CHUNK_MAX_CHARS",
            raw_value=_required(source, "LECTERN_CHUNK_MAX_CHARS", DEFAULT_CHUNK_MAX_CHARS),
            minimum=MIN_CHUNK_MAX_CHARS,
        )
        chunk_overlap_chars = _parse_positive_int(
            name="LECTERN_CHUNK_OVERLAP_CHARS",
            raw_value=_required(source, "LECTERN_CHUNK_OVERLAP_CHARS", DEFAULT_CHUNK_OVERLAP_CHARS),
            minimum=0,
        )
        if chunk_overlap_chars >= chunk_max_chars:
            raise ValueError("LECTERN_CHUNK_OVERLAP_CHARS must be smaller than LECTERN_CHUNK_MAX_CHARS")

        max_upload_bytes = _parse_positive_int(
            name="LECTERN_MAX_UPLOAD_BYTES",
            raw_value=_required(source, "LECTERN_MAX_UPLOAD_BYTES", DEFAULT_MAX_UPLOAD_BYTES),
        )
        processing_timeout_seconds = _parse_positive_float(
            name="LECTERN_PROCESSING_TIMEOUT_SECONDS",
            raw_value=_required(
                source,
                "LECTERN_PROCESSING_TIMEOUT_SECONDS",
                DEFAULT_PROCESSING_TIMEOUT_SECONDS,
            ),
            minimum=0.1,
        )
        worker_count = _parse_positive_int(
            name="LECTERN_WORKER_COUNT",
            raw_value=_required(source, "LECTERN_WORKER_COUNT", DEFAULT_WORKER_COUNT),
        )
        stale_claim_seconds = _parse_positive_float(
            name="LECTERN_STALE_CLAIM_SECONDS",
            raw_value=_required(source, "LECTERN_STALE_CLAIM_SECONDS", DEFAULT_STALE_CLAIM_SECONDS),
            minimum=1.0,
        )
        search_max_results = _parse_positive_int(
            name="LECTERN_SEARCH_MAX_RESULTS",
            raw_value=_required(source, "LECTERN_SEARCH_MAX_RESULTS", DEFAULT_SEARCH_MAX_RESULTS),
        )
        qa_max_chunks = _parse_positive_int(
            name="LECTERN_QA_MAX_CHUNKS",
            raw_value=_required(source, "LECTERN_QA_MAX_CHUNKS", DEFAULT_QA_MAX_CHUNKS),
        )

        return cls(
            db_path=Path(db_path_raw),
            storage_root=Path(storage_root_raw),
            chunk_max_chars=chunk_max_chars,
            chunk_overlap_chars=chunk_overlap_chars,
            max_upload_bytes=max_upload_bytes,
            processing_timeout_seconds=processing_timeout_seconds,
            worker_count=worker_count,
            stale_claim_seconds=stale_claim_seconds,
            search_max_results=search_max_results,
            qa_max_chunks=qa_max_chunks,
        )
