"""CLI entrypoint for extracting and storing one book's chunks."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from pathlib import Path

from dotenv import load_dotenv

from lectern.config import Settings
from lectern.errors import LecternError
from lectern.ingestion.adapters import EPUB_MEDIA_TYPE, PDF_MEDIA_TYPE
from lectern.pipeline import IngestionOrchestrator
from lectern.store import ChunkRepository

_MEDIA_TYPE_BY_SUFFIX = {".pdf": PDF_MEDIA_TYPE, ".epub": EPUB_MEDIA_TYPE}


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    parser = argparse.ArgumentParser(description="Extract, chunk, and store a book file")
    parser.add_argument("--book-id", required=True, help="Identifier the chunks are stored under")
    parser.add_argument("--file", required=True, help="PDF or EPUB file to process")
    parser.add_argument("--media-type", default=None, help="Override the media type inferred from the suffix")
    parser.add_argument("--force", action="store_true", help="Replace existing chunks")
    parser.add_argument("--db-path", default=None, help="SQLite database path (defaults to LECTERN_DB_PATH)")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    settings = Settings.from_env()
    source = Path(args.file)
    media_type = args.media_type or _MEDIA_TYPE_BY_SUFFIX.get(source.suffix.lower(), "")

    try:
        payload = source.read_bytes()
    except OSError as exc:
        print(json.dumps({"book_id": args.book_id, "status": "failed", "reason": "FileNotReadable", "detail": str(exc)}))
        return 1

    try:
        repository = ChunkRepository(args.db_path or settings.db_path)
        orchestrator = IngestionOrchestrator.from_settings(settings, repository)
        outcome = asyncio.run(
            orchestrator.process(
                args.book_id,
                payload,
                media_type,
                force_refresh=args.force,
                filename=source.name,
            )
        )
    except LecternError as exc:
        print(json.dumps({"book_id": args.book_id, "status": "failed", "reason": exc.reason, "detail": exc.detail}))
        return 1

    result = {
        "book_id": outcome.book_id,
        "status": outcome.status.value,
        "chunk_count": outcome.chunk_count,
        "reason": outcome.reason,
        "detail": outcome.detail,
    }
    print(json.dumps(result, ensure_ascii=True, indent=2))
    return 0 if outcome.success else 1


if __name__ == "__main__":
    raise SystemExit(main())
