"""CLI entrypoint printing model context for reading progress or a question."""

from __future__ import annotations

import argparse
import json

from dotenv import load_dotenv

from lectern.config import Settings
from lectern.errors import LecternError
from lectern.retrieval import BookRetriever, render_context
from lectern.store import ChunkRepository, StoredChunk

DEFAULT_MAX_CHARS = 12000


def _chunk_dict(chunk: StoredChunk) -> dict[str, object]:
    return {
        "chunk_id": chunk.id,
        "chunk_index": chunk.chunk_index,
        "chapter_title": chunk.chapter_title,
        "word_count": chunk.word_count,
    }


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    parser = argparse.ArgumentParser(description="Select chunks to hand to a language model")
    parser.add_argument("--book-id", required=True, help="Book to read from")
    mode = parser.add_mutually_exclusive_group(required=True)
    mode.add_argument("--progress", type=float, help="Reading progress percent (0-100)")
    mode.add_argument("--question", help="Question to find relevant chunks for")
    parser.add_argument("--max-chunks", type=int, default=None, help="Maximum chunks for --question")
    parser.add_argument("--max-chars", type=int, default=DEFAULT_MAX_CHARS, help="Rendered context budget")
    parser.add_argument("--db-path", default=None, help="SQLite database path (defaults to LECTERN_DB_PATH)")
    args = parser.parse_args(argv)

    settings = Settings.from_env()

    try:
        retriever = BookRetriever(ChunkRepository(args.db_path or settings.db_path))
        if args.question is not None:
            max_chunks = args.max_chunks if args.max_chunks is not None else settings.qa_max_chunks
            scored = retriever.context_for_question(args.book_id, args.question, max_chunks)
            chunks = [item.chunk for item in scored]
            payload: dict[str, object] = {
                "book_id": args.book_id,
                "question": args.question,
                "chunks": [
                    {**_chunk_dict(item.chunk), "score": list(item.score)}
                    for item in scored
                ],
            }
        else:
            window = retriever.context_for_progress(args.book_id, args.progress)
            chunks = window.chunks
            payload = {
                "book_id": args.book_id,
                "progress": window.progress,
                "total_chunks": window.total_chunks,
                "chunk_end_index": window.chunk_end_index,
                "chunks": [_chunk_dict(chunk) for chunk in chunks],
            }
    except LecternError as exc:
        print(json.dumps({"success": False, "error": exc.reason, "details": exc.detail}))
        return 1

    payload["context"] = render_context(chunks, max_chars=args.max_chars)
    print(json.dumps(payload, ensure_ascii=True, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
