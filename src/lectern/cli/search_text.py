"""CLI entrypoint for literal text search inside one book."""

from __future__ import annotations

import argparse
import json

from dotenv import load_dotenv

from lectern.config import Settings
from lectern.errors import LecternError
from lectern.retrieval import BookRetriever, SearchOptions
from lectern.store import ChunkRepository


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    parser = argparse.ArgumentParser(description="Search a processed book's chunks for a literal query")
    parser.add_argument("--book-id", required=True, help="Book to search")
    parser.add_argument("--query", required=True, help="Text to search for")
    parser.add_argument("--case-sensitive", action="store_true", help="Match letter case exactly")
    parser.add_argument("--whole-words", action="store_true", help="Only match whole words")
    parser.add_argument("--fuzzy", action="store_true", help="Fall back to single-word matches")
    parser.add_argument("--limit", type=int, default=None, help="Maximum number of results")
    parser.add_argument("--db-path", default=None, help="SQLite database path (defaults to LECTERN_DB_PATH)")
    args = parser.parse_args(argv)

    settings = Settings.from_env()
    options = SearchOptions(
        case_sensitive=args.case_sensitive,
        whole_words=args.whole_words,
        max_results=args.limit if args.limit is not None else settings.search_max_results,
        fuzzy=args.fuzzy,
    )

    try:
        retriever = BookRetriever(ChunkRepository(args.db_path or settings.db_path))
        response = retriever.search(args.book_id, args.query, options)
    except LecternError as exc:
        print(json.dumps({"success": False, "error": exc.reason, "details": exc.detail}))
        return 1

    payload = {
        "success": response.success,
        "book_id": response.book_id,
        "query": response.query,
        "count": response.count,
        "fuzzy_fallback": response.fuzzy_fallback,
        "results": [result.to_dict() for result in response.results],
    }
    print(json.dumps(payload, ensure_ascii=True, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
