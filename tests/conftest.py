from __future__ import annotations

from collections.abc import Callable
import itertools
from pathlib import Path

from ebooklib import epub
import pymupdf
import pytest

from lectern.ingestion.chunking import TextChunk
from lectern.store import ChunkRepository

_LINE_SPACING = 48


@pytest.fixture
def make_pdf() -> Callable[..., bytes]:
    """Build PDF bytes with one text block per line, one list of lines per page."""

    def _make(
        pages: list[list[str]],
        *,
        title: str | None = None,
        author: str | None = None,
        user_password: str | None = None,
    ) -> bytes:
        doc = pymupdf.open()
        for lines in pages:
            page = doc.new_page()
            for number, line in enumerate(lines):
                page.insert_text((72, 72 + number * _LINE_SPACING), line)

        metadata = {}
        if title:
            metadata["title"] = title
        if author:
            metadata["author"] = author
        if metadata:
            doc.set_metadata(metadata)

        if user_password:
            data = doc.tobytes(
                encryption=pymupdf.PDF_ENCRYPT_AES_256,
                owner_pw="owner-secret",
                user_pw=user_password,
            )
        else:
            data = doc.tobytes()
        doc.close()
        return data

    return _make


@pytest.fixture
def make_epub(tmp_path: Path) -> Callable[..., bytes]:
    """Build EPUB bytes with one spine document per (title, paragraphs) chapter."""

    counter = itertools.count()

    def _make(
        chapters: list[tuple[str, list[str]]],
        *,
        title: str = "Sample Book",
        author: str = "Jane Doe",
        language: str = "en",
        toc: object | None = None,
    ) -> bytes:
        book = epub.EpubBook()
        book.set_identifier(f"book-{next(counter)}")
        book.set_title(title)
        book.add_author(author)
        book.set_language(language)

        items: list[epub.EpubHtml] = []
        for number, (chapter_title, paragraphs) in enumerate(chapters, start=1):
            item = epub.EpubHtml(title=chapter_title, file_name=f"chapter_{number}.xhtml", lang=language)
            body = "".join(f"<p>{paragraph}</p>" for paragraph in paragraphs)
            item.content = f"<html><body><h1>{chapter_title}</h1>{body}</body></html>"
            book.add_item(item)
            items.append(item)

        book.add_item(epub.EpubNcx())
        book.add_item(epub.EpubNav())
        book.toc = toc if toc is not None else tuple(items)
        book.spine = ["nav", *items]

        path = tmp_path / f"generated-{next(counter)}.epub"
        epub.write_epub(str(path), book)
        return path.read_bytes()

    return _make


@pytest.fixture
def repository(tmp_path: Path) -> ChunkRepository:
    return ChunkRepository(tmp_path / "lectern.db")


def text_chunks(texts: list[str], *, title: str | None = None) -> list[TextChunk]:
    return [TextChunk(chunk_index=index, text=text, chapter_title=title) for index, text in enumerate(texts)]


@pytest.fixture
def seed_chunks(repository: ChunkRepository) -> Callable[..., list]:
    """Store plain text chunks for a book directly, bypassing extraction."""

    def _seed(book_id: str, texts: list[str], *, title: str | None = None):
        return repository.replace_chunks(book_id, text_chunks(texts, title=title))

    return _seed
