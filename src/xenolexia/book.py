from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from .chapters import (
    PLAIN_TEXT_AUTHOR,
    Chapter,
    CoverImage,
    TocEntry,
    chapter_from_plain_text,
    extract_all_linear,
    extract_chapter,
    extract_cover_image,
    parse_table_of_contents,
)
from .container import (
    DEFAULT_TITLE,
    ArchiveReader,
    BookMetadata,
    DocumentPackage,
    ZipArchive,
    decode_text,
    open_container,
)
from .errors import ChapterNotFoundError, MalformedContainerError
from .logging_utils import debug_log

TEXT_EXTS = (".txt", ".text")
SEARCH_CONTEXT_CHARS = 50


@dataclass
class Book:
    """An opened book: metadata, table of contents and linear chapters."""

    metadata: BookMetadata
    chapters: list[Chapter]
    toc: list[TocEntry] = field(default_factory=list)
    package: DocumentPackage | None = None
    archive: ArchiveReader | None = None
    source_path: Path | None = None

    @property
    def total_word_count(self) -> int:
        return sum(chapter.word_count for chapter in self.chapters)

    def chapter(self, item_id: str) -> Chapter:
        """Return a chapter by manifest id, including non-linear items."""
        for chapter in self.chapters:
            if chapter.id == item_id:
                return chapter
        if self.package is None or self.archive is None:
            raise ChapterNotFoundError(f"Book has no chapter {item_id!r}")
        return extract_chapter(
            self.archive,
            self.package,
            item_id,
            order_index=len(self.chapters),
            toc=self.toc,
        )

    def cover(self) -> CoverImage | None:
        if self.package is None or self.archive is None:
            return None
        return extract_cover_image(self.archive, self.package)


@dataclass
class SearchResult:
    chapter_index: int
    chapter_title: str
    excerpt: str
    position: int


def book_from_archive(archive: ArchiveReader, source_path: Path | None = None) -> Book:
    package = open_container(archive)
    toc = parse_table_of_contents(archive, package)
    chapters = extract_all_linear(archive, package, toc=toc)
    return Book(
        metadata=package.metadata,
        chapters=chapters,
        toc=toc,
        package=package,
        archive=archive,
        source_path=source_path,
    )


def book_from_plain_text(text: str, source_path: Path | None = None) -> Book:
    chapter = chapter_from_plain_text(text)
    return Book(
        metadata=BookMetadata(title=DEFAULT_TITLE, creator=PLAIN_TEXT_AUTHOR),
        chapters=[chapter],
        toc=[TocEntry(title=chapter.title, href=f"#{chapter.id}", level=0, id=chapter.id)],
        source_path=source_path,
    )


def open_book(path: str | Path, *, fallback_to_text: bool = False) -> Book:
    """
    Open an e-book container or a plain-text file.

    With ``fallback_to_text`` a container whose structure cannot be read
    is decoded and treated as one untitled chapter instead of raising
    :class:`MalformedContainerError`.
    """
    book_path = Path(path)
    raw = book_path.read_bytes()
    if book_path.suffix.lower() in TEXT_EXTS:
        return book_from_plain_text(decode_text(raw), source_path=book_path)
    try:
        archive = ZipArchive(raw)
        return book_from_archive(archive, source_path=book_path)
    except MalformedContainerError as exc:
        if not fallback_to_text:
            raise
        debug_log(f"{book_path}: {exc}; reading as plain text")
        return book_from_plain_text(decode_text(raw), source_path=book_path)


def search(book: Book, query: str) -> list[SearchResult]:
    """Case-insensitive search over every chapter's plain text."""
    results: list[SearchResult] = []
    needle = query.lower()
    if not needle:
        return results
    for chapter in book.chapters:
        text = chapter.text
        haystack = text.lower()
        position = 0
        while True:
            found = haystack.find(needle, position)
            if found == -1:
                break
            start = max(0, found - SEARCH_CONTEXT_CHARS)
            end = min(len(text), found + len(query) + SEARCH_CONTEXT_CHARS)
            excerpt = text[start:end]
            if start > 0:
                excerpt = "..." + excerpt
            if end < len(text):
                excerpt += "..."
            results.append(
                SearchResult(
                    chapter_index=chapter.order_index,
                    chapter_title=chapter.title,
                    excerpt=excerpt,
                    position=found,
                )
            )
            position = found + 1
    return results
