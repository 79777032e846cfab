from .book import Book, SearchResult, open_book, search
from .chapters import (
    Chapter,
    CoverImage,
    TocEntry,
    chapter_from_plain_text,
    extract_all_linear,
    extract_chapter,
    extract_cover_image,
    html_to_text,
    parse_table_of_contents,
    resolve_stylesheets,
)
from .config import ReaderSettings, load_settings
from .container import (
    ArchiveReader,
    BookMetadata,
    DocumentPackage,
    ManifestItem,
    SpineItem,
    ZipArchive,
    decode_entities,
    extract_isbn,
    open_container,
    resolve_href,
)
from .errors import (
    BookParseError,
    ChapterNotFoundError,
    ExportError,
    MalformedContainerError,
    MissingPackageDocumentError,
    MissingStylesheetWarning,
    MissingTitleWarning,
    SkippedChapterWarning,
    TableOfContentsWarning,
    XenolexiaWarning,
)
from .export import export_vocabulary
from .injector import InjectedWordOccurrence, InjectionResult, inject, revert, tokenize
from .logging_utils import set_debug_logging
from .review import VocabularyItem, due_items, is_due, review, vocabulary_item_from_occurrence
from .wordlist import (
    WordListCache,
    WordListEntry,
    WordListIndex,
    load_word_list,
    proficiency_from_rank,
)

__all__ = [
    "ArchiveReader",
    "ZipArchive",
    "DocumentPackage",
    "BookMetadata",
    "ManifestItem",
    "SpineItem",
    "open_container",
    "decode_entities",
    "resolve_href",
    "extract_isbn",
    "Chapter",
    "TocEntry",
    "CoverImage",
    "extract_chapter",
    "extract_all_linear",
    "resolve_stylesheets",
    "html_to_text",
    "parse_table_of_contents",
    "extract_cover_image",
    "chapter_from_plain_text",
    "WordListEntry",
    "WordListIndex",
    "WordListCache",
    "load_word_list",
    "proficiency_from_rank",
    "InjectedWordOccurrence",
    "InjectionResult",
    "inject",
    "tokenize",
    "revert",
    "VocabularyItem",
    "review",
    "is_due",
    "due_items",
    "vocabulary_item_from_occurrence",
    "Book",
    "SearchResult",
    "open_book",
    "search",
    "export_vocabulary",
    "ReaderSettings",
    "load_settings",
    "set_debug_logging",
    "BookParseError",
    "MalformedContainerError",
    "MissingPackageDocumentError",
    "ChapterNotFoundError",
    "ExportError",
    "XenolexiaWarning",
    "MissingStylesheetWarning",
    "MissingTitleWarning",
    "SkippedChapterWarning",
    "TableOfContentsWarning",
]
