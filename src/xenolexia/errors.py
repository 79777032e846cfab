from __future__ import annotations


class BookParseError(RuntimeError):
    """Raised when a book cannot be turned into a package or chapter."""


class MalformedContainerError(BookParseError):
    """Raised when the archive or its META-INF/container.xml pointer is unusable."""


class MissingPackageDocumentError(BookParseError):
    """Raised when the package document named by the pointer file is absent."""


class ChapterNotFoundError(BookParseError, KeyError):
    """Raised when a manifest item, or the file it points at, does not exist."""

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message.
        return RuntimeError.__str__(self)


class ExportError(ValueError):
    """Raised when a vocabulary export has nothing to write or an unknown format."""


class XenolexiaWarning(UserWarning):
    """Base class for non-fatal problems found while reading a book."""


class MissingStylesheetWarning(XenolexiaWarning):
    """A linked stylesheet could not be read; the chapter renders without it."""


class MissingTitleWarning(XenolexiaWarning):
    """The package metadata has no title; "Untitled" is used instead."""


class SkippedChapterWarning(XenolexiaWarning):
    """A spine entry could not be extracted and was left out of the reading order."""


class TableOfContentsWarning(XenolexiaWarning):
    """The navigation document could not be parsed; a spine-derived TOC is used."""
