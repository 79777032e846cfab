from __future__ import annotations

import html as html_lib
import re
import warnings
from dataclasses import dataclass

from bs4 import (
    BeautifulSoup,
    Doctype,
    FeatureNotFound,
    Tag,
    XMLParsedAsHTMLWarning,
)  # type: ignore

from .container import (
    NCX_MEDIA_TYPE,
    ArchiveReader,
    DocumentPackage,
    ManifestItem,
    decode_entities,
    resolve_href,
)
from .errors import (
    ChapterNotFoundError,
    MissingStylesheetWarning,
    SkippedChapterWarning,
    TableOfContentsWarning,
)
from .logging_utils import debug_log

PLAIN_TEXT_CHAPTER_ID = "ch1"
PLAIN_TEXT_CHAPTER_TITLE = "Content"
PLAIN_TEXT_AUTHOR = "Unknown Author"

# Block elements that should start on a new line when collapsing to text.
BLOCK_LEVEL_TAGS = {
    "address",
    "article",
    "aside",
    "blockquote",
    "dd",
    "div",
    "dl",
    "dt",
    "figcaption",
    "figure",
    "footer",
    "form",
    "h1",
    "h2",
    "h3",
    "h4",
    "h5",
    "h6",
    "header",
    "hgroup",
    "hr",
    "li",
    "main",
    "nav",
    "ol",
    "p",
    "pre",
    "section",
    "table",
    "ul",
    "tr",
}
# Tags that should force a break even when nested inside another block.
FORCE_BREAK_TAGS = {"h1", "h2", "h3", "h4", "h5", "h6", "li", "p", "dt", "dd", "tr"}

_LINK_TAG_PATTERN = re.compile(r"<link\b([^>]*)/?>", re.IGNORECASE)
_HEAD_CLOSE_PATTERN = re.compile(r"</head\s*>", re.IGNORECASE)
_REL_PATTERN = re.compile(r"(?<![\w:.-])rel\s*=\s*([\"'])(.*?)\1", re.IGNORECASE | re.DOTALL)
_HREF_PATTERN = re.compile(r"(?<![\w:.-])href\s*=\s*([\"'])(.*?)\1", re.IGNORECASE | re.DOTALL)
_TITLE_PATTERNS = (
    re.compile(r"<title[^>]*>([^<]+)</title>", re.IGNORECASE),
    re.compile(r"<h1[^>]*>([^<]+)</h1>", re.IGNORECASE),
    re.compile(r"<h2[^>]*>([^<]+)</h2>", re.IGNORECASE),
)


@dataclass(frozen=True)
class Chapter:
    id: str
    title: str
    order_index: int
    content: str
    word_count: int
    source_href: str | None = None
    text: str = ""


@dataclass(frozen=True)
class TocEntry:
    title: str
    href: str
    level: int = 0
    id: str | None = None


@dataclass
class CoverImage:
    path: str
    media_type: str | None
    data: bytes


def _soup_from_html(markup: str) -> BeautifulSoup:
    for parser in ("lxml", "html.parser"):
        try:
            with warnings.catch_warnings():
                warnings.filterwarnings("ignore", category=XMLParsedAsHTMLWarning)
                return BeautifulSoup(markup, parser)
        except FeatureNotFound:
            continue
    return BeautifulSoup(markup, "html.parser")


def html_to_text(markup: str) -> str:
    """Collapse chapter markup to readable plain text with paragraph breaks."""
    soup = _soup_from_html(markup)
    for node in list(soup.contents):
        if isinstance(node, Doctype):
            node.extract()
    for t in soup.find_all(["script", "style", "title", "head"]):
        t.decompose()
    # Convert <br> to explicit newlines so they survive text extraction.
    for br in soup.find_all("br"):
        br.replace_with("\n")
    for tag in soup.find_all(BLOCK_LEVEL_TAGS):
        if tag.name in FORCE_BREAK_TAGS or not tag.find_parent(BLOCK_LEVEL_TAGS):
            tag.insert_before("\n")
            tag.insert_after("\n")
    txt = soup.get_text(separator="")
    txt = txt.replace("\r\n", "\n").replace("\r", "\n")
    txt = re.sub(r"[ \t]+\n", "\n", txt)
    txt = re.sub(r"\n[ \t]+", "\n", txt)
    txt = re.sub(r"\n{3,}", "\n\n", txt).strip()
    return txt


def count_words(text: str) -> int:
    return len(text.split())


def _stylesheet_links(markup: str) -> list[tuple[re.Match[str], str | None]]:
    links: list[tuple[re.Match[str], str | None]] = []
    for match in _LINK_TAG_PATTERN.finditer(markup):
        attrs = match.group(1)
        rel = _REL_PATTERN.search(attrs)
        if rel is None or "stylesheet" not in rel.group(2).lower().split():
            continue
        href = _HREF_PATTERN.search(attrs)
        links.append((match, decode_entities(href.group(2)) if href else None))
    return links


def resolve_stylesheets(archive: ArchiveReader, markup: str, document_path: str) -> str:
    """
    Inline every ``<link rel="stylesheet">`` of a chapter document.

    The CSS is read relative to ``document_path``, appended as one
    ``<style>`` block before ``</head>`` (or at the start when there is no
    head) and the link tags are removed. Unreadable stylesheets are
    reported with :class:`MissingStylesheetWarning` and skipped.
    """
    links = _stylesheet_links(markup)
    if not links:
        return markup
    styles: list[str] = []
    for _, href in links:
        if not href:
            continue
        css_path = resolve_href(document_path, href)
        try:
            styles.append(archive.read_entry_text(css_path))
        except KeyError:
            warnings.warn(
                f"Stylesheet {css_path} linked from {document_path} is missing.",
                MissingStylesheetWarning,
                stacklevel=2,
            )
    pieces: list[str] = []
    cursor = 0
    for match, _ in links:
        pieces.append(markup[cursor : match.start()])
        cursor = match.end()
    pieces.append(markup[cursor:])
    stripped = "".join(pieces)
    if not styles:
        return stripped
    inline_style = "<style>" + "\n".join(styles) + "</style>"
    head_close = _HEAD_CLOSE_PATTERN.search(stripped)
    if head_close:
        return stripped[: head_close.start()] + inline_style + stripped[head_close.start() :]
    return inline_style + stripped


def _title_from_content(markup: str) -> str | None:
    for pattern in _TITLE_PATTERNS:
        match = pattern.search(markup)
        if match:
            title = decode_entities(match.group(1)).strip()
            if title:
                return title
    return None


def _toc_soup(markup: str) -> BeautifulSoup:
    # html.parser keeps "epub:type" attributes and treats NCX tags as generic elements.
    with warnings.catch_warnings():
        warnings.filterwarnings("ignore", category=XMLParsedAsHTMLWarning)
        return BeautifulSoup(markup, "html.parser")


def _nav_level(anchor: Tag, nav: Tag) -> int:
    depth = 0
    for parent in anchor.parents:
        if parent is nav:
            break
        if parent.name == "ol":
            depth += 1
    return max(0, depth - 1)


def _parse_nav_document(markup: str, nav_path: str) -> list[TocEntry]:
    soup = _toc_soup(markup)
    nav_tags = []
    for nav in soup.find_all("nav"):
        nav_type = (nav.get("epub:type") or "").lower()
        role = (nav.get("role") or "").lower()
        if "toc" in nav_type or role == "doc-toc":
            nav_tags.append(nav)
    if not nav_tags:
        nav_tags = soup.find_all("nav")
    entries: list[TocEntry] = []
    for nav in nav_tags:
        for anchor in nav.find_all("a"):
            href = anchor.get("href")
            if not href:
                continue
            title = " ".join(anchor.get_text(" ", strip=True).split())
            entries.append(
                TocEntry(
                    title=title,
                    href=_resolve_toc_href(nav_path, href),
                    level=_nav_level(anchor, nav),
                    id=anchor.get("id"),
                )
            )
        if entries:
            break
    return entries


def _parse_ncx_document(markup: str, ncx_path: str) -> list[TocEntry]:
    soup = _toc_soup(markup)
    nav_map = soup.find("navmap")
    if nav_map is None:
        return []
    entries: list[TocEntry] = []

    def _collect(parent: Tag, level: int) -> None:
        for nav_point in parent.find_all("navpoint", recursive=False):
            content = nav_point.find("content")
            src = content.get("src") if isinstance(content, Tag) else None
            if src:
                label = nav_point.find("text")
                title = " ".join(label.get_text(" ", strip=True).split()) if label else ""
                entries.append(
                    TocEntry(
                        title=title,
                        href=_resolve_toc_href(ncx_path, src),
                        level=level,
                        id=nav_point.get("id"),
                    )
                )
            _collect(nav_point, level + 1)

    _collect(nav_map, 0)
    return entries


def _resolve_toc_href(toc_path: str, href: str) -> str:
    base, _, fragment = href.partition("#")
    resolved = resolve_href(toc_path, base) if base else toc_path
    return f"{resolved}#{fragment}" if fragment else resolved


def spine_table_of_contents(package: DocumentPackage) -> list[TocEntry]:
    return [
        TocEntry(title=f"Chapter {number}", href=item.path, level=0, id=item.id)
        for number, item in enumerate(package.linear_items(), start=1)
    ]


def parse_table_of_contents(archive: ArchiveReader, package: DocumentPackage) -> list[TocEntry]:
    """Read the nav/NCX document, falling back to one entry per linear spine item."""
    toc_item = package.manifest.get(package.toc_item_id or "")
    if toc_item is None:
        return spine_table_of_contents(package)
    try:
        markup = archive.read_entry_text(toc_item.path)
    except KeyError:
        warnings.warn(
            f"Table of contents {toc_item.path} is missing; using the spine order.",
            TableOfContentsWarning,
            stacklevel=2,
        )
        return spine_table_of_contents(package)
    is_ncx = toc_item.media_type.lower() == NCX_MEDIA_TYPE or toc_item.href.lower().endswith(".ncx")
    entries = (
        _parse_ncx_document(markup, toc_item.path)
        if is_ncx
        else _parse_nav_document(markup, toc_item.path)
    )
    if not entries:
        debug_log(f"No entries in {toc_item.path}; generating a table of contents from the spine")
        return spine_table_of_contents(package)
    return entries


def _toc_title_for(path: str, toc: list[TocEntry] | None) -> str | None:
    if not toc:
        return None
    for entry in toc:
        if entry.href.split("#", 1)[0] == path and entry.title:
            return entry.title
    return None


def _manifest_item(package: DocumentPackage, item_id: str) -> ManifestItem:
    item = package.manifest.get(item_id)
    if item is None:
        raise ChapterNotFoundError(f"Manifest has no item {item_id!r}")
    return item


def extract_chapter(
    archive: ArchiveReader,
    package: DocumentPackage,
    item_id: str,
    *,
    order_index: int = 0,
    toc: list[TocEntry] | None = None,
) -> Chapter:
    """Extract one manifest item as a chapter, linear or not."""
    item = _manifest_item(package, item_id)
    try:
        markup = archive.read_entry_text(item.path)
    except KeyError as exc:
        raise ChapterNotFoundError(f"Chapter file {item.path} for {item_id!r} is missing") from exc
    content = resolve_stylesheets(archive, markup, item.path)
    text = html_to_text(content)
    title = (
        _toc_title_for(item.path, toc)
        or _title_from_content(markup)
        or f"Chapter {order_index + 1}"
    )
    return Chapter(
        id=item_id,
        title=title,
        order_index=order_index,
        content=content,
        word_count=count_words(text),
        source_href=item.path,
        text=text,
    )


def extract_all_linear(
    archive: ArchiveReader,
    package: DocumentPackage,
    toc: list[TocEntry] | None = None,
) -> list[Chapter]:
    """Extract the linear reading order, leaving out entries that cannot be read."""
    if toc is None:
        toc = parse_table_of_contents(archive, package)
    chapters: list[Chapter] = []
    for spine_item in package.reading_order:
        if not spine_item.is_linear:
            continue
        try:
            chapter = extract_chapter(
                archive,
                package,
                spine_item.item_id,
                order_index=len(chapters),
                toc=toc,
            )
        except ChapterNotFoundError as exc:
            warnings.warn(
                f"Skipping spine entry {spine_item.item_id!r}: {exc}",
                SkippedChapterWarning,
                stacklevel=2,
            )
            continue
        chapters.append(chapter)
    debug_log(f"Extracted {len(chapters)} chapters from {package.package_path}")
    return chapters


def extract_cover_image(archive: ArchiveReader, package: DocumentPackage) -> CoverImage | None:
    item = package.manifest.get(package.cover_item_id or "")
    if item is None:
        return None
    try:
        data = archive.read_entry_bytes(item.path)
    except KeyError:
        debug_log(f"Cover image {item.path} is declared but missing")
        return None
    return CoverImage(path=item.path, media_type=item.media_type or None, data=data)


def plain_text_to_html(text: str) -> str:
    paragraphs = [p.strip() for p in re.split(r"\n\s*\n", text) if p.strip()]
    if not paragraphs:
        return "<p></p>"
    return "\n".join(
        "<p>" + html_lib.escape(p).replace("\n", "<br/>") + "</p>" for p in paragraphs
    )


def chapter_from_plain_text(raw: str) -> Chapter:
    """Wrap a whole plain-text file as a single chapter."""
    text = raw.replace("\r\n", "\n").replace("\r", "\n").strip()
    return Chapter(
        id=PLAIN_TEXT_CHAPTER_ID,
        title=PLAIN_TEXT_CHAPTER_TITLE,
        order_index=0,
        content=plain_text_to_html(text),
        word_count=count_words(text),
        source_href=None,
        text=text,
    )
