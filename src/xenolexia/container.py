from __future__ import annotations

import io
import posixpath
import re
import warnings
import zipfile
from dataclasses import dataclass, field
from typing import Protocol
from urllib.parse import unquote

from .errors import (
    MalformedContainerError,
    MissingPackageDocumentError,
    MissingTitleWarning,
)
from .logging_utils import debug_log

CONTAINER_PATH = "META-INF/container.xml"
DEFAULT_TITLE = "Untitled"
DEFAULT_PACKAGE_VERSION = "2.0"
NCX_MEDIA_TYPE = "application/x-dtbncx+xml"

_TEXT_ENCODINGS = ("utf-8-sig", "cp1252")

_ENTITY_PATTERN = re.compile(r"&(?:#(\d+)|#[xX]([0-9a-fA-F]+)|(amp|lt|gt|quot|apos));")
_NAMED_ENTITIES = {"amp": "&", "lt": "<", "gt": ">", "quot": '"', "apos": "'"}

_ROOTFILE_PATTERN = re.compile(r"<(?:[\w-]+:)?rootfile\b([^>]*)>", re.IGNORECASE)
_PACKAGE_TAG_PATTERN = re.compile(r"<(?:[\w-]+:)?package\b([^>]*)>", re.IGNORECASE)
_SPINE_TAG_PATTERN = re.compile(r"<(?:[\w-]+:)?spine\b([^>]*)>", re.IGNORECASE)
_ITEM_PATTERN = re.compile(r"<(?:[\w-]+:)?item\b([^>]*?)/?>", re.IGNORECASE)
_ITEMREF_PATTERN = re.compile(r"<(?:[\w-]+:)?itemref\b([^>]*?)/?>", re.IGNORECASE)
_META_PATTERN = re.compile(r"<(?:[\w-]+:)?meta\b([^>]*?)/?>", re.IGNORECASE)

_ISBN_URN_PATTERN = re.compile(r"urn:isbn:(\d{13}|\d{9}[\dXx])(?![\dXx])", re.IGNORECASE)
_ISBN13_PATTERN = re.compile(r"(?:ISBN[:\s-]?)?(\d{13})", re.IGNORECASE)
_ISBN10_PATTERN = re.compile(r"(?:ISBN[:\s-]?)?(\d{9}[\dXx])", re.IGNORECASE)


class ArchiveReader(Protocol):
    """Read-only view over the files of a compressed book container."""

    def list_entries(self) -> list[str]: ...

    def read_entry_text(self, path: str) -> str: ...

    def read_entry_bytes(self, path: str) -> bytes: ...


class ZipArchive:
    """ArchiveReader over an in-memory ZIP buffer.

    Missing entries raise ``KeyError`` like :meth:`zipfile.ZipFile.read`.
    Lookups fall back to a case-insensitive match because some packagers
    disagree with their own manifests about case.
    """

    def __init__(self, data: bytes) -> None:
        try:
            self._zip = zipfile.ZipFile(io.BytesIO(data), "r")
        except zipfile.BadZipFile as exc:
            raise MalformedContainerError(f"Not a ZIP container: {exc}") from exc
        self._names = self._zip.namelist()
        self._folded = {name.casefold(): name for name in reversed(self._names)}

    @classmethod
    def from_path(cls, path: str) -> "ZipArchive":
        with open(path, "rb") as fh:
            return cls(fh.read())

    def _resolve_name(self, path: str) -> str:
        normalized = path.lstrip("/")
        if normalized in self._names:
            return normalized
        folded = self._folded.get(normalized.casefold())
        if folded is None:
            raise KeyError(path)
        return folded

    def list_entries(self) -> list[str]:
        return list(self._names)

    def read_entry_bytes(self, path: str) -> bytes:
        with self._zip.open(self._resolve_name(path), "r") as handle:
            return handle.read()

    def read_entry_text(self, path: str) -> str:
        return decode_text(self.read_entry_bytes(path))

    def close(self) -> None:
        self._zip.close()


def decode_text(raw: bytes) -> str:
    if raw.startswith((b"\xff\xfe", b"\xfe\xff")):
        return raw.decode("utf-16", errors="replace")
    for enc in _TEXT_ENCODINGS:
        try:
            return raw.decode(enc)
        except UnicodeDecodeError:
            continue
    return raw.decode("utf-8", errors="replace")


@dataclass
class BookMetadata:
    title: str = DEFAULT_TITLE
    creator: str | None = None
    language: str | None = None
    identifier: str | None = None
    publisher: str | None = None
    date: str | None = None
    description: str | None = None
    subjects: list[str] = field(default_factory=list)
    rights: str | None = None
    contributors: list[str] = field(default_factory=list)

    @property
    def isbn(self) -> str | None:
        return extract_isbn(self.identifier)


@dataclass
class ManifestItem:
    id: str
    href: str
    media_type: str
    properties: str | None = None
    path: str = ""

    def has_property(self, name: str) -> bool:
        return name in (self.properties or "").split()

    @property
    def is_image(self) -> bool:
        return self.media_type.lower().startswith("image/")


@dataclass
class SpineItem:
    item_id: str
    is_linear: bool = True


@dataclass
class DocumentPackage:
    format_version: str
    unique_identifier: str
    metadata: BookMetadata
    manifest: dict[str, ManifestItem]
    reading_order: list[SpineItem]
    package_path: str
    toc_item_id: str | None = None
    cover_item_id: str | None = None

    @property
    def base_path(self) -> str:
        return posixpath.dirname(self.package_path)

    def linear_items(self) -> list[ManifestItem]:
        return [self.manifest[entry.item_id] for entry in self.reading_order if entry.is_linear]

    def stylesheets(self) -> list[ManifestItem]:
        return [
            item
            for item in self.manifest.values()
            if item.media_type.lower() == "text/css" or item.href.lower().endswith(".css")
        ]


def decode_entities(text: str) -> str:
    """Decode the XML named entities and numeric character references."""

    def repl(match: re.Match[str]) -> str:
        decimal, hexadecimal, name = match.groups()
        if name:
            return _NAMED_ENTITIES[name]
        try:
            code_point = int(decimal, 10) if decimal else int(hexadecimal, 16)
            return chr(code_point)
        except (ValueError, OverflowError):
            return match.group(0)

    return _ENTITY_PATTERN.sub(repl, text)


def _get_attr(attrs: str, name: str) -> str | None:
    pattern = rf"(?<![\w:.-]){re.escape(name)}\s*=\s*([\"'])(.*?)\1"
    match = re.search(pattern, attrs, re.IGNORECASE | re.DOTALL)
    if match is None:
        return None
    return match.group(2)


def _extract_block(xml_text: str, tag: str) -> str:
    pattern = rf"<(?:[\w-]+:)?{tag}\b[^>]*>(.*?)</(?:[\w-]+:)?{tag}\s*>"
    match = re.search(pattern, xml_text, re.IGNORECASE | re.DOTALL)
    return match.group(1) if match else ""


def _dc_patterns(tag: str) -> tuple[re.Pattern[str], re.Pattern[str]]:
    return (
        re.compile(rf"<dc:{tag}\b[^>]*>([^<]*)</dc:{tag}\s*>", re.IGNORECASE),
        re.compile(rf"<{tag}\b[^>]*>([^<]*)</{tag}\s*>", re.IGNORECASE),
    )


def _extract_field(metadata_xml: str, tag: str) -> str | None:
    for pattern in _dc_patterns(tag):
        match = pattern.search(metadata_xml)
        if match:
            value = decode_entities(match.group(1).strip())
            if value:
                return value
    return None


def _extract_all_fields(metadata_xml: str, tag: str) -> list[str]:
    values: list[str] = []
    for pattern in _dc_patterns(tag):
        for match in pattern.finditer(metadata_xml):
            value = decode_entities(match.group(1).strip())
            if value and value not in values:
                values.append(value)
    return values


def resolve_href(base_file: str, href: str) -> str:
    """Resolve ``href`` relative to the directory holding ``base_file``."""
    href = unquote(href.split("#", 1)[0])
    if href.startswith("/"):
        return posixpath.normpath(href.lstrip("/"))
    base = posixpath.dirname(base_file)
    combined = posixpath.join(base, href) if base else href
    normalized = posixpath.normpath(combined)
    return "" if normalized == "." else normalized


def extract_isbn(identifier: str | None) -> str | None:
    if not identifier:
        return None
    # An explicit urn:isbn: value wins over any other digit run in the identifier.
    for pattern in (_ISBN_URN_PATTERN, _ISBN13_PATTERN, _ISBN10_PATTERN):
        match = pattern.search(identifier)
        if match:
            return match.group(1)
    return None


def find_package_path(archive: ArchiveReader) -> str:
    try:
        container_xml = archive.read_entry_text(CONTAINER_PATH)
    except KeyError as exc:
        raise MalformedContainerError(f"Missing {CONTAINER_PATH}") from exc
    for match in _ROOTFILE_PATTERN.finditer(container_xml):
        full_path = _get_attr(match.group(1), "full-path")
        if full_path:
            return decode_entities(full_path).strip().lstrip("/")
    raise MalformedContainerError(f"No rootfile full-path in {CONTAINER_PATH}")


def _parse_metadata(opf_xml: str) -> BookMetadata:
    metadata_xml = _extract_block(opf_xml, "metadata")
    title = _extract_field(metadata_xml, "title")
    if title is None:
        warnings.warn(
            f"Package metadata has no title; using {DEFAULT_TITLE!r}.",
            MissingTitleWarning,
            stacklevel=2,
        )
        title = DEFAULT_TITLE
    return BookMetadata(
        title=title,
        creator=_extract_field(metadata_xml, "creator"),
        language=_extract_field(metadata_xml, "language"),
        identifier=_extract_field(metadata_xml, "identifier"),
        publisher=_extract_field(metadata_xml, "publisher"),
        date=_extract_field(metadata_xml, "date"),
        description=_extract_field(metadata_xml, "description"),
        subjects=_extract_all_fields(metadata_xml, "subject"),
        rights=_extract_field(metadata_xml, "rights"),
        contributors=_extract_all_fields(metadata_xml, "contributor"),
    )


def _parse_manifest(opf_xml: str, package_path: str) -> dict[str, ManifestItem]:
    manifest: dict[str, ManifestItem] = {}
    for match in _ITEM_PATTERN.finditer(_extract_block(opf_xml, "manifest")):
        attrs = match.group(1)
        item_id = _get_attr(attrs, "id")
        href = _get_attr(attrs, "href")
        if not item_id or not href:
            continue
        if item_id in manifest:
            debug_log(f"Duplicate manifest id {item_id!r}; keeping the first entry")
            continue
        decoded_href = decode_entities(href)
        manifest[item_id] = ManifestItem(
            id=item_id,
            href=decoded_href,
            media_type=(_get_attr(attrs, "media-type") or "").strip(),
            properties=_get_attr(attrs, "properties"),
            path=resolve_href(package_path, decoded_href),
        )
    return manifest


def _parse_spine(opf_xml: str, manifest: dict[str, ManifestItem]) -> list[SpineItem]:
    spine: list[SpineItem] = []
    for match in _ITEMREF_PATTERN.finditer(_extract_block(opf_xml, "spine")):
        attrs = match.group(1)
        idref = _get_attr(attrs, "idref")
        if not idref:
            continue
        if idref not in manifest:
            debug_log(f"Spine entry {idref!r} has no manifest item; skipping")
            continue
        linear = (_get_attr(attrs, "linear") or "").strip().lower()
        spine.append(SpineItem(item_id=idref, is_linear=linear != "no"))
    return spine


def _find_toc_id(opf_xml: str, manifest: dict[str, ManifestItem]) -> str | None:
    for item_id, item in manifest.items():
        if item.has_property("nav"):
            return item_id
    spine_tag = _SPINE_TAG_PATTERN.search(opf_xml)
    if spine_tag:
        toc_id = _get_attr(spine_tag.group(1), "toc")
        if toc_id and toc_id in manifest:
            return toc_id
    for item_id, item in manifest.items():
        if item.media_type.lower() == NCX_MEDIA_TYPE or item.href.lower().endswith(".ncx"):
            return item_id
    return None


def _find_cover_id(opf_xml: str, manifest: dict[str, ManifestItem]) -> str | None:
    for item_id, item in manifest.items():
        if item.has_property("cover-image"):
            return item_id
    for match in _META_PATTERN.finditer(_extract_block(opf_xml, "metadata") or opf_xml):
        attrs = match.group(1)
        name = _get_attr(attrs, "name")
        content = _get_attr(attrs, "content")
        if name and name.strip().lower() == "cover" and content:
            cover_id = content.strip()
            if cover_id in manifest:
                return cover_id
            debug_log(f"Cover meta points at unknown manifest id {cover_id!r}")
    for item_id, item in manifest.items():
        if "cover" in item_id.lower() and item.is_image:
            return item_id
    return None


def parse_package_document(opf_xml: str, package_path: str) -> DocumentPackage:
    """Scan a package document for the handful of fields a reader needs.

    Every field is extracted independently with a tolerant tag/attribute
    scan, so attribute order, namespace prefixes and self-closing versus
    paired elements do not matter and a broken section does not prevent
    the others from being read.
    """
    package_tag = _PACKAGE_TAG_PATTERN.search(opf_xml)
    package_attrs = package_tag.group(1) if package_tag else ""
    manifest = _parse_manifest(opf_xml, package_path)
    return DocumentPackage(
        format_version=_get_attr(package_attrs, "version") or DEFAULT_PACKAGE_VERSION,
        unique_identifier=_get_attr(package_attrs, "unique-identifier") or "",
        metadata=_parse_metadata(opf_xml),
        manifest=manifest,
        reading_order=_parse_spine(opf_xml, manifest),
        package_path=package_path,
        toc_item_id=_find_toc_id(opf_xml, manifest),
        cover_item_id=_find_cover_id(opf_xml, manifest),
    )


def as_archive(source: bytes | ArchiveReader) -> ArchiveReader:
    if isinstance(source, (bytes, bytearray, memoryview)):
        return ZipArchive(bytes(source))
    return source


def open_container(source: bytes | ArchiveReader) -> DocumentPackage:
    """Parse the package of an e-book container given as bytes or an ArchiveReader."""
    archive = as_archive(source)
    package_path = find_package_path(archive)
    try:
        opf_xml = archive.read_entry_text(package_path)
    except KeyError as exc:
        raise MissingPackageDocumentError(f"Package document not found: {package_path}") from exc
    package = parse_package_document(opf_xml, package_path)
    debug_log(
        f"Parsed {package_path}: {len(package.manifest)} manifest items, "
        f"{len(package.reading_order)} spine entries"
    )
    return package
