from __future__ import annotations

import pytest

from conftest import CONTAINER_XML, build_epub_bytes, sample_files
from xenolexia.container import (
    ZipArchive,
    decode_entities,
    extract_isbn,
    open_container,
    parse_package_document,
    resolve_href,
)
from xenolexia.errors import (
    BookParseError,
    MalformedContainerError,
    MissingPackageDocumentError,
    MissingTitleWarning,
)


def _opf(metadata: str, manifest: str, spine: str, *, spine_attrs: str = "") -> str:
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<package version="2.0" unique-identifier="uid" xmlns="http://www.idpf.org/2007/opf">
  <metadata xmlns:dc="http://purl.org/dc/elements/1.1/" xmlns:opf="http://www.idpf.org/2007/opf">
{metadata}
  </metadata>
  <manifest>
{manifest}
  </manifest>
  <spine{spine_attrs}>
{spine}
  </spine>
</package>
"""


def test_open_container_reads_sample_package():
    package = open_container(build_epub_bytes(sample_files()))

    assert package.package_path == "OEBPS/content.opf"
    assert package.base_path == "OEBPS"
    assert package.format_version == "3.0"
    assert package.unique_identifier == "BookId"
    assert package.metadata.title == "Sample Book"
    assert package.metadata.creator == "Sample Author"
    assert package.metadata.language == "en"
    assert package.metadata.isbn == "9780306406157"
    assert package.manifest["ch1"].path == "OEBPS/text/ch1.xhtml"
    assert [entry.item_id for entry in package.reading_order] == ["ch1", "ch2", "notes"]
    assert [entry.is_linear for entry in package.reading_order] == [True, True, False]
    assert [item.id for item in package.linear_items()] == ["ch1", "ch2"]
    assert [item.id for item in package.stylesheets()] == ["css"]
    assert package.toc_item_id == "nav"
    assert package.cover_item_id is None


def test_open_container_rejects_non_zip_bytes():
    with pytest.raises(MalformedContainerError):
        open_container(b"this is not a zip archive")


def test_missing_container_pointer_is_malformed():
    data = build_epub_bytes(sample_files(), container=None)
    with pytest.raises(MalformedContainerError):
        open_container(data)


def test_container_without_rootfile_is_malformed():
    container = '<?xml version="1.0"?><container><rootfiles></rootfiles></container>'
    with pytest.raises(MalformedContainerError):
        open_container(build_epub_bytes(sample_files(), container=container))


def test_missing_package_document():
    files = sample_files()
    del files["OEBPS/content.opf"]
    with pytest.raises(MissingPackageDocumentError) as excinfo:
        open_container(build_epub_bytes(files))
    assert isinstance(excinfo.value, BookParseError)
    assert "OEBPS/content.opf" in str(excinfo.value)


def test_open_container_accepts_an_archive_reader():
    archive = ZipArchive(build_epub_bytes(sample_files()))
    package = open_container(archive)
    assert package.metadata.title == "Sample Book"


def test_zip_archive_falls_back_to_case_insensitive_names():
    archive = ZipArchive(build_epub_bytes({"OEBPS/Text/Ch1.xhtml": "<p>hi</p>"}))
    assert archive.read_entry_text("OEBPS/text/ch1.xhtml") == "<p>hi</p>"
    with pytest.raises(KeyError):
        archive.read_entry_bytes("OEBPS/text/missing.xhtml")


def test_entry_text_decoding_handles_bom_and_legacy_encodings():
    archive = ZipArchive(
        build_epub_bytes(
            {
                "bom.txt": "\ufeffcafé".encode("utf-8"),
                "utf16.txt": "café".encode("utf-16"),
                "latin.txt": "café".encode("cp1252"),
            }
        )
    )
    assert archive.read_entry_text("bom.txt") == "café"
    assert archive.read_entry_text("utf16.txt") == "café"
    assert archive.read_entry_text("latin.txt") == "café"


def test_attribute_order_does_not_matter_for_cover_meta():
    opf = _opf(
        '    <dc:title>Cover Test</dc:title>\n    <meta content="img1" name="cover"/>',
        '    <item media-type="image/jpeg" href="images/front.jpg" id="img1"/>\n'
        '    <item href="ch1.xhtml" id="ch1" media-type="application/xhtml+xml"/>',
        '    <itemref idref="ch1"/>',
    )
    package = parse_package_document(opf, "content.opf")
    assert package.cover_item_id == "img1"
    assert package.manifest["img1"].path == "images/front.jpg"
    assert package.manifest["img1"].media_type == "image/jpeg"


def test_cover_image_property_wins_over_meta():
    opf = _opf(
        '    <dc:title>Cover Test</dc:title>\n    <meta name="cover" content="img1"/>',
        '    <item id="img1" href="a.jpg" media-type="image/jpeg"/>\n'
        '    <item id="img2" href="b.png" media-type="image/png" properties="cover-image"/>',
        "",
    )
    assert parse_package_document(opf, "content.opf").cover_item_id == "img2"


def test_cover_meta_with_unknown_id_falls_back_to_image_named_cover():
    opf = _opf(
        '    <dc:title>Cover Test</dc:title>\n    <meta name="cover" content="missing"/>',
        '    <item id="cover-jpg" href="cover.jpg" media-type="image/jpeg"/>\n'
        '    <item id="cover-page" href="cover.xhtml" media-type="application/xhtml+xml"/>',
        "",
    )
    assert parse_package_document(opf, "content.opf").cover_item_id == "cover-jpg"


def test_no_cover_when_nothing_matches():
    opf = _opf(
        "    <dc:title>No Cover</dc:title>",
        '    <item id="ch1" href="ch1.xhtml" media-type="application/xhtml+xml"/>',
        '    <itemref idref="ch1"/>',
    )
    assert parse_package_document(opf, "content.opf").cover_item_id is None


def test_toc_from_spine_toc_attribute():
    opf = _opf(
        "    <dc:title>NCX</dc:title>",
        '    <item id="ncx" href="toc.ncx" media-type="application/x-dtbncx+xml"/>\n'
        '    <item id="ch1" href="ch1.xhtml" media-type="application/xhtml+xml"/>',
        '    <itemref idref="ch1"/>',
        spine_attrs=' toc="ncx"',
    )
    assert parse_package_document(opf, "content.opf").toc_item_id == "ncx"


def test_toc_falls_back_to_ncx_extension():
    opf = _opf(
        "    <dc:title>NCX</dc:title>",
        '    <item id="ch1" href="ch1.xhtml" media-type="application/xhtml+xml"/>\n'
        '    <item id="contents" href="book.ncx" media-type="application/xml"/>',
        '    <itemref idref="ch1"/>',
        spine_attrs=' toc="gone"',
    )
    assert parse_package_document(opf, "content.opf").toc_item_id == "contents"


def test_missing_title_warns_and_uses_untitled():
    opf = _opf(
        "    <dc:creator>Someone</dc:creator>",
        '    <item id="ch1" href="ch1.xhtml" media-type="application/xhtml+xml"/>',
        '    <itemref idref="ch1"/>',
    )
    with pytest.warns(MissingTitleWarning):
        package = parse_package_document(opf, "content.opf")
    assert package.metadata.title == "Untitled"
    assert package.metadata.creator == "Someone"


def test_metadata_entities_are_decoded():
    opf = _opf(
        "    <dc:title>Tom &amp; Jerry&#39;s &#x263A;</dc:title>\n"
        "    <dc:subject>Cats</dc:subject>\n"
        "    <dc:subject>Dogs</dc:subject>",
        "",
        "",
    )
    metadata = parse_package_document(opf, "content.opf").metadata
    assert metadata.title == "Tom & Jerry's ☺"
    assert metadata.subjects == ["Cats", "Dogs"]


def test_spine_drops_unknown_items_and_keeps_order():
    opf = _opf(
        "    <dc:title>Spine</dc:title>",
        '    <item id="a" href="a.xhtml" media-type="application/xhtml+xml"/>\n'
        '    <item id="b" href="b.xhtml" media-type="application/xhtml+xml"/>',
        '    <itemref idref="b"/>\n    <itemref idref="ghost"/>\n    <itemref linear="yes" idref="a"/>',
    )
    package = parse_package_document(opf, "OPS/package.opf")
    assert [entry.item_id for entry in package.reading_order] == ["b", "a"]
    assert all(entry.is_linear for entry in package.reading_order)
    assert package.manifest["a"].path == "OPS/a.xhtml"


def test_prefixed_package_elements_are_read():
    opf = """<?xml version="1.0"?>
<opf:package xmlns:opf="http://www.idpf.org/2007/opf" version="2.0" unique-identifier="id">
  <opf:metadata><dc:title>Prefixed</dc:title></opf:metadata>
  <opf:manifest><opf:item id="c1" href="c1.html" media-type="application/xhtml+xml"/></opf:manifest>
  <opf:spine><opf:itemref idref="c1"/></opf:spine>
</opf:package>
"""
    package = parse_package_document(opf, "content.opf")
    assert package.metadata.title == "Prefixed"
    assert [item.id for item in package.linear_items()] == ["c1"]


def test_default_package_version_when_absent():
    opf = "<package><metadata><dc:title>Old</dc:title></metadata><manifest/><spine/></package>"
    package = parse_package_document(opf, "content.opf")
    assert package.format_version == "2.0"
    assert package.reading_order == []


def test_decode_entities_is_single_pass():
    assert decode_entities("&amp;lt;b&amp;gt;") == "&lt;b&gt;"
    assert decode_entities("&quot;x&quot; &apos;y&apos; &#65;&#x42;") == "\"x\" 'y' AB"
    assert decode_entities("&unknown; stays") == "&unknown; stays"


def test_resolve_href():
    assert resolve_href("OEBPS/text/ch1.xhtml", "../styles/a.css") == "OEBPS/styles/a.css"
    assert resolve_href("content.opf", "ch%201.xhtml#frag") == "ch 1.xhtml"
    assert resolve_href("OEBPS/content.opf", "/images/x.png") == "images/x.png"


def test_extract_isbn():
    assert extract_isbn("urn:isbn:9780306406157") == "9780306406157"
    assert extract_isbn("ISBN: 0306406152") == "0306406152"
    assert extract_isbn("urn:uuid:abc-def") is None
    assert extract_isbn(None) is None


def test_extract_isbn_prefers_urn_value():
    assert extract_isbn("urn:isbn:030640615X") == "030640615X"
    assert extract_isbn("calibre 1234567890123 urn:isbn:0306406152") == "0306406152"
    assert extract_isbn("URN:ISBN:9780306406157") == "9780306406157"


def test_container_pointer_path_is_used(make_epub):
    files = {path.replace("OEBPS/", "book/"): data for path, data in sample_files().items()}
    container = CONTAINER_XML.replace("OEBPS/content.opf", "book/content.opf")
    package = open_container(make_epub(files, container=container).read_bytes())
    assert package.package_path == "book/content.opf"
    assert package.manifest["ch2"].path == "book/text/ch2.xhtml"
