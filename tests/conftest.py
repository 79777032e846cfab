from __future__ import annotations

import io
import zipfile
from pathlib import Path
from typing import Callable

import pytest

CONTAINER_XML = """<?xml version="1.0" encoding="UTF-8"?>
<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">
  <rootfiles>
    <rootfile full-path="OEBPS/content.opf" media-type="application/oebps-package+xml"/>
  </rootfiles>
</container>
"""

SAMPLE_OPF = """<?xml version="1.0" encoding="UTF-8"?>
<package version="3.0" unique-identifier="BookId" xmlns="http://www.idpf.org/2007/opf">
  <metadata xmlns:dc="http://purl.org/dc/elements/1.1/">
    <dc:title>Sample Book</dc:title>
    <dc:creator>Sample Author</dc:creator>
    <dc:language>en</dc:language>
    <dc:identifier id="BookId">urn:isbn:9780306406157</dc:identifier>
  </metadata>
  <manifest>
    <item id="nav" href="nav.xhtml" media-type="application/xhtml+xml" properties="nav"/>
    <item id="css" href="styles/book.css" media-type="text/css"/>
    <item id="ch1" href="text/ch1.xhtml" media-type="application/xhtml+xml"/>
    <item id="ch2" href="text/ch2.xhtml" media-type="application/xhtml+xml"/>
    <item id="notes" href="text/notes.xhtml" media-type="application/xhtml+xml"/>
  </manifest>
  <spine>
    <itemref idref="ch1"/>
    <itemref idref="ch2"/>
    <itemref idref="notes" linear="no"/>
  </spine>
</package>
"""

SAMPLE_NAV = """<?xml version="1.0" encoding="utf-8"?>
<html xmlns="http://www.w3.org/1999/xhtml" xmlns:epub="http://www.idpf.org/2007/ops">
  <head><title>Contents</title></head>
  <body>
    <nav epub:type="toc">
      <ol>
        <li><a href="text/ch1.xhtml">The Cat</a></li>
        <li><a href="text/ch2.xhtml#start">The Dog</a></li>
      </ol>
    </nav>
  </body>
</html>
"""

SAMPLE_CH1 = """<?xml version="1.0" encoding="utf-8"?>
<html xmlns="http://www.w3.org/1999/xhtml">
  <head>
    <title>One</title>
    <link rel="stylesheet" type="text/css" href="../styles/book.css"/>
  </head>
  <body>
    <h1>Chapter One</h1>
    <p>The cat sat on the mat.</p>
  </body>
</html>
"""

SAMPLE_CH2 = """<?xml version="1.0" encoding="utf-8"?>
<html xmlns="http://www.w3.org/1999/xhtml">
  <head><title>Two</title></head>
  <body>
    <h1 id="start">Chapter Two</h1>
    <p>The dog ran to the house.</p>
    <p>Then the dog slept.</p>
  </body>
</html>
"""

SAMPLE_NOTES = """<?xml version="1.0" encoding="utf-8"?>
<html xmlns="http://www.w3.org/1999/xhtml">
  <head><title>Notes</title></head>
  <body><p>A note.</p></body>
</html>
"""

SAMPLE_CSS = "p { margin: 0; }"


def sample_files() -> dict[str, str | bytes]:
    return {
        "OEBPS/content.opf": SAMPLE_OPF,
        "OEBPS/nav.xhtml": SAMPLE_NAV,
        "OEBPS/styles/book.css": SAMPLE_CSS,
        "OEBPS/text/ch1.xhtml": SAMPLE_CH1,
        "OEBPS/text/ch2.xhtml": SAMPLE_CH2,
        "OEBPS/text/notes.xhtml": SAMPLE_NOTES,
    }


def build_epub_bytes(files: dict[str, str | bytes], *, container: str | None = CONTAINER_XML) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        zf.writestr("mimetype", "application/epub+zip")
        if container is not None:
            zf.writestr("META-INF/container.xml", container)
        for name, data in files.items():
            zf.writestr(name, data)
    return buffer.getvalue()


@pytest.fixture
def make_epub(tmp_path: Path) -> Callable[..., Path]:
    def _make(
        files: dict[str, str | bytes] | None = None,
        *,
        name: str = "sample.epub",
        container: str | None = CONTAINER_XML,
    ) -> Path:
        epub_path = tmp_path / name
        epub_path.write_bytes(build_epub_bytes(sample_files() if files is None else files, container=container))
        return epub_path

    return _make
