from __future__ import annotations

import argparse
import re
import sys
import warnings
from datetime import datetime, timezone
from importlib import metadata
from pathlib import Path

import tomllib
from rich.console import Console
from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn
from rich.table import Table

from .book import Book, open_book
from .chapters import Chapter
from .config import ReaderSettings, load_settings
from .errors import BookParseError, XenolexiaWarning
from .injector import inject
from .logging_utils import set_debug_logging
from .review import VocabularyItem, review
from .wordlist import PROFICIENCY_BANDS, WordListIndex, load_word_list


_SOURCE_CHECKOUT = Path(__file__).resolve().parent.parent.parent
_UNSAFE_FILENAME_CHARS = re.compile(r'[\\/:*?"<>|\s]+')
_CONTROL_CHARS = re.compile(r"[\x00-\x1f]")


def _checkout_version(root: Path = _SOURCE_CHECKOUT) -> str | None:
    """Version declared in a source checkout's pyproject.toml, if there is one."""
    try:
        project = tomllib.loads((root / "pyproject.toml").read_text(encoding="utf-8")).get("project", {})
    except (OSError, tomllib.TOMLDecodeError):
        return None
    version = project.get("version")
    return version if isinstance(version, str) else None


def _installed_version() -> str:
    try:
        return metadata.version("xenolexia")
    except metadata.PackageNotFoundError:
        return _checkout_version() or "0.0.0+unknown"


__version__ = _installed_version()


def _add_version_flag(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"xenolexia {__version__}",
    )


def _add_common_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Print debug traces from the book parser and word injector.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Settings file (TOML with a [reader] table). Defaults to $XENOLEXIA_CONFIG.",
    )


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="xenolexia",
        description="Read books with a controlled share of words swapped into the language you are learning.",
    )
    _add_version_flag(ap)
    ap.add_argument("command", choices=["info", "chapters", "inject", "review"], help="Subcommand to run")
    return ap


def build_info_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="xenolexia info", description="Show book metadata and chapters.")
    _add_version_flag(ap)
    _add_common_flags(ap)
    ap.add_argument("book", help="Path to an .epub or .txt file")
    return ap


def build_chapters_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="xenolexia chapters",
        description="Extract the reading order as plain-text chapters.",
    )
    _add_version_flag(ap)
    _add_common_flags(ap)
    ap.add_argument("book", help="Path to an .epub or .txt file")
    ap.add_argument(
        "-o",
        "--output-dir",
        type=Path,
        default=None,
        help="Write one .txt per chapter into this directory instead of printing.",
    )
    return ap


def build_inject_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="xenolexia inject",
        description="Render a chapter with foreign words injected from a frequency word list.",
    )
    _add_version_flag(ap)
    _add_common_flags(ap)
    ap.add_argument("book", help="Path to an .epub or .txt file")
    ap.add_argument("--words", required=True, type=Path, help="JSON word list for the language pair")
    ap.add_argument("--band", choices=PROFICIENCY_BANDS, default=None, help="Proficiency band to draw from")
    ap.add_argument("--density", type=float, default=None, help="Fraction (0-1) of eligible words to replace")
    ap.add_argument("--chapter", type=int, default=1, help="1-based chapter number (default: 1)")
    ap.add_argument("--source-lang", default=None, help="Language of the book (default from settings)")
    ap.add_argument("--target-lang", default=None, help="Language being learned (default from settings)")
    ap.add_argument(
        "--exclude",
        action="append",
        default=[],
        metavar="WORD",
        help="Never replace this word (case-insensitive; repeatable)",
    )
    return ap


def build_review_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="xenolexia review",
        description="Show how one SM-2 review changes a vocabulary item's schedule.",
    )
    _add_version_flag(ap)
    ap.add_argument("quality", type=int, choices=range(6), help="Recall quality from 0 (blackout) to 5 (perfect)")
    ap.add_argument("--ease", type=float, default=2.5, help="Current ease factor (default: 2.5)")
    ap.add_argument("--interval", type=int, default=0, help="Current interval in days (default: 0)")
    ap.add_argument("--count", type=int, default=0, help="Reviews done so far (default: 0)")
    ap.add_argument("--status", default="new", help="Current status (default: new)")
    return ap


def _load_settings(args: argparse.Namespace) -> ReaderSettings:
    settings = load_settings(args.config)
    set_debug_logging(bool(args.debug) or settings.debug)
    return settings


def _open(path: str, console: Console) -> Book:
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always", XenolexiaWarning)
        book = open_book(path, fallback_to_text=True)
    for warning in caught:
        if issubclass(warning.category, XenolexiaWarning):
            console.print(f"[yellow]warning:[/yellow] {warning.message}")
        else:
            warnings.showwarning(warning.message, warning.category, warning.filename, warning.lineno)
    return book


def _title_slug(title: str, max_length: int = 80) -> str:
    """Chapter title reduced to characters every filesystem accepts."""
    slug = _CONTROL_CHARS.sub("", _UNSAFE_FILENAME_CHARS.sub("_", title))
    return "_".join(part for part in slug.split("_") if part)[:max_length]


def _chapter_filename(chapter: Chapter, used_names: set[str]) -> str:
    prefix = f"{chapter.order_index + 1:03d}"
    slug = _title_slug(chapter.title)
    candidate = f"{prefix}_{slug}" if slug else prefix
    base = candidate
    suffix = 1
    while candidate in used_names:
        suffix += 1
        candidate = f"{base}_{suffix}"
    used_names.add(candidate)
    return f"{candidate}.txt"


def _run_info(args: argparse.Namespace) -> int:
    _load_settings(args)
    console = Console()
    book = _open(args.book, console)
    meta = book.metadata
    console.print(f"[bold]{meta.title}[/bold]")
    if meta.creator:
        console.print(f"by {meta.creator}")
    details = [
        ("Language", meta.language),
        ("Publisher", meta.publisher),
        ("Date", meta.date),
        ("ISBN", meta.isbn),
        ("Subjects", ", ".join(meta.subjects) if meta.subjects else None),
    ]
    for label, value in details:
        if value:
            console.print(f"{label}: {value}")
    if book.toc:
        console.print("\n[bold]Contents[/bold]")
        for entry in book.toc:
            console.print("  " * (entry.level + 1) + entry.title, markup=False, highlight=False)
    table = Table(title=f"{len(book.chapters)} chapters, {book.total_word_count} words")
    table.add_column("#", justify="right")
    table.add_column("Title")
    table.add_column("Words", justify="right")
    table.add_column("Source")
    for chapter in book.chapters:
        table.add_row(
            str(chapter.order_index + 1),
            chapter.title,
            str(chapter.word_count),
            chapter.source_href or "",
        )
    console.print(table)
    return 0


def _run_chapters(args: argparse.Namespace) -> int:
    _load_settings(args)
    console = Console(stderr=True)
    book = _open(args.book, console)
    if args.output_dir is None:
        for chapter in book.chapters:
            print(f"# {chapter.title}\n")
            print(chapter.text)
            print()
        return 0
    output_dir: Path = args.output_dir
    output_dir.mkdir(parents=True, exist_ok=True)
    used_names: set[str] = set()
    progress = Progress(
        TextColumn("{task.description}", justify="left"),
        BarColumn(bar_width=None),
        TaskProgressColumn(),
        console=console,
        transient=True,
        disable=not console.is_terminal,
    )
    with progress:
        task = progress.add_task("Writing chapters", total=len(book.chapters))
        for chapter in book.chapters:
            path = output_dir / _chapter_filename(chapter, used_names)
            path.write_text(chapter.text, encoding="utf-8")
            progress.advance(task)
    console.print(f"Wrote {len(book.chapters)} chapters to {output_dir}")
    return 0


def _run_inject(args: argparse.Namespace) -> int:
    settings = _load_settings(args).with_overrides(
        band=args.band,
        density=args.density,
        source_lang=args.source_lang,
        target_lang=args.target_lang,
    )
    console = Console()
    book = _open(args.book, Console(stderr=True))
    if not 1 <= args.chapter <= len(book.chapters):
        raise SystemExit(f"Chapter must be between 1 and {len(book.chapters)}")
    chapter = book.chapters[args.chapter - 1]
    entries = load_word_list(args.words, settings.source_lang, settings.target_lang)
    index = WordListIndex.build(entries)
    result = inject(
        chapter.text,
        index,
        settings.source_lang,
        settings.target_lang,
        settings.band,
        settings.density,
        exclude_words=args.exclude,
    )
    console.print(f"[bold]{chapter.title}[/bold]")
    console.print(result.rendered_text, markup=False, highlight=False)
    console.print(
        f"{len(result.occurrences)} of {result.eligible_count} eligible words replaced "
        f"({settings.band}, density {settings.density:.2f})"
    )
    table = Table()
    table.add_column("Offset", justify="right")
    table.add_column("Original")
    table.add_column("Foreign")
    table.add_column("Rank", justify="right")
    for occurrence in result.occurrences:
        table.add_row(
            str(occurrence.start_offset),
            occurrence.original_word,
            occurrence.foreign_word,
            str(occurrence.matched_entry.frequency_rank),
        )
    console.print(table)
    return 0


def _run_review(args: argparse.Namespace) -> int:
    now = datetime.now(timezone.utc)
    item = VocabularyItem(
        id="preview",
        source_word="",
        target_word="",
        source_lang="",
        target_lang="",
        added_at=now,
        review_count=args.count,
        ease_factor=args.ease,
        interval_days=args.interval,
        status=args.status,
    )
    updated = review(item, args.quality, now=now)
    console = Console()
    table = Table(title=f"SM-2 review with quality {args.quality}")
    table.add_column("Field")
    table.add_column("Before", justify="right")
    table.add_column("After", justify="right")
    table.add_row("status", item.status, updated.status)
    table.add_row("interval (days)", str(item.interval_days), str(updated.interval_days))
    table.add_row("ease factor", f"{item.ease_factor:.2f}", f"{updated.ease_factor:.2f}")
    table.add_row("reviews", str(item.review_count), str(updated.review_count))
    console.print(table)
    return 0


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    try:
        if argv and argv[0] == "info":
            return _run_info(build_info_parser().parse_args(argv[1:]))
        if argv and argv[0] == "chapters":
            return _run_chapters(build_chapters_parser().parse_args(argv[1:]))
        if argv and argv[0] == "inject":
            return _run_inject(build_inject_parser().parse_args(argv[1:]))
        if argv and argv[0] == "review":
            return _run_review(build_review_parser().parse_args(argv[1:]))
    except BookParseError as exc:
        raise SystemExit(f"Cannot read book: {exc}") from exc
    except (FileNotFoundError, ValueError) as exc:
        raise SystemExit(str(exc)) from exc

    parser = build_parser()
    if not argv:
        parser.print_help()
        return 0
    parser.parse_args(argv)
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
