from __future__ import annotations

import csv
import io
import json
from datetime import datetime, timezone
from typing import Iterable

from .errors import ExportError
from .review import VocabularyItem

EXPORT_FORMATS = ("csv", "anki", "json")
CSV_COLUMNS = (
    "source_word",
    "target_word",
    "source_lang",
    "target_lang",
    "context_sentence",
    "status",
    "review_count",
    "ease_factor",
    "interval_days",
    "added_at",
    "last_reviewed_at",
)


def _anki_field(value: str | None) -> str:
    if not value:
        return ""
    return " ".join(value.replace("\t", " ").split())


def _csv_row(item: VocabularyItem) -> list[object]:
    payload = item.as_payload()
    return ["" if payload[column] is None else payload[column] for column in CSV_COLUMNS]


def export_vocabulary(
    items: Iterable[VocabularyItem],
    fmt: str = "csv",
    *,
    statuses: Iterable[str] | None = None,
    now: datetime | None = None,
) -> str:
    """Serialise vocabulary items as CSV, Anki-importable TSV or JSON."""
    if fmt not in EXPORT_FORMATS:
        raise ExportError(f"Unsupported export format {fmt!r}; expected one of {', '.join(EXPORT_FORMATS)}")
    selected = list(items)
    if statuses is not None:
        wanted = set(statuses)
        selected = [item for item in selected if item.status in wanted]
    if not selected:
        raise ExportError("No vocabulary items match the export criteria")

    if fmt == "csv":
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(CSV_COLUMNS)
        for item in selected:
            writer.writerow(_csv_row(item))
        return buffer.getvalue()
    if fmt == "anki":
        lines = [
            "\t".join(
                (
                    _anki_field(item.target_word),
                    _anki_field(item.source_word),
                    _anki_field(item.context_sentence),
                )
            )
            for item in selected
        ]
        return "\n".join(lines) + "\n"
    exported_at = (now or datetime.now(timezone.utc)).isoformat()
    payload = {
        "exported_at": exported_at,
        "count": len(selected),
        "items": [item.as_payload() for item in selected],
    }
    return json.dumps(payload, ensure_ascii=False, indent=2) + "\n"
