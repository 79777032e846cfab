from __future__ import annotations

import math
import re
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Iterable, Mapping

from .injector import InjectedWordOccurrence

STATUS_NEW = "new"
STATUS_LEARNING = "learning"
STATUS_REVIEW = "review"
STATUS_LEARNED = "learned"
REVIEW_STATUSES = (STATUS_NEW, STATUS_LEARNING, STATUS_REVIEW, STATUS_LEARNED)

DEFAULT_EASE_FACTOR = 2.5
MIN_EASE_FACTOR = 1.3
PASSING_QUALITY = 3
LEARNED_MIN_REVIEWS = 5
LEARNED_MIN_QUALITY = 4
REVIEW_MIN_REVIEWS = 2
DEFAULT_DUE_LIMIT = 20

_SENTENCE_END = re.compile(r"[.!?…]+[\"'”’»)]*(?=\s|$)|\n")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class VocabularyItem:
    id: str
    source_word: str
    target_word: str
    source_lang: str
    target_lang: str
    added_at: datetime
    context_sentence: str | None = None
    origin_book_id: str | None = None
    last_reviewed_at: datetime | None = None
    review_count: int = 0
    ease_factor: float = DEFAULT_EASE_FACTOR
    interval_days: int = 0
    status: str = STATUS_NEW

    def __post_init__(self) -> None:
        if self.status not in REVIEW_STATUSES:
            raise ValueError(f"Unknown review status {self.status!r}")
        if self.ease_factor < MIN_EASE_FACTOR:
            raise ValueError(f"Ease factor must be at least {MIN_EASE_FACTOR}, got {self.ease_factor}")
        if self.interval_days < 0:
            raise ValueError(f"Interval must be non-negative, got {self.interval_days}")

    @property
    def next_review_at(self) -> datetime | None:
        if self.last_reviewed_at is None:
            return None
        return self.last_reviewed_at + timedelta(days=self.interval_days)

    def as_payload(self) -> dict[str, object]:
        return {
            "id": self.id,
            "source_word": self.source_word,
            "target_word": self.target_word,
            "source_lang": self.source_lang,
            "target_lang": self.target_lang,
            "context_sentence": self.context_sentence,
            "origin_book_id": self.origin_book_id,
            "added_at": self.added_at.isoformat(),
            "last_reviewed_at": self.last_reviewed_at.isoformat() if self.last_reviewed_at else None,
            "review_count": self.review_count,
            "ease_factor": self.ease_factor,
            "interval_days": self.interval_days,
            "status": self.status,
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, object]) -> "VocabularyItem":
        def _text(key: str) -> str | None:
            value = payload.get(key)
            return value if isinstance(value, str) else None

        def _timestamp(key: str) -> datetime | None:
            value = payload.get(key)
            if not isinstance(value, str) or not value:
                return None
            parsed = datetime.fromisoformat(value)
            if parsed.tzinfo is None:
                # Offset-less timestamps are stored in UTC.
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed

        required = ("id", "source_word", "target_word", "source_lang", "target_lang")
        missing = [key for key in required if not _text(key)]
        if missing:
            raise ValueError(f"Vocabulary payload missing {', '.join(missing)}")
        review_count = payload.get("review_count")
        ease_factor = payload.get("ease_factor")
        interval_days = payload.get("interval_days")
        return cls(
            id=_text("id") or "",
            source_word=_text("source_word") or "",
            target_word=_text("target_word") or "",
            source_lang=_text("source_lang") or "",
            target_lang=_text("target_lang") or "",
            added_at=_timestamp("added_at") or _utcnow(),
            context_sentence=_text("context_sentence"),
            origin_book_id=_text("origin_book_id"),
            last_reviewed_at=_timestamp("last_reviewed_at"),
            review_count=review_count if isinstance(review_count, int) else 0,
            ease_factor=float(ease_factor) if isinstance(ease_factor, (int, float)) else DEFAULT_EASE_FACTOR,
            interval_days=interval_days if isinstance(interval_days, int) else 0,
            status=_text("status") or STATUS_NEW,
        )


def _next_interval(interval_days: int, ease_factor: float) -> int:
    if interval_days == 0:
        return 1
    if interval_days == 1:
        return 6
    # Half-up, matching the usual SM-2 tables (6 * 2.5 -> 15).
    return math.floor(interval_days * ease_factor + 0.5)


def _next_ease_factor(ease_factor: float, quality: int) -> float:
    miss = 5 - quality
    return max(MIN_EASE_FACTOR, ease_factor + (0.1 - miss * (0.08 + miss * 0.02)))


def review(item: VocabularyItem, quality: int, *, now: datetime | None = None) -> VocabularyItem:
    """Apply one SM-2 review with recall ``quality`` (0-5) and return the updated item.

    Failed recalls (quality < 3) reset the interval and drop the item back
    to learning without touching the ease factor. Successful recalls grow
    the interval 1 -> 6 -> interval * ease and adjust the ease factor,
    which never falls below 1.3.
    """
    if isinstance(quality, bool) or not isinstance(quality, int) or not 0 <= quality <= 5:
        raise ValueError(f"Review quality must be an integer from 0 to 5, got {quality!r}")
    reviewed_at = now or _utcnow()
    review_count = item.review_count + 1
    if quality < PASSING_QUALITY:
        return replace(
            item,
            interval_days=0,
            status=STATUS_LEARNING,
            review_count=review_count,
            last_reviewed_at=reviewed_at,
        )
    if review_count >= LEARNED_MIN_REVIEWS and quality >= LEARNED_MIN_QUALITY:
        status = STATUS_LEARNED
    elif review_count >= REVIEW_MIN_REVIEWS:
        status = STATUS_REVIEW
    else:
        status = STATUS_LEARNING
    return replace(
        item,
        interval_days=_next_interval(item.interval_days, item.ease_factor),
        ease_factor=_next_ease_factor(item.ease_factor, quality),
        review_count=review_count,
        status=status,
        last_reviewed_at=reviewed_at,
    )


def is_due(item: VocabularyItem, now: datetime | None = None) -> bool:
    if item.status == STATUS_LEARNED:
        return False
    next_review = item.next_review_at
    if next_review is None:
        return True
    return next_review <= (now or _utcnow())


def due_items(
    items: Iterable[VocabularyItem],
    now: datetime | None = None,
    limit: int | None = DEFAULT_DUE_LIMIT,
) -> list[VocabularyItem]:
    """Items due for review, most overdue first (never-reviewed items by age)."""
    moment = now or _utcnow()
    due = [item for item in items if is_due(item, moment)]
    due.sort(key=lambda item: (item.next_review_at or item.added_at, item.added_at, item.id))
    if limit is not None:
        due = due[: max(0, limit)]
    return due


def sentence_around(text: str, start: int, end: int) -> str:
    sentence_start = 0
    for match in _SENTENCE_END.finditer(text, 0, start):
        sentence_start = match.end()
    sentence_end = len(text)
    match = _SENTENCE_END.search(text, end)
    if match:
        sentence_end = match.end()
    return " ".join(text[sentence_start:sentence_end].split())


def vocabulary_item_from_occurrence(
    occurrence: InjectedWordOccurrence,
    text: str | None = None,
    *,
    book_id: str | None = None,
    now: datetime | None = None,
) -> VocabularyItem:
    """Create a new vocabulary item for a word the reader chose to save.

    ``text`` is the original chapter text the occurrence offsets refer to;
    the sentence around the word becomes the item's context.
    """
    entry = occurrence.matched_entry
    context = None
    if text:
        context = sentence_around(text, occurrence.start_offset, occurrence.end_offset) or None
    return VocabularyItem(
        id=str(uuid.uuid4()),
        source_word=entry.source_word,
        target_word=entry.target_word,
        source_lang=entry.source_lang,
        target_lang=entry.target_lang,
        added_at=now or _utcnow(),
        context_sentence=context,
        origin_book_id=book_id,
    )
