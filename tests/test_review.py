from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from xenolexia.injector import InjectedWordOccurrence
from xenolexia.review import (
    VocabularyItem,
    due_items,
    is_due,
    review,
    sentence_around,
    vocabulary_item_from_occurrence,
)
from xenolexia.wordlist import WordListEntry

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _item(**overrides) -> VocabularyItem:
    values = {
        "id": "item-1",
        "source_word": "cat",
        "target_word": "γάτα",
        "source_lang": "en",
        "target_lang": "el",
        "added_at": NOW - timedelta(days=30),
    }
    values.update(overrides)
    return VocabularyItem(**values)


def test_first_successful_review():
    updated = review(_item(), 3, now=NOW)
    assert updated.interval_days == 1
    assert updated.review_count == 1
    assert updated.status == "learning"
    assert updated.ease_factor == pytest.approx(2.36)
    assert updated.last_reviewed_at == NOW


def test_second_review_moves_to_review_status():
    updated = review(_item(interval_days=1, review_count=1, status="learning"), 4, now=NOW)
    assert updated.interval_days == 6
    assert updated.status == "review"
    assert updated.ease_factor == pytest.approx(2.5)


def test_later_interval_multiplies_by_ease():
    updated = review(_item(interval_days=6, review_count=2, status="review"), 4, now=NOW)
    assert updated.interval_days == 15
    assert updated.review_count == 3
    assert updated.status == "review"


def test_interval_rounds_half_up():
    updated = review(_item(interval_days=5, review_count=3, status="review"), 4, now=NOW)
    assert updated.interval_days == 13


def test_fifth_good_review_marks_learned():
    updated = review(_item(interval_days=38, review_count=4, status="review"), 4, now=NOW)
    assert updated.status == "learned"
    assert updated.interval_days == 95


def test_fifth_review_with_quality_three_stays_in_review():
    updated = review(_item(interval_days=38, review_count=4, status="review"), 3, now=NOW)
    assert updated.status == "review"


def test_perfect_recall_raises_ease():
    updated = review(_item(), 5, now=NOW)
    assert updated.ease_factor == pytest.approx(2.6)


@pytest.mark.parametrize("quality", [0, 1, 2])
def test_failed_recall_resets_interval(quality):
    item = _item(interval_days=15, review_count=3, ease_factor=2.2, status="review")
    updated = review(item, quality, now=NOW)
    assert updated.interval_days == 0
    assert updated.status == "learning"
    assert updated.ease_factor == 2.2
    assert updated.review_count == 4


def test_ease_never_drops_below_floor():
    updated = review(_item(ease_factor=1.3, interval_days=6, review_count=2, status="review"), 3, now=NOW)
    assert updated.ease_factor == 1.3


def test_ease_floor_holds_over_many_reviews():
    item = _item()
    for quality in [3, 3, 0, 3, 3, 3, 1, 3, 3, 3] * 3:
        item = review(item, quality, now=NOW)
        assert item.ease_factor >= 1.3
    assert item.ease_factor == pytest.approx(1.3)


@pytest.mark.parametrize("quality", [-1, 6, True, 2.5])
def test_invalid_quality_is_rejected(quality):
    with pytest.raises(ValueError):
        review(_item(), quality, now=NOW)


def test_review_does_not_mutate_the_input():
    item = _item()
    review(item, 5, now=NOW)
    assert item.review_count == 0
    assert item.status == "new"


def test_item_validation():
    with pytest.raises(ValueError):
        _item(status="mastered")
    with pytest.raises(ValueError):
        _item(ease_factor=1.0)
    with pytest.raises(ValueError):
        _item(interval_days=-1)


def test_is_due():
    assert is_due(_item(), NOW)
    reviewed = _item(last_reviewed_at=NOW - timedelta(days=2), interval_days=1, status="learning")
    assert is_due(reviewed, NOW)
    assert not is_due(_item(last_reviewed_at=NOW - timedelta(days=2), interval_days=6, status="review"), NOW)
    assert not is_due(_item(last_reviewed_at=NOW - timedelta(days=200), interval_days=95, status="learned"), NOW)


def test_due_items_most_overdue_first_with_limit():
    very_late = _item(id="a", last_reviewed_at=NOW - timedelta(days=20), interval_days=6, status="review")
    slightly_late = _item(id="b", last_reviewed_at=NOW - timedelta(days=2), interval_days=1, status="learning")
    not_due = _item(id="c", last_reviewed_at=NOW, interval_days=6, status="review")
    fresh = _item(id="d", added_at=NOW - timedelta(days=1))

    assert [item.id for item in due_items([fresh, not_due, slightly_late, very_late], NOW)] == ["a", "b", "d"]
    assert [item.id for item in due_items([fresh, slightly_late, very_late], NOW, limit=2)] == ["a", "b"]


def test_naive_payload_timestamps_are_treated_as_utc():
    payload = _item(id="n").as_payload()
    payload.update(
        {
            "added_at": "2023-12-01T00:00:00",
            "last_reviewed_at": "2024-01-01T00:00:00",
            "interval_days": 1,
            "review_count": 2,
            "status": "review",
        }
    )
    item = VocabularyItem.from_payload(payload)
    assert item.last_reviewed_at == datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert item.added_at.tzinfo is not None
    assert is_due(item, NOW)
    assert is_due(item)
    assert [due.id for due in due_items([item, _item(id="m")], NOW)] == ["n", "m"]


def test_payload_round_trip():
    item = _item(last_reviewed_at=NOW, review_count=2, interval_days=6, status="review", context_sentence="A cat.")
    restored = VocabularyItem.from_payload(item.as_payload())
    assert restored == item


def test_from_payload_requires_words():
    with pytest.raises(ValueError):
        VocabularyItem.from_payload({"id": "x", "source_word": "cat"})


def test_sentence_around():
    text = "It was late. The cat sat on the mat! Then it left."
    start = text.index("cat")
    assert sentence_around(text, start, start + 3) == "The cat sat on the mat!"


def test_item_from_occurrence():
    text = "It was late. The cat sat on the mat! Then it left."
    start = text.index("cat")
    entry = WordListEntry(
        source_word="cat",
        target_word="γάτα",
        source_lang="en",
        target_lang="el",
        proficiency_band="beginner",
        frequency_rank=120,
    )
    occurrence = InjectedWordOccurrence(
        original_word="cat",
        foreign_word="γάτα",
        start_offset=start,
        end_offset=start + 3,
        matched_entry=entry,
    )
    item = vocabulary_item_from_occurrence(occurrence, text, book_id="book-1", now=NOW)

    assert item.source_word == "cat"
    assert item.target_word == "γάτα"
    assert item.context_sentence == "The cat sat on the mat!"
    assert item.origin_book_id == "book-1"
    assert item.added_at == NOW
    assert item.status == "new"
    assert item.review_count == 0
    assert item.ease_factor == 2.5
    assert item.interval_days == 0
    assert item.id
    assert is_due(item, NOW)
