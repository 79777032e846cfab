from __future__ import annotations

import json
import threading
from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Mapping

from .logging_utils import debug_log

__all__ = [
    "PROFICIENCY_BANDS",
    "PROFICIENCY_RANKS",
    "WordListEntry",
    "WordListIndex",
    "WordListCache",
    "load_word_list",
    "proficiency_from_rank",
]

PROFICIENCY_BANDS = ("beginner", "intermediate", "advanced")
# Inclusive frequency-rank ranges used when a word list row carries no band.
PROFICIENCY_RANKS = {
    "beginner": (1, 500),
    "intermediate": (501, 2000),
    "advanced": (2001, 5000),
}


def proficiency_from_rank(rank: int) -> str:
    if rank <= PROFICIENCY_RANKS["beginner"][1]:
        return "beginner"
    if rank <= PROFICIENCY_RANKS["intermediate"][1]:
        return "intermediate"
    return "advanced"


@dataclass(frozen=True, slots=True)
class WordListEntry:
    source_word: str
    target_word: str
    source_lang: str
    target_lang: str
    proficiency_band: str
    frequency_rank: int
    part_of_speech: str | None = None
    variants: tuple[str, ...] = ()
    pronunciation: str | None = None

    def __post_init__(self) -> None:
        # Callers may pass a list; entries must stay hashable for the index.
        object.__setattr__(self, "variants", tuple(self.variants))


def _entry_sort_key(entry: WordListEntry) -> tuple[object, ...]:
    # Total order over every field so build order never changes lookup results.
    return (
        entry.frequency_rank,
        entry.source_word,
        entry.target_word,
        entry.proficiency_band,
        entry.part_of_speech or "",
        entry.variants,
        entry.pronunciation or "",
    )


_PairKey = tuple[str, str]
_WordKey = tuple[str, str, str]


class WordListIndex:
    """
    Immutable lookup tables over a bilingual, frequency-ranked word list.

    Entries are grouped per (source language, target language) pair. Exact
    lookups are case-sensitive on the stored surface form; variant lookups
    are case-insensitive and consult each entry's ``variants``. When several
    entries share a key, the most frequent (lowest rank) wins. Nothing is
    mutated after :meth:`build`, so concurrent readers need no locking.
    """

    __slots__ = ("_exact", "_variants", "_bands", "_size")

    def __init__(
        self,
        exact: Mapping[_WordKey, tuple[WordListEntry, ...]],
        variants: Mapping[_WordKey, tuple[WordListEntry, ...]],
        bands: Mapping[tuple[str, str, str], tuple[WordListEntry, ...]],
        size: int,
    ) -> None:
        self._exact = dict(exact)
        self._variants = dict(variants)
        self._bands = dict(bands)
        self._size = size

    @classmethod
    def build(cls, entries: Iterable[WordListEntry]) -> "WordListIndex":
        ordered = sorted(set(entries), key=_entry_sort_key)
        exact: dict[_WordKey, list[WordListEntry]] = defaultdict(list)
        variants: dict[_WordKey, list[WordListEntry]] = defaultdict(list)
        bands: dict[tuple[str, str, str], list[WordListEntry]] = defaultdict(list)
        for entry in ordered:
            exact[(entry.source_lang, entry.target_lang, entry.source_word)].append(entry)
            seen_variants: set[str] = set()
            for variant in entry.variants:
                folded = variant.casefold()
                if not folded or folded in seen_variants:
                    continue
                seen_variants.add(folded)
                variants[(entry.source_lang, entry.target_lang, folded)].append(entry)
            bands[(entry.source_lang, entry.target_lang, entry.proficiency_band)].append(entry)
        return cls(
            exact={key: tuple(value) for key, value in exact.items()},
            variants={key: tuple(value) for key, value in variants.items()},
            bands={key: tuple(value) for key, value in bands.items()},
            size=len(ordered),
        )

    def __len__(self) -> int:
        return self._size

    @staticmethod
    def _first(
        candidates: tuple[WordListEntry, ...] | None, band: str | None
    ) -> WordListEntry | None:
        if not candidates:
            return None
        for entry in candidates:
            if band is None or entry.proficiency_band == band:
                return entry
        return None

    def lookup(
        self,
        word: str,
        source_lang: str,
        target_lang: str,
        band: str | None = None,
    ) -> WordListEntry | None:
        return self._first(self._exact.get((source_lang, target_lang, word)), band)

    def lookup_by_variant(
        self,
        word: str,
        source_lang: str,
        target_lang: str,
        band: str | None = None,
    ) -> WordListEntry | None:
        return self._first(self._variants.get((source_lang, target_lang, word.casefold())), band)

    def by_proficiency(self, source_lang: str, target_lang: str, band: str) -> list[WordListEntry]:
        return list(self._bands.get((source_lang, target_lang, band), ()))

    def language_pairs(self) -> list[_PairKey]:
        return sorted({(src, tgt) for src, tgt, _ in self._bands})


def _coerce_variants(value: object) -> tuple[str, ...]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        return ()
    return tuple(item.strip() for item in value if isinstance(item, str) and item.strip())


def _rows_from_source(source: str | Path | Iterable[Mapping[str, object]]) -> list[object]:
    if isinstance(source, Path):
        data = json.loads(source.read_text(encoding="utf-8"))
    elif isinstance(source, str):
        stripped = source.lstrip()
        if stripped.startswith("["):
            data = json.loads(source)
        else:
            data = json.loads(Path(source).read_text(encoding="utf-8"))
    else:
        data = list(source)
    if isinstance(data, Mapping):
        data = data.get("words", [])
    if not isinstance(data, list):
        raise ValueError("Word list must be a JSON array of objects")
    return data


def load_word_list(
    source: str | Path | Iterable[Mapping[str, object]],
    source_lang: str,
    target_lang: str,
) -> list[WordListEntry]:
    """
    Read ``{source, target, rank, pos?, variants?, pronunciation?, band?}`` rows.

    ``source`` may be a path, a JSON string or already-decoded rows. Rows
    without a usable ``source`` or ``target`` are skipped; a missing rank
    falls back to the row position and a missing band is derived from the
    rank.
    """
    entries: list[WordListEntry] = []
    skipped = 0
    for position, row in enumerate(_rows_from_source(source), start=1):
        if not isinstance(row, Mapping):
            skipped += 1
            continue
        source_word = row.get("source")
        target_word = row.get("target")
        if not isinstance(source_word, str) or not isinstance(target_word, str):
            skipped += 1
            continue
        source_word = source_word.strip()
        target_word = target_word.strip()
        if not source_word or not target_word:
            skipped += 1
            continue
        rank = row.get("rank")
        if isinstance(rank, bool) or not isinstance(rank, (int, float)):
            rank = position
        band = row.get("band")
        if not isinstance(band, str) or band.strip().lower() not in PROFICIENCY_BANDS:
            band = proficiency_from_rank(int(rank))
        pos = row.get("pos")
        pronunciation = row.get("pronunciation")
        entries.append(
            WordListEntry(
                source_word=source_word,
                target_word=target_word,
                source_lang=source_lang,
                target_lang=target_lang,
                proficiency_band=band.strip().lower(),
                frequency_rank=int(rank),
                part_of_speech=pos if isinstance(pos, str) and pos else None,
                variants=_coerce_variants(row.get("variants")),
                pronunciation=pronunciation if isinstance(pronunciation, str) and pronunciation else None,
            )
        )
    if skipped:
        debug_log(f"Skipped {skipped} malformed word list rows for {source_lang}->{target_lang}")
    return entries


class WordListCache:
    """Builds one WordListIndex per language pair and shares it afterwards."""

    def __init__(self, loader: Callable[[str, str], Iterable[WordListEntry]]) -> None:
        self._loader = loader
        self._indexes: dict[_PairKey, WordListIndex] = {}
        self._lock = threading.Lock()

    def get(self, source_lang: str, target_lang: str) -> WordListIndex:
        key = (source_lang, target_lang)
        index = self._indexes.get(key)
        if index is not None:
            return index
        with self._lock:
            index = self._indexes.get(key)
            if index is None:
                index = WordListIndex.build(self._loader(source_lang, target_lang))
                self._indexes[key] = index
                debug_log(f"Built word list index for {source_lang}->{target_lang}: {len(index)} entries")
        return index

    def __contains__(self, key: object) -> bool:
        return key in self._indexes

    def clear(self) -> None:
        with self._lock:
            self._indexes.clear()
