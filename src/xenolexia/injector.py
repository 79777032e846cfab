from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Collection

from .logging_utils import debug_log
from .wordlist import WordListEntry, WordListIndex

__all__ = [
    "WordToken",
    "InjectedWordOccurrence",
    "InjectionResult",
    "tokenize",
    "inject",
    "revert",
]

# Letters only, with internal apostrophes ("don't", "o’clock").
WORD_PATTERN = re.compile(r"[^\W\d_]+(?:['’][^\W\d_]+)*")


@dataclass(frozen=True, slots=True)
class WordToken:
    surface: str
    start: int
    end: int


@dataclass(frozen=True, slots=True)
class InjectedWordOccurrence:
    """
    One substituted word.

    ``start_offset``/``end_offset`` address the original chapter text;
    ``rendered_start``/``rendered_end`` address the same span in the
    rendered text so a reader UI can map it onto a tappable element.
    """

    original_word: str
    foreign_word: str
    start_offset: int
    end_offset: int
    matched_entry: WordListEntry
    rendered_start: int = 0
    rendered_end: int = 0


@dataclass
class InjectionResult:
    rendered_text: str
    occurrences: list[InjectedWordOccurrence]
    eligible_count: int = 0
    token_count: int = 0


@dataclass
class _Candidate:
    token: WordToken
    entry: WordListEntry
    position: int


def tokenize(text: str) -> list[WordToken]:
    return [WordToken(m.group(0), m.start(), m.end()) for m in WORD_PATTERN.finditer(text)]


def _match_entry(
    surface: str,
    index: WordListIndex,
    source_lang: str,
    target_lang: str,
    band: str,
) -> WordListEntry | None:
    entry = index.lookup(surface, source_lang, target_lang, band)
    if entry is not None:
        return entry
    lowered = surface.lower()
    if lowered != surface:
        entry = index.lookup(lowered, source_lang, target_lang, band)
        if entry is not None:
            return entry
    return index.lookup_by_variant(surface, source_lang, target_lang, band)


def _clamp_density(density: float) -> float:
    if math.isnan(density):
        return 0.0
    return min(1.0, max(0.0, density))


def _target_count(density: float, eligible: int) -> int:
    # Half-up rounding keeps the count monotone in density.
    count = math.floor(density * eligible + 0.5)
    return min(eligible, max(0, count))


def _spread_key(position: int) -> float:
    """Bit-reversed position; the smallest keys are spread evenly over the text."""
    key = 0.0
    scale = 0.5
    while position:
        if position & 1:
            key += scale
        position >>= 1
        scale /= 2
    return key


def _select(candidates: list[_Candidate], target_count: int, density: float) -> list[_Candidate]:
    """
    Pick ``target_count`` candidates.

    Each candidate gets a blend of two normalised keys: its place in
    frequency-rank order and its place in an even spread across the text.
    Low densities weight the rank key, so the most common words surface
    first; as density approaches 1 the spread key dominates and the
    choice becomes uniform over the chapter.
    """
    total = len(candidates)
    if target_count >= total:
        return list(candidates)
    if target_count <= 0:
        return []
    by_rank = sorted(candidates, key=lambda c: (c.entry.frequency_rank, c.position))
    rank_key = {id(candidate): idx / total for idx, candidate in enumerate(by_rank)}

    def blended(candidate: _Candidate) -> tuple[float, int]:
        score = (1.0 - density) * rank_key[id(candidate)] + density * _spread_key(candidate.position)
        return score, candidate.position

    return sorted(candidates, key=blended)[:target_count]


def _range_is_free(ranges: list[tuple[int, int]], start: int, end: int) -> bool:
    for existing_start, existing_end in ranges:
        if end <= existing_start:
            continue
        if start >= existing_end:
            continue
        return False
    return True


def _match_case(original: str, replacement: str) -> str:
    if original[:1].isupper() and replacement:
        return replacement[:1].upper() + replacement[1:]
    return replacement


def inject(
    chapter_text: str,
    index: WordListIndex,
    source_lang: str,
    target_lang: str,
    band: str,
    density: float,
    *,
    exclude_words: Collection[str] = (),
) -> InjectionResult:
    """Replace a ``density`` fraction of eligible words with their translations.

    Text outside replaced spans is copied verbatim. Unknown languages or
    bands simply produce no eligible words. Words in ``exclude_words``
    (compared case-insensitively) are never eligible, so the density
    applies to what is left.
    """
    if not chapter_text:
        return InjectionResult(rendered_text=chapter_text, occurrences=[])
    density = _clamp_density(density)
    excluded = {word.casefold() for word in exclude_words}
    tokens = tokenize(chapter_text)
    candidates: list[_Candidate] = []
    skipped = 0
    for token in tokens:
        if token.surface.casefold() in excluded:
            skipped += 1
            continue
        entry = _match_entry(token.surface, index, source_lang, target_lang, band)
        if entry is None:
            continue
        candidates.append(_Candidate(token=token, entry=entry, position=len(candidates)))

    target_count = _target_count(density, len(candidates))
    selected = sorted(_select(candidates, target_count, density), key=lambda c: c.position)

    consumed: list[tuple[int, int]] = []
    pieces: list[str] = []
    occurrences: list[InjectedWordOccurrence] = []
    cursor = 0
    rendered_length = 0
    for candidate in selected:
        token = candidate.token
        if not _range_is_free(consumed, token.start, token.end):
            continue
        consumed.append((token.start, token.end))
        gap = chapter_text[cursor : token.start]
        pieces.append(gap)
        rendered_length += len(gap)
        foreign = _match_case(token.surface, candidate.entry.target_word)
        pieces.append(foreign)
        occurrences.append(
            InjectedWordOccurrence(
                original_word=token.surface,
                foreign_word=foreign,
                start_offset=token.start,
                end_offset=token.end,
                matched_entry=candidate.entry,
                rendered_start=rendered_length,
                rendered_end=rendered_length + len(foreign),
            )
        )
        rendered_length += len(foreign)
        cursor = token.end
    pieces.append(chapter_text[cursor:])

    if skipped:
        debug_log(f"Kept {skipped} excluded words untouched")
    debug_log(
        f"Injected {len(occurrences)}/{len(candidates)} eligible words "
        f"({source_lang}->{target_lang}, {band}, density={density:.2f})"
    )
    return InjectionResult(
        rendered_text="".join(pieces),
        occurrences=occurrences,
        eligible_count=len(candidates),
        token_count=len(tokens),
    )


def revert(result: InjectionResult) -> str:
    """Put every original word back into the rendered text."""
    pieces: list[str] = []
    cursor = 0
    for occurrence in sorted(result.occurrences, key=lambda o: o.rendered_start):
        pieces.append(result.rendered_text[cursor : occurrence.rendered_start])
        pieces.append(occurrence.original_word)
        cursor = occurrence.rendered_end
    pieces.append(result.rendered_text[cursor:])
    return "".join(pieces)
