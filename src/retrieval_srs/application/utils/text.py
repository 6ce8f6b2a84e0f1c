import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Literal, TypeVar

from retrieval_srs.domain.constants import DUPLICATE_SIMILARITY_THRESHOLD
from retrieval_srs.domain.models import Sentence, TranscriptionSegment

# ---------- Sentence validation ----------

_HAS_CONTENT = re.compile(r"[A-Za-z0-9\u00C0-\u017F]")
_ONLY_PUNCTUATION = re.compile(r"^[^\w\s]+$")
_SENTENCE_END = re.compile(r"([.!?]+[\"']?)\s+")
_MID_TEXT_BOUNDARY = re.compile(r"[.!?]+[\"']?\s+[A-Z\u00C0-\u017F]")


def is_valid_sentence(text: str | None) -> bool:
    """At least two characters with some letter or digit, not just punctuation.

    Transcribed segments often lack final punctuation, so none is required.
    """
    if not text or not isinstance(text, str):
        return False

    trimmed = text.strip()
    if len(trimmed) < 2:
        return False
    if not _HAS_CONTENT.search(trimmed):
        return False
    if _ONLY_PUNCTUATION.match(trimmed):
        return False
    return bool(trimmed.split())


def split_into_sentences(text: str | None) -> list[str]:
    """Split on . ! ? (optionally followed by a quote) plus whitespace."""
    if not text or not isinstance(text, str):
        return []

    trimmed = text.strip()
    if not trimmed:
        return []

    sentences: list[str] = []
    last = 0
    for m in _SENTENCE_END.finditer(trimmed):
        piece = trimmed[last : m.start() + len(m.group(1))].strip()
        if piece:
            sentences.append(piece)
        last = m.end()

    remaining = trimmed[last:].strip()
    if remaining:
        sentences.append(remaining)

    return sentences or [trimmed]


def has_multiple_sentences(text: str | None) -> bool:
    if not text or not isinstance(text, str):
        return False
    return bool(_MID_TEXT_BOUNDARY.search(text.strip()))


SegmentT = TypeVar("SegmentT", bound=TranscriptionSegment)


def filter_valid_segments(segments: Iterable[SegmentT]) -> list[SegmentT]:
    """Keep segments where either the original or the English text is usable."""
    return [
        seg
        for seg in segments
        if is_valid_sentence(seg.original_text) or is_valid_sentence(seg.english_text)
    ]


# ---------- Duplicate detection ----------

MatchType = Literal["english", "target", "both"]


@dataclass(frozen=True)
class DuplicateMatch:
    sentence: Sentence
    similarity: float
    match_type: MatchType


def levenshtein_similarity(a: str, b: str) -> float:
    """1 - edit_distance / max_len, on lower-cased trimmed text."""
    s1 = a.lower().strip()
    s2 = b.lower().strip()

    if s1 == s2:
        return 1.0
    if not s1 or not s2:
        return 0.0

    previous = list(range(len(s2) + 1))
    for i, c1 in enumerate(s1, start=1):
        current = [i]
        for j, c2 in enumerate(s2, start=1):
            cost = 0 if c1 == c2 else 1
            current.append(
                min(
                    previous[j] + 1,  # deletion
                    current[j - 1] + 1,  # insertion
                    previous[j - 1] + cost,  # substitution
                )
            )
        previous = current

    return 1 - previous[-1] / max(len(s1), len(s2))


def find_duplicate_matches(
    new_text: str,
    existing: Sequence[Sentence],
    language: Literal["english", "target"] = "english",
    threshold: float = DUPLICATE_SIMILARITY_THRESHOLD,
) -> list[DuplicateMatch]:
    """
    Existing sentences similar to new_text, most similar first.

    English text is always compared; target text only when language is
    "target". A sentence whose English and target text both clear the
    threshold is reported as a "both" match.
    """
    matches: list[DuplicateMatch] = []

    for sentence in existing:
        similarity = 0.0
        match_type: MatchType = "english"

        english_sim = (
            levenshtein_similarity(new_text, sentence.english_translation_text)
            if sentence.english_translation_text
            else 0.0
        )
        target_sim = (
            levenshtein_similarity(new_text, sentence.target_text) if sentence.target_text else 0.0
        )

        if english_sim > similarity:
            similarity = english_sim
        if language == "target" and target_sim > similarity:
            similarity = target_sim
            match_type = "target"

        if english_sim >= threshold and target_sim >= threshold:
            similarity = max(english_sim, target_sim)
            match_type = "both"

        if similarity >= threshold:
            matches.append(DuplicateMatch(sentence, similarity, match_type))

    matches.sort(key=lambda m: m.similarity, reverse=True)
    return matches
