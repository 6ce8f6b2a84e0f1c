"""
Spoken rating recognition.
"""

from retrieval_srs.domain.models import Rating

# Checked in order; the first keyword contained in the transcript wins.
_KEYWORDS: tuple[tuple[str, Rating], ...] = (
    ("miss", Rating.MISS),
    ("repeat", Rating.REPEAT),
    ("next", Rating.NEXT),
    ("easy", Rating.EASY),
)


def parse_spoken_rating(transcript: str | None) -> Rating | None:
    """
    Map a speech-recognition transcript to a rating.

    Matching is a case-insensitive substring test, so "that was a miss"
    yields Miss. Returns None when no rating word is present.
    """
    if not transcript:
        return None

    text = transcript.lower().strip()
    for keyword, rating in _KEYWORDS:
        if keyword in text:
            return rating
    return None


def parse_typed_rating(key: str) -> Rating | None:
    """Single-key shortcut used by the terminal session: m/r/n/e or 1-4."""
    shortcuts = {
        "m": Rating.MISS,
        "1": Rating.MISS,
        "r": Rating.REPEAT,
        "2": Rating.REPEAT,
        "n": Rating.NEXT,
        "3": Rating.NEXT,
        "e": Rating.EASY,
        "4": Rating.EASY,
    }
    key = key.strip().lower()
    if key in shortcuts:
        return shortcuts[key]
    return parse_spoken_rating(key)
