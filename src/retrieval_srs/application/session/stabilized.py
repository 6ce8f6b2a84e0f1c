"""
Stabilized-sentence counter for the library overview.
"""

from collections import defaultdict
from collections.abc import Iterable

from retrieval_srs.application.scheduling.leitner import is_stabilized
from retrieval_srs.domain.models import ReviewEvent, Sentence


def count_stabilized(sentences: Iterable[Sentence], review_events: Iterable[ReviewEvent]) -> int:
    """Number of eligible sentences at box >= 4 with no recent Miss."""
    events_by_sentence: dict[str, list[ReviewEvent]] = defaultdict(list)
    for event in review_events:
        events_by_sentence[event.sentence_id].append(event)

    return sum(
        1
        for sentence in sentences
        if sentence.is_eligible and is_stabilized(sentence, events_by_sentence[sentence.id])
    )
