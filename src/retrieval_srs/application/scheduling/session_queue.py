"""
Queue builder for review sessions.

Builds the ordered queues a session works through:
1. Due queue: due sentences plus relearn-locked sentences the Option A clamp
   admits to this session, locked first, then earliest due.
2. Extra queue: everything eligible, recent misses first, each group shuffled.
   Consumed only after the due queue is exhausted, to fill remaining time.
3. Reinsertion: after a Miss or Repeat the item comes back 2-4 items later.
"""

import dataclasses
import logging
import random
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta

from retrieval_srs.domain.constants import RECENT_MISS_WINDOW_DAYS, REINSERT_OFFSETS
from retrieval_srs.domain.models import Rating, ReviewEvent, Sentence, Session
from retrieval_srs.domain.settings import Settings

from .relearn_clamp import should_appear_in_session

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueueItem:
    sentence: Sentence
    position: int


def _renumber(sentences: Iterable[Sentence]) -> list[QueueItem]:
    return [QueueItem(sentence=s, position=i) for i, s in enumerate(sentences)]


def build_due_queue(
    sentences: Iterable[Sentence],
    session: Session,
    settings: Settings,
    now: datetime,
) -> list[QueueItem]:
    """
    Build the due queue for a session, respecting the Option A clamp.

    Args:
        sentences: Candidate sentences (ineligible ones are ignored).
        session: The session being built; its started_at gates locked items.
        settings: The session's settings snapshot.
        now: Queue build time.

    Returns:
        Queue items with positions matching their order.
    """
    due: list[Sentence] = []
    for sentence in sentences:
        if not sentence.is_eligible:
            continue

        state = sentence.scheduling_state
        is_past_due = state.due_at <= now
        admitted_lock = state.relearn_lock_until_next_session and should_appear_in_session(
            sentence, session.started_at, settings
        )

        if is_past_due or admitted_lock:
            due.append(sentence)

    # Locked first, then earliest due; sort is stable for equal keys.
    due.sort(
        key=lambda s: (
            not s.scheduling_state.relearn_lock_until_next_session,
            s.scheduling_state.due_at,
        )
    )

    logger.debug(f"Due queue for session {session.id}: {len(due)} items")
    return _renumber(due)


def build_extra_queue(
    sentences: Iterable[Sentence],
    session_id: str,
    review_events: Iterable[ReviewEvent],
    settings: Settings,
    now: datetime,
    rng: random.Random | None = None,
) -> list[QueueItem]:
    """
    Build the extra practice queue: recent misses first, then the rest.

    A sentence is a recent miss when any of its review events within the last
    7 days of now is a Miss. Both groups are shuffled independently.
    """
    rng = rng or random.Random()
    window_start = now - timedelta(days=RECENT_MISS_WINDOW_DAYS)

    recent_miss_ids = {
        e.sentence_id
        for e in review_events
        if e.rating is Rating.MISS and e.timestamp >= window_start
    }

    recent_miss: list[Sentence] = []
    other: list[Sentence] = []
    for sentence in sentences:
        if not sentence.is_eligible:
            continue
        if sentence.id in recent_miss_ids:
            recent_miss.append(sentence)
        else:
            other.append(sentence)

    rng.shuffle(recent_miss)
    rng.shuffle(other)

    logger.debug(
        f"Extra queue for session {session_id}: "
        f"{len(recent_miss)} recent misses, {len(other)} others"
    )
    return _renumber(recent_miss + other)


def reinsert_item(
    queue: Sequence[QueueItem],
    item: QueueItem,
    current_position: int,
    rng: random.Random | None = None,
) -> list[QueueItem]:
    """
    Move an item 2-4 places after current_position in the same queue.

    The item's existing entry is removed first, so the result has the same
    length and ids as the input (plus the item, if it was not queued). When
    fewer items remain than the offset, the item goes to the end.
    """
    rng = rng or random.Random()
    offset = rng.choice(REINSERT_OFFSETS)

    remaining = [q.sentence for q in queue if q.sentence.id != item.sentence.id]
    insert_at = min(current_position + offset, len(remaining))
    remaining.insert(insert_at, item.sentence)

    return _renumber(remaining)


def replace_sentence(queue: Sequence[QueueItem], sentence: Sentence) -> list[QueueItem]:
    """Swap in an updated copy of a queued sentence, keeping positions."""
    return [
        dataclasses.replace(q, sentence=sentence) if q.sentence.id == sentence.id else q
        for q in queue
    ]
