"""
Option A clamp for relearn-locked sentences.

After a Miss the sentence is locked so it comes back in the next session even
if it is not due. It must not come back in the same session or learning day:
only the first session starting after the next daily reset qualifies.
"""

import dataclasses
import logging
from datetime import datetime

from retrieval_srs.domain.models import Sentence
from retrieval_srs.domain.settings import Settings

from .boundaries import next_reset_after

logger = logging.getLogger(__name__)


def is_next_session(
    session_started_at: datetime,
    last_rating_at: datetime,
    settings: Settings,
) -> bool:
    """
    Whether a session started after the reset boundary following a rating.

    A rating before that day's reset qualifies sessions from that same day's
    reset on; a rating after it qualifies sessions from the next day's reset.
    """
    return session_started_at >= next_reset_after(last_rating_at, settings)


def should_appear_in_session(
    sentence: Sentence,
    session_started_at: datetime,
    settings: Settings,
) -> bool:
    state = sentence.scheduling_state
    if not state.relearn_lock_until_next_session:
        return False

    if state.last_reviewed_at is None:
        return True

    return is_next_session(session_started_at, state.last_reviewed_at, settings)


def clear_relearn_lock(sentence: Sentence) -> Sentence:
    """Copy of the sentence with the relearn lock released."""
    logger.debug(f"Clearing relearn lock on {sentence.id}")
    return dataclasses.replace(
        sentence,
        scheduling_state=dataclasses.replace(
            sentence.scheduling_state, relearn_lock_until_next_session=False
        ),
    )
