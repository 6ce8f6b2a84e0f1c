# Application Session Package
from .rating_input import parse_spoken_rating
from .runner import (
    Phase,
    ProcessItemResult,
    RatingOutcome,
    SessionItemState,
    apply_freeze,
    calculate_response_window,
    end_session,
    handle_rating,
    is_due_queue_complete,
    on_answer_finished,
    on_prompt_finished,
    process_item,
    start_item,
    update_session_state,
)
from .stabilized import count_stabilized
from .summary import SessionSummary, summarize_session

__all__ = [
    "Phase",
    "ProcessItemResult",
    "RatingOutcome",
    "SessionItemState",
    "SessionSummary",
    "apply_freeze",
    "calculate_response_window",
    "count_stabilized",
    "end_session",
    "handle_rating",
    "is_due_queue_complete",
    "on_answer_finished",
    "on_prompt_finished",
    "parse_spoken_rating",
    "process_item",
    "start_item",
    "summarize_session",
    "update_session_state",
]
