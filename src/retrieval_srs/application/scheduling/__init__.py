# Application Scheduling Package
from .due_calculator import get_due_now, get_due_today
from .leitner import SchedulingResult, calculate_next_due, get_next_session_due_at, is_stabilized
from .relearn_clamp import clear_relearn_lock, is_next_session, should_appear_in_session
from .session_queue import QueueItem, build_due_queue, build_extra_queue, reinsert_item
from .streak_calculator import calculate_streak

__all__ = [
    "QueueItem",
    "SchedulingResult",
    "build_due_queue",
    "build_extra_queue",
    "calculate_next_due",
    "calculate_streak",
    "clear_relearn_lock",
    "get_due_now",
    "get_due_today",
    "get_next_session_due_at",
    "is_next_session",
    "is_stabilized",
    "reinsert_item",
    "should_appear_in_session",
]
