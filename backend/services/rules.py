from datetime import datetime, timedelta
from typing import Sequence

from backend.config import DUPLICATE_WINDOW_SECONDS
from backend.services.contracts import EventStore
from database.models import Action, AttendanceEvent, Session

DUPLICATE_WINDOW = timedelta(seconds=DUPLICATE_WINDOW_SECONDS)


def next_action(history: Sequence[AttendanceEvent]) -> Action | None:
    """
    Per-session state machine: Empty -> AwaitingOut -> Closed.

    Only the last record's action counts, so malformed history (two OUTs in
    a row) still reads as closed.
    """
    if not history:
        return "IN"
    last_action = history[-1].action
    if last_action == "IN":
        return "OUT"
    if last_action == "OUT":
        return None
    return "IN"


def resolve_action(store: EventStore, student_id: str, date: str, session: Session) -> Action | None:
    return next_action(store.find_events(student_id, date, session))


def is_duplicate(
    store: EventStore,
    student_id: str,
    date: str,
    session: Session,
    candidate: datetime,
    *,
    window: timedelta = DUPLICATE_WINDOW,
) -> bool:
    # Upper bound is exclusive: a stamp equal to the candidate never matches.
    recent = store.find_recent_event(student_id, date, session, candidate - window, candidate)
    return recent is not None
