from datetime import datetime, time

from backend.config import AFTERNOON_END, AFTERNOON_START, MORNING_END, MORNING_START
from database.models import Session

SESSION_WINDOWS: dict[Session, tuple[time, time]] = {
    "morning": (MORNING_START, MORNING_END),
    "afternoon": (AFTERNOON_START, AFTERNOON_END),
}


def _hm(value: time) -> str:
    return value.strftime("%H:%M")


def classify(timestamp: datetime) -> Session | None:
    """
    Map a scan time to its session, or None when it falls outside both windows.

    Only the wall-clock minute matters; the date and seconds are ignored and
    both window edges are inclusive (12:30:59 is still morning).
    """
    scan_hm = timestamp.strftime("%H:%M")
    for session, (start, end) in SESSION_WINDOWS.items():
        if _hm(start) <= scan_hm <= _hm(end):
            return session
    return None


def describe_windows() -> str:
    return ", ".join(
        f"{session.capitalize()}: {_hm(start)}-{_hm(end)}"
        for session, (start, end) in SESSION_WINDOWS.items()
    )
