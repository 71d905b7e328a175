from datetime import datetime

import pytest

from backend.services.sessions import classify, describe_windows


@pytest.mark.parametrize(
    "stamp, expected",
    [
        ("08:00:00", None),
        ("08:59:59", None),
        ("09:00:00", "morning"),
        ("10:45:12", "morning"),
        ("12:30:00", "morning"),
        ("12:30:59", "morning"),
        ("12:31:00", None),
        ("13:00:00", None),
        ("13:29:59", None),
        ("13:30:00", "afternoon"),
        ("16:30:00", "afternoon"),
        ("16:30:59", "afternoon"),
        ("16:31:00", None),
        ("23:59:00", None),
    ],
)
def test_classify_windows_are_inclusive_at_minute_resolution(stamp, expected):
    timestamp = datetime.strptime(f"2026-03-02 {stamp}", "%Y-%m-%d %H:%M:%S")
    assert classify(timestamp) == expected


def test_classify_ignores_the_date():
    assert classify(datetime(2030, 12, 31, 9, 15)) == "morning"
    assert classify(datetime(2001, 1, 1, 14, 0)) == "afternoon"


def test_describe_windows():
    assert describe_windows() == "Morning: 09:00-12:30, Afternoon: 13:30-16:30"
