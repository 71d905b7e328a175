from dataclasses import replace
from datetime import timedelta

from backend.services.rules import DUPLICATE_WINDOW, is_duplicate, next_action, resolve_action
from conftest import SCAN_DATE, at, make_event


def test_next_action_state_machine():
    assert next_action([]) == "IN"
    assert next_action([make_event("S1", "09:05", "morning", "IN")]) == "OUT"
    assert (
        next_action(
            [
                make_event("S1", "09:05", "morning", "IN"),
                make_event("S1", "12:00", "morning", "OUT"),
            ]
        )
        is None
    )


def test_next_action_only_looks_at_last_record():
    history = [
        make_event("S1", "09:05", "morning", "OUT", source="manual"),
        make_event("S1", "09:10", "morning", "OUT", source="manual"),
    ]
    assert next_action(history) is None

    untagged = replace(make_event("S1", "09:05", "morning", "IN"), action=None)
    assert next_action([untagged]) == "IN"


def test_resolve_action_reads_the_exact_key(store):
    assert resolve_action(store, "S1", SCAN_DATE, "morning") == "IN"

    store.append(make_event("S1", "09:05", "morning", "IN"))
    assert resolve_action(store, "S1", SCAN_DATE, "morning") == "OUT"
    assert resolve_action(store, "S1", SCAN_DATE, "afternoon") == "IN"
    assert resolve_action(store, "S2", SCAN_DATE, "morning") == "IN"
    assert resolve_action(store, "S1", "2026-03-03", "morning") == "IN"

    store.append(make_event("S1", "12:00", "morning", "OUT"))
    assert resolve_action(store, "S1", SCAN_DATE, "morning") is None


def test_duplicate_window_is_five_minutes():
    assert DUPLICATE_WINDOW == timedelta(minutes=5)


def test_is_duplicate_boundaries(store):
    candidate = at("10:00")

    store.append(make_event("S1", "09:57", "morning", "IN"))
    assert is_duplicate(store, "S1", SCAN_DATE, "morning", candidate) is True

    assert is_duplicate(store, "S2", SCAN_DATE, "morning", candidate) is False
    store.append(make_event("S2", "09:54", "morning", "IN"))
    assert is_duplicate(store, "S2", SCAN_DATE, "morning", candidate) is False

    # Upper bound is strict.
    store.append(make_event("S3", "10:00", "morning", "IN"))
    assert is_duplicate(store, "S3", SCAN_DATE, "morning", candidate) is False

    # Lower bound is inclusive.
    store.append(make_event("S4", "09:55", "morning", "IN"))
    assert is_duplicate(store, "S4", SCAN_DATE, "morning", candidate) is True


def test_is_duplicate_is_scoped_to_the_session(store):
    store.append(make_event("S1", "12:29", "morning", "OUT"))
    assert is_duplicate(store, "S1", SCAN_DATE, "afternoon", at("12:30")) is False
    assert is_duplicate(store, "S1", SCAN_DATE, "morning", at("12:30")) is True
