import itertools
import threading
from collections import Counter

import pytest

from backend.errors import StudentNotFoundError
from backend.services.processor import EventProcessor
from conftest import SCAN_DATE, at, make_event
from database.events import SqliteEventStore


def test_unknown_fingerprint_is_invalid_student(processor, store, student):
    outcome = processor.process(99, "DEV-01", at("09:05"))

    assert outcome.code == "INVALID_STUDENT"
    assert outcome.success is False
    assert outcome.student is None
    assert store.count() == 0


def test_fingerprint_on_another_device_is_invalid_student(processor, store, student):
    outcome = processor.process(7, "DEV-02", at("09:05"))

    assert outcome.code == "INVALID_STUDENT"
    assert store.count() == 0


def test_inactive_student_is_invalid_student(processor, directory, store, student):
    directory.set_active(student.student_id, False)

    outcome = processor.process(7, "DEV-01", at("09:05"))

    assert outcome.code == "INVALID_STUDENT"
    assert outcome.to_payload() == {
        "success": False,
        "reason": "INVALID_STUDENT",
        "message": "Fingerprint not registered or inactive",
    }
    assert store.count() == 0


def test_scan_before_morning_is_outside_window(processor, store, student):
    outcome = processor.process(7, "DEV-01", at("08:00"))

    assert outcome.code == "OUTSIDE_WINDOW"
    assert outcome.student.student_id == "CS2024001"
    assert "Morning: 09:00-12:30" in outcome.message
    assert store.count() == 0


def test_in_then_out_then_session_completed(processor, store, student):
    first = processor.process(7, "dev-01", at("09:05"))
    second = processor.process(7, "DEV-01", at("09:11"))
    third = processor.process(7, "DEV-01", at("09:12"))

    assert (first.code, first.action, first.session) == ("ACCEPTED", "IN", "morning")
    assert first.message == "IN recorded for morning session"
    assert (second.code, second.action) == ("ACCEPTED", "OUT")
    assert third.code == "SESSION_COMPLETED"
    assert third.message == "morning session already completed"
    assert [e.action for e in store.find_events("CS2024001", SCAN_DATE, "morning")] == ["IN", "OUT"]


def test_rescan_within_window_is_duplicate(processor, store, student):
    processor.process(7, "DEV-01", at("09:05"))
    outcome = processor.process(7, "DEV-01", at("09:07"))

    assert outcome.code == "DUPLICATE"
    assert outcome.action == "OUT"
    assert outcome.message == "Duplicate scan detected (within 5 minutes)"
    assert store.count() == 1


def test_scan_exactly_at_window_edge_is_still_duplicate(processor, store, student):
    processor.process(7, "DEV-01", at("09:05"))
    outcome = processor.process(7, "DEV-01", at("09:10"))

    assert outcome.code == "DUPLICATE"
    assert store.count() == 1


def test_repeated_duplicate_is_idempotent(processor, store, student):
    processor.process(7, "DEV-01", at("09:05"))
    outcomes = [processor.process(7, "DEV-01", at("09:06")) for _ in range(2)]

    assert [o.code for o in outcomes] == ["DUPLICATE", "DUPLICATE"]
    assert store.count() == 1


def test_accepted_event_round_trips_through_store(processor, store, student):
    processor.process(7, "DEV-01", at("13:40"))
    outcome = processor.process(7, "DEV-01", at("16:05"))

    stored = store.find_events("CS2024001", SCAN_DATE, "afternoon")
    assert stored[-1] == outcome.event
    assert stored[-1].action == outcome.action == "OUT"
    assert stored[-1].source == "scanner"
    assert outcome.event.id is not None


def test_sessions_are_independent(processor, student):
    assert processor.process(7, "DEV-01", at("09:05")).action == "IN"
    assert processor.process(7, "DEV-01", at("12:20")).action == "OUT"
    assert processor.process(7, "DEV-01", at("13:35")).action == "IN"
    assert processor.process(7, "DEV-01", at("16:25")).action == "OUT"


def test_every_outcome_is_published_to_the_device_scope(processor, notifier, student):
    processor.process(7, "dev-01", at("09:05"))
    processor.process(7, "DEV-01", at("08:00"))
    processor.process(42, "DEV-01", at("09:06"))

    scopes = [scope for scope, _ in notifier.published]
    assert scopes == ["device:DEV-01"] * 3

    accepted = notifier.published[0][1]
    assert accepted["success"] is True
    assert accepted["time"] == "09:05"
    assert accepted["student"] == {
        "student_id": "CS2024001",
        "name": "Asha Verma",
        "department": "CSE",
        "year": 2,
        "section": "A",
    }
    assert [p["reason"] for _, p in notifier.published[1:]] == ["OUTSIDE_WINDOW", "INVALID_STUDENT"]


def test_notifier_failure_does_not_fail_the_scan(directory, store, student):
    class ExplodingNotifier:
        def publish(self, scope_key, payload):
            raise RuntimeError("kiosk channel down")

    processor = EventProcessor(directory, store, ExplodingNotifier())
    outcome = processor.process(7, "DEV-01", at("09:05"))

    assert outcome.code == "ACCEPTED"
    assert store.count() == 1


def test_processor_works_without_notifier(directory, store, student):
    outcome = EventProcessor(directory, store).process(7, "DEV-01", at("09:05"))
    assert outcome.success


def test_store_conflict_is_reported_as_duplicate(directory, student, db_path):
    class StaleReadStore(SqliteEventStore):
        # Simulates another process that read history before our write.
        def find_events(self, student_id, date, session=None):
            return []

        def find_recent_event(self, *args, **kwargs):
            return None

    stale = StaleReadStore()
    processor = EventProcessor(directory, stale)

    assert processor.process(7, "DEV-01", at("09:05")).code == "ACCEPTED"
    outcome = processor.process(7, "DEV-01", at("09:20"))

    assert outcome.code == "DUPLICATE"
    assert outcome.action == "IN"
    assert outcome.message == "IN already recorded for morning session"
    assert stale.count() == 1


def test_scan_older_than_last_event_is_rejected(processor, store, student):
    assert processor.process(7, "DEV-01", at("09:30")).action == "IN"

    late = processor.process(7, "DEV-01", at("09:10"))

    assert late.code == "DUPLICATE"
    assert late.message == "Scan is older than the last recorded event"
    assert [e.action for e in store.find_events("CS2024001", SCAN_DATE)] == ["IN"]

    outcome = processor.process(7, "DEV-01", at("10:30"))
    assert outcome.code == "ACCEPTED"
    assert outcome.action == "OUT"


def test_server_time_is_read_under_the_key_lock(directory, store, student):
    store.append(make_event("CS2024001", "09:20", "morning", "IN"))
    # First reading is stale; the one taken under the lock is current.
    readings = itertools.chain([at("09:10")], itertools.repeat(at("09:40")))
    processor = EventProcessor(directory, store, clock=lambda: next(readings))

    outcome = processor.process(7, "DEV-01")

    assert outcome.code == "ACCEPTED"
    assert outcome.action == "OUT"
    assert outcome.event.timestamp == at("09:40")


def test_scan_after_manual_correction_reports_recorded_action(processor, store, student):
    processor.process(7, "DEV-01", at("09:05"))
    processor.process(7, "DEV-01", at("09:20"))
    processor.create_manual_entry(
        student_id="CS2024001",
        action="IN",
        session="morning",
        timestamp=at("10:00"),
        device_id="admin-panel",
    )

    outcome = processor.process(7, "DEV-01", at("11:00"))

    assert outcome.code == "DUPLICATE"
    assert outcome.message == "OUT already recorded for morning session"
    assert store.count() == 3


def test_concurrent_scans_never_double_write(processor, store, student):
    barrier = threading.Barrier(8)
    outcomes = []
    outcomes_lock = threading.Lock()

    def scan():
        barrier.wait()
        outcome = processor.process(7, "DEV-01", at("09:30"))
        with outcomes_lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=scan) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    events = store.find_events("CS2024001", SCAN_DATE, "morning")
    assert Counter(e.action for e in events) == {"IN": 1, "OUT": 1}
    codes = Counter(o.code for o in outcomes)
    assert codes["ACCEPTED"] == 2
    assert codes["SESSION_COMPLETED"] == 6
    assert len(processor.locks) == 0


def test_manual_entry_in_sequence(processor, store, notifier, student):
    result = processor.create_manual_entry(
        student_id="cs2024001",
        action="IN",
        session="morning",
        timestamp=at("09:15"),
        device_id="admin-panel",
    )

    assert result.sequence_conflict is False
    assert result.expected_action == "IN"
    assert result.event.source == "manual"
    assert result.event.fingerprint_id == 7
    assert result.to_payload()["unvalidated"] is True
    assert store.count() == 1

    scope, payload = notifier.published[-1]
    assert scope == "device:ADMIN-PANEL"
    assert payload["manual"] is True


def test_manual_entry_breaking_sequence_is_flagged(processor, store, student):
    processor.process(7, "DEV-01", at("09:05"))
    processor.process(7, "DEV-01", at("12:00"))

    result = processor.create_manual_entry(
        student_id="CS2024001",
        action="OUT",
        session="morning",
        timestamp=at("12:10"),
        device_id="DEV-01",
    )

    assert result.sequence_conflict is True
    assert result.expected_action is None
    assert result.warnings
    assert [e.action for e in store.find_events("CS2024001", SCAN_DATE, "morning")] == [
        "IN",
        "OUT",
        "OUT",
    ]


def test_manual_entry_ignores_session_windows(processor, student):
    result = processor.create_manual_entry(
        student_id="CS2024001",
        action="IN",
        session="afternoon",
        timestamp=at("18:00"),
        device_id="DEV-01",
    )
    assert result.event.session == "afternoon"


def test_manual_entry_for_unknown_student(processor, store):
    with pytest.raises(StudentNotFoundError):
        processor.create_manual_entry(
            student_id="NOBODY",
            action="IN",
            session="morning",
            timestamp=at("09:00"),
            device_id="DEV-01",
        )
    assert store.count() == 0


def test_manual_entry_rejects_bad_action(processor, student):
    with pytest.raises(ValueError):
        processor.create_manual_entry(
            student_id="CS2024001",
            action="BREAK",
            session="morning",
            timestamp=at("09:00"),
            device_id="DEV-01",
        )
