import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Literal

from backend.errors import StudentNotFoundError
from backend.services.contracts import Directory, EventStore, NotifierSink
from backend.services.locks import KeyedLocks
from backend.services.notifier import device_scope
from backend.services.rules import DUPLICATE_WINDOW, is_duplicate, next_action, resolve_action
from backend.services.sessions import classify, describe_windows
from database.events import DuplicateEventError
from database.models import (
    ACTIONS,
    DATE_FORMAT,
    SESSIONS,
    Action,
    AttendanceEvent,
    Session,
    Student,
    normalize_id,
)

logger = logging.getLogger(__name__)

DecisionCode = Literal[
    "ACCEPTED",
    "INVALID_STUDENT",
    "OUTSIDE_WINDOW",
    "SESSION_COMPLETED",
    "DUPLICATE",
]


def _local_naive(value: datetime) -> datetime:
    # Sessions are wall-clock windows; aware stamps are shifted to server local time.
    if value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value


@dataclass(frozen=True)
class ScanOutcome:
    code: DecisionCode
    message: str
    device_id: str
    timestamp: datetime
    student: Student | None = None
    session: Session | None = None
    action: Action | None = None
    event: AttendanceEvent | None = None

    @property
    def success(self) -> bool:
        return self.code == "ACCEPTED"

    def to_payload(self) -> dict[str, Any]:
        if self.success and self.event is not None and self.student is not None:
            return {
                "success": True,
                "message": self.message,
                "student": self.student.summary(),
                "session": self.session,
                "action": self.action,
                "time": self.timestamp.strftime("%H:%M"),
                "event": self.event.to_dict(),
            }

        payload: dict[str, Any] = {
            "success": False,
            "reason": self.code,
            "message": self.message,
        }
        if self.student is not None:
            payload["student"] = {
                "student_id": self.student.student_id,
                "name": self.student.name,
            }
        if self.session is not None:
            payload["session"] = self.session
        if self.action is not None:
            payload["action"] = self.action
        return payload


@dataclass(frozen=True)
class ManualEntryResult:
    """
    An administrator correction written without the automatic checks.

    ``expected_action`` is what the engine would have chosen for the key at
    that moment; ``sequence_conflict`` flags entries that break the IN/OUT
    alternation so downstream readers can tell corrections apart.
    """

    event: AttendanceEvent
    student: Student
    expected_action: Action | None
    sequence_conflict: bool
    warnings: list[str] = field(default_factory=list)

    @property
    def message(self) -> str:
        return f"Manual {self.event.action} entry created for {self.event.session} session"

    def to_payload(self) -> dict[str, Any]:
        return {
            "success": True,
            "message": self.message,
            "unvalidated": True,
            "expected_action": self.expected_action,
            "sequence_conflict": self.sequence_conflict,
            "warnings": list(self.warnings),
            "event": self.event.to_dict(),
        }


class EventProcessor:
    """
    The single write path into the event store.

    Steps run in a fixed order (student, session, action, duplicate, append)
    and the first failing step returns a rejection without writing. Work for
    one (student, date) is serialized through ``locks`` so two scans cannot
    both read an empty history and both append an IN.
    """

    def __init__(
        self,
        directory: Directory,
        store: EventStore,
        notifier: NotifierSink | None = None,
        *,
        locks: KeyedLocks | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.directory = directory
        self.store = store
        self.notifier = notifier
        self.locks = locks or KeyedLocks()
        self.clock = clock

    def process(
        self,
        fingerprint_id: int,
        device_id: str,
        timestamp: datetime | None = None,
    ) -> ScanOutcome:
        device_key = normalize_id(device_id)
        supplied = _local_naive(timestamp) if timestamp is not None else None

        outcome = self._evaluate(int(fingerprint_id), device_key, supplied)

        student_label = outcome.student.student_id if outcome.student else "-"
        logger.info(
            "Scan fp=%s device=%s student=%s -> %s",
            fingerprint_id,
            device_key,
            student_label,
            outcome.code,
        )
        self._notify(device_key, outcome.to_payload())
        return outcome

    def _evaluate(
        self,
        fingerprint_id: int,
        device_id: str,
        supplied: datetime | None,
    ) -> ScanOutcome:
        scan_time = supplied or _local_naive(self.clock())

        student = self.directory.find_active_student_by_fingerprint(fingerprint_id, device_id)
        if student is None:
            return ScanOutcome(
                code="INVALID_STUDENT",
                message="Fingerprint not registered or inactive",
                device_id=device_id,
                timestamp=scan_time,
            )

        session = classify(scan_time)
        if session is None:
            return self._outside_window(device_id, scan_time, student)

        date = scan_time.strftime(DATE_FORMAT)
        with self.locks.hold((student.student_id, date)):
            if supplied is None:
                # Server stamps are taken under the lock so they follow lock order.
                now = _local_naive(self.clock())
                if now.strftime(DATE_FORMAT) == date:
                    scan_time = now
                    session = classify(scan_time)
                    if session is None:
                        return self._outside_window(device_id, scan_time, student)

            history = self.store.find_events(student.student_id, date, session)
            action = next_action(history)
            if action is None:
                return ScanOutcome(
                    code="SESSION_COMPLETED",
                    message=f"{session} session already completed",
                    device_id=device_id,
                    timestamp=scan_time,
                    student=student,
                    session=session,
                )

            if history and scan_time < history[-1].timestamp:
                logger.warning(
                    "Late scan for %s %s %s at %s, last event at %s",
                    student.student_id,
                    date,
                    session,
                    scan_time.isoformat(),
                    history[-1].timestamp.isoformat(),
                )
                return self._duplicate(
                    device_id,
                    scan_time,
                    student,
                    session,
                    action,
                    message="Scan is older than the last recorded event",
                )

            if is_duplicate(self.store, student.student_id, date, session, scan_time):
                return self._duplicate(device_id, scan_time, student, session, action)

            candidate = AttendanceEvent(
                student_id=student.student_id,
                fingerprint_id=fingerprint_id,
                timestamp=scan_time,
                date=date,
                session=session,
                action=action,
                device_id=device_id,
                created_at=self.clock(),
            )
            try:
                event = self.store.append(candidate)
            except DuplicateEventError:
                # Another process won the race, or a correction reopened the session.
                logger.warning(
                    "Store rejected %s for %s %s %s as a duplicate",
                    action,
                    student.student_id,
                    date,
                    session,
                )
                return self._duplicate(
                    device_id,
                    scan_time,
                    student,
                    session,
                    action,
                    message=f"{action} already recorded for {session} session",
                )

        return ScanOutcome(
            code="ACCEPTED",
            message=f"{action} recorded for {session} session",
            device_id=device_id,
            timestamp=scan_time,
            student=student,
            session=session,
            action=action,
            event=event,
        )

    @staticmethod
    def _outside_window(device_id: str, scan_time: datetime, student: Student) -> ScanOutcome:
        return ScanOutcome(
            code="OUTSIDE_WINDOW",
            message=f"Scan outside valid time windows ({describe_windows()})",
            device_id=device_id,
            timestamp=scan_time,
            student=student,
        )

    @staticmethod
    def _duplicate(
        device_id: str,
        scan_time: datetime,
        student: Student,
        session: Session,
        action: Action,
        message: str | None = None,
    ) -> ScanOutcome:
        return ScanOutcome(
            code="DUPLICATE",
            message=message
            or f"Duplicate scan detected (within {int(DUPLICATE_WINDOW.total_seconds() // 60)} minutes)",
            device_id=device_id,
            timestamp=scan_time,
            student=student,
            session=session,
            action=action,
        )

    def create_manual_entry(
        self,
        *,
        student_id: str,
        action: Action,
        session: Session,
        timestamp: datetime,
        device_id: str,
    ) -> ManualEntryResult:
        if action not in ACTIONS:
            raise ValueError(f"Invalid action {action!r}.")
        if session not in SESSIONS:
            raise ValueError(f"Invalid session {session!r}.")

        student = self.directory.find_student_by_id(student_id)
        if student is None:
            raise StudentNotFoundError(normalize_id(student_id))

        entry_time = _local_naive(timestamp)
        date = entry_time.strftime(DATE_FORMAT)
        device_key = normalize_id(device_id)

        with self.locks.hold((student.student_id, date)):
            expected = resolve_action(self.store, student.student_id, date, session)
            event = self.store.append(
                AttendanceEvent(
                    student_id=student.student_id,
                    fingerprint_id=student.fingerprint_id or 0,
                    timestamp=entry_time,
                    date=date,
                    session=session,
                    action=action,
                    device_id=device_key,
                    created_at=self.clock(),
                    source="manual",
                )
            )

        warnings: list[str] = []
        conflict = expected != action
        if conflict:
            expected_label = expected or "nothing (session closed)"
            warnings.append(
                f"Automatic engine expected {expected_label} for {session} on {date}; "
                f"manual {action} breaks the IN/OUT sequence."
            )
            logger.warning(
                "Manual %s for %s %s %s conflicts with expected %s",
                action,
                student.student_id,
                date,
                session,
                expected,
            )
        else:
            logger.info("Manual %s recorded for %s %s %s", action, student.student_id, date, session)

        result = ManualEntryResult(
            event=event,
            student=student,
            expected_action=expected,
            sequence_conflict=conflict,
            warnings=warnings,
        )
        self._notify(
            device_key,
            {
                "success": True,
                "manual": True,
                "message": result.message,
                "student": student.summary(),
                "session": session,
                "action": action,
                "time": entry_time.strftime("%H:%M"),
                "event": event.to_dict(),
            },
        )
        return result

    def _notify(self, device_id: str, payload: dict[str, Any]) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.publish(device_scope(device_id), payload)
        except Exception:
            logger.exception("Kiosk notification failed for device %s", device_id)
