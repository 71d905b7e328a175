from datetime import datetime
from typing import Any, Protocol, Sequence

from database.models import AttendanceEvent, Session, Student


class EventStore(Protocol):
    def find_events(
        self,
        student_id: str,
        date: str,
        session: Session | None = None,
    ) -> list[AttendanceEvent]:
        """Events for the key, ordered by timestamp ascending."""

        raise NotImplementedError

    def find_recent_event(
        self,
        student_id: str,
        date: str,
        session: Session,
        window_start: datetime,
        window_end_exclusive: datetime,
    ) -> AttendanceEvent | None:
        raise NotImplementedError

    def find_events_in_range(self, student_id: str, start_date: str, end_date: str) -> list[AttendanceEvent]:
        raise NotImplementedError

    def find_events_for_students(self, student_ids: Sequence[str], date: str) -> list[AttendanceEvent]:
        raise NotImplementedError

    def append(self, event: AttendanceEvent) -> AttendanceEvent:
        """Persist an event; raises DuplicateEventError on a scanner key conflict."""

        raise NotImplementedError


class Directory(Protocol):
    def find_active_student_by_fingerprint(self, fingerprint_id: int, device_id: str) -> Student | None:
        raise NotImplementedError

    def find_student_by_id(self, student_id: str) -> Student | None:
        raise NotImplementedError

    def list_students(
        self,
        *,
        department: str | None = None,
        year: int | None = None,
        section: str | None = None,
    ) -> list[Student]:
        raise NotImplementedError

    def list_classes(self) -> list[tuple[str, int, str]]:
        raise NotImplementedError


class NotifierSink(Protocol):
    def publish(self, scope_key: str, payload: dict[str, Any]) -> None:
        """Best-effort delivery; must not block the caller."""

        raise NotImplementedError
