import sqlite3
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any, Sequence

from database.db import connect_db
from database.models import (
    AttendanceEvent,
    Session,
    format_stamp,
    parse_stamp,
)

_EVENT_COLUMNS = """
    id,
    student_id,
    fingerprint_id,
    timestamp,
    date,
    session,
    action,
    device_id,
    source,
    created_at
"""


class DuplicateEventError(Exception):
    """A scanner event for the same student/date/session/action already exists."""


def _row_to_event(row: Sequence[Any]) -> AttendanceEvent:
    return AttendanceEvent(
        id=int(row[0]),
        student_id=str(row[1]),
        fingerprint_id=int(row[2]),
        timestamp=parse_stamp(row[3]),
        date=str(row[4]),
        session=row[5],
        action=row[6],
        device_id=str(row[7]),
        source=row[8],
        created_at=parse_stamp(row[9]),
    )


class SqliteEventStore:
    """
    Append-only store of accepted attendance events.

    Every call opens and closes its own connection; SQLite serializes the
    writes and WAL mode lets readers see the latest committed state.
    """

    def __init__(self, db_path: Path | str | None = None):
        self.db_path = db_path

    def _fetch(self, query: str, params: Sequence[Any]) -> list[AttendanceEvent]:
        conn = connect_db(self.db_path)
        try:
            rows = conn.execute(query, params).fetchall()
        finally:
            conn.close()
        return [_row_to_event(r) for r in rows]

    def find_events(
        self,
        student_id: str,
        date: str,
        session: Session | None = None,
    ) -> list[AttendanceEvent]:
        where = ["student_id = ?", "date = ?"]
        params: list[Any] = [student_id, date]
        if session is not None:
            where.append("session = ?")
            params.append(session)
        return self._fetch(
            f"""
            SELECT {_EVENT_COLUMNS}
            FROM attendance_events
            WHERE {" AND ".join(where)}
            ORDER BY timestamp ASC, id ASC
            """,
            params,
        )

    def find_recent_event(
        self,
        student_id: str,
        date: str,
        session: Session,
        window_start: datetime,
        window_end_exclusive: datetime,
    ) -> AttendanceEvent | None:
        rows = self._fetch(
            f"""
            SELECT {_EVENT_COLUMNS}
            FROM attendance_events
            WHERE student_id = ?
              AND date = ?
              AND session = ?
              AND timestamp >= ?
              AND timestamp < ?
            ORDER BY timestamp DESC
            LIMIT 1
            """,
            (
                student_id,
                date,
                session,
                format_stamp(window_start),
                format_stamp(window_end_exclusive),
            ),
        )
        return rows[0] if rows else None

    def find_events_in_range(
        self,
        student_id: str,
        start_date: str,
        end_date: str,
    ) -> list[AttendanceEvent]:
        return self._fetch(
            f"""
            SELECT {_EVENT_COLUMNS}
            FROM attendance_events
            WHERE student_id = ?
              AND date >= ?
              AND date <= ?
            ORDER BY date ASC, timestamp ASC
            """,
            (student_id, start_date, end_date),
        )

    def find_events_for_students(
        self,
        student_ids: Sequence[str],
        date: str,
    ) -> list[AttendanceEvent]:
        if not student_ids:
            return []
        placeholders = ", ".join("?" for _ in student_ids)
        return self._fetch(
            f"""
            SELECT {_EVENT_COLUMNS}
            FROM attendance_events
            WHERE date = ?
              AND student_id IN ({placeholders})
            ORDER BY timestamp ASC
            """,
            [date, *student_ids],
        )

    def append(self, event: AttendanceEvent) -> AttendanceEvent:
        conn = connect_db(self.db_path)
        try:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO attendance_events (
                    student_id,
                    fingerprint_id,
                    timestamp,
                    date,
                    session,
                    action,
                    device_id,
                    source,
                    created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    event.student_id,
                    event.fingerprint_id,
                    format_stamp(event.timestamp),
                    event.date,
                    event.session,
                    event.action,
                    event.device_id,
                    event.source,
                    format_stamp(event.created_at),
                ),
            )
            conn.commit()
            event_id = int(cur.lastrowid)
        except sqlite3.IntegrityError as e:
            if "UNIQUE constraint failed" in str(e):
                raise DuplicateEventError(
                    f"{event.action} already recorded for {event.student_id} "
                    f"{event.date} {event.session}"
                ) from e
            raise
        finally:
            conn.close()

        return replace(event, id=event_id)

    def search(
        self,
        *,
        student_id: str | None = None,
        date: str | None = None,
        session: Session | None = None,
        start_date: str | None = None,
        end_date: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[AttendanceEvent]:
        where_sql, params = _build_search_where_clause(
            student_id=student_id,
            date=date,
            session=session,
            start_date=start_date,
            end_date=end_date,
        )
        safe_limit = max(1, min(int(limit), 500))
        safe_offset = max(0, int(offset))
        return self._fetch(
            f"""
            SELECT {_EVENT_COLUMNS}
            FROM attendance_events
            WHERE {where_sql}
            ORDER BY timestamp DESC, id DESC
            LIMIT ?
            OFFSET ?
            """,
            [*params, safe_limit, safe_offset],
        )

    def count(
        self,
        *,
        student_id: str | None = None,
        date: str | None = None,
        session: Session | None = None,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> int:
        where_sql, params = _build_search_where_clause(
            student_id=student_id,
            date=date,
            session=session,
            start_date=start_date,
            end_date=end_date,
        )
        conn = connect_db(self.db_path)
        try:
            row = conn.execute(
                f"SELECT COUNT(1) FROM attendance_events WHERE {where_sql}",
                params,
            ).fetchone()
        finally:
            conn.close()
        return int(row[0] or 0) if row else 0


def _build_search_where_clause(
    *,
    student_id: str | None = None,
    date: str | None = None,
    session: Session | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
) -> tuple[str, list[Any]]:
    where = ["1=1"]
    params: list[Any] = []

    if student_id is not None:
        where.append("student_id = ?")
        params.append(student_id)
    if session is not None:
        where.append("session = ?")
        params.append(session)
    # A date range overrides a single date.
    if start_date is not None or end_date is not None:
        if start_date is not None:
            where.append("date >= ?")
            params.append(start_date)
        if end_date is not None:
            where.append("date <= ?")
            params.append(end_date)
    elif date is not None:
        where.append("date = ?")
        params.append(date)

    return " AND ".join(where), params
