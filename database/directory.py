from pathlib import Path
from typing import Any, Sequence

from database.db import connect_db
from database.models import Student, normalize_id

_STUDENT_COLUMNS = """
    student_id,
    name,
    department,
    year,
    section,
    fingerprint_id,
    device_id,
    is_active,
    created_at
"""


def _row_to_student(row: Sequence[Any]) -> Student:
    return Student(
        student_id=str(row[0]),
        name=str(row[1]),
        department=str(row[2]),
        year=int(row[3]),
        section=str(row[4]),
        fingerprint_id=int(row[5]) if row[5] is not None else None,
        device_id=str(row[6]) if row[6] else None,
        is_active=bool(row[7]),
        created_at=str(row[8]) if row[8] else None,
    )


class SqliteDirectory:
    """Student roster. Read-only from the attendance engine's point of view."""

    def __init__(self, db_path: Path | str | None = None):
        self.db_path = db_path

    def find_active_student_by_fingerprint(self, fingerprint_id: int, device_id: str) -> Student | None:
        conn = connect_db(self.db_path)
        try:
            row = conn.execute(
                f"""
                SELECT {_STUDENT_COLUMNS}
                FROM students
                WHERE fingerprint_id = ?
                  AND device_id = ?
                  AND is_active = 1
                """,
                (fingerprint_id, normalize_id(device_id)),
            ).fetchone()
        finally:
            conn.close()
        return _row_to_student(row) if row else None

    def find_student_by_id(self, student_id: str) -> Student | None:
        conn = connect_db(self.db_path)
        try:
            row = conn.execute(
                f"""
                SELECT {_STUDENT_COLUMNS}
                FROM students
                WHERE student_id = ?
                """,
                (normalize_id(student_id),),
            ).fetchone()
        finally:
            conn.close()
        return _row_to_student(row) if row else None

    def list_students(
        self,
        *,
        department: str | None = None,
        year: int | None = None,
        section: str | None = None,
    ) -> list[Student]:
        where = ["1=1"]
        params: list[Any] = []
        if department:
            where.append("department = ?")
            params.append(department)
        if year:
            where.append("year = ?")
            params.append(int(year))
        if section:
            where.append("section = ?")
            params.append(section.strip().upper())

        conn = connect_db(self.db_path)
        try:
            rows = conn.execute(
                f"""
                SELECT {_STUDENT_COLUMNS}
                FROM students
                WHERE {" AND ".join(where)}
                ORDER BY student_id
                """,
                params,
            ).fetchall()
        finally:
            conn.close()
        return [_row_to_student(r) for r in rows]

    def list_classes(self) -> list[tuple[str, int, str]]:
        """Distinct (department, year, section) combinations, sorted."""
        conn = connect_db(self.db_path)
        try:
            rows = conn.execute(
                """
                SELECT DISTINCT department, year, section
                FROM students
                ORDER BY department, year, section
                """
            ).fetchall()
        finally:
            conn.close()
        return [(str(d), int(y), str(s)) for d, y, s in rows]

    def create_student(
        self,
        *,
        student_id: str,
        name: str,
        department: str,
        year: int,
        section: str,
        fingerprint_id: int | None = None,
        device_id: str | None = None,
        is_active: bool = True,
    ) -> Student:
        conn = connect_db(self.db_path)
        try:
            conn.execute(
                """
                INSERT INTO students (
                    student_id,
                    name,
                    department,
                    year,
                    section,
                    fingerprint_id,
                    device_id,
                    is_active
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    normalize_id(student_id),
                    name.strip(),
                    department.strip(),
                    int(year),
                    section.strip().upper(),
                    fingerprint_id,
                    normalize_id(device_id) or None,
                    1 if is_active else 0,
                ),
            )
            conn.commit()
        finally:
            conn.close()

        student = self.find_student_by_id(student_id)
        if student is None:
            raise RuntimeError(f"Student {student_id!r} vanished after insert.")
        return student

    def set_active(self, student_id: str, is_active: bool) -> Student | None:
        conn = connect_db(self.db_path)
        try:
            cur = conn.execute(
                "UPDATE students SET is_active = ? WHERE student_id = ?",
                (1 if is_active else 0, normalize_id(student_id)),
            )
            conn.commit()
            updated = cur.rowcount
        finally:
            conn.close()
        if not updated:
            return None
        return self.find_student_by_id(student_id)
