from datetime import datetime
from pathlib import Path
from typing import Any, Sequence

from database.db import connect_db
from database.models import Device, normalize_id

_DEVICE_COLUMNS = """
    device_id,
    name,
    department,
    year,
    section,
    model,
    is_active,
    is_online,
    last_seen,
    created_at
"""


def _row_to_device(row: Sequence[Any]) -> Device:
    return Device(
        device_id=str(row[0]),
        name=str(row[1]),
        department=str(row[2]),
        year=int(row[3]),
        section=str(row[4]),
        model=str(row[5]),
        is_active=bool(row[6]),
        is_online=bool(row[7]),
        last_seen=str(row[8]) if row[8] else None,
        created_at=str(row[9]) if row[9] else None,
    )


class SqliteDeviceRegistry:
    def __init__(self, db_path: Path | str | None = None):
        self.db_path = db_path

    def get(self, device_id: str) -> Device | None:
        conn = connect_db(self.db_path)
        try:
            row = conn.execute(
                f"SELECT {_DEVICE_COLUMNS} FROM devices WHERE device_id = ?",
                (normalize_id(device_id),),
            ).fetchone()
        finally:
            conn.close()
        return _row_to_device(row) if row else None

    def list_devices(
        self,
        *,
        department: str | None = None,
        year: int | None = None,
        section: str | None = None,
        is_online: bool | None = None,
    ) -> list[Device]:
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
        if is_online is not None:
            where.append("is_online = ?")
            params.append(1 if is_online else 0)

        conn = connect_db(self.db_path)
        try:
            rows = conn.execute(
                f"""
                SELECT {_DEVICE_COLUMNS}
                FROM devices
                WHERE {" AND ".join(where)}
                ORDER BY created_at DESC, id DESC
                """,
                params,
            ).fetchall()
        finally:
            conn.close()
        return [_row_to_device(r) for r in rows]

    def register(
        self,
        *,
        device_id: str,
        name: str,
        department: str,
        year: int,
        section: str,
        model: str = "R307",
    ) -> Device:
        conn = connect_db(self.db_path)
        try:
            conn.execute(
                """
                INSERT INTO devices (device_id, name, department, year, section, model)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    normalize_id(device_id),
                    name.strip(),
                    department.strip(),
                    int(year),
                    section.strip().upper(),
                    model.strip() or "R307",
                ),
            )
            conn.commit()
        finally:
            conn.close()

        device = self.get(device_id)
        if device is None:
            raise RuntimeError(f"Device {device_id!r} vanished after insert.")
        return device

    def update_status(
        self,
        device_id: str,
        *,
        is_online: bool = True,
        last_seen: datetime | None = None,
    ) -> Device | None:
        seen = (last_seen or datetime.now()).isoformat(timespec="seconds")
        conn = connect_db(self.db_path)
        try:
            cur = conn.execute(
                """
                UPDATE devices
                SET is_online = ?,
                    last_seen = ?
                WHERE device_id = ?
                """,
                (1 if is_online else 0, seen, normalize_id(device_id)),
            )
            conn.commit()
            updated = cur.rowcount
        finally:
            conn.close()
        if not updated:
            return None
        return self.get(device_id)
