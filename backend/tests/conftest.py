from datetime import datetime

import pytest
from fastapi.testclient import TestClient

import backend.config as config
import backend.main as main
import database.db as db
from backend.services.processor import EventProcessor
from backend.services.reports import ReportAggregator
from database.devices import SqliteDeviceRegistry
from database.directory import SqliteDirectory
from database.events import SqliteEventStore
from database.models import AttendanceEvent

SCAN_DATE = "2026-03-02"


def at(hhmm: str, date: str = SCAN_DATE) -> datetime:
    return datetime.strptime(f"{date} {hhmm}", "%Y-%m-%d %H:%M")


def make_event(
    student_id: str,
    hhmm: str,
    session: str,
    action: str,
    *,
    date: str = SCAN_DATE,
    source: str = "scanner",
) -> AttendanceEvent:
    stamp = at(hhmm, date)
    return AttendanceEvent(
        student_id=student_id,
        fingerprint_id=1,
        timestamp=stamp,
        date=date,
        session=session,
        action=action,
        device_id="DEV-01",
        created_at=stamp,
        source=source,
    )


class RecordingNotifier:
    def __init__(self):
        self.published = []

    def publish(self, scope_key, payload):
        self.published.append((scope_key, payload))


@pytest.fixture()
def db_path(tmp_path, monkeypatch):
    test_db = tmp_path / "rollcall_test.db"

    # Point DB to a temp file for isolation.
    monkeypatch.setattr(config, "DB_PATH", test_db)
    monkeypatch.setattr(db, "DB_PATH", test_db)

    db.create_tables()
    return test_db


@pytest.fixture()
def directory(db_path):
    return SqliteDirectory()


@pytest.fixture()
def store(db_path):
    return SqliteEventStore()


@pytest.fixture()
def devices(db_path):
    return SqliteDeviceRegistry()


@pytest.fixture()
def notifier():
    return RecordingNotifier()


@pytest.fixture()
def processor(directory, store, notifier):
    return EventProcessor(directory, store, notifier)


@pytest.fixture()
def reports(directory, store):
    return ReportAggregator(directory, store)


@pytest.fixture()
def student(directory):
    return directory.create_student(
        student_id="cs2024001",
        name="Asha Verma",
        department="CSE",
        year=2,
        section="a",
        fingerprint_id=7,
        device_id="dev-01",
    )


@pytest.fixture()
def client(db_path):
    with TestClient(main.app) as c:
        yield c


@pytest.fixture()
def auth_headers(client):
    res = client.post(
        "/auth/login",
        json={
            "username": config.ADMIN_USERNAME,
            "password": config.ADMIN_PASSWORD,
        },
    )
    assert res.status_code == 200
    token = res.json()["access_token"]
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def kiosk_headers():
    return {"X-API-Key": config.KIOSK_API_KEY}
