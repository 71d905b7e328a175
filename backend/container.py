from dataclasses import dataclass
from pathlib import Path

from fastapi import Request

from backend.services.notifier import KioskHub
from backend.services.processor import EventProcessor
from backend.services.reports import ReportAggregator
from database.devices import SqliteDeviceRegistry
from database.directory import SqliteDirectory
from database.events import SqliteEventStore


@dataclass(frozen=True)
class Container:
    directory: SqliteDirectory
    store: SqliteEventStore
    devices: SqliteDeviceRegistry
    hub: KioskHub
    processor: EventProcessor
    reports: ReportAggregator


def build_container(db_path: Path | str | None = None) -> Container:
    # db_path=None keeps every store resolving DB_PATH per connection.
    directory = SqliteDirectory(db_path)
    store = SqliteEventStore(db_path)
    hub = KioskHub()
    return Container(
        directory=directory,
        store=store,
        devices=SqliteDeviceRegistry(db_path),
        hub=hub,
        processor=EventProcessor(directory, store, hub),
        reports=ReportAggregator(directory, store),
    )


def get_container(request: Request) -> Container:
    return request.app.state.container
