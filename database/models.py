from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Literal

Session = Literal["morning", "afternoon"]
Action = Literal["IN", "OUT"]
EventSource = Literal["scanner", "manual"]

SESSIONS: tuple[Session, ...] = ("morning", "afternoon")
ACTIONS: tuple[Action, ...] = ("IN", "OUT")

STAMP_FORMAT = "%Y-%m-%d %H:%M:%S.%f"
DATE_FORMAT = "%Y-%m-%d"


def format_stamp(value: datetime) -> str:
    # Fixed width so stored stamps compare correctly as strings.
    return value.strftime(STAMP_FORMAT)


def parse_stamp(value: str) -> datetime:
    return datetime.fromisoformat(str(value))


def normalize_id(value: str | None) -> str:
    return (value or "").strip().upper()


@dataclass(frozen=True)
class AttendanceEvent:
    student_id: str
    fingerprint_id: int
    timestamp: datetime
    date: str
    session: Session | None
    action: Action | None
    device_id: str
    created_at: datetime
    source: EventSource = "scanner"
    id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        data["created_at"] = self.created_at.isoformat()
        return data


@dataclass(frozen=True)
class Student:
    student_id: str
    name: str
    department: str
    year: int
    section: str
    fingerprint_id: int | None
    device_id: str | None
    is_active: bool = True
    created_at: str | None = None

    def summary(self) -> dict[str, Any]:
        return {
            "student_id": self.student_id,
            "name": self.name,
            "department": self.department,
            "year": self.year,
            "section": self.section,
        }

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Device:
    device_id: str
    name: str
    department: str
    year: int
    section: str
    model: str = "R307"
    is_active: bool = True
    is_online: bool = False
    last_seen: str | None = None
    created_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
