from dataclasses import dataclass
from datetime import date as date_cls
from datetime import datetime
from typing import Any, Iterable, Mapping, Union

from backend.errors import InvalidReportRequest, StudentNotFoundError
from backend.services.contracts import Directory, EventStore
from database.models import DATE_FORMAT, AttendanceEvent, Student, normalize_id

SUMMARY_FIELDS = (
    "total_students",
    "fully_present",
    "morning_present",
    "afternoon_present",
    "absent",
    "partial_present",
)


@dataclass(frozen=True)
class StudentReportRequest:
    student_id: str
    start_date: str
    end_date: str


@dataclass(frozen=True)
class ClassReportRequest:
    date: str


@dataclass(frozen=True)
class DailyReportRequest:
    date: str
    department: str | None = None
    year: int | None = None
    section: str | None = None

    @property
    def filters(self) -> dict[str, Any]:
        return {"department": self.department, "year": self.year, "section": self.section}


ReportRequest = Union[StudentReportRequest, ClassReportRequest, DailyReportRequest]


def _today() -> str:
    return datetime.now().strftime(DATE_FORMAT)


def _parse_date(value: str, label: str) -> date_cls:
    try:
        return datetime.strptime(value, DATE_FORMAT).date()
    except (TypeError, ValueError):
        raise InvalidReportRequest(f"{label} must be in YYYY-MM-DD format.")


def _clean(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
    return value or None


def build_report_request(filters: Mapping[str, Any]) -> ReportRequest:
    """
    Pick the report shape from the filters present.

    student_id wins, then group_by=class, and anything else is a daily
    report. Dates default to today; a student range with only one end
    mirrors it onto the other.
    """
    student_id = _clean(filters.get("student_id"))
    date = _clean(filters.get("date"))

    if student_id:
        start = _clean(filters.get("start_date")) or date
        end = _clean(filters.get("end_date")) or date
        if not start and not end:
            start = end = _today()
        start = start or end
        end = end or start
        if _parse_date(start, "start_date") > _parse_date(end, "end_date"):
            raise InvalidReportRequest("start_date must not be after end_date.")
        return StudentReportRequest(student_id=normalize_id(student_id), start_date=start, end_date=end)

    date = date or _today()
    _parse_date(date, "date")

    if _clean(filters.get("group_by")) == "class":
        return ClassReportRequest(date=date)

    year = _clean(filters.get("year"))
    if year is not None:
        try:
            year = int(year)
        except (TypeError, ValueError):
            raise InvalidReportRequest("year must be an integer.")
    section = _clean(filters.get("section"))
    return DailyReportRequest(
        date=date,
        department=_clean(filters.get("department")),
        year=year,
        section=section.upper() if section else None,
    )


def _blank_day() -> dict[str, dict[str, list[datetime]]]:
    return {
        "morning": {"IN": [], "OUT": []},
        "afternoon": {"IN": [], "OUT": []},
    }


def _collect(events: Iterable[AttendanceEvent], key) -> dict[str, dict[str, dict[str, list[datetime]]]]:
    grouped: dict[str, dict[str, dict[str, list[datetime]]]] = {}
    for event in events:
        if event.session is None or event.action is None:
            continue
        day = grouped.setdefault(key(event), _blank_day())
        day[event.session][event.action].append(event.timestamp)
    return grouped


def _session_presence(marks: dict[str, list[datetime]]) -> dict[str, Any]:
    ins, outs = marks["IN"], marks["OUT"]
    return {
        "present": bool(ins and outs),
        "in_time": min(ins).isoformat() if ins else None,
        "out_time": max(outs).isoformat() if outs else None,
    }


def _presence(day: dict[str, dict[str, list[datetime]]] | None) -> dict[str, Any]:
    day = day or _blank_day()
    morning = _session_presence(day["morning"])
    afternoon = _session_presence(day["afternoon"])
    return {
        "morning": morning,
        "afternoon": afternoon,
        "fully_present": morning["present"] and afternoon["present"],
    }


def _summarize(rows: list[dict[str, Any]]) -> dict[str, int]:
    return {
        "total_students": len(rows),
        "fully_present": sum(1 for r in rows if r["fully_present"]),
        "morning_present": sum(1 for r in rows if r["morning"]["present"]),
        "afternoon_present": sum(1 for r in rows if r["afternoon"]["present"]),
        "absent": sum(
            1 for r in rows if not r["morning"]["present"] and not r["afternoon"]["present"]
        ),
        "partial_present": sum(
            1
            for r in rows
            if not r["fully_present"] and (r["morning"]["present"] or r["afternoon"]["present"])
        ),
    }


class ReportAggregator:
    """Read-only projections over the event store and the student roster."""

    def __init__(self, directory: Directory, store: EventStore):
        self.directory = directory
        self.store = store

    def generate(self, request: ReportRequest) -> dict[str, Any]:
        if isinstance(request, StudentReportRequest):
            return self.student_report(request)
        if isinstance(request, ClassReportRequest):
            return self.class_report(request)
        return self.daily_report(request)

    def student_report(self, request: StudentReportRequest) -> dict[str, Any]:
        student = self.directory.find_student_by_id(request.student_id)
        if student is None:
            raise StudentNotFoundError(request.student_id)

        events = self.store.find_events_in_range(student.student_id, request.start_date, request.end_date)
        by_date = _collect(events, key=lambda e: e.date)
        daily = [{"date": d, **_presence(by_date[d])} for d in sorted(by_date)]

        start = _parse_date(request.start_date, "start_date")
        end = _parse_date(request.end_date, "end_date")
        total_days = (end - start).days + 1
        fully_present = sum(1 for d in daily if d["fully_present"])
        percentage = round(fully_present / total_days * 100, 2) if total_days > 0 else 0.0

        return {
            "type": "student",
            "student": student.summary(),
            "date_range": {
                "start_date": request.start_date,
                "end_date": request.end_date,
                "total_days": total_days,
            },
            "summary": {
                "total_days_present": fully_present,
                "morning_present": sum(1 for d in daily if d["morning"]["present"]),
                "afternoon_present": sum(1 for d in daily if d["afternoon"]["present"]),
                "attendance_percentage": percentage,
            },
            "daily_attendance": daily,
        }

    def day_breakdown(self, student_id: str, date: str) -> dict[str, Any]:
        student = self.directory.find_student_by_id(student_id)
        if student is None:
            raise StudentNotFoundError(normalize_id(student_id))

        events = self.store.find_events(student.student_id, date)
        day = _collect(events, key=lambda e: e.date).get(date)
        return {
            "student": student.summary(),
            "date": date,
            **_presence(day),
            "events": [e.to_dict() for e in events],
        }

    def _daily_rows(self, request: DailyReportRequest) -> list[dict[str, Any]]:
        students = self.directory.list_students(
            department=request.department,
            year=request.year,
            section=request.section,
        )
        events = self.store.find_events_for_students([s.student_id for s in students], request.date)
        by_student = _collect(events, key=lambda e: e.student_id)
        return [_student_row(s, by_student.get(s.student_id)) for s in students]

    def daily_report(self, request: DailyReportRequest) -> dict[str, Any]:
        rows = self._daily_rows(request)
        return {
            "type": "daily",
            "date": request.date,
            "filters": request.filters,
            "summary": _summarize(rows),
            "students": rows,
        }

    def class_report(self, request: ClassReportRequest) -> dict[str, Any]:
        classes = []
        for department, year, section in self.directory.list_classes():
            rows = self._daily_rows(
                DailyReportRequest(
                    date=request.date,
                    department=department,
                    year=year,
                    section=section,
                )
            )
            classes.append(
                {
                    "class": f"{department} - Year {year} - Section {section}",
                    "department": department,
                    "year": year,
                    "section": section,
                    **_summarize(rows),
                }
            )

        return {
            "type": "class",
            "date": request.date,
            "classes": classes,
            "overall_summary": {name: sum(c[name] for c in classes) for name in SUMMARY_FIELDS},
        }


def _student_row(student: Student, day: dict[str, dict[str, list[datetime]]] | None) -> dict[str, Any]:
    return {**student.summary(), **_presence(day)}
