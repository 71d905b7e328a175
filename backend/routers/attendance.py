from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from backend.container import Container, get_container
from backend.errors import InvalidReportRequest, StudentNotFoundError
from backend.security import require_admin, require_kiosk_key, require_session
from backend.services.reports import build_report_request
from database.models import DATE_FORMAT, normalize_id

router = APIRouter()


class ScanRequest(BaseModel):
    fingerprint_id: int = Field(ge=0)
    device_id: str
    timestamp: datetime | None = None


class ManualEntryRequest(BaseModel):
    student_id: str
    action: Literal["IN", "OUT"]
    session: Literal["morning", "afternoon"]
    timestamp: datetime
    device_id: str


def _check_date(value: str | None, label: str) -> str | None:
    if value is None:
        return None
    try:
        datetime.strptime(value, DATE_FORMAT)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"{label} must be in YYYY-MM-DD format.")
    return value


@router.post("/attendance/process")
def process_scan(
    payload: ScanRequest,
    _api_key: str = Depends(require_kiosk_key),
    container: Container = Depends(get_container),
):
    device_id = payload.device_id.strip()
    if not device_id:
        raise HTTPException(status_code=400, detail="device_id is required.")

    outcome = container.processor.process(
        payload.fingerprint_id,
        device_id,
        timestamp=payload.timestamp,
    )
    return JSONResponse(
        status_code=201 if outcome.success else 400,
        content=outcome.to_payload(),
    )


@router.post("/attendance/manual", status_code=201)
def manual_entry(
    payload: ManualEntryRequest,
    _session: dict = Depends(require_admin),
    container: Container = Depends(get_container),
):
    if not payload.student_id.strip():
        raise HTTPException(status_code=400, detail="student_id is required.")
    device_id = payload.device_id.strip()
    if not device_id:
        raise HTTPException(status_code=400, detail="device_id is required.")

    try:
        result = container.processor.create_manual_entry(
            student_id=payload.student_id,
            action=payload.action,
            session=payload.session,
            timestamp=payload.timestamp,
            device_id=device_id,
        )
    except StudentNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return result.to_payload()


@router.get("/attendance/events")
def list_events(
    student_id: str | None = None,
    date: str | None = None,
    session: Literal["morning", "afternoon"] | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    _session: dict = Depends(require_session),
    container: Container = Depends(get_container),
):
    filters = {
        "student_id": normalize_id(student_id) or None,
        "date": _check_date(date, "date"),
        "session": session,
        "start_date": _check_date(start_date, "start_date"),
        "end_date": _check_date(end_date, "end_date"),
    }
    events = container.store.search(**filters, limit=limit, offset=offset)
    return {
        "total": container.store.count(**filters),
        "limit": limit,
        "offset": offset,
        "items": [e.to_dict() for e in events],
    }


@router.get("/attendance/today/{student_id}")
def today_for_student(
    student_id: str,
    _session: dict = Depends(require_session),
    container: Container = Depends(get_container),
):
    today = datetime.now().strftime(DATE_FORMAT)
    try:
        return container.reports.day_breakdown(student_id, today)
    except StudentNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/attendance/report")
def attendance_report(
    student_id: str | None = None,
    date: str | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
    department: str | None = None,
    year: int | None = Query(default=None, ge=1, le=4),
    section: str | None = None,
    group_by: Literal["class"] | None = None,
    _session: dict = Depends(require_session),
    container: Container = Depends(get_container),
):
    try:
        request = build_report_request(
            {
                "student_id": student_id,
                "date": date,
                "start_date": start_date,
                "end_date": end_date,
                "department": department,
                "year": year,
                "section": section,
                "group_by": group_by,
            }
        )
        return container.reports.generate(request)
    except InvalidReportRequest as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StudentNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
