import logging
import sqlite3

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from backend.container import Container, get_container
from backend.security import require_admin

logger = logging.getLogger(__name__)

router = APIRouter()


class StudentCreate(BaseModel):
    student_id: str
    name: str
    department: str
    year: int = Field(ge=1, le=4)
    section: str
    fingerprint_id: int | None = Field(default=None, ge=0)
    device_id: str | None = None


class StudentActive(BaseModel):
    is_active: bool


@router.get("/students")
def list_students(
    department: str | None = None,
    year: int | None = Query(default=None, ge=1, le=4),
    section: str | None = None,
    _session: dict = Depends(require_admin),
    container: Container = Depends(get_container),
):
    students = container.directory.list_students(
        department=department,
        year=year,
        section=section,
    )
    return [s.to_dict() for s in students]


@router.get("/students/{student_id}")
def student_detail(
    student_id: str,
    _session: dict = Depends(require_admin),
    container: Container = Depends(get_container),
):
    student = container.directory.find_student_by_id(student_id)
    if student is None:
        raise HTTPException(status_code=404, detail="Student not found.")
    return student.to_dict()


@router.post("/students", status_code=201)
def create_student(
    payload: StudentCreate,
    _session: dict = Depends(require_admin),
    container: Container = Depends(get_container),
):
    student_id = payload.student_id.strip()
    name = payload.name.strip()
    department = payload.department.strip()
    section = payload.section.strip()

    if not student_id or not name or not department or not section:
        raise HTTPException(status_code=400, detail="All fields are required.")
    if (payload.fingerprint_id is None) != (not (payload.device_id or "").strip()):
        raise HTTPException(
            status_code=400,
            detail="fingerprint_id and device_id must be given together.",
        )

    try:
        student = container.directory.create_student(
            student_id=student_id,
            name=name,
            department=department,
            year=payload.year,
            section=section,
            fingerprint_id=payload.fingerprint_id,
            device_id=payload.device_id,
        )
    except sqlite3.IntegrityError:
        raise HTTPException(
            status_code=409,
            detail="Student ID or fingerprint already registered on this device.",
        )

    logger.info("Registered student %s", student.student_id)
    return student.to_dict()


@router.patch("/students/{student_id}/active")
def set_student_active(
    student_id: str,
    payload: StudentActive,
    _session: dict = Depends(require_admin),
    container: Container = Depends(get_container),
):
    student = container.directory.set_active(student_id, payload.is_active)
    if student is None:
        raise HTTPException(status_code=404, detail="Student not found.")
    logger.info("Student %s active=%s", student.student_id, student.is_active)
    return student.to_dict()
