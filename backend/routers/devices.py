import sqlite3

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from backend.container import Container, get_container
from backend.security import require_admin
from backend.services.notifier import device_scope

router = APIRouter()


class DeviceCreate(BaseModel):
    device_id: str
    name: str
    department: str
    year: int = Field(ge=1, le=4)
    section: str
    model: str = "R307"


class DeviceStatus(BaseModel):
    is_online: bool = True


@router.get("/devices")
def list_devices(
    department: str | None = None,
    year: int | None = Query(default=None, ge=1, le=4),
    section: str | None = None,
    is_online: bool | None = None,
    _session: dict = Depends(require_admin),
    container: Container = Depends(get_container),
):
    devices = container.devices.list_devices(
        department=department,
        year=year,
        section=section,
        is_online=is_online,
    )
    return [d.to_dict() for d in devices]


@router.get("/devices/{device_id}")
def device_detail(
    device_id: str,
    _session: dict = Depends(require_admin),
    container: Container = Depends(get_container),
):
    device = container.devices.get(device_id)
    if device is None:
        raise HTTPException(status_code=404, detail="Device not found.")
    return {
        **device.to_dict(),
        "kiosk_connections": container.hub.connection_count(device_scope(device.device_id)),
    }


@router.post("/devices", status_code=201)
def register_device(
    payload: DeviceCreate,
    _session: dict = Depends(require_admin),
    container: Container = Depends(get_container),
):
    if not payload.device_id.strip() or not payload.name.strip() or not payload.section.strip():
        raise HTTPException(status_code=400, detail="All fields are required.")

    try:
        device = container.devices.register(
            device_id=payload.device_id,
            name=payload.name,
            department=payload.department,
            year=payload.year,
            section=payload.section,
            model=payload.model,
        )
    except sqlite3.IntegrityError:
        raise HTTPException(status_code=409, detail="Device ID already exists.")
    return device.to_dict()


@router.patch("/devices/{device_id}/status")
def update_device_status(
    device_id: str,
    payload: DeviceStatus,
    _session: dict = Depends(require_admin),
    container: Container = Depends(get_container),
):
    device = container.devices.update_status(device_id, is_online=payload.is_online)
    if device is None:
        raise HTTPException(status_code=404, detail="Device not found.")
    return device.to_dict()
