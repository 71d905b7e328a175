from fastapi import APIRouter, Depends, HTTPException

from backend.config import (
    DB_PATH,
    DUPLICATE_WINDOW_SECONDS,
    ENABLE_DEBUG_ENDPOINTS,
)
from backend.security import require_session
from backend.services.sessions import SESSION_WINDOWS

router = APIRouter()


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/debug/dbpath")
def dbpath(_session: dict = Depends(require_session)):
    if not ENABLE_DEBUG_ENDPOINTS:
        raise HTTPException(status_code=404, detail="Not found.")
    return {"db_path": str(DB_PATH)}


@router.get("/config/sessions")
def session_config():
    return {
        "sessions": {
            name: {"start": start.strftime("%H:%M"), "end": end.strftime("%H:%M")}
            for name, (start, end) in SESSION_WINDOWS.items()
        },
        "duplicate_window_seconds": DUPLICATE_WINDOW_SECONDS,
    }
