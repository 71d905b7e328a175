import os
import secrets
from datetime import time
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parents[1]

DB_PATH = Path(os.getenv("ROLLCALL_DB_PATH", BASE_DIR / "database" / "rollcall.db"))
KIOSK_API_KEY = os.getenv("ROLLCALL_KIOSK_API_KEY", "rollcall-kiosk-key-change-me").strip()
ADMIN_USERNAME = os.getenv("ROLLCALL_ADMIN_USERNAME", "admin").strip() or "admin"
ADMIN_PASSWORD = os.getenv("ROLLCALL_ADMIN_PASSWORD", "admin123").strip() or "admin123"
SIGNING_KEY = (
    os.getenv("ROLLCALL_SIGNING_KEY", "").strip()
    or KIOSK_API_KEY
    or secrets.token_urlsafe(32)
)
AUTH_TOKEN_TTL_SECONDS = int(os.getenv("ROLLCALL_AUTH_TOKEN_TTL_SECONDS", "43200"))
LOG_LEVEL = os.getenv("ROLLCALL_LOG_LEVEL", "INFO").strip().upper() or "INFO"


def _parse_bool(value: str | None, fallback: bool) -> bool:
    if value is None:
        return fallback
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return fallback


def _parse_csv(value: str | None, fallback: list[str]) -> list[str]:
    if not value:
        return fallback
    parsed = [item.strip() for item in value.split(",") if item.strip()]
    return parsed or fallback


def _parse_time(value: str | None, fallback: time) -> time:
    if not value:
        return fallback
    parts = value.split(":")
    try:
        hh = int(parts[0])
        mm = int(parts[1]) if len(parts) > 1 else 0
        return time(hh, mm)
    except (ValueError, IndexError):
        return fallback


CORS_ALLOW_ORIGINS = _parse_csv(
    os.getenv("ROLLCALL_CORS_ALLOW_ORIGINS"),
    ["http://localhost:5173", "http://127.0.0.1:5173"],
)
CORS_ALLOW_METHODS = _parse_csv(
    os.getenv("ROLLCALL_CORS_ALLOW_METHODS"),
    ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
)
CORS_ALLOW_HEADERS = _parse_csv(
    os.getenv("ROLLCALL_CORS_ALLOW_HEADERS"),
    ["Authorization", "Content-Type", "Accept", "X-API-Key"],
)
CORS_ALLOW_CREDENTIALS = _parse_bool(os.getenv("ROLLCALL_CORS_ALLOW_CREDENTIALS"), True)
ENABLE_DEBUG_ENDPOINTS = _parse_bool(os.getenv("ROLLCALL_ENABLE_DEBUG_ENDPOINTS"), False)


# Session windows are inclusive and compared at minute resolution.
MORNING_START = _parse_time(os.getenv("ROLLCALL_MORNING_START"), time(9, 0))
MORNING_END = _parse_time(os.getenv("ROLLCALL_MORNING_END"), time(12, 30))
AFTERNOON_START = _parse_time(os.getenv("ROLLCALL_AFTERNOON_START"), time(13, 30))
AFTERNOON_END = _parse_time(os.getenv("ROLLCALL_AFTERNOON_END"), time(16, 30))

DUPLICATE_WINDOW_SECONDS = max(
    0,
    int(os.getenv("ROLLCALL_DUPLICATE_WINDOW_SECONDS", "300")),
)
