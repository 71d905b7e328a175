import base64
import hashlib
import hmac
import json
import time
from typing import Any

from fastapi import Depends, Header, HTTPException

from backend.config import AUTH_TOKEN_TTL_SECONDS, KIOSK_API_KEY, SIGNING_KEY


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64url_decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


def _sign(payload_b64: str) -> str:
    digest = hmac.new(
        SIGNING_KEY.encode("utf-8"),
        payload_b64.encode("ascii"),
        hashlib.sha256,
    ).digest()
    return _b64url_encode(digest)


def verify_kiosk_key(api_key: str | None) -> bool:
    expected = KIOSK_API_KEY.strip()
    candidate = (api_key or "").strip()
    if not expected or not candidate:
        return False
    return hmac.compare_digest(candidate, expected)


def issue_session_token(subject: str, role: str = "admin") -> tuple[str, dict[str, Any]]:
    now = int(time.time())
    payload = {
        "sub": subject.strip(),
        "role": role,
        "iat": now,
        "exp": now + AUTH_TOKEN_TTL_SECONDS,
    }
    payload_json = json.dumps(payload, separators=(",", ":"), sort_keys=True)
    payload_b64 = _b64url_encode(payload_json.encode("utf-8"))
    token = f"{payload_b64}.{_sign(payload_b64)}"
    return token, payload


def decode_session_token(token: str) -> dict[str, Any] | None:
    if not token or "." not in token:
        return None

    payload_b64, signature = token.split(".", 1)
    expected = _sign(payload_b64)
    if not hmac.compare_digest(signature, expected):
        return None

    try:
        payload = json.loads(_b64url_decode(payload_b64).decode("utf-8"))
    except (ValueError, UnicodeDecodeError):
        return None

    if not isinstance(payload, dict):
        return None

    sub = payload.get("sub")
    exp = payload.get("exp")
    if not isinstance(sub, str) or not sub.strip():
        return None
    if not isinstance(exp, int) or exp < int(time.time()):
        return None

    return payload


def require_session(authorization: str | None = Header(default=None)) -> dict[str, Any]:
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing bearer token.")

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=401, detail="Invalid authorization scheme.")

    payload = decode_session_token(token.strip())
    if not payload:
        raise HTTPException(status_code=401, detail="Invalid or expired session token.")

    return payload


# Login only issues admin tokens; tokens minted with any other role can read
# through require_session but are refused here.
def require_admin(session: dict[str, Any] = Depends(require_session)) -> dict[str, Any]:
    if session.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Admin role required.")
    return session


def require_kiosk_key(x_api_key: str | None = Header(default=None)) -> str:
    if not verify_kiosk_key(x_api_key):
        raise HTTPException(status_code=401, detail="Invalid or missing kiosk API key.")
    return x_api_key.strip()
