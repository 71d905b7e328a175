import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from fastapi.websockets import WebSocketState

from backend.container import Container
from backend.security import verify_kiosk_key
from backend.services.notifier import device_scope
from database.models import normalize_id

logger = logging.getLogger(__name__)

router = APIRouter()


async def _touch_device(container: Container, device_id: str, *, online: bool) -> None:
    device = await run_in_threadpool(container.devices.update_status, device_id, is_online=online)
    if device is None:
        logger.debug("Kiosk for unregistered device %s", device_id)


@router.websocket("/ws/kiosk/{device_id}")
async def kiosk_feed(websocket: WebSocket, device_id: str) -> None:
    """
    Live scan outcomes for the kiosk screen next to ``device_id``.

    The kiosk key is accepted from the ``x-api-key`` header or, for browsers
    that cannot set headers on a WebSocket, the ``api_key`` query parameter.
    Messages are ``{"type": "attendance:event", "data": {...}}``.
    """
    api_key = websocket.headers.get("x-api-key") or websocket.query_params.get("api_key")
    if not verify_kiosk_key(api_key):
        logger.warning("Kiosk connection rejected for %s: bad API key", device_id)
        await websocket.close(code=1008, reason="Invalid kiosk API key")
        return

    container: Container = websocket.app.state.container
    device_key = normalize_id(device_id)
    scope_key = device_scope(device_key)

    await websocket.accept()
    await container.hub.subscribe(scope_key, websocket)
    await _touch_device(container, device_key, online=True)

    try:
        await websocket.send_json(
            {
                "type": "connection",
                "data": {"device_id": device_key, "status": "connected"},
            }
        )
        while websocket.client_state == WebSocketState.CONNECTED:
            message = await websocket.receive_text()
            logger.debug("Ignoring kiosk message from %s: %s", device_key, message)
    except WebSocketDisconnect:
        logger.info("Kiosk %s disconnected", device_key)
    finally:
        await container.hub.unsubscribe(scope_key, websocket)
        await _touch_device(container, device_key, online=False)
