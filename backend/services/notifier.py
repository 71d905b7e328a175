"""
Real-time fan-out of scan outcomes to kiosk displays.

Kiosks connect over a WebSocket and subscribe to the scope of the device
they sit next to. The processor publishes from FastAPI's worker threads, so
``publish`` only hands the message to the event loop and returns.
"""

import asyncio
import json
import logging
from collections import defaultdict
from concurrent.futures import Future
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect

from database.models import normalize_id

logger = logging.getLogger(__name__)

KIOSK_EVENT = "attendance:event"


def device_scope(device_id: str) -> str:
    return f"device:{normalize_id(device_id)}"


class KioskHub:
    """Tracks kiosk WebSocket connections per scope and broadcasts to them."""

    def __init__(self) -> None:
        self._connections: dict[str, list[WebSocket]] = defaultdict(list)
        self._connection_lock = asyncio.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._pending: set[asyncio.Task] = set()

    def bind_loop(self, loop: asyncio.AbstractEventLoop | None) -> None:
        self._loop = loop

    async def subscribe(self, scope_key: str, websocket: WebSocket) -> None:
        async with self._connection_lock:
            self._connections[scope_key].append(websocket)
            logger.info(
                "Kiosk subscribed to %s (%d connection(s))",
                scope_key,
                len(self._connections[scope_key]),
            )

    async def unsubscribe(self, scope_key: str, websocket: WebSocket) -> None:
        async with self._connection_lock:
            connections = self._connections.get(scope_key)
            if not connections:
                return
            try:
                connections.remove(websocket)
            except ValueError:
                logger.warning("Kiosk was not subscribed to %s", scope_key)
                return
            if not connections:
                del self._connections[scope_key]
            logger.info("Kiosk unsubscribed from %s", scope_key)

    async def broadcast(self, scope_key: str, payload: dict[str, Any]) -> int:
        async with self._connection_lock:
            connections = list(self._connections.get(scope_key, ()))
        if not connections:
            logger.debug("No kiosk connected for %s", scope_key)
            return 0

        message = json.dumps({"type": KIOSK_EVENT, "data": payload}, default=str)

        delivered = 0
        disconnected: list[WebSocket] = []
        for websocket in connections:
            try:
                await websocket.send_text(message)
                delivered += 1
            except WebSocketDisconnect:
                disconnected.append(websocket)
            except Exception:
                logger.exception("Kiosk broadcast failed for %s", scope_key)
                disconnected.append(websocket)

        for websocket in disconnected:
            await self.unsubscribe(scope_key, websocket)

        logger.debug("Delivered %s to %d/%d kiosk(s)", scope_key, delivered, len(connections))
        return delivered

    def publish(self, scope_key: str, payload: dict[str, Any]) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            logger.debug("Kiosk hub not bound to a loop; dropping %s event", scope_key)
            return

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is loop:
            # The loop only keeps weak references to tasks.
            task = loop.create_task(self.broadcast(scope_key, payload))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
            task.add_done_callback(_log_failed_delivery)
            return

        future = asyncio.run_coroutine_threadsafe(self.broadcast(scope_key, payload), loop)
        future.add_done_callback(_log_failed_delivery)

    @property
    def pending_deliveries(self) -> int:
        return len(self._pending)

    def connection_count(self, scope_key: str | None = None) -> int:
        if scope_key is not None:
            return len(self._connections.get(scope_key, ()))
        return sum(len(c) for c in self._connections.values())


def _log_failed_delivery(future: Future | asyncio.Future) -> None:
    if future.cancelled():
        return
    error = future.exception()
    if error is not None:
        logger.error("Kiosk delivery failed: %s", error)
