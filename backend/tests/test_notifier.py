import asyncio
import json
import logging

from backend.services.notifier import KIOSK_EVENT, KioskHub, device_scope


class FakeSocket:
    def __init__(self):
        self.sent = []

    async def send_text(self, message):
        self.sent.append(json.loads(message))


async def _drain(hub):
    while hub.pending_deliveries:
        await asyncio.sleep(0)
    await asyncio.sleep(0)


def test_publish_from_the_loop_delivers_and_releases_the_task():
    hub = KioskHub()
    socket = FakeSocket()
    scope = device_scope("dev-01")

    async def run():
        hub.bind_loop(asyncio.get_running_loop())
        await hub.subscribe(scope, socket)
        hub.publish(scope, {"success": True, "action": "IN"})
        assert hub.pending_deliveries == 1
        await _drain(hub)

    asyncio.run(run())

    assert hub.pending_deliveries == 0
    assert socket.sent == [{"type": KIOSK_EVENT, "data": {"success": True, "action": "IN"}}]


def test_failed_delivery_on_the_loop_is_logged(monkeypatch, caplog):
    hub = KioskHub()

    async def failing(scope_key, payload):
        raise RuntimeError("socket gone")

    monkeypatch.setattr(hub, "broadcast", failing)

    async def run():
        hub.bind_loop(asyncio.get_running_loop())
        hub.publish(device_scope("DEV-01"), {"success": False})
        await _drain(hub)

    with caplog.at_level(logging.ERROR, logger="backend.services.notifier"):
        asyncio.run(run())

    assert hub.pending_deliveries == 0
    assert "Kiosk delivery failed: socket gone" in caplog.text


def test_publish_without_a_bound_loop_is_dropped():
    hub = KioskHub()
    hub.publish(device_scope("DEV-01"), {"success": True})
    assert hub.pending_deliveries == 0
