"""Tests for the local WebSocket bridge message handling."""

import asyncio
import json

from pos_offline.network.ws_local import LocalBridge


class FakeWebSocket:
    remote_address = ("127.0.0.1", 50000)

    def __init__(self, incoming=()):
        self.incoming = list(incoming)
        self.sent = []

    async def send(self, message):
        self.sent.append(json.loads(message))

    def __aiter__(self):
        return self._messages()

    async def _messages(self):
        for message in self.incoming:
            yield message


async def settle(bridge):
    while bridge._tasks:
        await asyncio.gather(*list(bridge._tasks))


def test_handler_dispatches_messages(make_coordinator):
    coordinator = make_coordinator()
    coordinator.controller.on_connection_lost()
    bridge = LocalBridge(coordinator)
    websocket = FakeWebSocket([
        json.dumps({"type": "ping", "timestamp": 123}),
        json.dumps({"type": "save", "collection": "transactions", "record": {"id": "t1", "total": 5000}}),
        json.dumps({"type": "save", "collection": "orders", "record": {"id": "o1"}}),
        "{not json",
        json.dumps({"type": "reboot"}),
    ])

    async def scenario():
        await bridge.handler(websocket)
        await settle(bridge)

    asyncio.run(scenario())

    # Status broadcasts may interleave with the replies
    assert websocket.sent[0]["type"] == "status"
    replies = [message for message in websocket.sent[1:] if message["type"] != "status"]
    assert [reply["type"] for reply in replies] == ["pong", "save_ack", "save_error", "error", "error"]
    assert replies[0]["timestamp"] == 123
    assert replies[1]["status"] == "queued"
    assert replies[2]["code"] == "STORE_FAILED"
    assert bridge.clients == set()


def test_sync_message_flushes_queue(make_coordinator, remote):
    coordinator = make_coordinator()
    coordinator.controller.on_connection_lost()
    bridge = LocalBridge(coordinator)

    async def scenario():
        await coordinator.save("transactions", {"id": "t1"})
        return await bridge.dispatch({"type": "sync"})

    reply = asyncio.run(scenario())

    assert reply == {"type": "sync_result", "confirmed": 1, "failed": 0}


def test_low_stock_alerts_are_broadcast(make_coordinator):
    coordinator = make_coordinator(low_stock_threshold=5)
    bridge = LocalBridge(coordinator)
    client = FakeWebSocket()
    bridge.clients.add(client)

    async def scenario():
        await coordinator.db.put("menuItems", {"id": "m1", "name": "Nasi Goreng", "stock": 3})
        await coordinator.check_low_stock()
        await settle(bridge)

    asyncio.run(scenario())

    assert client.sent == [{
        "type": "low_stock",
        "data": {
            "item_id": "m1",
            "name": "Nasi Goreng",
            "stock": 3,
            "threshold": 5,
            "message": "Stok rendah: Nasi Goreng (3)",
        },
    }]


def test_mode_change_broadcasts_status(make_coordinator):
    coordinator = make_coordinator()
    bridge = LocalBridge(coordinator)
    client = FakeWebSocket()
    bridge.clients.add(client)

    async def scenario():
        coordinator.controller.on_connection_lost()
        await settle(bridge)

    asyncio.run(scenario())

    assert client.sent[0]["type"] == "status"
    assert client.sent[0]["data"]["mode"] == "offline"


def test_non_object_message_gets_error_reply(make_coordinator):
    coordinator = make_coordinator()
    bridge = LocalBridge(coordinator)
    websocket = FakeWebSocket([json.dumps([1]), json.dumps({"type": "ping"})])

    asyncio.run(bridge.handler(websocket))

    replies = [message for message in websocket.sent[1:] if message["type"] != "status"]
    assert [reply["type"] for reply in replies] == ["error", "pong"]
    assert replies[0]["error"] == "Message must be a JSON object"
