import asyncio
import json

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from jobwalk.main import app
from jobwalk.realtime.hub import NotificationHub

client = TestClient(app)


class FakeSocket:
    def __init__(self, token="k", fail=False):
        self.query_params = {"token": token}
        self.sent = []
        self.accepted = False
        self.closed_with = None
        self.fail = fail

    async def accept(self):
        self.accepted = True

    async def close(self, code=1000):
        self.closed_with = code

    async def send_text(self, data):
        if self.fail:
            raise RuntimeError("socket gone")
        self.sent.append(json.loads(data))

    def of_type(self, kind):
        return [m for m in self.sent if m["type"] == kind]


def test_bad_token_closed_before_accept():
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/ws?token=wrong"):
            pass
    assert exc.value.code == 1008


def test_missing_token_rejected():
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/ws"):
            pass


def test_protocol_round_trip():
    with client.websocket_connect("/ws?token=test-key") as ws:
        hello = ws.receive_json()
        assert hello["type"] == "connected"
        assert hello["clientId"]

        ws.send_json({"type": "ping"})
        assert ws.receive_json()["type"] == "pong"

        ws.send_json({"type": "subscribe", "jobIds": [5, "7", -1, True, 9]})
        assert ws.receive_json() == {"type": "subscribed", "jobs": [5, 9]}

        ws.send_text("not json")
        assert ws.receive_json() == {"type": "error", "message": "Invalid message format"}

        ws.send_text("x" * 20000)
        assert ws.receive_json() == {"type": "error", "message": "Message too large"}

        ws.send_bytes(b'{"type": "ping"}')
        assert ws.receive_json() == {"type": "error", "message": "Invalid message format"}

        ws.send_bytes(b"x" * 20000)
        assert ws.receive_json() == {"type": "error", "message": "Message too large"}

        # connection stays usable after bad frames
        ws.send_json({"type": "ping"})
        assert ws.receive_json()["type"] == "pong"


def test_subscription_filtering():
    async def scenario():
        hub = NotificationHub("k")
        everyone = FakeSocket()
        only_five = FakeSocket()
        a = await hub.connect(everyone)
        b = await hub.connect(only_five)
        await hub.handle_message(b, json.dumps({"type": "subscribe", "jobIds": [5]}))

        sent_seven = await hub.broadcast({"type": "notification", "n": 7}, job_id=7)
        sent_five = await hub.broadcast({"type": "notification", "n": 5}, job_id=5)
        sent_untagged = await hub.broadcast({"type": "notification", "n": 0})
        return a, b, everyone, only_five, (sent_seven, sent_five, sent_untagged)

    a, b, everyone, only_five, counts = asyncio.run(scenario())

    assert counts == (1, 2, 2)
    assert [m["n"] for m in everyone.of_type("notification")] == [7, 5, 0]
    assert [m["n"] for m in only_five.of_type("notification")] == [5, 0]


def test_subscription_is_capped():
    hub = NotificationHub("k", max_subscriptions=3)
    assert hub.parse_subscription(list(range(1, 10))) == [1, 2, 3]


def test_broken_client_is_dropped_on_broadcast():
    async def scenario():
        hub = NotificationHub("k")
        good = FakeSocket()
        await hub.connect(good)
        bad_client = await hub.connect(FakeSocket())
        bad_client.websocket.fail = True
        sent = await hub.broadcast({"type": "notification"})
        return hub, sent

    hub, sent = asyncio.run(scenario())
    assert sent == 1
    assert hub.client_count == 1


def test_heartbeat_reaps_silent_clients():
    async def scenario():
        hub = NotificationHub("k")
        quiet = FakeSocket()
        chatty = FakeSocket()
        await hub.connect(quiet)
        c = await hub.connect(chatty)

        assert await hub.heartbeat_once() == 0
        await hub.handle_message(c, json.dumps({"type": "pong"}))
        reaped = await hub.heartbeat_once()
        return hub, quiet, reaped

    hub, quiet, reaped = asyncio.run(scenario())
    assert reaped == 1
    assert hub.client_count == 1
    assert quiet.closed_with == 1001


def test_publish_without_running_hub_is_noop():
    hub = NotificationHub("k")
    hub.publish({"type": "notification"}, job_id=3)
    assert hub.client_count == 0


def test_publish_on_hub_loop_holds_task_until_delivered():
    async def scenario():
        hub = NotificationHub("k")
        await hub.start()
        sock = FakeSocket()
        await hub.connect(sock)

        hub.publish({"type": "notification", "n": 1})
        held = len(hub._pending)
        await asyncio.gather(*list(hub._pending))
        left = len(hub._pending)
        await hub.stop()
        return sock, held, left

    sock, held, left = asyncio.run(scenario())
    assert held == 1
    assert left == 0
    assert [m["n"] for m in sock.of_type("notification")] == [1]


def test_rejected_fake_socket_never_accepted():
    async def scenario():
        hub = NotificationHub("k")
        ws = FakeSocket(token="nope")
        client = await hub.connect(ws)
        return ws, client

    ws, c = asyncio.run(scenario())
    assert c is None
    assert ws.accepted is False
    assert ws.closed_with == 1008
