import asyncio

from realtime import Broadcaster
from schemas import Comment


class FakeWebSocket:
    def __init__(self, fail=False):
        self.accepted = False
        self.sent = []
        self.fail = fail

    async def accept(self):
        self.accepted = True

    async def send_json(self, data):
        if self.fail:
            raise RuntimeError("connection closed")
        self.sent.append(data)


async def settle():
    for _ in range(5):
        await asyncio.sleep(0)


def test_publish_without_clients():
    assert Broadcaster().publish("content-updated", []) == 0


def test_every_client_receives_every_event():
    async def scenario():
        broadcaster = Broadcaster()
        first, second = FakeWebSocket(), FakeWebSocket()
        await broadcaster.connect(first)
        await broadcaster.connect(second)
        assert broadcaster.publish("like-updated", {"itemId": "1", "likes": 1}) == 2
        await settle()
        return first, second

    first, second = asyncio.run(scenario())
    assert first.accepted and second.accepted
    expected = [{"event": "like-updated", "data": {"itemId": "1", "likes": 1}}]
    assert first.sent == expected
    assert second.sent == expected


def test_publish_from_worker_thread():
    async def scenario():
        broadcaster = Broadcaster()
        ws = FakeWebSocket()
        await broadcaster.connect(ws)
        await asyncio.to_thread(broadcaster.publish, "payment-rejected", {"paymentId": "9"})
        await settle()
        return ws

    ws = asyncio.run(scenario())
    assert ws.sent == [{"event": "payment-rejected", "data": {"paymentId": "9"}}]


def test_models_are_sent_with_wire_names():
    comment = Comment(id="1", author_username="ana", author_first_name="Ana", text="hi", date="2024-01-01T00:00:00.000Z")

    async def scenario():
        broadcaster = Broadcaster()
        ws = FakeWebSocket()
        await broadcaster.connect(ws)
        broadcaster.publish("comment-added", {"itemId": "7", "comment": comment})
        await settle()
        return ws

    ws = asyncio.run(scenario())
    assert ws.sent[0]["data"]["comment"]["authorFirstName"] == "Ana"


def test_failed_send_drops_client():
    async def scenario():
        broadcaster = Broadcaster()
        healthy, broken = FakeWebSocket(), FakeWebSocket(fail=True)
        await broadcaster.connect(healthy)
        await broadcaster.connect(broken)
        broadcaster.publish("content-updated", [])
        await settle()
        return broadcaster, healthy

    broadcaster, healthy = asyncio.run(scenario())
    assert broadcaster.connection_count == 1
    assert len(healthy.sent) == 1


def test_disconnect_unknown_client_is_noop():
    broadcaster = Broadcaster()
    broadcaster.disconnect(FakeWebSocket())
    assert broadcaster.connection_count == 0
