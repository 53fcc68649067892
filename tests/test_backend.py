"""Tests for RedisBroadcast, with the Redis client mocked out."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
import redis

from backend import RedisBroadcast
from event_router import CHAT_MESSAGE, JOIN_ROOM, EventRouter
from conftest import drain

pytestmark = pytest.mark.anyio


@pytest.fixture
def redis_client() -> MagicMock:
    client = MagicMock()
    client.publish = AsyncMock(return_value=1)
    return client


@pytest.fixture
def backend(redis_client: MagicMock) -> RedisBroadcast:
    return RedisBroadcast(redis_client)


def pmessage(room: str, frame: dict) -> dict:
    return {
        "type": "pmessage",
        "pattern": "room:channel:*",
        "channel": f"room:channel:{room}",
        "data": json.dumps(frame),
    }


class TestPublish:
    async def test_broadcast_is_published_in_order(self, backend: RedisBroadcast, redis_client: MagicMock) -> None:
        backend.broadcast("general", "message", {"n": 1}, exclude="a")
        backend.broadcast("general", "roomUsers", {"n": 2})

        await backend.publish_next()
        await backend.publish_next()

        calls = redis_client.publish.await_args_list
        assert [c.args[0] for c in calls] == ["room:channel:general", "room:channel:general"]
        bodies = [json.loads(c.args[1]) for c in calls]
        assert [(b["type"], b["payload"], b["exclude"]) for b in bodies] == [
            ("message", {"n": 1}, "a"),
            ("roomUsers", {"n": 2}, None),
        ]
        assert all(b["origin"] == backend.instance_id for b in bodies)

    async def test_recipients_are_captured_at_broadcast_time(self, backend: RedisBroadcast) -> None:
        for conn_id in ("a", "b"):
            backend.register(conn_id)
            backend.join_group(conn_id, "general")

        backend.broadcast("general", "message", {"n": 1}, exclude="a")
        backend.register("c")
        backend.join_group("c", "general")

        room, frame = await backend._pending.get()
        assert room == "general"
        assert frame["recipients"] == ["b"]

    async def test_broadcast_is_not_delivered_locally_before_roundtrip(self, backend: RedisBroadcast) -> None:
        outbox = backend.register("a")
        backend.join_group("a", "general")

        backend.broadcast("general", "message", {"n": 1})

        assert drain(outbox) == []

    async def test_publish_failure_is_logged_not_raised(
        self, backend: RedisBroadcast, redis_client: MagicMock
    ) -> None:
        redis_client.publish = AsyncMock(side_effect=redis.ConnectionError("down"))
        backend.broadcast("general", "message", {})

        await backend.publish_next()

    async def test_private_send_stays_local(self, backend: RedisBroadcast, redis_client: MagicMock) -> None:
        outbox = backend.register("a")

        backend.send("a", "welcomeMessage", {"text": "hi"})

        assert drain(outbox) == [{"type": "welcomeMessage", "payload": {"text": "hi"}}]
        redis_client.publish.assert_not_awaited()


class TestListener:
    async def test_message_delivered_to_local_members(self, backend: RedisBroadcast) -> None:
        a = backend.register("a")
        b = backend.register("b")
        other = backend.register("c")
        backend.join_group("a", "general")
        backend.join_group("b", "general")
        backend.join_group("c", "random")

        backend.handle_pubsub_message(pmessage("general", {"type": "message", "payload": {"n": 1}, "exclude": "a"}))

        assert drain(a) == []
        assert drain(b) == [{"type": "message", "payload": {"n": 1}}]
        assert drain(other) == []

    async def test_malformed_messages_are_ignored(self, backend: RedisBroadcast) -> None:
        a = backend.register("a")
        backend.join_group("a", "general")

        backend.handle_pubsub_message({"type": "pmessage", "channel": "room:channel:general", "data": "{not json"})
        backend.handle_pubsub_message({"type": "psubscribe", "channel": "room:channel:*", "data": 1})
        backend.handle_pubsub_message({"type": "pmessage", "channel": "elsewhere", "data": "{}"})

        assert drain(a) == []


async def flush(backend: RedisBroadcast, redis_client: MagicMock) -> None:
    """Publish everything pending and feed it back as the listener would."""
    start = len(redis_client.publish.await_args_list)
    while not backend._pending.empty():
        await backend.publish_next()
    for call in redis_client.publish.await_args_list[start:]:
        channel, data = call.args
        backend.handle_pubsub_message(
            {"type": "pmessage", "pattern": "room:channel:*", "channel": channel, "data": data}
        )


class TestRoundTripWithRouter:
    async def test_late_joiner_gets_no_earlier_broadcasts(
        self, backend: RedisBroadcast, redis_client: MagicMock, registry, formatter
    ) -> None:
        router = EventRouter(registry, formatter, backend)
        bob = backend.register("bob")
        carol = backend.register("carol")
        router.connect("bob")
        router.connect("carol")

        router.dispatch("bob", JOIN_ROOM, {"username": "bob", "room": "general"})
        router.dispatch("bob", CHAT_MESSAGE, "before carol joined")
        router.dispatch("carol", JOIN_ROOM, {"username": "carol", "room": "general"})
        await flush(backend, redis_client)

        carol_frames = drain(carol)
        assert [f["type"] for f in carol_frames] == ["welcomeMessage", "roomUsers"]
        bob_texts = [f["payload"]["text"] for f in drain(bob) if f["type"] == "message"]
        assert bob_texts == ["before carol joined", "carol has joined the room"]

    async def test_frames_from_other_instances_use_local_members(self, backend: RedisBroadcast) -> None:
        a = backend.register("a")
        backend.join_group("a", "general")
        frame = {"type": "message", "payload": {"n": 1}, "origin": "other", "recipients": ["x"], "exclude": None}

        backend.handle_pubsub_message(pmessage("general", frame))

        assert drain(a) == [{"type": "message", "payload": {"n": 1}}]
