"""Tests for the event bus adapters."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from chatbus.bus import (
    BusBackend,
    BusError,
    BusPublishError,
    GLOBAL_TOPIC,
    InMemoryBroker,
    InMemoryEventBus,
    SUBSCRIPTION_PATTERN,
    create_bus,
    room_from_topic,
    settings_from_env,
    topic_for,
)
from chatbus.bus.redis_bus import RedisEventBus
from chatbus.protocol import Envelope, EventType, create_typing


class Recorder:
    def __init__(self, fail: bool = False):
        self.received: list[tuple[str, Envelope]] = []
        self.fail = fail

    async def __call__(self, room_id: str, envelope: Envelope) -> None:
        self.received.append((room_id, envelope))
        if self.fail:
            raise RuntimeError("handler exploded")


# ── topics ──────────────────────────────────────────────────────


class TestTopics:
    def test_topic_for_room(self):
        assert topic_for("r1") == "chat:r1"
        assert topic_for("global") == GLOBAL_TOPIC

    def test_topic_for_requires_room(self):
        with pytest.raises(ValueError):
            topic_for("")

    def test_room_from_topic(self):
        assert room_from_topic("chat:r1") == "r1"
        assert room_from_topic("chat:") is None
        assert room_from_topic("presence:r1") is None


# ── in-memory bus ───────────────────────────────────────────────


class TestInMemoryBus:
    @pytest.mark.asyncio
    async def test_every_subscriber_receives(self):
        broker = InMemoryBroker()
        a, b = InMemoryEventBus(broker), InMemoryEventBus(broker)
        rec_a, rec_b = Recorder(), Recorder()
        await a.subscribe_pattern(SUBSCRIPTION_PATTERN, rec_a)
        await b.subscribe_pattern(SUBSCRIPTION_PATTERN, rec_b)

        receivers = await a.publish("chat:r1", create_typing("u1"))

        assert receivers == 2
        for rec in (rec_a, rec_b):
            assert len(rec.received) == 1
            room_id, envelope = rec.received[0]
            assert room_id == "r1"
            assert envelope.type == EventType.TYPING
            assert envelope.payload == "u1"

    @pytest.mark.asyncio
    async def test_publish_order_preserved(self):
        bus = InMemoryEventBus()
        rec = Recorder()
        await bus.subscribe_pattern(SUBSCRIPTION_PATTERN, rec)

        for user in ("u1", "u2", "u3"):
            await bus.publish("chat:r1", create_typing(user))

        assert [env.payload for _, env in rec.received] == ["u1", "u2", "u3"]

    @pytest.mark.asyncio
    async def test_pattern_filters_topics(self):
        broker = InMemoryBroker()
        bus = InMemoryEventBus(broker)
        rec = Recorder()
        await bus.subscribe_pattern(SUBSCRIPTION_PATTERN, rec)

        await broker.publish_raw("other:r1", create_typing("u1").to_json())

        assert rec.received == []

    @pytest.mark.asyncio
    async def test_second_subscription_rejected(self):
        bus = InMemoryEventBus()
        await bus.subscribe_pattern(SUBSCRIPTION_PATTERN, Recorder())
        with pytest.raises(BusError):
            await bus.subscribe_pattern(SUBSCRIPTION_PATTERN, Recorder())

    @pytest.mark.asyncio
    async def test_unavailable_broker_raises(self):
        broker = InMemoryBroker()
        bus = InMemoryEventBus(broker)
        broker.set_available(False)

        with pytest.raises(BusPublishError) as exc_info:
            await bus.publish("chat:r1", create_typing("u1"))
        assert exc_info.value.topic == "chat:r1"

    @pytest.mark.asyncio
    async def test_close_detaches(self):
        broker = InMemoryBroker()
        bus = InMemoryEventBus(broker)
        await bus.subscribe_pattern(SUBSCRIPTION_PATTERN, Recorder())
        assert broker.subscriber_count == 1

        await bus.close()
        assert broker.subscriber_count == 0


# ── dispatch ────────────────────────────────────────────────────


class TestDispatch:
    @pytest.mark.asyncio
    async def test_malformed_payloads_dropped(self):
        broker = InMemoryBroker()
        bus = InMemoryEventBus(broker)
        rec = Recorder()
        await bus.subscribe_pattern(SUBSCRIPTION_PATTERN, rec)

        await broker.publish_raw("chat:r1", "not json")
        await broker.publish_raw("chat:r1", '{"payload": 1}')
        await broker.publish_raw("chat:r1", '{"type": "no_such_event", "payload": 1}')
        await bus.publish("chat:r1", create_typing("u1"))

        assert len(rec.received) == 1
        assert bus.stats["dropped"] == 3
        assert bus.stats["received"] == 4

    @pytest.mark.asyncio
    async def test_handler_failure_does_not_stop_delivery(self):
        bus = InMemoryEventBus()
        rec = Recorder(fail=True)
        await bus.subscribe_pattern(SUBSCRIPTION_PATTERN, rec)

        await bus.publish("chat:r1", create_typing("u1"))
        await bus.publish("chat:r1", create_typing("u2"))

        assert len(rec.received) == 2

    @pytest.mark.asyncio
    async def test_bytes_are_decoded(self):
        bus = InMemoryEventBus()
        rec = Recorder()
        await bus.subscribe_pattern(SUBSCRIPTION_PATTERN, rec)

        await bus._dispatch(b"chat:r9", create_typing("u1").to_json().encode())

        assert rec.received[0][0] == "r9"


# ── redis bus ───────────────────────────────────────────────────


class FakePubSub:
    def __init__(self, bus: RedisEventBus, messages: list[dict], error: Exception | None = None):
        self._bus = bus
        self._messages = messages
        self._error = error
        self.patterns: list[str] = []
        self.closed = False

    async def psubscribe(self, pattern: str) -> None:
        self.patterns.append(pattern)

    async def listen(self):
        for message in self._messages:
            yield message
        if self._error is not None:
            raise self._error
        # End the listener loop after one pass
        self._bus._closed = True

    async def aclose(self) -> None:
        self.closed = True


class TestRedisBus:
    @pytest.mark.asyncio
    async def test_publish_serializes_envelope(self):
        client = MagicMock()
        client.publish = AsyncMock(return_value=3)
        bus = RedisEventBus(redis=client)

        receivers = await bus.publish("chat:r1", create_typing("u1"))

        assert receivers == 3
        topic, data = client.publish.call_args.args
        assert topic == "chat:r1"
        assert Envelope.from_json(data) == create_typing("u1")

    @pytest.mark.asyncio
    async def test_publish_failure_raises_bus_error(self):
        client = MagicMock()
        client.publish = AsyncMock(side_effect=RedisConnectionError("connection refused"))
        bus = RedisEventBus(redis=client)

        with pytest.raises(BusPublishError):
            await bus.publish("chat:r1", create_typing("u1"))
        assert bus.stats["publish_errors"] == 1

    @pytest.mark.asyncio
    async def test_publish_after_close_raises(self):
        client = MagicMock()
        client.publish = AsyncMock(return_value=1)
        bus = RedisEventBus(redis=client)
        await bus.close()

        with pytest.raises(BusPublishError):
            await bus.publish("chat:r1", create_typing("u1"))
        client.publish.assert_not_called()

    @pytest.mark.asyncio
    async def test_listener_dispatches_pattern_messages(self):
        client = MagicMock()
        bus = RedisEventBus(redis=client)
        pubsub = FakePubSub(bus, [
            {"type": "psubscribe", "channel": "chat:*", "data": 1},
            {"type": "pmessage", "pattern": "chat:*", "channel": "chat:r1",
             "data": create_typing("u1").to_json()},
        ])
        client.pubsub = MagicMock(return_value=pubsub)
        rec = Recorder()
        bus._handler = rec

        await bus._listen_loop(SUBSCRIPTION_PATTERN)

        assert pubsub.patterns == [SUBSCRIPTION_PATTERN]
        assert pubsub.closed
        assert [(room, env.payload) for room, env in rec.received] == [("r1", "u1")]

    @pytest.mark.asyncio
    async def test_undecodable_payload_dropped(self):
        client = MagicMock()
        bus = RedisEventBus(redis=client)
        pubsub = FakePubSub(bus, [
            {"type": "pmessage", "pattern": "chat:*", "channel": b"chat:r1", "data": b"\xff\xfe\xfd"},
            {"type": "pmessage", "pattern": "chat:*", "channel": b"chat:r1",
             "data": create_typing("u2").to_json().encode()},
        ])
        client.pubsub = MagicMock(return_value=pubsub)
        rec = Recorder()
        bus._handler = rec

        await bus._listen_loop(SUBSCRIPTION_PATTERN)

        assert [(room, env.payload) for room, env in rec.received] == [("r1", "u2")]
        assert bus.stats["dropped"] == 1

    @pytest.mark.asyncio
    async def test_listener_survives_unexpected_error(self):
        client = MagicMock()
        bus = RedisEventBus(redis=client, reconnect_delay_seconds=0)
        broken = FakePubSub(bus, [], error=UnicodeDecodeError("utf-8", b"\xff", 0, 1, "invalid start byte"))
        healthy = FakePubSub(bus, [
            {"type": "pmessage", "pattern": "chat:*", "channel": "chat:r1",
             "data": create_typing("u1").to_json()},
        ])
        client.pubsub = MagicMock(side_effect=[broken, healthy])
        rec = Recorder()
        bus._handler = rec

        await bus._listen_loop(SUBSCRIPTION_PATTERN)

        assert broken.closed and healthy.closed
        assert [(room, env.payload) for room, env in rec.received] == [("r1", "u1")]


# ── factory ─────────────────────────────────────────────────────


class TestFactory:
    def test_defaults_to_memory(self, monkeypatch):
        monkeypatch.delenv("CHATBUS_BUS_BACKEND", raising=False)
        monkeypatch.delenv("CHATBUS_REDIS_URL", raising=False)

        settings = settings_from_env()
        assert settings.backend == BusBackend.MEMORY
        assert isinstance(create_bus(settings), InMemoryEventBus)

    def test_redis_url_selects_redis(self, monkeypatch):
        monkeypatch.delenv("CHATBUS_BUS_BACKEND", raising=False)
        monkeypatch.setenv("CHATBUS_REDIS_URL", "redis://localhost:6379/0")
        monkeypatch.setenv("CHATBUS_BUS_RECONNECT_DELAY", "2.5")

        settings = settings_from_env()
        assert settings.backend == BusBackend.REDIS
        assert settings.reconnect_delay_seconds == 2.5
        assert isinstance(create_bus(settings), RedisEventBus)

    def test_redis_without_url_rejected(self, monkeypatch):
        monkeypatch.setenv("CHATBUS_BUS_BACKEND", "redis")
        monkeypatch.delenv("CHATBUS_REDIS_URL", raising=False)

        with pytest.raises(ValueError):
            create_bus(settings_from_env())
