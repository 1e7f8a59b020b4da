"""Shared fakes and fixtures for chatbus tests."""

import json

import pytest

from chatbus.bus import SUBSCRIPTION_PATTERN, InMemoryBroker, InMemoryEventBus
from chatbus.llm import ConversationTurn, GenerationService
from chatbus.orchestration import AIReplyOrchestrator, ConversationOrchestrator
from chatbus.session import SessionRegistry
from chatbus.storage import StorageBundle
from chatbus.storage.memory import InMemoryMessageStore, InMemoryUserStore
from chatbus.transport.broadcaster import LocalRoomBroadcaster
from chatbus.transport.queue import ConnectionQueueManager


class FakeConnection:
    """Connection stand-in that records every frame written to it."""

    def __init__(self, conn_id: str):
        self.conn_id = conn_id
        self.frames: list[dict] = []

    async def send_text(self, data: str) -> None:
        self.frames.append(json.loads(data))

    def types(self) -> list[str]:
        return [frame["type"] for frame in self.frames]

    def of_type(self, event_type: str) -> list[dict]:
        return [frame for frame in self.frames if frame["type"] == event_type]


class FakeGenerator(GenerationService):
    """Generation service returning a canned reply or raising a canned error."""

    def __init__(self, reply: str = "Hello from the assistant", error: Exception | None = None):
        self.reply = reply
        self.error = error
        self.calls: list[list[ConversationTurn]] = []

    async def generate(self, turns: list[ConversationTurn]) -> str:
        self.calls.append(list(turns))
        if self.error is not None:
            raise self.error
        return self.reply


class ChatInstance:
    """One simulated server instance wired to a shared broker and store."""

    def __init__(self, storage: StorageBundle, broker: InMemoryBroker, generator: GenerationService):
        self.storage = storage
        self.bus = InMemoryEventBus(broker)
        self.registry = SessionRegistry()
        self.queues = ConnectionQueueManager(max_queue_size=50)
        self.broadcaster = LocalRoomBroadcaster(self.registry, self.queues)
        self.ai = AIReplyOrchestrator(storage, self.bus, generator)
        self.orchestrator = ConversationOrchestrator(storage, self.bus, ai=self.ai)

    async def start(self) -> "ChatInstance":
        await self.bus.subscribe_pattern(SUBSCRIPTION_PATTERN, self.broadcaster.deliver)
        return self

    async def connect(self, conn_id: str, user_id: str | None = None, rooms=()) -> FakeConnection:
        conn = FakeConnection(conn_id)
        self.registry.open(conn)
        await self.queues.get_or_create(conn.conn_id, conn.send_text)
        if user_id:
            self.registry.register(conn, user_id)
        for room_id in rooms:
            self.registry.join_room(conn, room_id)
        return conn

    async def flush(self) -> None:
        await self.queues.drain()

    async def close(self) -> None:
        await self.bus.close()
        await self.queues.shutdown()


@pytest.fixture
def storage():
    return StorageBundle(messages=InMemoryMessageStore(), users=InMemoryUserStore())


@pytest.fixture
def broker():
    return InMemoryBroker()


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def make_instance(storage, broker, generator):
    """Factory for instances sharing one store and one bus."""
    def _make() -> ChatInstance:
        return ChatInstance(storage, broker, generator)
    return _make
