"""Tests for local fan-out and per-connection outbound queues."""

import asyncio
import json

import pytest

from chatbus.protocol import create_message_deleted, create_typing
from chatbus.session import SessionRegistry
from chatbus.transport.broadcaster import LocalRoomBroadcaster
from chatbus.transport.queue import ConnectionQueue, ConnectionQueueManager, QueueFullError


class Conn:
    def __init__(self, conn_id: str, fail: bool = False):
        self.conn_id = conn_id
        self.frames: list[dict] = []
        self.fail = fail

    async def send_text(self, data: str) -> None:
        if self.fail:
            raise ConnectionResetError("peer gone")
        self.frames.append(json.loads(data))


async def _setup(*conns: Conn, max_queue_size: int = 50):
    registry = SessionRegistry()
    queues = ConnectionQueueManager(max_queue_size=max_queue_size)
    for conn in conns:
        registry.open(conn)
        await queues.get_or_create(conn.conn_id, conn.send_text)
    return registry, queues, LocalRoomBroadcaster(registry, queues)


# ── room vs global ──────────────────────────────────────────────


class TestDeliver:
    @pytest.mark.asyncio
    async def test_room_delivery_reaches_members_only(self):
        a, b, c = Conn("a"), Conn("b"), Conn("c")
        registry, queues, broadcaster = await _setup(a, b, c)
        registry.join_room(a, "r1")
        registry.join_room(b, "r1")
        registry.join_room(c, "r2")

        delivered = await broadcaster.deliver("r1", create_typing("u1"))
        await queues.drain()

        assert delivered == 2
        assert a.frames == [{"type": "typing", "payload": "u1"}]
        assert b.frames == [{"type": "typing", "payload": "u1"}]
        assert c.frames == []
        await queues.shutdown()

    @pytest.mark.asyncio
    async def test_global_reaches_everyone(self):
        a, b = Conn("a"), Conn("b")
        registry, queues, broadcaster = await _setup(a, b)
        registry.join_room(a, "r1")

        delivered = await broadcaster.deliver("global", create_message_deleted("m1"))
        await queues.drain()

        assert delivered == 2
        assert a.frames == b.frames == [{"type": "message_deleted", "payload": {"messageId": "m1"}}]
        await queues.shutdown()

    @pytest.mark.asyncio
    async def test_room_without_local_members(self):
        registry, queues, broadcaster = await _setup(Conn("a"))
        assert await broadcaster.deliver("nobody-here", create_typing("u1")) == 0
        await queues.shutdown()

    @pytest.mark.asyncio
    async def test_deliver_to_user_reaches_every_device(self):
        phone, laptop, other = Conn("phone"), Conn("laptop"), Conn("other")
        registry, queues, broadcaster = await _setup(phone, laptop, other)
        registry.register(phone, "u1")
        registry.register(laptop, "u1")
        registry.register(other, "u2")

        delivered = await broadcaster.deliver_to_user("u1", create_typing("u9"))
        await queues.drain()

        assert delivered == 2
        assert len(phone.frames) == len(laptop.frames) == 1
        assert other.frames == []
        await queues.shutdown()


# ── isolation ───────────────────────────────────────────────────


class TestIsolation:
    @pytest.mark.asyncio
    async def test_disconnected_session_receives_nothing(self):
        a, b = Conn("a"), Conn("b")
        registry, queues, broadcaster = await _setup(a, b)
        registry.join_room(a, "r1")
        registry.join_room(b, "r1")

        registry.on_disconnect(b)
        await queues.remove("b")
        delivered = await broadcaster.deliver("r1", create_typing("u1"))
        await queues.drain()

        assert delivered == 1
        assert b.frames == []
        await queues.shutdown()

    @pytest.mark.asyncio
    async def test_queue_removed_mid_delivery_is_dropped(self):
        a, b = Conn("a"), Conn("b")
        registry, queues, broadcaster = await _setup(a, b)
        registry.join_room(a, "r1")
        registry.join_room(b, "r1")

        # Registry still lists b but its queue is gone
        await queues.remove("b")
        delivered = await broadcaster.deliver("r1", create_typing("u1"))
        await queues.drain()

        assert delivered == 1
        assert broadcaster.stats["dropped"] == 1
        assert len(a.frames) == 1
        await queues.shutdown()

    @pytest.mark.asyncio
    async def test_full_queue_only_affects_that_recipient(self):
        fast, slow = Conn("fast"), Conn("slow")
        registry, queues, broadcaster = await _setup(fast, slow, max_queue_size=1)
        registry.join_room(fast, "r1")
        registry.join_room(slow, "r1")

        # Fill slow's queue without letting its writer run
        queues.send("slow", create_typing("filler").to_json())

        delivered = await broadcaster.deliver("r1", create_typing("u1"))
        await queues.drain()

        assert delivered == 1
        assert fast.frames == [{"type": "typing", "payload": "u1"}]
        assert [f["payload"] for f in slow.frames] == ["filler"]
        await queues.shutdown()

    @pytest.mark.asyncio
    async def test_failing_send_closes_only_that_queue(self):
        good, bad = Conn("good"), Conn("bad", fail=True)
        registry, queues, broadcaster = await _setup(good, bad)
        registry.join_room(good, "r1")
        registry.join_room(bad, "r1")

        await broadcaster.deliver("r1", create_typing("u1"))
        await queues.drain()
        await broadcaster.deliver("r1", create_typing("u2"))
        await queues.drain()

        assert [f["payload"] for f in good.frames] == ["u1", "u2"]
        assert bad.frames == []
        await queues.shutdown()


# ── queue ───────────────────────────────────────────────────────


class TestConnectionQueue:
    @pytest.mark.asyncio
    async def test_frames_written_in_order(self):
        conn = Conn("c1")
        queue = ConnectionQueue("c1", conn.send_text, max_size=10)
        await queue.start()

        for user in ("u1", "u2", "u3"):
            assert queue.put_nowait(create_typing(user).to_json())
        await queue.drain()

        assert [f["payload"] for f in conn.frames] == ["u1", "u2", "u3"]
        assert queue.sent_count == 3
        await queue.stop()

    @pytest.mark.asyncio
    async def test_full_queue_raises(self):
        queue = ConnectionQueue("c1", Conn("c1").send_text, max_size=1)

        queue.put_nowait("one")
        with pytest.raises(QueueFullError) as exc_info:
            queue.put_nowait("two")
        assert exc_info.value.queue_size == 1

    @pytest.mark.asyncio
    async def test_closed_queue_rejects(self):
        queue = ConnectionQueue("c1", Conn("c1").send_text, max_size=5)
        await queue.start()
        await queue.stop()

        assert queue.is_closed
        assert queue.put_nowait("late") is False

    @pytest.mark.asyncio
    async def test_stop_discards_pending(self):
        queue = ConnectionQueue("c1", Conn("c1").send_text, max_size=5)
        queue.put_nowait("a")
        queue.put_nowait("b")

        await queue.stop()

        assert queue.qsize == 0
        # join() must not hang after a discard
        await asyncio.wait_for(queue.drain(), timeout=1)

    @pytest.mark.asyncio
    async def test_manager_send_unknown_connection(self):
        queues = ConnectionQueueManager()
        assert queues.send("missing", "frame") is False
        assert queues.connection_count() == 0
