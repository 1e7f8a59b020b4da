"""
Outbound Connection Queues

Every connection gets its own bounded frame buffer and one writer task
that drains it into the socket. Fan-out only ever does a non-blocking put,
so a slow or dead client can delay nobody but itself.

- Buffer full      -> QueueFullError, that recipient misses the frame
- Send fails       -> the buffer closes, pending frames are dropped
- Connection gone  -> remove() stops the writer and drops pending frames
"""

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

SendText = Callable[[str], Awaitable[None]]


class QueueFullError(Exception):
    """A recipient's outbound buffer has no room for another frame."""
    def __init__(self, conn_id: str, queue_size: int):
        self.conn_id = conn_id
        self.queue_size = queue_size
        super().__init__(f"Outbound buffer of {conn_id} is full ({queue_size} frames)")


class ConnectionQueue:
    """Frame buffer and writer for one connection."""

    def __init__(self, conn_id: str, send_text: SendText, max_size: int = 200):
        """
        Args:
            conn_id: Connection the frames are for
            send_text: Writes one text frame to the socket
            max_size: Frames buffered before new ones are refused
        """
        self.conn_id = conn_id
        self._send_text = send_text
        self._max_size = max_size
        self._frames: asyncio.Queue[str] = asyncio.Queue(maxsize=max_size)
        self._writer: asyncio.Task | None = None
        self._closed = False
        self._sent = 0

    @property
    def qsize(self) -> int:
        return self._frames.qsize()

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def sent_count(self) -> int:
        return self._sent

    async def start(self) -> None:
        if self._writer is None and not self._closed:
            self._writer = asyncio.create_task(
                self._write_frames(),
                name=f"chatbus_writer_{self.conn_id}",
            )

    async def stop(self) -> None:
        """Stop writing. Frames not yet written are dropped."""
        self._closed = True
        writer, self._writer = self._writer, None
        if writer is not None:
            writer.cancel()
            try:
                await writer
            except asyncio.CancelledError:
                pass
        self._drop_pending()

    def put_nowait(self, frame: str) -> bool:
        """
        Buffer a frame for writing.

        Returns:
            False if the queue is closed and the frame was not accepted

        Raises:
            QueueFullError: If the buffer is full
        """
        if self._closed:
            return False
        try:
            self._frames.put_nowait(frame)
        except asyncio.QueueFull:
            raise QueueFullError(self.conn_id, self._max_size) from None
        return True

    async def drain(self) -> None:
        """Wait until everything buffered so far was written or dropped."""
        await self._frames.join()

    def _drop_pending(self) -> None:
        dropped = 0
        while not self._frames.empty():
            self._frames.get_nowait()
            self._frames.task_done()
            dropped += 1
        if dropped:
            logger.debug(f"Dropped {dropped} unsent frame(s) for {self.conn_id}")

    async def _write_frames(self) -> None:
        while not self._closed:
            frame = await self._frames.get()
            try:
                await self._send_text(frame)
            except asyncio.CancelledError:
                self._frames.task_done()
                raise
            except Exception as e:
                logger.warning(f"Write to {self.conn_id} failed, closing its queue: {e}")
                self._closed = True
                self._frames.task_done()
                self._drop_pending()
                return
            self._sent += 1
            self._frames.task_done()


class ConnectionQueueManager:
    """
    Owns the outbound queue of every local connection, keyed by conn_id.

    The transport creates a queue when a socket opens and removes it when
    the socket closes; the broadcaster only ever calls send().
    """

    def __init__(self, max_queue_size: int = 200):
        self._max_queue_size = max_queue_size
        self._queues: dict[str, ConnectionQueue] = {}

    async def get_or_create(self, conn_id: str, send_text: SendText) -> ConnectionQueue:
        """Return the connection's queue, creating and starting it on first use."""
        if conn_id not in self._queues:
            self._queues[conn_id] = ConnectionQueue(conn_id, send_text, self._max_queue_size)
            await self._queues[conn_id].start()
        return self._queues[conn_id]

    async def remove(self, conn_id: str) -> None:
        queue = self._queues.pop(conn_id, None)
        if queue is not None:
            await queue.stop()

    def send(self, conn_id: str, frame: str) -> bool:
        """
        Buffer a frame for a connection without blocking.

        Returns:
            False if the connection has no queue or its queue is closed

        Raises:
            QueueFullError: If the connection's buffer is full
        """
        queue = self._queues.get(conn_id)
        return queue.put_nowait(frame) if queue is not None else False

    async def drain(self) -> None:
        for queue in list(self._queues.values()):
            await queue.drain()

    async def shutdown(self) -> None:
        queues, self._queues = list(self._queues.values()), {}
        for queue in queues:
            await queue.stop()

    def queue_size(self, conn_id: str) -> int:
        queue = self._queues.get(conn_id)
        return queue.qsize if queue is not None else 0

    def connection_count(self) -> int:
        return len(self._queues)
