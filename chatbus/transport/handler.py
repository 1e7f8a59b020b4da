"""
WebSocket Handler

Client-facing edge of a chatbus instance.
Every frame, in both directions, is an envelope ``{"type", "payload"}``.

Control frames handled here (local session state only):
- register {userId}        -> binds the connection to a user, joins the private room
- join_room {channelId}    -> joins a room (a bare string payload is accepted)
- leave_room {channelId}   -> leaves a room

Every other frame is a domain event passed to the ConversationOrchestrator.
Its result reaches this client, like every other member of the room, only
through the bus subscription and the local broadcaster.

Rejections (malformed frame, missing field, unknown message) are sent back
to this connection only as ``error_message`` with ``{"message", "code"}``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from chatbus.bus.ports import BusError
from chatbus.orchestration import ConversationOrchestrator, OrchestrationError
from chatbus.protocol.envelope import InboundEvent, InboundFrame, create_error_message
from chatbus.session import SessionRegistry
from chatbus.transport.queue import ConnectionQueueManager, QueueFullError

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class WebSocketConnection:
    """Connection handle stored in the session registry."""
    websocket: WebSocket
    conn_id: str = field(default_factory=lambda: uuid4().hex)


def _room_from_payload(payload: Any) -> str | None:
    if isinstance(payload, str):
        return payload or None
    if isinstance(payload, dict):
        return payload.get("channelId") or payload.get("roomId")
    return None


class WebSocketHandler:
    """
    Handles WebSocket connection lifecycles and inbound frames.

    One instance serves every connection of the process.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        queues: ConnectionQueueManager,
        orchestrator: ConversationOrchestrator,
    ):
        """
        Initialize the handler.

        Args:
            registry: Local session registry
            queues: Per-connection outbound queues
            orchestrator: Domain event dispatch
        """
        self._registry = registry
        self._queues = queues
        self._orchestrator = orchestrator

        # AI replies run detached from the reading loop
        self._background: set[asyncio.Task] = set()

    @property
    def pending_tasks(self) -> int:
        return len(self._background)

    async def handle_connection(self, websocket: WebSocket) -> None:
        """
        Handle a WebSocket connection lifecycle.

        Args:
            websocket: The WebSocket connection
        """
        await websocket.accept()

        connection = WebSocketConnection(websocket=websocket)
        self._registry.open(connection)
        await self._queues.get_or_create(connection.conn_id, websocket.send_text)
        logger.info(f"WebSocket connected: {connection.conn_id}")

        try:
            while True:
                try:
                    data = await websocket.receive_text()
                except WebSocketDisconnect:
                    break

                try:
                    frame = InboundFrame.model_validate_json(data)
                except ValidationError as e:
                    logger.warning(f"Invalid frame from {connection.conn_id}: {e}")
                    self._send_error(connection, "INVALID_FRAME", "Frame must be {type, payload} JSON")
                    continue

                await self._handle_frame(connection, frame)

        except Exception as e:
            logger.error(f"WebSocket error on {connection.conn_id}: {e}")

        finally:
            session = self._registry.on_disconnect(connection)
            await self._queues.remove(connection.conn_id)
            user = session.user_id if session else None
            logger.info(f"WebSocket disconnected: {connection.conn_id} (user: {user})")

    async def _handle_frame(self, connection: WebSocketConnection, frame: InboundFrame) -> None:
        if frame.type == InboundEvent.REGISTER.value:
            self._handle_register(connection, frame.payload)

        elif frame.type == InboundEvent.JOIN_ROOM.value:
            room_id = _room_from_payload(frame.payload)
            if not room_id:
                self._send_error(connection, "VALIDATION_ERROR", "join_room requires channelId")
                return
            self._registry.join_room(connection, room_id)

        elif frame.type == InboundEvent.LEAVE_ROOM.value:
            room_id = _room_from_payload(frame.payload)
            if room_id:
                self._registry.leave_room(connection, room_id)

        elif frame.type == InboundEvent.AI_MESSAGE.value:
            # Keeps running, and publishes, if the requester disconnects
            task = asyncio.create_task(self._run_event(connection, frame.type, frame.payload))
            self._background.add(task)
            task.add_done_callback(self._background.discard)

        else:
            await self._run_event(connection, frame.type, frame.payload)

    def _handle_register(self, connection: WebSocketConnection, payload: Any) -> None:
        user_id = payload.get("userId") if isinstance(payload, dict) else payload
        if not isinstance(user_id, str) or not user_id:
            self._send_error(connection, "VALIDATION_ERROR", "register requires userId")
            return
        self._registry.register(connection, user_id)

    async def _run_event(self, connection: WebSocketConnection, event: str, payload: Any) -> None:
        try:
            await self._orchestrator.handle(event, payload)
        except OrchestrationError as e:
            logger.warning(f"Rejected {event} from {connection.conn_id}: {e.message}")
            self._send_error(connection, e.code, e.message)
        except BusError as e:
            logger.error(f"Could not publish {event} from {connection.conn_id}: {e}")
        except Exception as e:
            logger.exception(f"Failed to handle {event} from {connection.conn_id}: {e}")
            self._send_error(connection, "INTERNAL_ERROR", f"Could not process {event}")

    def _send_error(self, connection: WebSocketConnection, code: str, message: str) -> None:
        """Send an error_message to this connection only."""
        envelope = create_error_message(message, code=code)
        try:
            self._queues.send(connection.conn_id, envelope.to_json())
        except QueueFullError as e:
            logger.warning(f"Dropping error reply: {e}")

    async def drain(self) -> None:
        """Wait for detached AI replies to finish."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
