# Transport Layer
# Handles WebSocket and HTTP clients and local fan-out of bus envelopes
# Separated from orchestration so alternative transports can share the bus

from chatbus.transport.queue import ConnectionQueue, ConnectionQueueManager, QueueFullError
from chatbus.transport.broadcaster import LocalRoomBroadcaster
from chatbus.transport.handler import WebSocketConnection, WebSocketHandler
from chatbus.transport.app import app, create_app

__all__ = [
    "ConnectionQueue",
    "ConnectionQueueManager",
    "QueueFullError",
    "LocalRoomBroadcaster",
    "WebSocketConnection",
    "WebSocketHandler",
    "app",
    "create_app",
]
