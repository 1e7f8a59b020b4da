"""
Session Model

Represents one live client connection held by this process.

A session is purely local state:
- the opaque connection handle owned by the transport layer
- the user identity, unset until the client registers
- the rooms the connection joined on this instance

Cross-instance awareness is delegated to the bus; nothing here is shared.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Protocol, runtime_checkable


@runtime_checkable
class Connection(Protocol):
    """
    Transport-side handle for a client connection.

    The registry only needs a stable identifier. Sending is handled by the
    per-connection outbound queues keyed by the same id.
    """
    conn_id: str


@dataclass
class Session:
    """Local state for one connection."""
    connection: Connection
    user_id: str | None = None
    rooms: set[str] = field(default_factory=set)
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def conn_id(self) -> str:
        return self.connection.conn_id

    @property
    def is_registered(self) -> bool:
        return self.user_id is not None

    def to_dict(self) -> dict:
        """Serialize for health and debugging endpoints."""
        return {
            "conn_id": self.conn_id,
            "user_id": self.user_id,
            "rooms": sorted(self.rooms),
            "connected_at": self.connected_at.isoformat(),
        }
