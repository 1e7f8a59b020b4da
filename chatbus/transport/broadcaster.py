"""
Local Room Broadcaster

Delivers envelopes received from the bus to the sessions held by this
process.

- room "global" -> every local session, regardless of membership
- any other room -> only sessions whose local membership contains it

Delivery is a non-blocking put onto each recipient's outbound queue.
A full, closed or already-removed queue only affects that recipient.
"""

import logging

from chatbus.bus.ports import GLOBAL_ROOM
from chatbus.protocol.envelope import Envelope
from chatbus.session import Session, SessionRegistry
from chatbus.transport.queue import ConnectionQueueManager, QueueFullError

logger = logging.getLogger(__name__)


class LocalRoomBroadcaster:
    """
    Fans out bus envelopes to locally connected sessions.

    Subscribed to the bus once per process:

        await bus.subscribe_pattern(SUBSCRIPTION_PATTERN, broadcaster.deliver)
    """

    def __init__(self, registry: SessionRegistry, queues: ConnectionQueueManager):
        self._registry = registry
        self._queues = queues
        self._delivered_count = 0
        self._dropped_count = 0

    @property
    def stats(self) -> dict:
        return {
            "delivered": self._delivered_count,
            "dropped": self._dropped_count,
        }

    async def deliver(self, room_id: str, envelope: Envelope) -> int:
        """
        Deliver an envelope to the local members of a room.

        Args:
            room_id: Room id extracted from the bus topic
            envelope: Envelope to deliver

        Returns:
            Number of sessions the envelope was queued for
        """
        if room_id == GLOBAL_ROOM:
            recipients = self._registry.all_sessions()
        else:
            recipients = self._registry.sessions_in_room(room_id)

        if not recipients:
            return 0

        delivered = self._send_all(recipients, envelope)
        logger.debug(
            f"Delivered {envelope.type.value} for room {room_id} "
            f"to {delivered}/{len(recipients)} local session(s)"
        )
        return delivered

    async def deliver_to_user(self, user_id: str, envelope: Envelope) -> int:
        """Deliver an envelope to every connection a user has open locally."""
        recipients = []
        for conn in self._registry.find_sessions_by_user(user_id):
            session = self._registry.get(conn.conn_id)
            if session is not None:
                recipients.append(session)
        return self._send_all(recipients, envelope)

    def _send_all(self, recipients: list[Session], envelope: Envelope) -> int:
        frame = envelope.to_json()
        delivered = 0
        for session in recipients:
            try:
                if self._queues.send(session.conn_id, frame):
                    delivered += 1
                else:
                    # Session disconnected mid-delivery
                    self._dropped_count += 1
            except QueueFullError as e:
                self._dropped_count += 1
                logger.warning(f"Dropping {envelope.type.value} for slow consumer: {e}")
            except Exception as e:
                self._dropped_count += 1
                logger.error(f"Delivery to {session.conn_id} failed: {e}")
        self._delivered_count += delivered
        return delivered
