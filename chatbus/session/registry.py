"""
Session Registry

Tracks which locally-held connection belongs to which user and which rooms
it has joined.

The registry is created once at process start and owned by the transport
layer. Entries are created when a connection opens and purged exactly once
on disconnect. All operations are synchronous: they never await, so they
cannot interleave with other handlers on the event loop.

Indexes:
- conn_id -> Session
- user_id -> set of conn_ids (multi-device)
- room_id -> set of conn_ids
"""

import logging

from chatbus.session.session import Connection, Session

logger = logging.getLogger(__name__)


class SessionRegistry:
    """
    Per-process registry of live sessions and their room memberships.

    Membership is purely local. A room with no local members simply has no
    entry here; events for it are still received from the bus and dropped.
    """

    def __init__(self):
        self._sessions: dict[str, Session] = {}
        self._by_user: dict[str, set[str]] = {}
        self._rooms: dict[str, set[str]] = {}

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    @property
    def room_count(self) -> int:
        return len(self._rooms)

    @property
    def user_count(self) -> int:
        return len(self._by_user)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def open(self, connection: Connection) -> Session:
        """
        Create the session for a newly opened connection.

        Idempotent: returns the existing session if already open.
        """
        conn_id = self._conn_id(connection)
        session = self._sessions.get(conn_id)
        if session is None:
            session = Session(connection=connection)
            self._sessions[conn_id] = session
            logger.debug(f"Session opened: {conn_id}")
        return session

    def register(self, connection: Connection, user_id: str) -> Session:
        """
        Bind a connection to a user identity.

        The connection also joins the private room keyed by the user id,
        used for identity-targeted notifications. Re-registering with a
        different user moves both the binding and the private room.
        """
        if not user_id:
            raise ValueError("user_id is required")

        session = self.open(connection)
        previous = session.user_id
        if previous == user_id:
            return session

        if previous is not None:
            self._unbind_user(session.conn_id, previous)
            self._remove_membership(session, previous)

        session.user_id = user_id
        self._by_user.setdefault(user_id, set()).add(session.conn_id)
        self._add_membership(session, user_id)

        logger.info(f"User {user_id} registered with connection {session.conn_id}")
        return session

    def join_room(self, connection: Connection, room_id: str) -> Session:
        """Add the connection to a room. No-op if already a member."""
        if not room_id:
            raise ValueError("room_id is required")

        session = self.open(connection)
        if room_id not in session.rooms:
            self._add_membership(session, room_id)
            logger.debug(f"Connection {session.conn_id} joined room {room_id}")
        return session

    def leave_room(self, connection: Connection, room_id: str) -> None:
        """Remove the connection from a single room."""
        session = self._sessions.get(self._conn_id(connection))
        if session is None:
            return
        self._remove_membership(session, room_id)

    def on_disconnect(self, connection: Connection) -> Session | None:
        """
        Purge every binding for a connection.

        Safe to call more than once; later calls are no-ops. Deliveries that
        were in flight for this connection are dropped by the broadcaster.

        Returns:
            The removed session, or None if it was already gone
        """
        conn_id = self._conn_id(connection)
        session = self._sessions.pop(conn_id, None)
        if session is None:
            return None

        for room_id in list(session.rooms):
            self._remove_membership(session, room_id)
        if session.user_id is not None:
            self._unbind_user(conn_id, session.user_id)

        logger.info(f"Session closed: {conn_id} (user: {session.user_id})")
        return session

    # =========================================================================
    # Queries
    # =========================================================================

    def get(self, conn_id: str) -> Session | None:
        return self._sessions.get(conn_id)

    def find_sessions_by_user(self, user_id: str) -> set[Connection]:
        """All connections the user currently has open on this instance."""
        return {
            self._sessions[conn_id].connection
            for conn_id in self._by_user.get(user_id, ())
            if conn_id in self._sessions
        }

    def sessions_in_room(self, room_id: str) -> list[Session]:
        """Snapshot of the sessions that joined a room."""
        return [
            self._sessions[conn_id]
            for conn_id in list(self._rooms.get(room_id, ()))
            if conn_id in self._sessions
        ]

    def all_sessions(self) -> list[Session]:
        """Snapshot of every live session."""
        return list(self._sessions.values())

    def is_member(self, connection: Connection, room_id: str) -> bool:
        return self._conn_id(connection) in self._rooms.get(room_id, ())

    # =========================================================================
    # Internals
    # =========================================================================

    @staticmethod
    def _conn_id(connection: Connection) -> str:
        if connection is None:
            raise ValueError("connection is required")
        return connection.conn_id

    def _add_membership(self, session: Session, room_id: str) -> None:
        session.rooms.add(room_id)
        self._rooms.setdefault(room_id, set()).add(session.conn_id)

    def _remove_membership(self, session: Session, room_id: str) -> None:
        session.rooms.discard(room_id)
        members = self._rooms.get(room_id)
        if members is not None:
            members.discard(session.conn_id)
            if not members:
                del self._rooms[room_id]

    def _unbind_user(self, conn_id: str, user_id: str) -> None:
        conns = self._by_user.get(user_id)
        if conns is not None:
            conns.discard(conn_id)
            if not conns:
                del self._by_user[user_id]
