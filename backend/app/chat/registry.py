"""Connection registry for live chat connections.

Tracks which transport connections are currently alive, which user owns each
one, and which room groups each connection has joined. The registry is the
single source of truth for "who is reachable in room R": the broadcast router
reads recipient sets from here and never derives them on its own.

Indices kept in sync for every event:
    - connection_id -> ConnectionEntry (owning user + joined room ids)
    - user_id       -> set of live connection ids (pruned when empty)
    - room_id       -> set of connection ids whose group set contains the room

Thread Safety:
    All three indices are guarded by one ``threading.Lock``. Work under the
    lock is purely in-memory, so registry calls never wait on I/O and are
    safe from both the event loop and worker threads. Readers only ever get
    immutable snapshots (``frozenset``) and can iterate them while other
    connections keep joining and leaving.
"""
import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Set

from .errors import DuplicateConnection, UnknownConnection

logger = logging.getLogger(__name__)


@dataclass
class ConnectionEntry:
    """Registry-owned record for one live connection."""
    user_id: str
    groups: Set[int] = field(default_factory=set)


class ConnectionRegistry:
    """Concurrency-safe map of live connections, users and room groups.

    An instance is created by the application (or a test fixture) and passed
    to the components that need it; there is no module-level registry.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._connections: Dict[str, ConnectionEntry] = {}
        self._user_connections: Dict[str, Set[str]] = {}
        self._room_connections: Dict[int, Set[str]] = {}

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def register_connection(self, connection_id: str, user_id: str) -> None:
        """Register a freshly opened connection for a user.

        Args:
            connection_id: Transport-assigned connection identifier.
            user_id: Verified identity owning the connection.

        Raises:
            DuplicateConnection: If the id is already registered.
        """
        with self._lock:
            if connection_id in self._connections:
                raise DuplicateConnection(connection_id)
            self._connections[connection_id] = ConnectionEntry(user_id=user_id)
            self._user_connections.setdefault(user_id, set()).add(connection_id)
        logger.debug(f"[Registry] Registered {connection_id} for user {user_id}")

    def unregister_connection(self, connection_id: str) -> FrozenSet[int]:
        """Remove a connection and unwind all of its group memberships.

        Idempotent: an unknown id is a no-op, since disconnect handling may
        race with a cleanup that already happened.

        Returns:
            The room ids the connection was joined to (empty if absent).
        """
        with self._lock:
            entry = self._connections.pop(connection_id, None)
            if entry is None:
                return frozenset()

            for room_id in entry.groups:
                self._discard_from_room(room_id, connection_id)

            user_connections = self._user_connections.get(entry.user_id)
            if user_connections is not None:
                user_connections.discard(connection_id)
                if not user_connections:
                    del self._user_connections[entry.user_id]

            rooms = frozenset(entry.groups)

        logger.debug(
            f"[Registry] Unregistered {connection_id} (user {entry.user_id}, rooms {sorted(rooms)})"
        )
        return rooms

    # =========================================================================
    # Group membership
    # =========================================================================

    def join_group(self, connection_id: str, room_id: int) -> None:
        """Add the room's group to a connection's group set (idempotent).

        Raises:
            UnknownConnection: If the connection is not registered.
        """
        with self._lock:
            entry = self._require(connection_id)
            entry.groups.add(room_id)
            self._room_connections.setdefault(room_id, set()).add(connection_id)

    def leave_group(self, connection_id: str, room_id: int) -> None:
        """Remove the room's group from a connection's group set (idempotent).

        Raises:
            UnknownConnection: If the connection is not registered.
        """
        with self._lock:
            entry = self._require(connection_id)
            entry.groups.discard(room_id)
            self._discard_from_room(room_id, connection_id)

    # =========================================================================
    # Snapshot reads
    # =========================================================================

    def connections_in_group(self, room_id: int) -> FrozenSet[str]:
        """Point-in-time snapshot of the connections in a room's group."""
        with self._lock:
            return frozenset(self._room_connections.get(room_id, ()))

    def connections_for_user(self, user_id: str) -> FrozenSet[str]:
        """Point-in-time snapshot of a user's live connections."""
        with self._lock:
            return frozenset(self._user_connections.get(user_id, ()))

    def groups_for(self, connection_id: str) -> FrozenSet[int]:
        """Room ids the connection has joined.

        Raises:
            UnknownConnection: If the connection is not registered. An empty
                result always means "registered, no rooms joined yet".
        """
        with self._lock:
            return frozenset(self._require(connection_id).groups)

    def user_for(self, connection_id: str) -> str:
        """Owning user of a connection.

        Raises:
            UnknownConnection: If the connection is not registered.
        """
        with self._lock:
            return self._require(connection_id).user_id

    def rooms(self) -> FrozenSet[int]:
        """Rooms that currently have at least one live connection."""
        with self._lock:
            return frozenset(self._room_connections)

    def __contains__(self, connection_id: object) -> bool:
        with self._lock:
            return connection_id in self._connections

    def __len__(self) -> int:
        with self._lock:
            return len(self._connections)

    # =========================================================================
    # Internal (caller holds the lock)
    # =========================================================================

    def _require(self, connection_id: str) -> ConnectionEntry:
        entry = self._connections.get(connection_id)
        if entry is None:
            raise UnknownConnection(connection_id)
        return entry

    def _discard_from_room(self, room_id: int, connection_id: str) -> None:
        members = self._room_connections.get(room_id)
        if members is None:
            return
        members.discard(connection_id)
        if not members:
            del self._room_connections[room_id]
