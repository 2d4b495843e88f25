"""Broadcast router: delivers hub events to the right set of connections.

Recipients are always resolved from the ConnectionRegistry snapshot at the
moment of the call. A connection that disappears between the snapshot and
delivery is skipped silently (at-most-once, no guarantee to a vanished
connection).

Ordering:
    Group broadcasts for one room are serialised by a per-room
    ``asyncio.Lock``. Each broadcast awaits all of its deliveries (sent
    concurrently with ``asyncio.gather()``) before releasing the lock, so a
    connection present for two broadcasts to the same room always sees them
    in issue order. Rooms do not block each other.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any, AsyncIterator, Dict, Iterable, Optional, Union

from pydantic import BaseModel

from .events import ServerEvent
from .ports import ConnectionTransport
from .registry import ConnectionRegistry

logger = logging.getLogger(__name__)


def build_envelope(event: Union[ServerEvent, str], payload: Any) -> dict:
    """Serialise an event and its payload into the wire envelope."""
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(mode="json")
    elif isinstance(payload, list):
        payload = [
            item.model_dump(mode="json") if isinstance(item, BaseModel) else item
            for item in payload
        ]
    name = event.value if isinstance(event, Enum) else event
    return {"type": name, "payload": payload}


class _RoomLock:
    """Ordering lock for one room plus the number of broadcasts using it."""

    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.users = 0


class BroadcastRouter:
    """Fan-out of events to room groups and individual connections."""

    def __init__(self, registry: ConnectionRegistry, transport: ConnectionTransport) -> None:
        self._registry = registry
        self._transport = transport
        self._room_locks: Dict[int, _RoomLock] = {}

    async def send_to_group(
        self, room_id: int, event: Union[ServerEvent, str], payload: Any
    ) -> int:
        """Deliver an event to every connection currently in the room's group.

        Returns:
            Number of connections the event was delivered to.
        """
        return await self._broadcast(room_id, event, payload, exclude=None)

    async def send_to_group_except(
        self,
        room_id: int,
        event: Union[ServerEvent, str],
        payload: Any,
        excluded_connection_id: str,
    ) -> int:
        """Deliver an event to the room's group, skipping one connection.

        Used for presence and typing so the originating connection does not
        get an echo of its own event.
        """
        return await self._broadcast(room_id, event, payload, exclude=excluded_connection_id)

    async def send_to_connection(
        self, connection_id: str, event: Union[ServerEvent, str], payload: Any
    ) -> bool:
        """Deliver an event to a single connection (confirmations, errors)."""
        return await self._safe_send(connection_id, build_envelope(event, payload))

    async def _broadcast(
        self,
        room_id: int,
        event: Union[ServerEvent, str],
        payload: Any,
        exclude: Optional[str],
    ) -> int:
        message = build_envelope(event, payload)
        async with self._room_lock(room_id):
            recipients = [
                conn for conn in self._registry.connections_in_group(room_id)
                if conn != exclude
            ]
            if not recipients:
                return 0
            delivered = await self._deliver(recipients, message)

        logger.debug(
            f"[Router] {message['type']} to room {room_id}: "
            f"{delivered}/{len(recipients)} delivered"
        )
        return delivered

    async def _deliver(self, connections: Iterable[str], message: dict) -> int:
        results = await asyncio.gather(
            *[self._safe_send(conn, message) for conn in connections],
            return_exceptions=True,
        )
        return sum(1 for result in results if result is True)

    async def _safe_send(self, connection_id: str, message: dict) -> bool:
        """Send to one connection; a failure is logged and reported as False."""
        try:
            return await self._transport.send(connection_id, message)
        except Exception as e:
            logger.debug(f"[Router] Failed to send to connection {connection_id}: {e}")
            return False

    @asynccontextmanager
    async def _room_lock(self, room_id: int) -> AsyncIterator[None]:
        """Hold the room's ordering lock.

        Entries are reference counted and dropped once no broadcast holds or
        waits on them, so the map only ever contains rooms with traffic in
        flight.
        """
        slot = self._room_locks.get(room_id)
        if slot is None:
            slot = self._room_locks[room_id] = _RoomLock()
        slot.users += 1
        try:
            async with slot.lock:
                yield
        finally:
            slot.users -= 1
            if slot.users == 0 and self._room_locks.get(room_id) is slot:
                del self._room_locks[room_id]
