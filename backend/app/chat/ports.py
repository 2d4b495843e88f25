"""Collaborator interfaces consumed by the chat hub.

The hub only talks to storage and to the network through these protocols,
so the same core runs over the DuckDB gateway and WebSocket transport in
production and over in-memory fakes in tests.
"""
from typing import List, Optional, Protocol

from app.storage.schemas import MessageWithStatus, StoredMessage


class ChatStore(Protocol):
    """Async storage commands and queries used by the hub."""

    async def is_room_member(self, user_id: str, room_id: int) -> bool: ...

    async def room_exists(self, room_id: int) -> bool: ...

    async def add_message(
        self,
        room_id: int,
        sender_id: str,
        content: str,
        sentiment_score: Optional[str],
        sentiment_label: Optional[str],
    ) -> StoredMessage: ...

    async def recent_messages_with_read_status(
        self, room_id: int, user_id: str, page: int, page_size: int
    ) -> List[MessageWithStatus]: ...

    async def mark_message_read(self, message_id: int, user_id: str) -> bool: ...

    async def resolve_message_room(self, message_id: int) -> Optional[int]: ...

    async def record_activity(
        self, user_id: str, user_name: Optional[str], full_name: Optional[str]
    ) -> None: ...

    async def rooms_for_user(self, user_id: str) -> List[int]: ...


class ConnectionTransport(Protocol):
    """Delivers one already-serialised envelope to one connection.

    Returns False when the connection is gone or the send failed; the
    router treats that as a best-effort miss, not an error.
    """

    async def send(self, connection_id: str, message: dict) -> bool: ...
