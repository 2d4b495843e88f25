"""Async facade over the synchronous DuckDB chat storage service.

Each call is pushed to a worker thread with ``asyncio.to_thread`` so slow
queries never block the event loop, the registry lock or a room lock.
"""
import asyncio
from typing import Iterable, List, Optional

from .schemas import ChatRoomRecord, MessageWithStatus, RoomSummary, StoredMessage, UserRecord
from .service import ChatStorageService


class ChatStoreGateway:
    """Implements the hub's ``ChatStore`` port plus the HTTP API queries."""

    def __init__(self, service: ChatStorageService) -> None:
        self.service = service

    # Hub port

    async def is_room_member(self, user_id: str, room_id: int) -> bool:
        return await asyncio.to_thread(self.service.is_room_member, user_id, room_id)

    async def room_exists(self, room_id: int) -> bool:
        return await asyncio.to_thread(self.service.room_exists, room_id)

    async def add_message(
        self,
        room_id: int,
        sender_id: str,
        content: str,
        sentiment_score: Optional[str],
        sentiment_label: Optional[str],
    ) -> StoredMessage:
        return await asyncio.to_thread(
            self.service.add_message, room_id, sender_id, content, sentiment_score, sentiment_label
        )

    async def recent_messages_with_read_status(
        self, room_id: int, user_id: str, page: int, page_size: int
    ) -> List[MessageWithStatus]:
        return await asyncio.to_thread(self.service.get_messages, room_id, user_id, page, page_size)

    async def mark_message_read(self, message_id: int, user_id: str) -> bool:
        return await asyncio.to_thread(self.service.mark_message_read, message_id, user_id)

    async def resolve_message_room(self, message_id: int) -> Optional[int]:
        return await asyncio.to_thread(self.service.resolve_message_room, message_id)

    async def record_activity(
        self, user_id: str, user_name: Optional[str], full_name: Optional[str]
    ) -> None:
        await asyncio.to_thread(self.service.upsert_user, user_id, user_name, full_name)

    async def rooms_for_user(self, user_id: str) -> List[int]:
        return await asyncio.to_thread(self.service.rooms_for_user, user_id)

    # HTTP API

    async def room_summaries(self, user_id: str) -> List[RoomSummary]:
        return await asyncio.to_thread(self.service.room_summaries, user_id)

    async def get_room(self, room_id: int) -> Optional[ChatRoomRecord]:
        return await asyncio.to_thread(self.service.get_room, room_id)

    async def create_room(self, name: str, creator_id: str, member_ids: Iterable[str]) -> ChatRoomRecord:
        return await asyncio.to_thread(self.service.create_room, name, creator_id, list(member_ids))

    async def add_member(self, room_id: int, user_id: str) -> bool:
        return await asyncio.to_thread(self.service.add_member, room_id, user_id)

    async def remove_member(self, room_id: int, user_id: str) -> bool:
        return await asyncio.to_thread(self.service.remove_member, room_id, user_id)

    async def mark_all_read(self, room_id: int, user_id: str) -> int:
        return await asyncio.to_thread(self.service.mark_all_read, room_id, user_id)

    async def get_user(self, user_id: str) -> Optional[UserRecord]:
        return await asyncio.to_thread(self.service.get_user, user_id)

    async def list_users(self) -> List[UserRecord]:
        return await asyncio.to_thread(self.service.list_users)
