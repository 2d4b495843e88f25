"""Chat storage: DuckDB persistence for rooms, users, messages and receipts."""

from .gateway import ChatStoreGateway
from .schemas import ChatRoomRecord, MessageWithStatus, RoomSummary, StoredMessage, UserRecord
from .service import ChatStorageService

__all__ = [
    "ChatRoomRecord",
    "ChatStorageService",
    "ChatStoreGateway",
    "MessageWithStatus",
    "RoomSummary",
    "StoredMessage",
    "UserRecord",
]
