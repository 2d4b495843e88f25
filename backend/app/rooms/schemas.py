"""Request and response models for the rooms HTTP API."""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from app.chat.events import MessageView
from app.storage.schemas import UserRecord


class UserSummary(BaseModel):
    """Public view of a user.

    Attributes:
        id: User identifier.
        userName: Login-style handle.
        fullName: Display name.
        email: Contact address, when known.
        lastActive: Most recent activity (UTC).
    """
    id: str
    userName: str
    fullName: str = ""
    email: Optional[str] = None
    lastActive: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: UserRecord) -> "UserSummary":
        return cls(
            id=record.id,
            userName=record.user_name,
            fullName=record.full_name,
            email=record.email,
            lastActive=record.last_active,
        )


class ChatRoomResponse(BaseModel):
    """A room as seen by one user, with counts relative to that user."""
    id: int
    name: str
    createdAt: datetime
    users: List[UserSummary] = Field(default_factory=list)
    messageCount: int = 0
    unreadCount: int = 0
    lastMessage: Optional[str] = None


class CreateChatRoomRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200, description="Room name")
    userIds: List[str] = Field(default_factory=list, description="Initial members besides the creator")

    @field_validator("name")
    @classmethod
    def _strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Room name cannot be blank")
        return v


class AddUserRequest(BaseModel):
    userId: str = Field(..., min_length=1, description="User to add to the room")


class MessagesPage(BaseModel):
    """One page of history, oldest first within the page.

    Attributes:
        messages: Messages with the caller's read status.
        page: 1-based page number (page 1 is the newest).
        pageSize: Requested page size.
        hasMore: True if the page was full, so older messages may exist.
    """
    messages: List[MessageView]
    page: int
    pageSize: int
    hasMore: bool
