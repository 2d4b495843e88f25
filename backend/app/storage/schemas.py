"""Pydantic records returned by the chat storage layer.

These are plain value objects. The hub treats them as opaque records keyed
by id and never mutates them.
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class UserRecord(BaseModel):
    """A known chat user.

    Attributes:
        id: Stable user identifier (the identity provider's subject).
        user_name: Login-style handle shown in the UI.
        email: Optional contact address.
        full_name: Display name ("First Last").
        created_at: First time the user was seen.
        last_active: Most recent connect or activity.
    """
    id: str
    user_name: str
    email: Optional[str] = None
    full_name: str = ""
    created_at: datetime
    last_active: datetime


class ChatRoomRecord(BaseModel):
    id: int
    name: str
    created_at: datetime
    member_ids: List[str] = Field(default_factory=list)


class StoredMessage(BaseModel):
    """A persisted message with its sender's display fields joined in."""
    id: int
    room_id: int
    sender_id: str
    content: str
    sent_at: datetime
    sentiment_score: Optional[str] = None
    sentiment_label: Optional[str] = None
    sender_user_name: str = ""
    sender_full_name: str = ""


class MessageWithStatus(BaseModel):
    """A message paired with whether a specific user has read it."""
    message: StoredMessage
    is_read: bool


class RoomSummary(BaseModel):
    """Room overview for one user's room list."""
    room: ChatRoomRecord
    message_count: int = 0
    unread_count: int = 0
    last_message: Optional[str] = None
