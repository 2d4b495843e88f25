"""Event and command shapes exchanged between clients and the chat hub.

Server-to-client events travel as ``{"type": <ServerEvent>, "payload": ...}``
envelopes. Client operations arrive as flat JSON objects parsed into
``ClientCommand``.
"""
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class ServerEvent(str, Enum):
    """Events the hub pushes to connections."""
    JOINED_ROOM = "JoinedRoom"
    LEFT_ROOM = "LeftRoom"
    LOAD_RECENT_MESSAGES = "LoadRecentMessages"
    RECEIVE_MESSAGE = "ReceiveMessage"
    USER_JOINED = "UserJoined"
    USER_LEFT = "UserLeft"
    USER_TYPING = "UserTyping"
    USER_STOPPED_TYPING = "UserStoppedTyping"
    MESSAGE_READ = "MessageRead"
    ERROR = "Error"
    HEARTBEAT_RESPONSE = "HeartbeatResponse"
    CONNECTION_INFO = "ConnectionInfo"


class ClientOperation(str, Enum):
    """Operations a client can invoke on its session."""
    JOIN_ROOM = "JoinRoom"
    LEAVE_ROOM = "LeaveRoom"
    SEND_MESSAGE = "SendMessage"
    TYPING_START = "TypingStart"
    TYPING_STOP = "TypingStop"
    MARK_READ = "MarkRead"
    HEARTBEAT = "Heartbeat"
    GET_CONNECTION_INFO = "GetConnectionInfo"


class ClientCommand(BaseModel):
    """Incoming client frame.

    Attributes:
        type: Operation name.
        roomId: Target room (JoinRoom, LeaveRoom, SendMessage, Typing*).
        content: Message text (SendMessage).
        messageId: Message being acknowledged (MarkRead).
    """
    type: ClientOperation = Field(..., description="Operation name")
    roomId: Optional[int] = Field(default=None, description="Target room id")
    content: Optional[str] = Field(default=None, description="Message text")
    messageId: Optional[int] = Field(default=None, description="Message id for MarkRead")


class MessageView(BaseModel):
    """A chat message as rendered to clients.

    ``isRead`` is only populated in per-user views (recent messages on join
    and the paginated HTTP history); broadcast messages leave it unset.
    """
    id: int
    chatRoomId: int
    content: str
    sentAt: datetime
    senderId: str
    senderUserName: str = ""
    senderFullName: str = ""
    sentimentScore: Optional[str] = None
    sentimentLabel: Optional[str] = None
    isRead: Optional[bool] = None


class RoomRef(BaseModel):
    roomId: int


class RoomPresence(BaseModel):
    """Payload for UserJoined / UserLeft / UserTyping / UserStoppedTyping."""
    roomId: int
    userId: str
    userName: Optional[str] = None


class MessageReadNotice(BaseModel):
    messageId: int
    userId: str
    roomId: int


class ErrorNotice(BaseModel):
    message: str


class HeartbeatAck(BaseModel):
    timestamp: datetime


class ConnectionInfo(BaseModel):
    """Diagnostics returned by GetConnectionInfo."""
    connectionId: str
    userId: str
    availableRooms: List[int] = Field(default_factory=list)
    activeGroups: List[int] = Field(default_factory=list)
