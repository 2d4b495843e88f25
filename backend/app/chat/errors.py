"""Error taxonomy for the chat hub.

Every failure the hub can report derives from HubError so transports can
catch one type at their boundary. The ``client_message`` is what ends up in
the ``Error`` event sent back to the caller.
"""
from typing import Optional


class HubError(Exception):
    """Base class for all chat hub failures."""

    client_message: str = "Operation failed"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.client_message)
        if message:
            self.client_message = message


class Unauthenticated(HubError):
    """No valid identity could be resolved for a connection."""

    client_message = "Authentication required"


class NotAuthorized(HubError):
    """Valid identity, but the user is not a member of the target room."""

    client_message = "You are not a member of this chat room"


class UnknownConnection(HubError):
    """A registry lookup missed (connection never existed or already gone)."""

    client_message = "Connection is no longer registered"

    def __init__(self, connection_id: str) -> None:
        super().__init__(f"Unknown connection: {connection_id}")
        self.connection_id = connection_id
        self.client_message = UnknownConnection.client_message


class DuplicateConnection(HubError):
    """A connection id was registered twice."""

    client_message = "Connection already registered"

    def __init__(self, connection_id: str) -> None:
        super().__init__(f"Duplicate connection: {connection_id}")
        self.connection_id = connection_id
        self.client_message = DuplicateConnection.client_message


class UpstreamUnavailable(HubError):
    """Storage (or another collaborator) failed while serving an operation."""

    client_message = "Service temporarily unavailable"


class RoomNotFound(HubError):
    """The target room does not exist."""

    def __init__(self, room_id: int) -> None:
        super().__init__(f"Chat room {room_id} not found")
        self.room_id = room_id
