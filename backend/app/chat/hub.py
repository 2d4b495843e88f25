"""Chat hub: per-connection session state machine.

The hub is transport independent. A transport (the WebSocket endpoint, or a
test) calls ``ChatHub.connect`` once per connection and then drives the
returned ``HubSession`` with client operations until ``disconnect``.

States:
    CONNECTED    registered, no rooms joined
    JOINED       at least one room joined
    DISCONNECTED terminal; further operations are ignored

Every client operation produces either its documented events or exactly one
``Error`` event to the caller. A failed operation leaves no side effects: send
stores before touching groups, and a join whose history load fails is
undone before the error goes out. Leave and typing only act on rooms the
connection has actually joined.
"""
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Optional, Set

from app.auth.service import UserIdentity
from app.sentiment.service import SentimentAnnotator
from app.storage.schemas import MessageWithStatus, StoredMessage

from .broadcast import BroadcastRouter
from .errors import DuplicateConnection, HubError, UnknownConnection, UpstreamUnavailable
from .events import (
    ClientCommand,
    ClientOperation,
    ConnectionInfo,
    ErrorNotice,
    HeartbeatAck,
    MessageReadNotice,
    MessageView,
    RoomPresence,
    RoomRef,
    ServerEvent,
)
from .membership import RoomMembershipAuthority
from .ports import ChatStore
from .registry import ConnectionRegistry

logger = logging.getLogger(__name__)

DEFAULT_RECENT_PAGE_SIZE = 20
DEFAULT_MAX_MESSAGE_LENGTH = 4000


class SessionState(str, Enum):
    CONNECTED = "connected"
    JOINED = "joined"
    DISCONNECTED = "disconnected"


def message_view(message: StoredMessage, is_read: Optional[bool] = None) -> MessageView:
    """Render a stored message for clients."""
    return MessageView(
        id=message.id,
        chatRoomId=message.room_id,
        content=message.content,
        sentAt=message.sent_at,
        senderId=message.sender_id,
        senderUserName=message.sender_user_name,
        senderFullName=message.sender_full_name,
        sentimentScore=message.sentiment_score,
        sentimentLabel=message.sentiment_label,
        isRead=is_read,
    )


def _with_status(item: MessageWithStatus) -> MessageView:
    return message_view(item.message, is_read=item.is_read)


class ChatHub:
    """Entry point that turns verified connections into hub sessions.

    Args:
        registry: Live connection registry shared with the router.
        router: Broadcast router used for all outbound events.
        membership: Room membership authority.
        store: Storage collaborator.
        annotator: Sentiment annotation step for outgoing messages.
        recent_page_size: Messages loaded on JoinRoom.
        max_message_length: Longest accepted message content.
        announce_disconnect: Send UserLeft to joined rooms on disconnect.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        router: BroadcastRouter,
        membership: RoomMembershipAuthority,
        store: ChatStore,
        annotator: SentimentAnnotator,
        recent_page_size: int = DEFAULT_RECENT_PAGE_SIZE,
        max_message_length: int = DEFAULT_MAX_MESSAGE_LENGTH,
        announce_disconnect: bool = True,
    ):
        self.registry = registry
        self.router = router
        self.membership = membership
        self.store = store
        self.annotator = annotator
        self.recent_page_size = recent_page_size
        self.max_message_length = max_message_length
        self.announce_disconnect = announce_disconnect

    async def connect(self, connection_id: str, identity: UserIdentity) -> "HubSession":
        """Register a verified connection and return its session.

        Raises:
            DuplicateConnection: If the connection id is already registered.
        """
        self.registry.register_connection(connection_id, identity.user_id)
        logger.info(f"[Hub] User {identity.user_id} connected ({connection_id})")

        try:
            await self.store.record_activity(identity.user_id, identity.user_name, identity.full_name)
        except Exception as e:
            logger.warning(f"[Hub] Failed to record activity for user {identity.user_id}: {e}")

        return HubSession(self, connection_id, identity)


class HubSession:
    """State machine for one live connection."""

    def __init__(self, hub: ChatHub, connection_id: str, identity: UserIdentity):
        self._hub = hub
        self.connection_id = connection_id
        self.identity = identity
        self.state = SessionState.CONNECTED
        self._joined_rooms: Set[int] = set()

    @property
    def user_id(self) -> str:
        return self.identity.user_id

    @property
    def joined_rooms(self) -> Set[int]:
        return set(self._joined_rooms)

    # =========================================================================
    # Dispatch
    # =========================================================================

    async def dispatch(self, command: ClientCommand) -> None:
        """Route a parsed client command to its operation."""
        op = command.type
        if op == ClientOperation.JOIN_ROOM:
            await self.join_room(command.roomId)
        elif op == ClientOperation.LEAVE_ROOM:
            await self.leave_room(command.roomId)
        elif op == ClientOperation.SEND_MESSAGE:
            await self.send_message(command.roomId, command.content)
        elif op == ClientOperation.TYPING_START:
            await self.typing_start(command.roomId)
        elif op == ClientOperation.TYPING_STOP:
            await self.typing_stop(command.roomId)
        elif op == ClientOperation.MARK_READ:
            await self.mark_read(command.messageId)
        elif op == ClientOperation.HEARTBEAT:
            await self.heartbeat()
        elif op == ClientOperation.GET_CONNECTION_INFO:
            await self.get_connection_info()

    # =========================================================================
    # Client operations
    # =========================================================================

    async def join_room(self, room_id: Optional[int]) -> None:
        await self._run("JoinRoom", self._join_room, room_id)

    async def leave_room(self, room_id: Optional[int]) -> None:
        await self._run("LeaveRoom", self._leave_room, room_id)

    async def send_message(self, room_id: Optional[int], content: Optional[str]) -> None:
        await self._run("SendMessage", self._send_message, room_id, content)

    async def typing_start(self, room_id: Optional[int]) -> None:
        await self._typing(room_id, ServerEvent.USER_TYPING)

    async def typing_stop(self, room_id: Optional[int]) -> None:
        await self._typing(room_id, ServerEvent.USER_STOPPED_TYPING)

    async def mark_read(self, message_id: Optional[int]) -> None:
        await self._run("MarkRead", self._mark_read, message_id)

    async def heartbeat(self) -> None:
        await self._run("Heartbeat", self._heartbeat)

    async def get_connection_info(self) -> None:
        await self._run("GetConnectionInfo", self._get_connection_info)

    async def disconnect(self) -> None:
        """Unregister the connection and unwind its group memberships."""
        if self.state == SessionState.DISCONNECTED:
            return
        self.state = SessionState.DISCONNECTED

        rooms = set(self._hub.registry.unregister_connection(self.connection_id)) | self._joined_rooms
        self._joined_rooms.clear()
        logger.info(f"[Hub] User {self.user_id} disconnected ({self.connection_id})")

        if not self._hub.announce_disconnect:
            return
        for room_id in sorted(rooms):
            await self._hub.router.send_to_group(room_id, ServerEvent.USER_LEFT, self._presence(room_id))

    # =========================================================================
    # Operation bodies
    # =========================================================================

    async def _join_room(self, room_id: Optional[int]) -> None:
        room_id = self._require_room(room_id)
        await self._hub.membership.ensure_joinable(self.user_id, room_id)

        # Join the group before loading history so nothing sent in between is
        # missed. A message can then show up both live and in the history.
        registry = self._hub.registry
        already_joined = room_id in registry.groups_for(self.connection_id)
        registry.join_group(self.connection_id, room_id)
        try:
            recent = await self._hub.store.recent_messages_with_read_status(
                room_id, self.user_id, page=1, page_size=self._hub.recent_page_size
            )
        except Exception:
            if not already_joined:
                self._undo_join(room_id)
            raise

        self._joined_rooms.add(room_id)
        self.state = SessionState.JOINED
        logger.info(f"[Hub] User {self.user_id} joined room {room_id}")

        router = self._hub.router
        await router.send_to_connection(self.connection_id, ServerEvent.JOINED_ROOM, RoomRef(roomId=room_id))
        await router.send_to_connection(
            self.connection_id,
            ServerEvent.LOAD_RECENT_MESSAGES,
            [_with_status(item) for item in recent],
        )
        await router.send_to_group_except(
            room_id, ServerEvent.USER_JOINED, self._presence(room_id), self.connection_id
        )

    async def _leave_room(self, room_id: Optional[int]) -> None:
        room_id = self._require_room(room_id)
        registry = self._hub.registry
        router = self._hub.router

        if room_id not in registry.groups_for(self.connection_id):
            logger.debug(f"[Hub] LeaveRoom for room {room_id} not joined by {self.connection_id}")
            self._forget_room(room_id)
            return

        await router.send_to_group_except(
            room_id, ServerEvent.USER_LEFT, self._presence(room_id), self.connection_id
        )
        registry.leave_group(self.connection_id, room_id)
        self._forget_room(room_id)
        logger.info(f"[Hub] User {self.user_id} left room {room_id}")

        await router.send_to_connection(self.connection_id, ServerEvent.LEFT_ROOM, RoomRef(roomId=room_id))

    async def _send_message(self, room_id: Optional[int], content: Optional[str]) -> None:
        room_id = self._require_room(room_id)
        if content is None or not content.strip():
            raise HubError("Message content cannot be empty")
        if len(content) > self._hub.max_message_length:
            raise HubError(f"Message exceeds {self._hub.max_message_length} characters")

        await self._hub.membership.ensure_member(self.user_id, room_id)

        # Raises UnknownConnection for a lost connection, before anything is stored.
        registry = self._hub.registry
        in_group = room_id in registry.groups_for(self.connection_id)

        sentiment = await self._hub.annotator.score(content)
        stored = await self._hub.store.add_message(
            room_id, self.user_id, content, sentiment.score, sentiment.label.value
        )

        if not in_group:
            logger.info(f"[Hub] Re-adding {self.connection_id} to room {room_id} before broadcast")
            registry.join_group(self.connection_id, room_id)
        self._joined_rooms.add(room_id)
        self.state = SessionState.JOINED

        await self._hub.router.send_to_group(room_id, ServerEvent.RECEIVE_MESSAGE, message_view(stored))

    async def _typing(self, room_id: Optional[int], event: ServerEvent) -> None:
        if not self._active(event.value) or room_id is None:
            return
        try:
            if room_id not in self._hub.registry.groups_for(self.connection_id):
                return
            await self._hub.router.send_to_group_except(
                room_id, event, self._presence(room_id), self.connection_id
            )
        except Exception as e:
            logger.debug(f"[Hub] {event.value} for room {room_id} dropped: {e}")

    async def _mark_read(self, message_id: Optional[int]) -> None:
        if message_id is None:
            raise HubError("messageId is required")

        room_id = await self._hub.store.resolve_message_room(message_id)
        if room_id is None:
            logger.debug(f"[Hub] MarkRead for unknown message {message_id}")
            return

        await self._hub.membership.ensure_member(self.user_id, room_id)
        await self._hub.store.mark_message_read(message_id, self.user_id)

        await self._hub.router.send_to_group(
            room_id,
            ServerEvent.MESSAGE_READ,
            MessageReadNotice(messageId=message_id, userId=self.user_id, roomId=room_id),
        )

    async def _heartbeat(self) -> None:
        registry = self._hub.registry
        if self.connection_id not in registry:
            logger.warning(f"[Hub] Heartbeat re-registering lost connection {self.connection_id}")
            try:
                registry.register_connection(self.connection_id, self.user_id)
            except DuplicateConnection:
                pass

        for room_id in self._joined_rooms:
            registry.join_group(self.connection_id, room_id)

        await self._hub.router.send_to_connection(
            self.connection_id,
            ServerEvent.HEARTBEAT_RESPONSE,
            HeartbeatAck(timestamp=datetime.now(timezone.utc)),
        )

    async def _get_connection_info(self) -> None:
        available = await self._hub.store.rooms_for_user(self.user_id)
        active = self._hub.registry.groups_for(self.connection_id)
        info = ConnectionInfo(
            connectionId=self.connection_id,
            userId=self.user_id,
            availableRooms=sorted(available),
            activeGroups=sorted(active),
        )
        await self._hub.router.send_to_connection(self.connection_id, ServerEvent.CONNECTION_INFO, info)

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _run(self, name: str, operation: Callable[..., Awaitable[None]], *args) -> None:
        """Run an operation, converting any failure into one Error event."""
        if not self._active(name):
            return
        try:
            await operation(*args)
        except UnknownConnection as e:
            logger.warning(f"[Hub] {name} aborted for {self.connection_id}: {e}")
            await self._send_error(e.client_message)
        except HubError as e:
            logger.info(f"[Hub] {name} rejected for user {self.user_id}: {e}")
            await self._send_error(e.client_message)
        except Exception as e:
            logger.error(f"[Hub] {name} failed for user {self.user_id}: {e}")
            await self._send_error(UpstreamUnavailable.client_message)

    def _active(self, name: str) -> bool:
        if self.state == SessionState.DISCONNECTED:
            logger.debug(f"[Hub] Ignoring {name} on disconnected session {self.connection_id}")
            return False
        return True

    async def _send_error(self, message: str) -> None:
        await self._hub.router.send_to_connection(
            self.connection_id, ServerEvent.ERROR, ErrorNotice(message=message)
        )

    def _forget_room(self, room_id: int) -> None:
        self._joined_rooms.discard(room_id)
        if not self._joined_rooms:
            self.state = SessionState.CONNECTED

    def _undo_join(self, room_id: int) -> None:
        try:
            self._hub.registry.leave_group(self.connection_id, room_id)
        except UnknownConnection:
            pass

    def _presence(self, room_id: int) -> RoomPresence:
        return RoomPresence(
            roomId=room_id,
            userId=self.user_id,
            userName=self.identity.user_name or self.identity.full_name or None,
        )

    @staticmethod
    def _require_room(room_id: Optional[int]) -> int:
        if room_id is None:
            raise HubError("roomId is required")
        return room_id
