"""Room membership checks used to authorize join and send."""
import logging

from .errors import NotAuthorized, RoomNotFound, UpstreamUnavailable
from .ports import ChatStore

logger = logging.getLogger(__name__)


class RoomMembershipAuthority:
    """Read-through membership check over the storage collaborator.

    Nothing is cached: a user can be removed from a room between two joins,
    so every call goes to storage.
    """

    def __init__(self, store: ChatStore) -> None:
        self._store = store

    async def is_member(self, user_id: str, room_id: int) -> bool:
        """Return True if the user is currently a member of the room.

        Raises:
            UpstreamUnavailable: If the storage query fails.
        """
        try:
            return await self._store.is_room_member(user_id, room_id)
        except UpstreamUnavailable:
            raise
        except Exception as e:
            logger.error(f"[Membership] Lookup failed for user {user_id} in room {room_id}: {e}")
            raise UpstreamUnavailable(f"Failed to verify room membership: {e}") from e

    async def ensure_member(self, user_id: str, room_id: int) -> None:
        """Raise NotAuthorized unless the user is a member of the room."""
        if not await self.is_member(user_id, room_id):
            logger.warning(f"[Membership] User {user_id} is not a member of chat room {room_id}")
            raise NotAuthorized()

    async def ensure_joinable(self, user_id: str, room_id: int) -> None:
        """Like ensure_member, but tells a missing room apart from a non-member.

        Raises:
            RoomNotFound: If the room does not exist.
            NotAuthorized: If the room exists and the user is not a member.
        """
        if await self.is_member(user_id, room_id):
            return
        try:
            exists = await self._store.room_exists(room_id)
        except Exception as e:
            logger.error(f"[Membership] Room lookup failed for room {room_id}: {e}")
            raise UpstreamUnavailable(f"Failed to look up chat room: {e}") from e
        if not exists:
            logger.warning(f"[Membership] User {user_id} tried to join missing chat room {room_id}")
            raise RoomNotFound(room_id)
        logger.warning(f"[Membership] User {user_id} is not a member of chat room {room_id}")
        raise NotAuthorized()
