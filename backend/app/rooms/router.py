"""Chat rooms and users HTTP API.

Endpoints:
    GET    /api/chatrooms: Rooms for the caller with message and unread counts
    GET    /api/chatrooms/{room_id}: One room (404 unknown, 403 non-member)
    POST   /api/chatrooms: Create a room; the caller is always a member
    POST   /api/chatrooms/{room_id}/users: Add a user to a room
    DELETE /api/chatrooms/{room_id}/users/{user_id}: Remove a user from a room
    POST   /api/chatrooms/{room_id}/read: Mark every message in the room read
    GET    /api/chatrooms/{room_id}/messages: Paginated history with read status
    GET    /api/users: All known users
    GET    /api/users/{user_id}: One user

Every endpoint requires an ``Authorization: Bearer`` token (401 otherwise).
Membership changes made here take effect for live connections at their next
join or send, when membership is re-checked.
"""
import logging
from typing import Dict, List

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status

from app.auth.service import UserIdentity
from app.chat.errors import Unauthenticated
from app.chat.hub import message_view
from app.storage.gateway import ChatStoreGateway
from app.storage.schemas import ChatRoomRecord, RoomSummary, UserRecord

from .schemas import (
    AddUserRequest,
    ChatRoomResponse,
    CreateChatRoomRequest,
    MessagesPage,
    UserSummary,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chatrooms", tags=["chatrooms"])
users_router = APIRouter(prefix="/api/users", tags=["users"])

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


# =============================================================================
# Dependencies
# =============================================================================


def get_store(request: Request) -> ChatStoreGateway:
    return request.app.state.store


async def get_current_user(request: Request) -> UserIdentity:
    """Verify the bearer token and record the caller's activity."""
    header = request.headers.get("authorization", "")
    token = header[7:].strip() if header.lower().startswith("bearer ") else None
    try:
        identity = request.app.state.identity.verify(token)
    except Unauthenticated:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    await request.app.state.store.record_activity(identity.user_id, identity.user_name, identity.full_name)
    return identity


async def _require_room_member(store: ChatStoreGateway, room_id: int, user_id: str) -> ChatRoomRecord:
    room = await store.get_room(room_id)
    if room is None:
        raise HTTPException(status_code=404, detail=f"Chat room {room_id} not found")
    if user_id not in room.member_ids:
        raise HTTPException(status_code=403, detail="You are not a member of this chat room")
    return room


async def _users_by_id(store: ChatStoreGateway) -> Dict[str, UserRecord]:
    return {user.id: user for user in await store.list_users()}


def _room_response(summary: RoomSummary, users: Dict[str, UserRecord]) -> ChatRoomResponse:
    room = summary.room
    return ChatRoomResponse(
        id=room.id,
        name=room.name,
        createdAt=room.created_at,
        users=[UserSummary.from_record(users[uid]) for uid in room.member_ids if uid in users],
        messageCount=summary.message_count,
        unreadCount=summary.unread_count,
        lastMessage=summary.last_message,
    )


# =============================================================================
# Chat rooms
# =============================================================================


@router.get("", response_model=List[ChatRoomResponse])
async def list_chat_rooms(
    user: UserIdentity = Depends(get_current_user),
    store: ChatStoreGateway = Depends(get_store),
) -> List[ChatRoomResponse]:
    summaries = await store.room_summaries(user.user_id)
    users = await _users_by_id(store)
    return [_room_response(summary, users) for summary in summaries]


@router.get("/{room_id}", response_model=ChatRoomResponse)
async def get_chat_room(
    room_id: int,
    user: UserIdentity = Depends(get_current_user),
    store: ChatStoreGateway = Depends(get_store),
) -> ChatRoomResponse:
    room = await _require_room_member(store, room_id, user.user_id)
    summary = next(
        (s for s in await store.room_summaries(user.user_id) if s.room.id == room_id),
        RoomSummary(room=room),
    )
    return _room_response(summary, await _users_by_id(store))


@router.post("", response_model=ChatRoomResponse, status_code=status.HTTP_201_CREATED)
async def create_chat_room(
    request: CreateChatRoomRequest,
    user: UserIdentity = Depends(get_current_user),
    store: ChatStoreGateway = Depends(get_store),
) -> ChatRoomResponse:
    """Create a room. Unknown user ids in ``userIds`` are skipped."""
    room = await store.create_room(request.name, user.user_id, request.userIds)
    logger.info(f"[Rooms] User {user.user_id} created room {room.id} '{room.name}'")
    return _room_response(RoomSummary(room=room), await _users_by_id(store))


@router.post("/{room_id}/users", status_code=status.HTTP_204_NO_CONTENT)
async def add_user_to_room(
    room_id: int,
    request: AddUserRequest,
    user: UserIdentity = Depends(get_current_user),
    store: ChatStoreGateway = Depends(get_store),
) -> Response:
    await _require_room_member(store, room_id, user.user_id)
    if not await store.add_member(room_id, request.userId):
        raise HTTPException(status_code=404, detail=f"User {request.userId} not found")
    logger.info(f"[Rooms] User {user.user_id} added {request.userId} to room {room_id}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/{room_id}/users/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_user_from_room(
    room_id: int,
    user_id: str,
    user: UserIdentity = Depends(get_current_user),
    store: ChatStoreGateway = Depends(get_store),
) -> Response:
    """Remove a member. Members may remove anyone, including themselves."""
    room = await store.get_room(room_id)
    if room is None:
        raise HTTPException(status_code=404, detail=f"Chat room {room_id} not found")
    if user.user_id != user_id and user.user_id not in room.member_ids:
        raise HTTPException(status_code=403, detail="You are not a member of this chat room")
    if not await store.remove_member(room_id, user_id):
        raise HTTPException(status_code=404, detail=f"User {user_id} is not a member of this chat room")
    logger.info(f"[Rooms] User {user.user_id} removed {user_id} from room {room_id}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{room_id}/read", status_code=status.HTTP_204_NO_CONTENT)
async def mark_room_read(
    room_id: int,
    user: UserIdentity = Depends(get_current_user),
    store: ChatStoreGateway = Depends(get_store),
) -> Response:
    await _require_room_member(store, room_id, user.user_id)
    marked = await store.mark_all_read(room_id, user.user_id)
    logger.debug(f"[Rooms] Marked {marked} messages read in room {room_id} for {user.user_id}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{room_id}/messages", response_model=MessagesPage)
async def get_room_messages(
    room_id: int,
    page: int = Query(1, ge=1, description="1-based page, page 1 is the newest"),
    pageSize: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE, description="Messages per page"),
    user: UserIdentity = Depends(get_current_user),
    store: ChatStoreGateway = Depends(get_store),
) -> MessagesPage:
    await _require_room_member(store, room_id, user.user_id)
    items = await store.recent_messages_with_read_status(room_id, user.user_id, page, pageSize)
    return MessagesPage(
        messages=[message_view(item.message, is_read=item.is_read) for item in items],
        page=page,
        pageSize=pageSize,
        hasMore=len(items) == pageSize,
    )


# =============================================================================
# Users
# =============================================================================


@users_router.get("", response_model=List[UserSummary])
async def list_users(
    user: UserIdentity = Depends(get_current_user),
    store: ChatStoreGateway = Depends(get_store),
) -> List[UserSummary]:
    return [UserSummary.from_record(record) for record in await store.list_users()]


@users_router.get("/{user_id}", response_model=UserSummary)
async def get_user(
    user_id: str,
    user: UserIdentity = Depends(get_current_user),
    store: ChatStoreGateway = Depends(get_store),
) -> UserSummary:
    record = await store.get_user(user_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"User {user_id} not found")
    return UserSummary.from_record(record)
