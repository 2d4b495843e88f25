"""Shared test fixtures and configuration for backend tests."""
import asyncio
import itertools
from datetime import datetime
from typing import Dict, List, Optional, Set

import pytest
from fastapi.testclient import TestClient

from app.auth.service import TokenIdentityService, UserIdentity
from app.chat.broadcast import BroadcastRouter
from app.chat.hub import ChatHub
from app.chat.membership import RoomMembershipAuthority
from app.chat.registry import ConnectionRegistry
from app.config import AppSettings, ChatSettings, SentimentSettings, StorageSettings
from app.main import create_app
from app.sentiment.service import SentimentAnnotator, SentimentScores
from app.storage.schemas import MessageWithStatus, StoredMessage
from app.storage.service import ChatStorageService

TEST_SECRET = "test-secret"


# =============================================================================
# Fakes
# =============================================================================


class FakeChatStore:
    """In-memory ChatStore with switchable failures."""

    def __init__(self) -> None:
        self.members: Dict[int, Set[str]] = {}
        self.messages: List[StoredMessage] = []
        self.reads: Set[tuple] = set()
        self.activity: List[str] = []
        self.fail_membership = False
        self.fail_add_message = False
        self.fail_recent = False
        self.fail_activity = False
        self.recent_gate: Optional[asyncio.Event] = None
        self.recent_started = asyncio.Event()
        self._ids = itertools.count(1)

    def add_member(self, room_id: int, user_id: str) -> None:
        self.members.setdefault(room_id, set()).add(user_id)

    def remove_member(self, room_id: int, user_id: str) -> None:
        self.members.get(room_id, set()).discard(user_id)

    async def is_room_member(self, user_id: str, room_id: int) -> bool:
        if self.fail_membership:
            raise RuntimeError("database is locked")
        return user_id in self.members.get(room_id, set())

    async def room_exists(self, room_id: int) -> bool:
        return room_id in self.members

    async def add_message(self, room_id, sender_id, content, sentiment_score, sentiment_label):
        if self.fail_add_message:
            raise RuntimeError("disk full")
        message = StoredMessage(
            id=next(self._ids),
            room_id=room_id,
            sender_id=sender_id,
            content=content,
            sent_at=datetime(2024, 1, 1, 12, 0, len(self.messages) % 60),
            sentiment_score=sentiment_score,
            sentiment_label=sentiment_label,
            sender_user_name=sender_id,
        )
        self.messages.append(message)
        return message

    async def recent_messages_with_read_status(self, room_id, user_id, page, page_size):
        if self.fail_recent:
            raise RuntimeError("timeout")
        self.recent_started.set()
        if self.recent_gate is not None:
            await self.recent_gate.wait()
        in_room = [m for m in self.messages if m.room_id == room_id]
        newest_first = list(reversed(in_room))[(page - 1) * page_size:page * page_size]
        return [
            MessageWithStatus(
                message=m,
                is_read=m.sender_id == user_id or (m.id, user_id) in self.reads,
            )
            for m in reversed(newest_first)
        ]

    async def mark_message_read(self, message_id: int, user_id: str) -> bool:
        key = (message_id, user_id)
        if key in self.reads:
            return False
        self.reads.add(key)
        return True

    async def resolve_message_room(self, message_id: int) -> Optional[int]:
        for message in self.messages:
            if message.id == message_id:
                return message.room_id
        return None

    async def record_activity(self, user_id, user_name, full_name) -> None:
        if self.fail_activity:
            raise RuntimeError("read-only")
        self.activity.append(user_id)

    async def rooms_for_user(self, user_id: str) -> List[int]:
        return sorted(room for room, users in self.members.items() if user_id in users)


class RecordingTransport:
    """ConnectionTransport that records every envelope per connection."""

    def __init__(self) -> None:
        self.sent: Dict[str, List[dict]] = {}
        self.closed: Set[str] = set()
        self.failing: Set[str] = set()

    def open(self, connection_id: str) -> None:
        self.sent.setdefault(connection_id, [])

    def close(self, connection_id: str) -> None:
        self.closed.add(connection_id)

    async def send(self, connection_id: str, message: dict) -> bool:
        if connection_id in self.failing:
            raise ConnectionResetError("peer went away")
        if connection_id in self.closed:
            return False
        self.sent.setdefault(connection_id, []).append(message)
        return True

    def types(self, connection_id: str) -> List[str]:
        return [m["type"] for m in self.sent.get(connection_id, [])]

    def of_type(self, connection_id: str, event_type: str) -> List[dict]:
        return [m for m in self.sent.get(connection_id, []) if m["type"] == event_type]

    def clear(self) -> None:
        for messages in self.sent.values():
            messages.clear()


class FakeScorer:
    """Scorer returning a fixed result, or raising when told to."""

    def __init__(self, label: str = "positive", positive: float = 0.91, negative: float = 0.0):
        self.scores = SentimentScores(label=label, positive=positive, negative=negative)
        self.calls: List[str] = []
        self.error: Optional[Exception] = None

    async def analyze(self, text: str) -> SentimentScores:
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        return self.scores


# =============================================================================
# Hub fixtures
# =============================================================================


@pytest.fixture
def registry():
    return ConnectionRegistry()


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def router(registry, transport):
    return BroadcastRouter(registry, transport)


@pytest.fixture
def store():
    return FakeChatStore()


@pytest.fixture
def scorer():
    return FakeScorer()


@pytest.fixture
def hub(registry, router, store, scorer):
    return ChatHub(
        registry=registry,
        router=router,
        membership=RoomMembershipAuthority(store),
        store=store,
        annotator=SentimentAnnotator(scorer, timeout_seconds=0.5),
        recent_page_size=20,
        max_message_length=100,
    )


@pytest.fixture
def identity_for():
    def _identity(user_id: str) -> UserIdentity:
        return UserIdentity(user_id=user_id, user_name=user_id, full_name=user_id.title())
    return _identity


# =============================================================================
# Application fixtures
# =============================================================================


@pytest.fixture
def token_service():
    return TokenIdentityService(secret_key=TEST_SECRET)


@pytest.fixture
def storage_service():
    service = ChatStorageService(":memory:")
    yield service
    service.close()


@pytest.fixture
def seeded_storage(storage_service):
    """Alice and Bob share room 'General'; Carol exists but is not a member."""
    storage_service.upsert_user("alice", "alice", "Alice Smith", "alice@example.com")
    storage_service.upsert_user("bob", "bob", "Bob Jones")
    storage_service.upsert_user("carol", "carol", "Carol White")
    storage_service.create_room("General", creator_id="alice", member_ids=["bob"])
    return storage_service


@pytest.fixture
def api_client(seeded_storage, token_service, scorer):
    """TestClient for a fully wired app over in-memory storage."""
    settings = AppSettings(
        storage=StorageSettings(db_path=":memory:"),
        chat=ChatSettings(recent_messages_page_size=20),
        sentiment=SentimentSettings(enabled=False),
    )
    app = create_app(settings, storage=seeded_storage, scorer=scorer, identity=token_service)
    with TestClient(app) as client:
        yield client


@pytest.fixture
def auth_headers(token_service):
    def _headers(user_id: str) -> dict:
        token = token_service.create_token(user_id, preferred_username=user_id)
        return {"Authorization": f"Bearer {token}"}
    return _headers
