"""DuckDB-based chat storage service.

Persists users, chat rooms, room membership, messages and read receipts in a
single embedded DuckDB database.

Database Schema:
    users table:
        - id: Identity provider subject (primary key)
        - user_name, email, full_name: Profile fields
        - created_at, last_active: UTC timestamps
    chat_rooms table:
        - id: Sequence-backed primary key
        - name, created_at
    chat_room_users table:
        - (chat_room_id, user_id) primary key, joined_at
    messages table:
        - id: Sequence-backed primary key
        - chat_room_id, sender_id, content, sent_at
        - sentiment_score, sentiment_label: Annotation at send time
    message_reads table:
        - (message_id, user_id) primary key, read_at

A message counts as read for a user when the user sent it or has a row in
message_reads.

Thread Safety:
    One DuckDB connection is shared and every statement runs under a
    ``threading.Lock``, so the service can be called from worker threads
    (the async gateway uses ``asyncio.to_thread``).

Usage:
    service = ChatStorageService(":memory:")
    room = service.create_room("General", creator_id="u1", member_ids=["u2"])
    message = service.add_message(room.id, "u1", "hello", "0.00", "neutral")
"""
import logging
import threading
from datetime import datetime, timezone
from typing import Iterable, List, Optional

import duckdb

from .schemas import ChatRoomRecord, MessageWithStatus, RoomSummary, StoredMessage, UserRecord

logger = logging.getLogger(__name__)

_MESSAGE_COLUMNS = """
    m.id, m.chat_room_id, m.sender_id, m.content, m.sent_at,
    m.sentiment_score, m.sentiment_label,
    COALESCE(u.user_name, ''), COALESCE(u.full_name, '')
"""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _message_from_row(row) -> StoredMessage:
    return StoredMessage(
        id=row[0],
        room_id=row[1],
        sender_id=row[2],
        content=row[3],
        sent_at=row[4],
        sentiment_score=row[5],
        sentiment_label=row[6],
        sender_user_name=row[7],
        sender_full_name=row[8],
    )


def _user_from_row(row) -> UserRecord:
    return UserRecord(
        id=row[0],
        user_name=row[1],
        email=row[2],
        full_name=row[3] or "",
        created_at=row[4],
        last_active=row[5],
    )


class ChatStorageService:
    """Synchronous DuckDB store for rooms, users, messages and receipts.

    Args:
        db_path: Path to the DuckDB file, or ``:memory:``.
    """

    def __init__(self, db_path: str = "huddle.duckdb") -> None:
        self._db_path = db_path
        self._lock = threading.Lock()
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._initialize_db()

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            self._connection = duckdb.connect(self._db_path)
        return self._connection

    def _initialize_db(self) -> None:
        """Create sequences and tables if they don't exist (idempotent)."""
        with self._lock:
            conn = self._get_connection()
            conn.execute("CREATE SEQUENCE IF NOT EXISTS chat_rooms_seq START 1")
            conn.execute("CREATE SEQUENCE IF NOT EXISTS messages_seq START 1")
            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id VARCHAR PRIMARY KEY,
                    user_name VARCHAR NOT NULL,
                    email VARCHAR,
                    full_name VARCHAR,
                    created_at TIMESTAMP NOT NULL,
                    last_active TIMESTAMP NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS chat_rooms (
                    id INTEGER DEFAULT nextval('chat_rooms_seq') PRIMARY KEY,
                    name VARCHAR NOT NULL,
                    created_at TIMESTAMP NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS chat_room_users (
                    chat_room_id INTEGER NOT NULL,
                    user_id VARCHAR NOT NULL,
                    joined_at TIMESTAMP NOT NULL,
                    PRIMARY KEY (chat_room_id, user_id)
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS messages (
                    id INTEGER DEFAULT nextval('messages_seq') PRIMARY KEY,
                    chat_room_id INTEGER NOT NULL,
                    sender_id VARCHAR NOT NULL,
                    content VARCHAR NOT NULL,
                    sent_at TIMESTAMP NOT NULL,
                    sentiment_score VARCHAR,
                    sentiment_label VARCHAR
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS message_reads (
                    message_id INTEGER NOT NULL,
                    user_id VARCHAR NOT NULL,
                    read_at TIMESTAMP NOT NULL,
                    PRIMARY KEY (message_id, user_id)
                )
            """)

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None

    # =========================================================================
    # Users
    # =========================================================================

    def upsert_user(
        self,
        user_id: str,
        user_name: Optional[str] = None,
        full_name: Optional[str] = None,
        email: Optional[str] = None,
    ) -> UserRecord:
        """Create the user on first sight, otherwise refresh last_active.

        Profile fields are only overwritten when a non-empty value is given.
        """
        now = _utcnow()
        with self._lock:
            conn = self._get_connection()
            if self._user_exists(conn, user_id):
                row = conn.execute(
                    """
                    UPDATE users SET
                        last_active = ?,
                        user_name = COALESCE(?, user_name),
                        full_name = COALESCE(?, full_name),
                        email = COALESCE(?, email)
                    WHERE id = ?
                    RETURNING id, user_name, email, full_name, created_at, last_active
                    """,
                    [now, user_name or None, full_name or None, email, user_id],
                ).fetchone()
            else:
                row = conn.execute(
                    """
                    INSERT INTO users (id, user_name, email, full_name, created_at, last_active)
                    VALUES (?, ?, ?, ?, ?, ?)
                    RETURNING id, user_name, email, full_name, created_at, last_active
                    """,
                    [user_id, user_name or user_id, email, full_name or "", now, now],
                ).fetchone()
        return _user_from_row(row)

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        with self._lock:
            row = self._get_connection().execute(
                "SELECT id, user_name, email, full_name, created_at, last_active FROM users WHERE id = ?",
                [user_id],
            ).fetchone()
        return _user_from_row(row) if row else None

    def list_users(self) -> List[UserRecord]:
        with self._lock:
            rows = self._get_connection().execute(
                "SELECT id, user_name, email, full_name, created_at, last_active FROM users ORDER BY user_name"
            ).fetchall()
        return [_user_from_row(row) for row in rows]

    # =========================================================================
    # Rooms and membership
    # =========================================================================

    def create_room(
        self, name: str, creator_id: str, member_ids: Iterable[str] = ()
    ) -> ChatRoomRecord:
        """Create a room with the creator and any known users as members.

        Unknown user ids in ``member_ids`` are skipped.
        """
        now = _utcnow()
        with self._lock:
            conn = self._get_connection()
            room_id = conn.execute(
                "INSERT INTO chat_rooms (name, created_at) VALUES (?, ?) RETURNING id",
                [name, now],
            ).fetchone()[0]

            requested = [creator_id] + [uid for uid in member_ids if uid != creator_id]
            for user_id in dict.fromkeys(requested):
                if user_id != creator_id and not self._user_exists(conn, user_id):
                    logger.info(f"[Storage] Skipping unknown user {user_id} for room {room_id}")
                    continue
                conn.execute(
                    "INSERT OR IGNORE INTO chat_room_users (chat_room_id, user_id, joined_at) VALUES (?, ?, ?)",
                    [room_id, user_id, now],
                )
            members = self._members(conn, room_id)

        logger.info(f"[Storage] Created room {room_id} '{name}' with {len(members)} members")
        return ChatRoomRecord(id=room_id, name=name, created_at=now, member_ids=members)

    def get_room(self, room_id: int) -> Optional[ChatRoomRecord]:
        with self._lock:
            conn = self._get_connection()
            row = conn.execute(
                "SELECT id, name, created_at FROM chat_rooms WHERE id = ?", [room_id]
            ).fetchone()
            if row is None:
                return None
            members = self._members(conn, room_id)
        return ChatRoomRecord(id=row[0], name=row[1], created_at=row[2], member_ids=members)

    def add_member(self, room_id: int, user_id: str) -> bool:
        """Add a known user to a room. Returns False for an unknown user."""
        with self._lock:
            conn = self._get_connection()
            if not self._user_exists(conn, user_id):
                return False
            conn.execute(
                "INSERT OR IGNORE INTO chat_room_users (chat_room_id, user_id, joined_at) VALUES (?, ?, ?)",
                [room_id, user_id, _utcnow()],
            )
        return True

    def remove_member(self, room_id: int, user_id: str) -> bool:
        """Remove a user from a room. Returns False if they were not a member."""
        with self._lock:
            conn = self._get_connection()
            existed = self._is_member(conn, user_id, room_id)
            conn.execute(
                "DELETE FROM chat_room_users WHERE chat_room_id = ? AND user_id = ?",
                [room_id, user_id],
            )
        return existed

    def is_room_member(self, user_id: str, room_id: int) -> bool:
        with self._lock:
            return self._is_member(self._get_connection(), user_id, room_id)

    def room_exists(self, room_id: int) -> bool:
        with self._lock:
            return self._get_connection().execute(
                "SELECT 1 FROM chat_rooms WHERE id = ?", [room_id]
            ).fetchone() is not None

    def rooms_for_user(self, user_id: str) -> List[int]:
        with self._lock:
            rows = self._get_connection().execute(
                "SELECT chat_room_id FROM chat_room_users WHERE user_id = ? ORDER BY chat_room_id",
                [user_id],
            ).fetchall()
        return [row[0] for row in rows]

    def room_summaries(self, user_id: str) -> List[RoomSummary]:
        """Rooms the user belongs to, with message and unread counts."""
        with self._lock:
            conn = self._get_connection()
            rows = conn.execute(
                """
                SELECT c.id, c.name, c.created_at,
                    (SELECT COUNT(*) FROM messages m WHERE m.chat_room_id = c.id),
                    (SELECT COUNT(*) FROM messages m
                        WHERE m.chat_room_id = c.id
                          AND m.sender_id <> ?
                          AND NOT EXISTS (
                              SELECT 1 FROM message_reads r
                              WHERE r.message_id = m.id AND r.user_id = ?
                          )),
                    (SELECT m.content FROM messages m
                        WHERE m.chat_room_id = c.id
                        ORDER BY m.sent_at DESC, m.id DESC LIMIT 1)
                FROM chat_rooms c
                JOIN chat_room_users cu ON cu.chat_room_id = c.id
                WHERE cu.user_id = ?
                ORDER BY c.id
                """,
                [user_id, user_id, user_id],
            ).fetchall()
            summaries = [
                RoomSummary(
                    room=ChatRoomRecord(
                        id=row[0], name=row[1], created_at=row[2], member_ids=self._members(conn, row[0])
                    ),
                    message_count=row[3],
                    unread_count=row[4],
                    last_message=row[5],
                )
                for row in rows
            ]
        return summaries

    # =========================================================================
    # Messages and read receipts
    # =========================================================================

    def add_message(
        self,
        room_id: int,
        sender_id: str,
        content: str,
        sentiment_score: Optional[str] = None,
        sentiment_label: Optional[str] = None,
    ) -> StoredMessage:
        now = _utcnow()
        with self._lock:
            conn = self._get_connection()
            message_id = conn.execute(
                """
                INSERT INTO messages (chat_room_id, sender_id, content, sent_at, sentiment_score, sentiment_label)
                VALUES (?, ?, ?, ?, ?, ?)
                RETURNING id
                """,
                [room_id, sender_id, content, now, sentiment_score, sentiment_label],
            ).fetchone()[0]
            row = conn.execute(
                f"""
                SELECT {_MESSAGE_COLUMNS}
                FROM messages m LEFT JOIN users u ON u.id = m.sender_id
                WHERE m.id = ?
                """,
                [message_id],
            ).fetchone()
        return _message_from_row(row)

    def get_messages(
        self, room_id: int, user_id: str, page: int = 1, page_size: int = 20
    ) -> List[MessageWithStatus]:
        """One page of a room's history with the user's read status.

        Page 1 holds the newest messages; within a page messages are
        returned oldest first.
        """
        page = max(page, 1)
        offset = (page - 1) * page_size
        with self._lock:
            rows = self._get_connection().execute(
                f"""
                SELECT {_MESSAGE_COLUMNS},
                    (m.sender_id = ? OR r.message_id IS NOT NULL) AS is_read
                FROM messages m
                LEFT JOIN users u ON u.id = m.sender_id
                LEFT JOIN message_reads r ON r.message_id = m.id AND r.user_id = ?
                WHERE m.chat_room_id = ?
                ORDER BY m.sent_at DESC, m.id DESC
                LIMIT ? OFFSET ?
                """,
                [user_id, user_id, room_id, page_size, offset],
            ).fetchall()
        rows.reverse()
        return [MessageWithStatus(message=_message_from_row(row), is_read=bool(row[9])) for row in rows]

    def resolve_message_room(self, message_id: int) -> Optional[int]:
        with self._lock:
            row = self._get_connection().execute(
                "SELECT chat_room_id FROM messages WHERE id = ?", [message_id]
            ).fetchone()
        return row[0] if row else None

    def mark_message_read(self, message_id: int, user_id: str) -> bool:
        """Record a read receipt. Returns True if it was newly recorded."""
        with self._lock:
            conn = self._get_connection()
            existing = conn.execute(
                "SELECT 1 FROM message_reads WHERE message_id = ? AND user_id = ?",
                [message_id, user_id],
            ).fetchone()
            if existing:
                return False
            conn.execute(
                "INSERT OR IGNORE INTO message_reads (message_id, user_id, read_at) VALUES (?, ?, ?)",
                [message_id, user_id, _utcnow()],
            )
        return True

    def mark_all_read(self, room_id: int, user_id: str) -> int:
        """Mark every unread message from other senders as read.

        Returns:
            Number of receipts recorded.
        """
        with self._lock:
            conn = self._get_connection()
            unread = conn.execute(
                """
                SELECT m.id FROM messages m
                WHERE m.chat_room_id = ? AND m.sender_id <> ?
                  AND NOT EXISTS (
                      SELECT 1 FROM message_reads r WHERE r.message_id = m.id AND r.user_id = ?
                  )
                """,
                [room_id, user_id, user_id],
            ).fetchall()
            now = _utcnow()
            for (message_id,) in unread:
                conn.execute(
                    "INSERT OR IGNORE INTO message_reads (message_id, user_id, read_at) VALUES (?, ?, ?)",
                    [message_id, user_id, now],
                )
        return len(unread)

    # =========================================================================
    # Internal (caller holds the lock)
    # =========================================================================

    @staticmethod
    def _user_exists(conn: duckdb.DuckDBPyConnection, user_id: str) -> bool:
        return conn.execute("SELECT 1 FROM users WHERE id = ?", [user_id]).fetchone() is not None

    @staticmethod
    def _is_member(conn: duckdb.DuckDBPyConnection, user_id: str, room_id: int) -> bool:
        return conn.execute(
            "SELECT 1 FROM chat_room_users WHERE chat_room_id = ? AND user_id = ?",
            [room_id, user_id],
        ).fetchone() is not None

    @staticmethod
    def _members(conn: duckdb.DuckDBPyConnection, room_id: int) -> List[str]:
        rows = conn.execute(
            "SELECT user_id FROM chat_room_users WHERE chat_room_id = ? ORDER BY joined_at, user_id",
            [room_id],
        ).fetchall()
        return [row[0] for row in rows]
