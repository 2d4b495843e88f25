"""Chat router providing the WebSocket endpoint.

This module provides:
    - WebSocket /ws/chat: Real-time chat for an authenticated user

The endpoint only moves frames between the socket and the hub session; all
chat semantics live in ``app.chat.hub``.

Authentication:
    The bearer token is taken from the ``access_token`` query parameter or an
    ``Authorization: Bearer`` header. A missing or invalid token closes the
    socket with code 1008 before it is accepted; nothing is registered.

Protocol Message Types (client -> server):
    {"type": "JoinRoom" | "LeaveRoom" | "TypingStart" | "TypingStop", "roomId": 1}
    {"type": "SendMessage", "roomId": 1, "content": "hello"}
    {"type": "MarkRead", "messageId": 42}
    {"type": "Heartbeat"} / {"type": "GetConnectionInfo"}

Server -> client frames are ``{"type": <event>, "payload": {...}}``.
"""
import json
import logging
import uuid
from typing import Dict, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from .errors import DuplicateConnection, Unauthenticated
from .events import ClientCommand, ErrorNotice, ServerEvent

logger = logging.getLogger(__name__)

router = APIRouter()

INVALID_FORMAT = "Invalid message format"


class WebSocketTransport:
    """Maps connection ids to accepted WebSockets for the broadcast router."""

    def __init__(self) -> None:
        self._sockets: Dict[str, WebSocket] = {}

    def attach(self, connection_id: str, websocket: WebSocket) -> None:
        self._sockets[connection_id] = websocket

    def detach(self, connection_id: str) -> None:
        self._sockets.pop(connection_id, None)

    async def send(self, connection_id: str, message: dict) -> bool:
        websocket = self._sockets.get(connection_id)
        if websocket is None:
            return False
        await websocket.send_json(message)
        return True

    def __len__(self) -> int:
        return len(self._sockets)


def _extract_token(websocket: WebSocket) -> Optional[str]:
    token = websocket.query_params.get("access_token")
    if token:
        return token
    header = websocket.headers.get("authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return None


def _parse_command(raw: str) -> Optional[ClientCommand]:
    try:
        return ClientCommand.model_validate(json.loads(raw))
    except (ValueError, ValidationError):
        return None


@router.websocket("/ws/chat")
async def websocket_chat_endpoint(websocket: WebSocket) -> None:
    """WebSocket endpoint for real-time chat.

    Protocol Flow:
        1. Client connects with a bearer token -> token verified, socket
           accepted, connection registered with the hub
        2. Client sends JoinRoom -> JoinedRoom + LoadRecentMessages to the
           caller, UserJoined to the rest of the room
        3. Client sends SendMessage -> ReceiveMessage to the whole room
        4. On disconnect -> connection unregistered, UserLeft to its rooms

    Args:
        websocket: The WebSocket connection.
    """
    state = websocket.app.state
    hub = state.hub
    transport: WebSocketTransport = state.transport

    try:
        identity = state.identity.verify(_extract_token(websocket))
    except Unauthenticated:
        logger.warning("[WS] Rejecting connection without a valid token")
        await websocket.close(code=1008)  # 1008 = Policy Violation
        return

    connection_id = str(uuid.uuid4())
    await websocket.accept()
    transport.attach(connection_id, websocket)

    try:
        session = await hub.connect(connection_id, identity)
    except DuplicateConnection:
        logger.error(f"[WS] Connection id collision for {connection_id}")
        transport.detach(connection_id)
        await websocket.close(code=1011)
        return

    logger.info(f"[WS] Connection {connection_id} accepted for user {identity.user_id}")

    try:
        while True:
            raw = await websocket.receive_text()
            command = _parse_command(raw)
            if command is None:
                logger.debug(f"[WS] Invalid frame from {connection_id}: {raw[:200]}")
                await hub.router.send_to_connection(
                    connection_id, ServerEvent.ERROR, ErrorNotice(message=INVALID_FORMAT)
                )
                continue
            await session.dispatch(command)
    except WebSocketDisconnect:
        logger.info(f"[WS] Client {connection_id} disconnected")
    except Exception as e:
        logger.error(f"[WS] Error on connection {connection_id}: {e}")
    finally:
        transport.detach(connection_id)
        await session.disconnect()
