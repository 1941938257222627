"""Messaging router providing WebSocket and HTTP endpoints.

This module provides:
    - WebSocket /ws/messages: Real-time direct messaging
    - GET /api/messages/unread-counts: Unread snapshot {peerId: count}
    - GET /api/messages/unread/{other_user_id}: Unread count from one peer
    - GET /api/messages/{other_user_id}: Conversation history, oldest first
    - POST /api/messages/mark-read/{other_user_id}: Mark a peer's messages read

The REST endpoints serve the initial page load. They read the same ledger
through the same service as the WebSocket path, so a later
``unread-counts`` push always supersedes an earlier REST snapshot.
"""
import json
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from taskportal.auth.dependencies import CurrentUser, get_current_user, get_session_user_id

from .errors import MessagingError, ValidationError, handle_messaging_error
from .schemas import MarkReadResponse, UnreadCountResponse
from .service import MessagingService, get_messaging_service
from .session import MessagingSession

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/messages", tags=["messages"])
ws_router = APIRouter(tags=["messages"])


def _parse_user_id(raw: str) -> int:
    """Validate a user id taken from the URL path."""
    try:
        user_id = int(raw)
    except (TypeError, ValueError):
        raise ValidationError("Invalid user ID")
    if user_id <= 0:
        raise ValidationError("Invalid user ID")
    return user_id


@ws_router.websocket("/ws/messages")
async def websocket_messages_endpoint(
    websocket: WebSocket,
    service: MessagingService = Depends(get_messaging_service),
) -> None:
    """WebSocket endpoint for real-time direct messaging.

    Protocol Flow:
        1. Client connects with the session cookie, then sends
           {type: "register", userId}
           → Server sends: {type: "unread-counts", counts: {...}}
        2. Client sends {type: "send-message", receiverId, message}
           → Receiver connections get {type: "receive-message", ...message}
           → Receiver connections get {type: "unread-counts", ...}
           → Sender connection gets {type: "message-sent", ...message}
        3. Client sends {type: "mark-as-read", senderId}
           → Peer connections get {type: "messages-read", readerId}
           → Both users' connections get {type: "unread-counts", ...}
        4. On disconnect → connection leaves the presence registry
    """
    await websocket.accept()
    session = MessagingSession(websocket, service, get_session_user_id(websocket))
    logger.info("[WS] New messaging connection (session user=%s)", session.session_user_id)

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))

            # Binary frames carry the same UTF-8 JSON as text frames
            raw = message.get("text")
            if raw is None:
                try:
                    raw = (message.get("bytes") or b"").decode("utf-8")
                except UnicodeDecodeError:
                    await session.send_error("Invalid frame: not UTF-8")
                    continue
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                await session.send_error("Invalid frame: not JSON")
                continue
            logger.debug("[WS] user=%s received: type=%s", session.user_id,
                         data.get("type", "?") if isinstance(data, dict) else "?")
            await session.handle(data)
    except WebSocketDisconnect:
        logger.info("[WS] Client of user %s disconnected", session.user_id)
    finally:
        session.on_disconnect()


@router.get("/unread-counts")
async def get_unread_counts(
    user: CurrentUser = Depends(get_current_user),
    service: MessagingService = Depends(get_messaging_service),
) -> JSONResponse:
    """Unread messages addressed to the caller, grouped by sender.

    Returns:
        JSON object {peerId: count}; peers with nothing unread are absent.
    """
    try:
        counts = await service.unread_counts(user.id)
    except MessagingError as e:
        raise handle_messaging_error(e)
    return JSONResponse({str(peer_id): count for peer_id, count in counts.items()})


@router.get("/unread/{other_user_id}", response_model=UnreadCountResponse)
async def get_unread_from(
    other_user_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: MessagingService = Depends(get_messaging_service),
) -> UnreadCountResponse:
    """Unread messages the caller has from one peer."""
    try:
        count = await service.unread_count_from(user.id, _parse_user_id(other_user_id))
    except MessagingError as e:
        raise handle_messaging_error(e)
    return UnreadCountResponse(count=count)


@router.post("/mark-read/{other_user_id}", response_model=MarkReadResponse)
async def mark_read(
    other_user_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: MessagingService = Depends(get_messaging_service),
) -> MarkReadResponse:
    """Mark everything a peer sent to the caller as read.

    Triggers the same read receipt and unread pushes as the WebSocket
    ``mark-as-read`` event.
    """
    try:
        count = await service.mark_conversation_read(user.id, _parse_user_id(other_user_id))
    except MessagingError as e:
        raise handle_messaging_error(e)
    return MarkReadResponse(count=count)


@router.get("/{other_user_id}")
async def get_history(
    other_user_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: MessagingService = Depends(get_messaging_service),
) -> JSONResponse:
    """Conversation between the caller and a peer, oldest first."""
    try:
        messages = await service.history(user.id, _parse_user_id(other_user_id))
    except MessagingError as e:
        raise handle_messaging_error(e)
    return JSONResponse([m.model_dump(mode="json") for m in messages])
