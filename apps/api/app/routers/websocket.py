"""
WebSocket router for real-time conversation events.

Provides a WebSocket endpoint that:
1. Authenticates users via JWT query parameter or session cookie
2. Lets clients join and leave conversation rooms they can read
3. Pushes ``new-message`` events for the joined rooms
"""

import json
import logging
from uuid import UUID

import anyio
from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect

from app.core.deps import (
    COOKIE_NAME,
    ensure_active_user,
    get_event_hub,
    get_session_factory,
    principal_from_token,
)
from app.core.exceptions import AppError
from app.core.websocket import ConversationEventHub
from app.schemas.auth import Principal
from app.services import conversation_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ws", tags=["WebSocket"])

JOIN_COMMAND = "join-conversation"
LEAVE_COMMAND = "leave-conversation"


def _check_active(session_factory, principal: Principal) -> None:
    db = session_factory()
    try:
        ensure_active_user(db, principal)
    finally:
        db.close()


def _check_room_access(session_factory, principal: Principal, conversation_id: UUID) -> None:
    db = session_factory()
    try:
        conversation_service.get_conversation_for(db, principal, conversation_id)
    finally:
        db.close()


@router.websocket("/conversations")
async def websocket_conversations(
    websocket: WebSocket,
    token: str | None = Query(None),
    hub: ConversationEventHub = Depends(get_event_hub),
    session_factory=Depends(get_session_factory),
):
    """
    Conversation event stream.

    Client commands (JSON text frames):
    - ``{"type": "join-conversation", "conversationId": "..."}``
    - ``{"type": "leave-conversation", "conversationId": "..."}``
    - ``ping`` (plain text) -> ``pong``

    Server events: ``{"type": "new-message", "data": {conversationId, message}}``.
    """
    try:
        principal = principal_from_token(token or websocket.cookies.get(COOKIE_NAME))
        await anyio.to_thread.run_sync(_check_active, session_factory, principal)
    except AppError:
        await websocket.close(code=4001, reason="Authentication required")
        return

    await hub.connect(websocket)

    try:
        while True:
            try:
                raw = await websocket.receive_text()
            except WebSocketDisconnect:
                break

            if raw == "ping":
                await websocket.send_text("pong")
                continue

            try:
                command = json.loads(raw)
                command_type = command["type"]
                conversation_id = UUID(str(command["conversationId"]))
            except (ValueError, KeyError, TypeError):
                await websocket.send_json({"type": "error", "detail": "Invalid command"})
                continue

            if command_type == JOIN_COMMAND:
                try:
                    await anyio.to_thread.run_sync(
                        _check_room_access, session_factory, principal, conversation_id
                    )
                except AppError as exc:
                    await websocket.send_json(
                        {"type": "error", "detail": exc.message, "conversationId": str(conversation_id)}
                    )
                    continue
                room = await hub.join(websocket, conversation_id)
                await websocket.send_json({"type": "joined", "room": room})
            elif command_type == LEAVE_COMMAND:
                room = await hub.leave(websocket, conversation_id)
                await websocket.send_json({"type": "left", "room": room})
            else:
                await websocket.send_json({"type": "error", "detail": "Unknown command"})
    finally:
        await hub.disconnect(websocket)
        logger.debug("WebSocket closed for user %s", principal.id)
