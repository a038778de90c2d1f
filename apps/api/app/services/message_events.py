"""Message events facade.

Conversation services publish through this module so they do not depend on
the WebSocket hub directly. Publishing happens after commit and never fails
the operation that triggered it.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol
from uuid import UUID

from app.core.structured_logging import build_log_context
from app.core.websocket import NEW_MESSAGE_EVENT, STATE_UPDATED_EVENT
from app.db.models import Message
from app.schemas.conversation import MessageRead

logger = logging.getLogger(__name__)


class MessageEventPublisher(Protocol):
    def emit(self, conversation_id: UUID | str, event_type: str, data: dict[str, Any]) -> None:
        ...


def new_message_payload(message: Message) -> dict[str, Any]:
    """``{conversationId, message}`` as delivered to room subscribers."""
    return {
        "conversationId": str(message.conversation_id),
        "message": MessageRead.model_validate(message).model_dump(mode="json"),
    }


def publish_state_update(
    publisher: MessageEventPublisher | None, conversation_id: UUID, health_state: str | None
) -> None:
    """Emit ``conversation-state-updated`` with the health consultation state."""
    if publisher is None:
        return
    try:
        publisher.emit(
            conversation_id,
            STATE_UPDATED_EVENT,
            {"conversationId": str(conversation_id), "healthConsultationState": health_state},
        )
    except Exception:
        logger.warning(
            "Failed to publish conversation-state-updated event",
            exc_info=True,
            extra=build_log_context(conversation_id=conversation_id),
        )


def publish_new_message(publisher: MessageEventPublisher | None, message: Message) -> None:
    """Emit ``new-message`` to the conversation room."""
    if publisher is None:
        return
    try:
        publisher.emit(message.conversation_id, NEW_MESSAGE_EVENT, new_message_payload(message))
    except Exception:
        logger.warning(
            "Failed to publish new-message event",
            exc_info=True,
            extra=build_log_context(
                conversation_id=message.conversation_id, message_id=message.id
            ),
        )
