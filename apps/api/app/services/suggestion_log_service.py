"""Suggestion usage log - how managers use AI reply suggestions."""

import logging

from sqlalchemy.orm import Session, joinedload

from app.core.exceptions import NotFoundError
from app.core.structured_logging import build_log_context
from app.db.models import Message, SuggestionUsageLog
from app.db.session import atomic
from app.schemas.auth import Principal
from app.schemas.consultation import SuggestionUsageCreate
from app.services import conversation_service

logger = logging.getLogger(__name__)


def log_suggestion_usage(
    db: Session, principal: Principal, data: SuggestionUsageCreate
) -> SuggestionUsageLog:
    """Append a usage entry after checking access to the message's conversation."""
    message = (
        db.query(Message)
        .options(joinedload(Message.conversation))
        .filter(Message.id == data.message_id)
        .first()
    )
    if message is None:
        raise NotFoundError("Message")
    try:
        conversation_service.ensure_conversation_access(db, principal, message.conversation)
    except NotFoundError:
        # Same error as a missing id
        raise NotFoundError("Message") from None

    with atomic(db, "log_suggestion_usage"):
        entry = SuggestionUsageLog(
            message_id=message.id,
            user_id=principal.id,
            suggestion_index=data.suggestion_index,
            suggestion_text=data.suggestion_text,
            action=data.action.value,
            original_text=data.original_text,
            edited_text=data.edited_text,
            prompt=data.prompt,
            model_used=data.model_used,
            tokens_used=data.tokens_used,
            generation_time_ms=data.generation_time_ms,
        )
        db.add(entry)

    db.refresh(entry)
    logger.info(
        "Suggestion %s %s",
        data.suggestion_index,
        entry.action.lower(),
        extra=build_log_context(
            user_id=principal.id,
            conversation_id=message.conversation_id,
            message_id=message.id,
        ),
    )
    return entry
