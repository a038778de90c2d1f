"""Segment service - topical segmentation of a conversation.

The model proposes index ranges over the numbered transcript; message ids
and time bounds always come from the stored messages. Regeneration replaces
every segment of the conversation in one transaction.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Sequence
from uuid import UUID

from sqlalchemy.orm import Session

from app.core.async_utils import run_async
from app.core.config import settings
from app.core.exceptions import LLMServiceError
from app.core.structured_logging import build_log_context
from app.db.enums import Role
from app.db.models import ConversationSegment, Message, User
from app.db.session import atomic
from app.schemas.auth import Principal
from app.services import ai_provider, conversation_service
from app.services.ai_prompt_schemas import AISegmentOutput
from app.services.ai_provider import AIProvider
from app.services.ai_response_validation import parse_json_array, validate_model
from app.services.enrichment_service import complete_prompt

logger = logging.getLogger(__name__)

WHOLE_CONVERSATION = "Whole conversation"
UNTITLED = "Untitled"
ANALYSIS_FAILED = "Segment analysis failed"


@dataclass
class SegmentMessage:
    id: UUID
    body: str
    sender_role: str
    created_at: datetime


@dataclass
class SegmentDraft:
    title: str
    summary: str
    message_ids: list[UUID]
    started_at: datetime
    ended_at: datetime


def _draft(messages: Sequence[SegmentMessage], title: str, summary: str) -> SegmentDraft:
    return SegmentDraft(
        title=title,
        summary=summary,
        message_ids=[m.id for m in messages],
        started_at=messages[0].created_at,
        ended_at=messages[-1].created_at,
    )


def format_numbered_transcript(messages: Sequence[SegmentMessage]) -> str:
    return "\n".join(
        f"[Message {i}] [{m.created_at:%Y-%m-%d %H:%M}] "
        f"{'Member' if m.sender_role == Role.WORKER.value else 'Manager'}: {m.body}"
        for i, m in enumerate(messages)
    )


def drafts_from_output(
    output: str, messages: Sequence[SegmentMessage]
) -> list[SegmentDraft] | None:
    """
    Turn model output into drafts; None when nothing usable came back.

    Ranges are clamped to the transcript and empty ranges are dropped.
    """
    items = parse_json_array(output)
    if items is None:
        return None

    drafts = []
    last = len(messages) - 1
    for item in items:
        parsed = validate_model(AISegmentOutput, item if isinstance(item, dict) else None)
        if parsed is None:
            continue
        start = max(0, parsed.start_index)
        end = min(last, parsed.end_index)
        if start > end:
            continue
        drafts.append(
            _draft(
                messages[start:end + 1],
                (parsed.title or "").strip() or UNTITLED,
                (parsed.summary or "").strip(),
            )
        )
    return drafts or None


async def segment_messages(
    messages: Sequence[SegmentMessage], provider: AIProvider | None
) -> list[SegmentDraft]:
    """
    Split messages (oldest first) into topical segments.

    Without a provider the whole conversation is one segment. A failed or
    unparseable call also yields one segment, flagged in its summary.
    """
    if not messages:
        return []
    if provider is None:
        return [_draft(messages, WHOLE_CONVERSATION, "")]

    try:
        response = await complete_prompt(
            provider,
            "segment_conversation",
            operation="segmentation",
            temperature=0.3,
            max_tokens=2000,
            transcript=format_numbered_transcript(messages),
        )
    except LLMServiceError:
        return [_draft(messages, WHOLE_CONVERSATION, ANALYSIS_FAILED)]

    drafts = drafts_from_output(response.content, messages)
    if drafts is None:
        logger.warning("No segments parsed from model output")
        return [_draft(messages, WHOLE_CONVERSATION, ANALYSIS_FAILED)]
    return drafts


# =============================================================================
# Persistence
# =============================================================================

def _list_segments(db: Session, conversation_id: UUID) -> list[ConversationSegment]:
    return (
        db.query(ConversationSegment)
        .filter(ConversationSegment.conversation_id == conversation_id)
        .order_by(ConversationSegment.started_at)
        .all()
    )


def _load_messages(db: Session, conversation_id: UUID) -> list[SegmentMessage]:
    rows = (
        db.query(Message, User.role)
        .join(User, User.id == Message.sender_id)
        .filter(Message.conversation_id == conversation_id)
        .order_by(Message.created_at.desc())
        .limit(settings.SEGMENT_HISTORY_LIMIT)
        .all()
    )
    return [
        SegmentMessage(id=message.id, body=message.body, sender_role=role, created_at=message.created_at)
        for message, role in reversed(rows)
    ]


def get_conversation_segments(
    db: Session, principal: Principal, conversation_id: UUID
) -> list[ConversationSegment]:
    """Stored segments of a readable conversation, oldest first."""
    conversation = conversation_service.get_conversation_for(db, principal, conversation_id)
    return _list_segments(db, conversation.id)


def replace_segments(
    db: Session, conversation_id: UUID, drafts: Sequence[SegmentDraft]
) -> list[ConversationSegment]:
    with atomic(db, "replace_conversation_segments"):
        db.query(ConversationSegment).filter(
            ConversationSegment.conversation_id == conversation_id
        ).delete(synchronize_session=False)
        for draft in drafts:
            db.add(
                ConversationSegment(
                    conversation_id=conversation_id,
                    title=draft.title[:255],
                    summary=draft.summary,
                    message_ids=[str(message_id) for message_id in draft.message_ids],
                    started_at=draft.started_at,
                    ended_at=draft.ended_at,
                )
            )
    return _list_segments(db, conversation_id)


def regenerate_segments(db: Session, conversation_id: UUID) -> list[ConversationSegment]:
    """Re-segment a conversation without an access check (internal callers)."""
    messages = _load_messages(db, conversation_id)
    if not messages:
        return []

    drafts = run_async(segment_messages(messages, ai_provider.get_configured_provider()))
    segments = replace_segments(db, conversation_id, drafts)
    logger.info(
        "Conversation segmented (%s segments)",
        len(segments),
        extra=build_log_context(conversation_id=conversation_id, operation="segmentation"),
    )
    return segments


def regenerate_conversation_segments(
    db: Session, principal: Principal, conversation_id: UUID
) -> list[ConversationSegment]:
    """
    Re-segment a readable conversation and return the new segments.

    An empty conversation has no segments and nothing is written.
    """
    conversation = conversation_service.get_conversation_for(db, principal, conversation_id)
    return regenerate_segments(db, conversation.id)
