"""Conversations router - conversations, messages, suggestion regeneration and segments."""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.deps import get_current_principal, get_db, get_event_hub, require_csrf_header
from app.core.websocket import ConversationEventHub
from app.db.enums import ConversationStatus
from app.schemas.auth import Principal
from app.schemas.conversation import (
    ConversationCreate,
    ConversationDetail,
    ConversationListItem,
    ConversationRead,
    ConversationSegmentRead,
    ConversationSegmentsResponse,
    MessageCreate,
    MessageRead,
    SuggestionsResponse,
)
from app.services import conversation_service, segment_service

router = APIRouter()


@router.get("", response_model=list[ConversationListItem])
def list_conversations(
    status: ConversationStatus | None = None,
    group_id: UUID | None = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    """Conversations visible to the caller, most recently active first."""
    conversations = conversation_service.list_conversations_for_user(
        db, principal, status=status, group_id=group_id, limit=limit, offset=offset
    )
    last_messages = conversation_service.get_last_messages(db, [c.id for c in conversations])

    items = []
    for conversation in conversations:
        item = ConversationListItem.model_validate(conversation)
        last = last_messages.get(conversation.id)
        if last is not None:
            item.last_message = MessageRead.model_validate(last)
        items.append(item)
    return items


@router.post(
    "",
    response_model=ConversationRead,
    status_code=201,
    dependencies=[Depends(require_csrf_header)],
)
def create_conversation(
    data: ConversationCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
    hub: ConversationEventHub = Depends(get_event_hub),
):
    conversation = conversation_service.create_conversation(
        db,
        principal,
        group_id=data.group_id,
        worker_id=data.worker_id,
        subject=data.subject,
        initial_message=data.initial_message,
        publisher=hub,
    )
    return ConversationRead.model_validate(conversation)


@router.get("/{conversation_id}", response_model=ConversationDetail)
def get_conversation(
    conversation_id: UUID,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    """Conversation with messages oldest first and their artifacts."""
    conversation = conversation_service.get_conversation_with_messages(db, principal, conversation_id)
    return ConversationDetail.model_validate(conversation)


@router.post(
    "/{conversation_id}/messages",
    response_model=MessageRead,
    status_code=201,
    dependencies=[Depends(require_csrf_header)],
)
def send_message(
    conversation_id: UUID,
    data: MessageCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
    hub: ConversationEventHub = Depends(get_event_hub),
):
    """Send a message. Succeeds even when enrichment fails."""
    message = conversation_service.append_message(
        db,
        principal,
        conversation_id,
        body=data.body,
        language=data.language,
        type=data.type,
        content_url=data.content_url,
        metadata=data.metadata,
        publisher=hub,
    )
    return MessageRead.model_validate(message)


@router.post(
    "/{conversation_id}/suggestions",
    response_model=SuggestionsResponse,
    dependencies=[Depends(require_csrf_header)],
)
def regenerate_suggestions(
    conversation_id: UUID,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    """
    Regenerate reply suggestions.

    Returns the refreshed latest member message (``kind="message"``), or a
    greeting preview (``kind="preview"``) when the member has not written yet.
    """
    return conversation_service.regenerate_suggestions(db, principal, conversation_id)


@router.get("/{conversation_id}/segments", response_model=ConversationSegmentsResponse)
def get_segments(
    conversation_id: UUID,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    """Topical segments of a conversation, oldest first."""
    segments = segment_service.get_conversation_segments(db, principal, conversation_id)
    return ConversationSegmentsResponse(
        segments=[ConversationSegmentRead.model_validate(s) for s in segments]
    )


@router.post(
    "/{conversation_id}/segments",
    response_model=ConversationSegmentsResponse,
    dependencies=[Depends(require_csrf_header)],
)
def regenerate_segments(
    conversation_id: UUID,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    """Re-segment the conversation, replacing every stored segment."""
    segments = segment_service.regenerate_conversation_segments(db, principal, conversation_id)
    return ConversationSegmentsResponse(
        segments=[ConversationSegmentRead.model_validate(s) for s in segments]
    )
