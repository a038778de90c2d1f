"""Conversation service - access-gated conversation and message operations.

Sending a message only bumps the conversation timestamp; status changes go
through consultation case updates. Unknown and out-of-scope conversations
both surface as NotFoundError("Conversation").
"""

import logging
import threading
from typing import Any
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload, selectinload

from app.core.config import settings
from app.core.exceptions import AuthorizationError, NotFoundError, ValidationError
from app.core.permissions import can_access_group, has_global_scope, role_at_least
from app.core.structured_logging import build_log_context
from app.db.enums import ConversationStatus, MessageType, Role
from app.db.models import Conversation, Message, User
from app.db.session import atomic
from app.schemas.auth import Principal
from app.schemas.conversation import (
    EnrichmentPreview,
    MessageCreate,
    MessageRead,
    PersistedMessage,
)
from app.services import (
    enrichment_service,
    group_service,
    health_consultation_service,
    membership_service,
)
from app.services.message_events import (
    MessageEventPublisher,
    publish_new_message,
    publish_state_update,
)

logger = logging.getLogger(__name__)

# Striped locks serialising resolve-or-create per (group, worker)
_CREATE_LOCKS = [threading.Lock() for _ in range(32)]


# =============================================================================
# Access
# =============================================================================

def ensure_conversation_access(db: Session, principal: Principal, conversation: Conversation) -> None:
    """
    Raise NotFoundError unless the principal may read the conversation.

    - WORKER: only their own conversations
    - SYSTEM_ADMIN / AREA_MANAGER: all
    - MANAGER: conversations of groups they belong to
    """
    if principal.role == Role.WORKER:
        if conversation.worker_id != principal.id:
            raise NotFoundError("Conversation")
        return

    if has_global_scope(principal.role):
        return

    memberships = membership_service.get_memberships(db, principal.id)
    if not can_access_group(principal.role, memberships, conversation.group_id):
        raise NotFoundError("Conversation")


def get_conversation_for(db: Session, principal: Principal, conversation_id: UUID) -> Conversation:
    conversation = (
        db.query(Conversation)
        .options(joinedload(Conversation.group), joinedload(Conversation.worker))
        .filter(Conversation.id == conversation_id)
        .first()
    )
    if not conversation:
        raise NotFoundError("Conversation")
    ensure_conversation_access(db, principal, conversation)
    return conversation


# =============================================================================
# Messages
# =============================================================================

def _validate_content(body: str, message_type: MessageType, content_url: str | None) -> None:
    if message_type == MessageType.IMAGE and not content_url:
        raise ValidationError("Image messages require content_url", fields={"content_url": "required"})
    if not (body or "").strip() and not content_url:
        raise ValidationError("Message body is required", fields={"body": "required"})


def _add_message(
    db: Session,
    conversation: Conversation,
    sender_id: UUID,
    body: str,
    language: str,
    message_type: MessageType,
    content_url: str | None,
    metadata: dict[str, Any] | None,
) -> Message:
    message = Message(
        conversation_id=conversation.id,
        sender_id=sender_id,
        body=body or "",
        language=language,
        type=message_type.value,
        content_url=content_url,
        meta=metadata,
    )
    db.add(message)
    db.flush()
    conversation.updated_at = message.created_at
    return message


def _after_append(
    db: Session,
    principal: Principal,
    message: Message,
    enrich: bool | None,
    publisher: MessageEventPublisher | None,
) -> None:
    """
    Inline work after a message is stored, then the room events.

    Health flow, enrichment and segmentation failures are logged, never
    raised. Health flow replies are published after the message itself.
    """
    log_context = build_log_context(
        user_id=principal.id, conversation_id=message.conversation_id, message_id=message.id
    )
    should_enrich = settings.MESSAGE_ENRICHMENT_INLINE if enrich is None else enrich

    health = None
    if (
        should_enrich
        and settings.HEALTH_CONSULTATION_ENABLED
        and principal.role == Role.WORKER
        and message.type == MessageType.TEXT.value
    ):
        try:
            health = health_consultation_service.advance(db, message)
        except Exception:
            logger.warning("Health consultation step failed", exc_info=True, extra=log_context)

    if should_enrich:
        manager_locale = None if principal.role == Role.WORKER else principal.locale
        try:
            enrichment_service.enrich_message(
                db,
                message.id,
                manager_locale=manager_locale,
                health_consultation_in_progress=health.handled if health is not None else None,
            )
        except Exception:
            logger.warning(
                "Inline enrichment failed; message stored without artifact",
                exc_info=True,
                extra=log_context,
            )

    db.refresh(message)
    publish_new_message(publisher, message)

    if health is not None:
        _post_health_replies(db, message.conversation_id, health, publisher)

    if settings.SEGMENTS_REGENERATE_ON_APPEND:
        from app.services import segment_service

        try:
            segment_service.regenerate_segments(db, message.conversation_id)
        except Exception:
            logger.warning("Segment regeneration failed", exc_info=True, extra=log_context)


def _post_health_replies(
    db: Session,
    conversation_id: UUID,
    step: health_consultation_service.HealthStep,
    publisher: MessageEventPublisher | None,
) -> None:
    """Post flow replies as SYSTEM messages from a group manager, then announce the state."""
    conversation = db.get(Conversation, conversation_id)
    log_context = build_log_context(conversation_id=conversation_id, operation="health_consultation")

    if step.replies:
        sender = membership_service.find_group_manager(db, conversation.group_id)
        if sender is None:
            logger.warning("No group manager to send health consultation replies", extra=log_context)
        else:
            for reply in step.replies:
                with atomic(db, "post_system_message"):
                    message = _add_message(
                        db,
                        conversation,
                        sender.id,
                        reply.body,
                        health_consultation_service.REPLY_LANGUAGE,
                        MessageType.SYSTEM,
                        None,
                        reply.metadata,
                    )
                try:
                    enrichment_service.enrich_message(db, message.id)
                except Exception:
                    logger.warning(
                        "System message translation failed", exc_info=True, extra=log_context
                    )
                db.refresh(message)
                publish_new_message(publisher, message)

    if step.state_changed:
        publish_state_update(publisher, conversation_id, step.state)


def append_message(
    db: Session,
    principal: Principal,
    conversation_id: UUID,
    body: str,
    language: str,
    type: MessageType | str = MessageType.TEXT,
    content_url: str | None = None,
    metadata: dict[str, Any] | None = None,
    *,
    enrich: bool | None = None,
    publisher: MessageEventPublisher | None = None,
) -> Message:
    """
    Persist a message, enrich it and notify the conversation room.

    ``enrich`` overrides MESSAGE_ENRICHMENT_INLINE for this call. The send
    succeeds whether or not enrichment or event delivery does.
    """
    conversation = get_conversation_for(db, principal, conversation_id)
    message_type = MessageType(type)
    _validate_content(body, message_type, content_url)

    with atomic(db, "append_message"):
        message = _add_message(
            db, conversation, principal.id, body, language, message_type, content_url, metadata
        )

    db.refresh(message)
    logger.info(
        "Message appended",
        extra=build_log_context(
            user_id=principal.id, conversation_id=conversation.id, message_id=message.id
        ),
    )
    _after_append(db, principal, message, enrich, publisher)
    return message


# =============================================================================
# Conversations
# =============================================================================

def create_conversation(
    db: Session,
    principal: Principal,
    group_id: UUID,
    worker_id: UUID,
    subject: str | None = None,
    initial_message: MessageCreate | None = None,
    *,
    enrich: bool | None = None,
    publisher: MessageEventPublisher | None = None,
) -> Conversation:
    """
    Open a conversation between a worker and a group.

    The conversation and its initial message commit together or not at all.
    """
    group = group_service.get_group(db, group_id, include_deleted=False)

    if principal.role == Role.WORKER and worker_id != principal.id:
        raise AuthorizationError("Workers can only open their own conversations")

    memberships = membership_service.get_memberships(db, principal.id)
    if not can_access_group(principal.role, memberships, group.id):
        raise AuthorizationError("Not authorized for this group")

    worker = db.query(User).filter(User.id == worker_id).first()
    if not worker or worker.role != Role.WORKER.value:
        raise ValidationError("Target user is not a worker", fields={"worker_id": "invalid"})
    if membership_service.get_membership(db, group.id, worker.id) is None:
        raise ValidationError(
            "Worker is not a member of this group", fields={"worker_id": "not_member"}
        )

    if initial_message is not None:
        _validate_content(initial_message.body, initial_message.type, initial_message.content_url)

    message = None
    with atomic(db, "create_conversation"):
        conversation = Conversation(group_id=group.id, worker_id=worker.id, subject=subject)
        db.add(conversation)
        db.flush()
        if initial_message is not None:
            message = _add_message(
                db,
                conversation,
                principal.id,
                initial_message.body,
                initial_message.language,
                initial_message.type,
                initial_message.content_url,
                initial_message.metadata,
            )

    db.refresh(conversation)
    logger.info(
        "Conversation created",
        extra=build_log_context(
            user_id=principal.id, conversation_id=conversation.id, group_id=group.id
        ),
    )
    if message is not None:
        _after_append(db, principal, message, enrich, publisher)
    return conversation


def resolve_or_create_active_conversation(
    db: Session, group_id: UUID, worker_id: UUID, subject: str | None = None
) -> Conversation:
    """
    Latest ACTIVE conversation for (group, worker), created when none exists.

    Creation re-checks under a per-pair lock: a thread lock within the
    process and a row lock on the worker (PostgreSQL) across replicas, so
    concurrent broadcasts to the same worker share one conversation.
    """
    conversation = _find_active_conversation(db, group_id, worker_id)
    if conversation is not None:
        return conversation

    with _CREATE_LOCKS[hash((group_id, worker_id)) % len(_CREATE_LOCKS)]:
        with atomic(db, "create_conversation"):
            db.query(User.id).filter(User.id == worker_id).with_for_update().first()
            conversation = _find_active_conversation(db, group_id, worker_id)
            if conversation is None:
                conversation = Conversation(group_id=group_id, worker_id=worker_id, subject=subject)
                db.add(conversation)
    db.refresh(conversation)
    return conversation


def _find_active_conversation(db: Session, group_id: UUID, worker_id: UUID) -> Conversation | None:
    return (
        db.query(Conversation)
        .filter(
            Conversation.group_id == group_id,
            Conversation.worker_id == worker_id,
            Conversation.status == ConversationStatus.ACTIVE.value,
        )
        .order_by(Conversation.updated_at.desc())
        .first()
    )


def get_conversation_with_messages(
    db: Session, principal: Principal, conversation_id: UUID
) -> Conversation:
    """Conversation with messages oldest first, each with sender and artifact loaded."""
    conversation = (
        db.query(Conversation)
        .options(
            joinedload(Conversation.group),
            joinedload(Conversation.worker),
            selectinload(Conversation.messages).joinedload(Message.sender),
            selectinload(Conversation.messages).joinedload(Message.artifact),
        )
        .filter(Conversation.id == conversation_id)
        .first()
    )
    if not conversation:
        raise NotFoundError("Conversation")
    ensure_conversation_access(db, principal, conversation)
    return conversation


def list_conversations_for_user(
    db: Session,
    principal: Principal,
    status: ConversationStatus | None = None,
    group_id: UUID | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[Conversation]:
    """
    Conversations visible to a principal, most recently active first.

    - SYSTEM_ADMIN / AREA_MANAGER: all
    - MANAGER: conversations of their groups
    - WORKER: their own conversations
    """
    query = db.query(Conversation).options(
        joinedload(Conversation.group), joinedload(Conversation.worker)
    )

    if principal.role == Role.WORKER:
        query = query.filter(Conversation.worker_id == principal.id)
    elif not has_global_scope(principal.role):
        group_ids = [m.group_id for m in membership_service.get_memberships(db, principal.id)]
        if not group_ids:
            return []
        query = query.filter(Conversation.group_id.in_(group_ids))

    if status is not None:
        query = query.filter(Conversation.status == ConversationStatus(status).value)
    if group_id is not None:
        query = query.filter(Conversation.group_id == group_id)

    return (
        query.order_by(Conversation.updated_at.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


def get_last_messages(db: Session, conversation_ids: list[UUID]) -> dict[UUID, Message]:
    """Map conversation id -> newest message (with sender and artifact)."""
    if not conversation_ids:
        return {}
    latest = (
        db.query(Message.conversation_id, func.max(Message.created_at).label("created_at"))
        .filter(Message.conversation_id.in_(conversation_ids))
        .group_by(Message.conversation_id)
        .subquery()
    )
    messages = (
        db.query(Message)
        .options(joinedload(Message.sender), joinedload(Message.artifact))
        .join(
            latest,
            (Message.conversation_id == latest.c.conversation_id)
            & (Message.created_at == latest.c.created_at),
        )
        .all()
    )
    return {message.conversation_id: message for message in messages}


# =============================================================================
# Regenerate
# =============================================================================

def regenerate_suggestions(
    db: Session, principal: Principal, conversation_id: UUID
) -> PersistedMessage | EnrichmentPreview:
    """
    Re-run enrichment for the latest member message of a conversation.

    Without any member message the result is a greeting preview that is not
    stored. Backend failures surface as LLMServiceError.
    """
    conversation = get_conversation_for(db, principal, conversation_id)
    role_at_least(principal.role, Role.MANAGER)

    latest = (
        db.query(Message)
        .join(User, User.id == Message.sender_id)
        .filter(
            Message.conversation_id == conversation.id,
            User.role == Role.WORKER.value,
        )
        .order_by(Message.created_at.desc())
        .first()
    )

    if latest is None:
        suggestions = enrichment_service.preview_initial_suggestions(
            db, conversation, manager_locale=principal.locale
        )
        return EnrichmentPreview(
            conversation_id=conversation.id,
            language=principal.locale,
            suggestions=suggestions,
        )

    enrichment_service.enrich_message(
        db, latest.id, manager_locale=principal.locale, strict=True
    )
    db.refresh(latest)
    logger.info(
        "Suggestions regenerated",
        extra=build_log_context(
            user_id=principal.id, conversation_id=conversation.id, message_id=latest.id
        ),
    )
    return PersistedMessage(message=MessageRead.model_validate(latest))
