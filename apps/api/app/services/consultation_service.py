"""Consultation service - one case per conversation, audited tag mutations.

Case status drives the conversation status. Every tag added or removed is
recorded in TagChangeLog; AI tag suggestions are returned, never stored.
"""

import logging
from uuid import UUID

from sqlalchemy.orm import Session, joinedload

from app.core.async_utils import run_async
from app.core.exceptions import AuthorizationError, LLMServiceError, NotFoundError, ValidationError
from app.core.structured_logging import build_log_context
from app.db.enums import CASE_TO_CONVERSATION_STATUS, CaseStatus, Role, TagChangeAction
from app.db.models import ConsultationCase, TagChangeLog
from app.db.session import atomic
from app.schemas.auth import Principal
from app.schemas.consultation import ConsultationUpsert
from app.schemas.enrichment import ConversationTagsResult
from app.services import ai_provider, audit_service, conversation_service, enrichment_service

logger = logging.getLogger(__name__)

CASE_FIELDS = ("category", "summary", "description", "status", "priority")


def _ensure_can_manage(principal: Principal) -> None:
    if principal.role == Role.WORKER:
        raise AuthorizationError("Workers cannot update consultation cases")


def _normalize_tags(tags: list[str]) -> list[str]:
    cleaned = [tag.strip() for tag in tags if tag and tag.strip()]
    return list(dict.fromkeys(cleaned))


def get_consultation_case(
    db: Session, principal: Principal, conversation_id: UUID
) -> ConsultationCase | None:
    """The case of a conversation, or None when none was opened yet."""
    conversation = conversation_service.get_conversation_for(db, principal, conversation_id)
    return (
        db.query(ConsultationCase)
        .filter(ConsultationCase.conversation_id == conversation.id)
        .first()
    )


def _record_tag_diff(
    db: Session,
    consultation: ConsultationCase,
    user_id: UUID,
    old_tags: list[str],
    new_tags: list[str],
    is_ai_generated: bool,
) -> list[TagChangeLog]:
    logs = []
    old_set = set(old_tags)
    new_set = set(new_tags)
    for tag in new_tags:
        if tag not in old_set:
            logs.append(TagChangeLog(
                consultation_id=consultation.id,
                user_id=user_id,
                action=TagChangeAction.ADDED.value,
                tag_name=tag,
                new_value=tag,
                is_ai_generated=is_ai_generated,
            ))
    for tag in old_tags:
        if tag not in new_set:
            logs.append(TagChangeLog(
                consultation_id=consultation.id,
                user_id=user_id,
                action=TagChangeAction.REMOVED.value,
                tag_name=tag,
                previous_value=tag,
                is_ai_generated=is_ai_generated,
            ))
    db.add_all(logs)
    return logs


def upsert_consultation_case(
    db: Session,
    principal: Principal,
    conversation_id: UUID,
    data: ConsultationUpsert,
) -> ConsultationCase:
    """
    Create or update the case of a conversation (manager tier only).

    Omitted fields keep their value; ``category`` is required on create.
    The audit entry carries a before/after diff of the changed fields.
    """
    _ensure_can_manage(principal)
    conversation = conversation_service.get_conversation_for(db, principal, conversation_id)

    case = (
        db.query(ConsultationCase)
        .filter(ConsultationCase.conversation_id == conversation.id)
        .first()
    )
    created = case is None
    if created and not data.category:
        raise ValidationError("Category is required", fields={"category": "required"})

    with atomic(db, "upsert_consultation_case"):
        if created:
            case = ConsultationCase(conversation_id=conversation.id, category=data.category, tags=[])
            db.add(case)
            db.flush()

        changes: dict[str, dict] = {}
        for field in CASE_FIELDS:
            value = getattr(data, field)
            if value is None:
                continue
            if hasattr(value, "value"):
                value = value.value
            before = None if created else getattr(case, field)
            if created or before != value:
                changes[field] = {"before": before, "after": value}
            setattr(case, field, value)

        if data.tags is not None:
            new_tags = _normalize_tags(data.tags)
            old_tags = list(case.tags or [])
            if new_tags != old_tags:
                _record_tag_diff(db, case, principal.id, old_tags, new_tags, is_ai_generated=False)
                changes["tags"] = {"before": old_tags, "after": new_tags}
                case.tags = new_tags

        if data.status is not None:
            conversation.status = CASE_TO_CONVERSATION_STATUS[CaseStatus(data.status)].value

        if created or changes:
            audit_service.log_consultation_changed(
                db,
                org_id=conversation.group.organization_id,
                actor_user_id=principal.id,
                consultation_id=case.id,
                created=created,
                changes=changes,
            )

    db.refresh(case)
    logger.info(
        "Consultation case %s",
        "created" if created else "updated",
        extra=build_log_context(user_id=principal.id, conversation_id=conversation.id),
    )
    return case


def update_consultation_tags(
    db: Session,
    principal: Principal,
    conversation_id: UUID,
    tags: list[str],
    is_ai_generated: bool = False,
) -> ConsultationCase:
    """Replace the case tags, logging one entry per added or removed tag."""
    _ensure_can_manage(principal)
    conversation = conversation_service.get_conversation_for(db, principal, conversation_id)
    case = (
        db.query(ConsultationCase)
        .filter(ConsultationCase.conversation_id == conversation.id)
        .first()
    )
    if case is None:
        raise NotFoundError("Consultation")

    new_tags = _normalize_tags(tags)
    old_tags = list(case.tags or [])
    if new_tags == old_tags:
        return case

    with atomic(db, "update_consultation_tags"):
        _record_tag_diff(db, case, principal.id, old_tags, new_tags, is_ai_generated)
        case.tags = new_tags
        audit_service.log_consultation_changed(
            db,
            org_id=conversation.group.organization_id,
            actor_user_id=principal.id,
            consultation_id=case.id,
            created=False,
            changes={"tags": {"before": old_tags, "after": new_tags}},
        )

    db.refresh(case)
    return case


def log_tag_change(
    db: Session,
    principal: Principal,
    consultation_id: UUID,
    action: TagChangeAction,
    tag_name: str,
    previous_value: str | None = None,
    new_value: str | None = None,
    is_ai_generated: bool = False,
) -> TagChangeLog:
    """Record a tag change reported by a client (e.g. an AI suggestion shown)."""
    case = (
        db.query(ConsultationCase)
        .options(joinedload(ConsultationCase.conversation))
        .filter(ConsultationCase.id == consultation_id)
        .first()
    )
    if case is None:
        raise NotFoundError("Consultation")
    try:
        conversation_service.ensure_conversation_access(db, principal, case.conversation)
    except NotFoundError:
        # Same error as a missing id
        raise NotFoundError("Consultation") from None

    with atomic(db, "log_tag_change"):
        entry = TagChangeLog(
            consultation_id=case.id,
            user_id=principal.id,
            action=TagChangeAction(action).value,
            tag_name=tag_name,
            previous_value=previous_value,
            new_value=new_value,
            is_ai_generated=is_ai_generated,
        )
        db.add(entry)

    db.refresh(entry)
    logger.info(
        "Tag change logged: %s",
        entry.action,
        extra=build_log_context(user_id=principal.id, conversation_id=case.conversation_id),
    )
    return entry


def generate_consultation_tags(
    db: Session, principal: Principal, conversation_id: UUID
) -> ConversationTagsResult:
    """
    Suggest category, tags and summary for a conversation.

    Nothing is written; applying the suggestion is a separate update.
    """
    conversation = conversation_service.get_conversation_for(db, principal, conversation_id)
    history = enrichment_service.load_history(db, conversation.id, limit=100)
    if not history:
        return ConversationTagsResult(category=enrichment_service.UNCATEGORIZED, tags=[])

    provider = ai_provider.get_configured_provider()
    if provider is None:
        raise LLMServiceError("AI provider not configured", operation="tagging")

    return run_async(enrichment_service.tag_conversation(history, provider))
