"""Consultations router - case record and tags of a conversation."""

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.deps import get_current_principal, get_db, require_csrf_header
from app.schemas.auth import Principal
from app.schemas.consultation import ConsultationRead, ConsultationUpsert, TagUpdate
from app.schemas.enrichment import ConversationTagsResult
from app.services import consultation_service

router = APIRouter()


@router.get("/{conversation_id}", response_model=ConsultationRead | None)
def get_consultation(
    conversation_id: UUID,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    """Case of a conversation; null when none exists yet."""
    case = consultation_service.get_consultation_case(db, principal, conversation_id)
    return ConsultationRead.model_validate(case) if case else None


@router.put(
    "/{conversation_id}",
    response_model=ConsultationRead,
    dependencies=[Depends(require_csrf_header)],
)
def upsert_consultation(
    conversation_id: UUID,
    data: ConsultationUpsert,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    case = consultation_service.upsert_consultation_case(db, principal, conversation_id, data)
    return ConsultationRead.model_validate(case)


@router.post(
    "/{conversation_id}/tags",
    response_model=ConversationTagsResult,
    dependencies=[Depends(require_csrf_header)],
)
def suggest_tags(
    conversation_id: UUID,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    """AI tag suggestion. Nothing is saved."""
    return consultation_service.generate_consultation_tags(db, principal, conversation_id)


@router.patch(
    "/{conversation_id}/tags",
    response_model=ConsultationRead,
    dependencies=[Depends(require_csrf_header)],
)
def update_tags(
    conversation_id: UUID,
    data: TagUpdate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    case = consultation_service.update_consultation_tags(
        db, principal, conversation_id, data.tags, is_ai_generated=data.is_ai_generated
    )
    return ConsultationRead.model_validate(case)
