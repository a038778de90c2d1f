"""Usage log endpoints for AI suggestions and tag changes."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.deps import get_current_principal, get_db, require_csrf_header
from app.schemas.auth import Principal
from app.schemas.consultation import (
    SuggestionUsageCreate,
    SuggestionUsageRead,
    TagChangeLogCreate,
    TagChangeLogRead,
)
from app.services import consultation_service, suggestion_log_service

router = APIRouter(dependencies=[Depends(require_csrf_header)])


@router.post("/suggestions/log", response_model=SuggestionUsageRead, status_code=201)
def log_suggestion(
    data: SuggestionUsageCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    entry = suggestion_log_service.log_suggestion_usage(db, principal, data)
    return SuggestionUsageRead.model_validate(entry)


@router.post("/tags/log", response_model=TagChangeLogRead, status_code=201)
def log_tag(
    data: TagChangeLogCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    entry = consultation_service.log_tag_change(
        db,
        principal,
        consultation_id=data.consultation_id,
        action=data.action,
        tag_name=data.tag_name,
        previous_value=data.previous_value,
        new_value=data.new_value,
        is_ai_generated=data.is_ai_generated,
    )
    return TagChangeLogRead.model_validate(entry)
