"""Pydantic schemas for consultation cases, tag mutations and usage logs."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from app.db.enums import CasePriority, CaseStatus, SuggestionAction, TagChangeAction


class ConsultationUpsert(BaseModel):
    """Create or update the case of a conversation (partial on update)."""
    category: str | None = Field(None, min_length=1, max_length=120)
    summary: str | None = Field(None, max_length=500)
    description: str | None = None
    status: CaseStatus | None = None
    priority: CasePriority | None = None
    tags: list[str] | None = None


class ConsultationRead(BaseModel):
    id: UUID
    conversation_id: UUID
    category: str
    summary: str | None
    description: str | None
    status: CaseStatus
    priority: CasePriority
    tags: list[str]
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class TagUpdate(BaseModel):
    """Replace the case tags; each added/removed tag is logged."""
    tags: list[str]
    is_ai_generated: bool = False


class TagChangeLogCreate(BaseModel):
    consultation_id: UUID
    action: TagChangeAction
    tag_name: str = Field(..., min_length=1, max_length=120)
    previous_value: str | None = None
    new_value: str | None = None
    is_ai_generated: bool = False


class TagChangeLogRead(BaseModel):
    id: UUID
    consultation_id: UUID
    user_id: UUID
    action: TagChangeAction
    tag_name: str
    previous_value: str | None
    new_value: str | None
    is_ai_generated: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class SuggestionUsageCreate(BaseModel):
    """How a manager used one AI reply suggestion."""
    message_id: UUID
    suggestion_index: int = Field(..., ge=0)
    suggestion_text: str = Field(..., min_length=1)
    action: SuggestionAction
    original_text: str | None = None
    edited_text: str | None = None
    prompt: str | None = None
    model_used: str | None = Field(None, max_length=100)
    tokens_used: int | None = Field(None, ge=0)
    generation_time_ms: int | None = Field(None, ge=0)


class SuggestionUsageRead(BaseModel):
    id: UUID
    message_id: UUID
    user_id: UUID
    suggestion_index: int
    action: SuggestionAction
    created_at: datetime

    model_config = {"from_attributes": True}
