"""Pydantic schemas for conversations and messages."""

from datetime import datetime
from typing import Annotated, Any, Literal, Union
from uuid import UUID

from pydantic import AliasChoices, BaseModel, Field, model_validator

from app.db.enums import ConversationStatus, HealthConsultationState, MessageType
from app.schemas.enrichment import SuggestedReply
from app.schemas.group import GroupSummary, UserSummary


class MessageCreate(BaseModel):
    """Request schema for sending a message."""

    body: str = Field("", max_length=10000)
    language: str = Field(..., min_length=2, max_length=10)
    type: MessageType = MessageType.TEXT
    content_url: str | None = None
    metadata: dict[str, Any] | None = None

    @model_validator(mode="after")
    def check_content(self) -> "MessageCreate":
        if self.type == MessageType.IMAGE and not self.content_url:
            raise ValueError("Image messages require content_url")
        if not self.body.strip() and not self.content_url:
            raise ValueError("Message body is required")
        return self


class ConversationCreate(BaseModel):
    group_id: UUID
    worker_id: UUID
    subject: str | None = Field(None, max_length=255)
    initial_message: MessageCreate | None = None


class SenderSummary(BaseModel):
    id: UUID
    name: str | None
    role: str

    model_config = {"from_attributes": True}


class MessageArtifactRead(BaseModel):
    id: UUID
    message_id: UUID
    translation: str | None
    translation_lang: str | None
    suggestions: list[SuggestedReply] = Field(default_factory=list)
    extra: dict[str, Any] | None = None
    updated_at: datetime

    model_config = {"from_attributes": True}


class MessageRead(BaseModel):
    id: UUID
    conversation_id: UUID
    sender_id: UUID
    body: str
    language: str
    type: str
    content_url: str | None = None
    metadata: dict[str, Any] | None = Field(
        None, validation_alias=AliasChoices("meta", "metadata")
    )
    created_at: datetime
    sender: SenderSummary | None = None
    artifact: MessageArtifactRead | None = None

    model_config = {"from_attributes": True}


class ConversationRead(BaseModel):
    id: UUID
    group_id: UUID
    worker_id: UUID
    subject: str | None
    status: ConversationStatus
    health_consultation_state: HealthConsultationState | None = None
    created_at: datetime
    updated_at: datetime
    group: GroupSummary | None = None
    worker: UserSummary | None = None

    model_config = {"from_attributes": True}


class ConversationListItem(ConversationRead):
    last_message: MessageRead | None = None


class ConversationDetail(ConversationRead):
    messages: list[MessageRead] = Field(default_factory=list)


# =============================================================================
# Regenerate responses (tagged union)
# =============================================================================

class PersistedMessage(BaseModel):
    """Suggestions attached to a stored message's artifact."""

    kind: Literal["message"] = "message"
    message: MessageRead


class EnrichmentPreview(BaseModel):
    """
    Suggestions for a conversation with no member message yet.

    Nothing is stored; there is no message or artifact id.
    """

    kind: Literal["preview"] = "preview"
    conversation_id: UUID
    language: str
    suggestions: list[SuggestedReply] = Field(default_factory=list)


SuggestionsResponse = Annotated[
    Union[PersistedMessage, EnrichmentPreview], Field(discriminator="kind")
]


# =============================================================================
# Segments
# =============================================================================

class ConversationSegmentRead(BaseModel):
    id: UUID
    conversation_id: UUID
    title: str
    summary: str
    message_ids: list[UUID] = Field(default_factory=list)
    started_at: datetime
    ended_at: datetime
    created_at: datetime

    model_config = {"from_attributes": True}


class ConversationSegmentsResponse(BaseModel):
    segments: list[ConversationSegmentRead] = Field(default_factory=list)
