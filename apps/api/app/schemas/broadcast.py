"""Pydantic schemas for broadcast fan-out."""

from uuid import UUID

from pydantic import BaseModel, Field


class BroadcastRequest(BaseModel):
    group_id: UUID
    message: str = Field(..., min_length=1, max_length=10000)
    recipient_ids: list[UUID] = Field(..., min_length=1)


class BroadcastRecipientResult(BaseModel):
    recipient_id: UUID
    recipient_name: str | None = None
    conversation_id: UUID
    message_id: UUID


class BroadcastResult(BaseModel):
    sent: int
    failed: int
    total: int
    results: list[BroadcastRecipientResult] = Field(default_factory=list)
