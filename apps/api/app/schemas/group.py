"""Pydantic schemas for groups, organizations and directory lookups."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


class OrganizationRead(BaseModel):
    id: UUID
    name: str
    created_at: datetime

    model_config = {"from_attributes": True}


class GroupCreate(BaseModel):
    organization_id: UUID
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    phone_number: str | None = Field(None, max_length=50)
    address: str | None = None


class GroupUpdate(BaseModel):
    """Partial update; omitted fields are left unchanged."""

    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None
    phone_number: str | None = Field(None, max_length=50)
    address: str | None = None


class GroupRead(BaseModel):
    id: UUID
    organization_id: UUID
    name: str
    description: str | None
    phone_number: str | None
    address: str | None
    is_deleted: bool
    deleted_at: datetime | None
    deleted_by: UUID | None
    created_at: datetime
    member_count: int = 0
    conversation_count: int = 0

    model_config = {"from_attributes": True}


class GroupSummary(BaseModel):
    id: UUID
    name: str

    model_config = {"from_attributes": True}


class GroupMigrateRequest(BaseModel):
    to_group_id: UUID
    migrate_conversations: bool = True
    migrate_members: bool = True


class GroupMigrateResponse(BaseModel):
    conversations_migrated: int
    members_migrated: int


class UserSummary(BaseModel):
    id: UUID
    name: str | None
    email: str
    role: str
    locale: str

    model_config = {"from_attributes": True}


class GroupMemberRead(BaseModel):
    group_id: UUID
    role: str
    user: UserSummary

    model_config = {"from_attributes": True}
