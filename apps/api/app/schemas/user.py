"""Pydantic schemas for user directory administration."""

from datetime import date, datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from app.db.enums import Role
from app.schemas.group import GroupSummary


class UserProfile(BaseModel):
    """Worker profile fields; omitted fields are left unchanged."""

    country_of_origin: str | None = Field(None, max_length=100)
    date_of_birth: date | None = None
    gender: str | None = Field(None, max_length=20)
    address: str | None = None
    phone_number: str | None = Field(None, max_length=50)
    job_description: str | None = None
    hire_date: date | None = None
    notes: str | None = None

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class UserCreate(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    name: str = Field(..., min_length=1, max_length=100)
    role: Role = Role.WORKER
    locale: str = "ja"
    group_ids: list[UUID] = Field(..., min_length=1)
    profile: UserProfile | None = None


class UserUpdate(BaseModel):
    """Partial update; omitted fields are left unchanged."""

    name: str | None = Field(None, min_length=1, max_length=100)
    locale: str | None = None
    profile: UserProfile | None = None


class UserStatusUpdate(BaseModel):
    is_active: bool


class UserGroupsUpdate(BaseModel):
    group_ids: list[UUID]


class UserMembershipRead(BaseModel):
    role: str
    group: GroupSummary

    model_config = {"from_attributes": True}


class UserRead(BaseModel):
    id: UUID
    email: str
    name: str | None
    role: str
    locale: str
    is_active: bool
    country_of_origin: str | None = None
    date_of_birth: date | None = None
    gender: str | None = None
    address: str | None = None
    phone_number: str | None = None
    job_description: str | None = None
    hire_date: date | None = None
    notes: str | None = None
    created_at: datetime
    memberships: list[UserMembershipRead] = []

    model_config = {"from_attributes": True}
