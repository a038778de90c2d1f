"""Groups router - directory listings and SYSTEM_ADMIN administration."""

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.deps import get_current_principal, get_db, require_csrf_header
from app.db.models import Group
from app.schemas.auth import Principal
from app.schemas.group import (
    GroupCreate,
    GroupMemberRead,
    GroupMigrateRequest,
    GroupMigrateResponse,
    GroupRead,
    GroupSummary,
    GroupUpdate,
    UserSummary,
)
from app.services import group_service, membership_service

router = APIRouter()


def _to_read(db: Session, groups: list[Group]) -> list[GroupRead]:
    counts = group_service.get_group_counts(db, [g.id for g in groups])
    reads = []
    for group in groups:
        read = GroupRead.model_validate(group)
        read.member_count, read.conversation_count = counts.get(group.id, (0, 0))
        reads.append(read)
    return reads


@router.get("", response_model=list[GroupRead])
def list_groups(
    include_deleted: bool = False,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    """Groups in the caller's scope with member and conversation counts."""
    groups = group_service.list_groups(db, principal, include_deleted=include_deleted)
    return _to_read(db, groups)


@router.post(
    "",
    response_model=GroupRead,
    status_code=201,
    dependencies=[Depends(require_csrf_header)],
)
def create_group(
    data: GroupCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    group = group_service.create_group(
        db,
        principal,
        organization_id=data.organization_id,
        name=data.name,
        description=data.description,
        phone_number=data.phone_number,
        address=data.address,
    )
    return _to_read(db, [group])[0]


@router.get("/available", response_model=list[GroupSummary])
def list_available_groups(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    """Groups a worker can open a conversation in."""
    return membership_service.list_available_groups_for_worker(db, principal)


@router.get("/workers", response_model=list[UserSummary])
def list_conversation_counterparts(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    """Users the caller can start a conversation with."""
    return membership_service.list_workers_for_conversation_creation(db, principal)


@router.get("/{group_id}", response_model=GroupRead)
def get_group(
    group_id: UUID,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    group = group_service.get_visible_group(db, principal, group_id)
    return _to_read(db, [group])[0]


@router.get("/{group_id}/members", response_model=list[GroupMemberRead])
def list_members(
    group_id: UUID,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    group = group_service.get_visible_group(db, principal, group_id)
    return membership_service.list_group_members(db, group.id)


@router.patch(
    "/{group_id}",
    response_model=GroupRead,
    dependencies=[Depends(require_csrf_header)],
)
def update_group(
    group_id: UUID,
    data: GroupUpdate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    group = group_service.update_group(
        db,
        principal,
        group_id,
        name=data.name,
        description=data.description,
        phone_number=data.phone_number,
        address=data.address,
    )
    return _to_read(db, [group])[0]


@router.delete(
    "/{group_id}",
    response_model=GroupRead,
    dependencies=[Depends(require_csrf_header)],
)
def delete_group(
    group_id: UUID,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    """Soft delete; the group can be restored."""
    group = group_service.soft_delete_group(db, principal, group_id)
    return _to_read(db, [group])[0]


@router.post(
    "/{group_id}/restore",
    response_model=GroupRead,
    dependencies=[Depends(require_csrf_header)],
)
def restore_group(
    group_id: UUID,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    group = group_service.restore_group(db, principal, group_id)
    return _to_read(db, [group])[0]


@router.post(
    "/{group_id}/migrate",
    response_model=GroupMigrateResponse,
    dependencies=[Depends(require_csrf_header)],
)
def migrate_group(
    group_id: UUID,
    data: GroupMigrateRequest,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    """Move conversations and/or members to another group in one transaction."""
    return group_service.migrate_group_data(
        db,
        principal,
        from_group_id=group_id,
        to_group_id=data.to_group_id,
        migrate_conversations=data.migrate_conversations,
        migrate_members=data.migrate_members,
    )
