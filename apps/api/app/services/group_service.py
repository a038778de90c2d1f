"""Group service - directory administration and scoped group listings.

Groups are soft-deleted only. Every mutation is SYSTEM_ADMIN-only and
writes an audit entry in the same transaction.
"""

import logging
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from app.core.exceptions import NotFoundError, ValidationError
from app.core.permissions import (
    ROLES_CAN_MANAGE_GROUPS,
    can_access_group,
    ensure_role,
    has_global_scope,
)
from app.core.structured_logging import build_log_context
from app.db.enums import AuditEventType, Role
from app.db.models import Conversation, Group, GroupMembership, Organization
from app.db.session import atomic
from app.schemas.auth import Principal
from app.services import audit_service, membership_service

logger = logging.getLogger(__name__)


def get_group(db: Session, group_id: UUID, include_deleted: bool = True) -> Group:
    """Load a group or raise NotFoundError."""
    query = db.query(Group).filter(Group.id == group_id)
    if not include_deleted:
        query = query.filter(Group.is_deleted.is_(False))
    group = query.first()
    if not group:
        raise NotFoundError("Group")
    return group


def list_groups(db: Session, principal: Principal, include_deleted: bool = False) -> list[Group]:
    """
    Groups visible to a principal, newest first.

    SYSTEM_ADMIN / AREA_MANAGER see every group; everyone else only the
    groups they are a member of.
    """
    query = db.query(Group).options(joinedload(Group.organization))
    if not include_deleted:
        query = query.filter(Group.is_deleted.is_(False))

    if not has_global_scope(principal.role):
        group_ids = [m.group_id for m in membership_service.get_memberships(db, principal.id)]
        if not group_ids:
            return []
        query = query.filter(Group.id.in_(group_ids))

    return query.order_by(Group.created_at.desc()).all()


def list_groups_for_user(db: Session, user_id: UUID) -> list[Group]:
    """Non-deleted groups a user belongs to."""
    return (
        db.query(Group)
        .join(GroupMembership, GroupMembership.group_id == Group.id)
        .filter(GroupMembership.user_id == user_id, Group.is_deleted.is_(False))
        .order_by(Group.name)
        .all()
    )


def get_group_counts(db: Session, group_ids: list[UUID]) -> dict[UUID, tuple[int, int]]:
    """Map group id -> (member_count, conversation_count)."""
    if not group_ids:
        return {}
    members = dict(
        db.query(GroupMembership.group_id, func.count(GroupMembership.id))
        .filter(GroupMembership.group_id.in_(group_ids))
        .group_by(GroupMembership.group_id)
        .all()
    )
    conversations = dict(
        db.query(Conversation.group_id, func.count(Conversation.id))
        .filter(Conversation.group_id.in_(group_ids))
        .group_by(Conversation.group_id)
        .all()
    )
    return {gid: (members.get(gid, 0), conversations.get(gid, 0)) for gid in group_ids}


def _ensure_name_available(
    db: Session, organization_id: UUID, name: str, exclude_id: UUID | None = None
) -> None:
    query = db.query(Group.id).filter(
        Group.organization_id == organization_id,
        Group.name == name,
    )
    if exclude_id is not None:
        query = query.filter(Group.id != exclude_id)
    if query.first():
        raise ValidationError(
            "A group with this name already exists in the organization",
            fields={"name": "duplicate"},
        )


def create_group(
    db: Session,
    principal: Principal,
    organization_id: UUID,
    name: str,
    description: str | None = None,
    phone_number: str | None = None,
    address: str | None = None,
) -> Group:
    """Create a group (SYSTEM_ADMIN only)."""
    ensure_role(principal.role, ROLES_CAN_MANAGE_GROUPS)

    name = name.strip()
    if not name:
        raise ValidationError("Group name is required", fields={"name": "required"})

    org = db.query(Organization).filter(Organization.id == organization_id).first()
    if not org:
        raise NotFoundError("Organization")
    _ensure_name_available(db, organization_id, name)

    with atomic(db, "create_group"):
        group = Group(
            organization_id=organization_id,
            name=name,
            description=description,
            phone_number=phone_number,
            address=address,
        )
        db.add(group)
        db.flush()
        audit_service.log_group_event(
            db,
            AuditEventType.GROUP_CREATED,
            org_id=organization_id,
            actor_user_id=principal.id,
            group_id=group.id,
            details={"name": name},
        )

    db.refresh(group)
    logger.info("Group created", extra=build_log_context(user_id=principal.id, group_id=group.id))
    return group


def update_group(
    db: Session,
    principal: Principal,
    group_id: UUID,
    name: str | None = None,
    description: str | None = None,
    phone_number: str | None = None,
    address: str | None = None,
) -> Group:
    """Update group details (SYSTEM_ADMIN only). None leaves a field unchanged."""
    ensure_role(principal.role, ROLES_CAN_MANAGE_GROUPS)
    group = get_group(db, group_id)

    changes: dict[str, dict] = {}
    if name is not None:
        name = name.strip()
        if not name:
            raise ValidationError("Group name is required", fields={"name": "required"})
        if name != group.name:
            _ensure_name_available(db, group.organization_id, name, exclude_id=group.id)
    for field, value in (
        ("name", name),
        ("description", description),
        ("phone_number", phone_number),
        ("address", address),
    ):
        if value is not None and getattr(group, field) != value:
            changes[field] = {"before": getattr(group, field), "after": value}
            setattr(group, field, value)

    if not changes:
        return group

    with atomic(db, "update_group"):
        audit_service.log_group_event(
            db,
            AuditEventType.GROUP_UPDATED,
            org_id=group.organization_id,
            actor_user_id=principal.id,
            group_id=group.id,
            details={"fields": sorted(changes)},
        )

    db.refresh(group)
    return group


def soft_delete_group(db: Session, principal: Principal, group_id: UUID) -> Group:
    """Mark a group deleted, recording who and when (SYSTEM_ADMIN only)."""
    ensure_role(principal.role, ROLES_CAN_MANAGE_GROUPS)
    group = get_group(db, group_id, include_deleted=False)

    with atomic(db, "soft_delete_group"):
        group.is_deleted = True
        group.deleted_at = datetime.now(timezone.utc)
        group.deleted_by = principal.id
        audit_service.log_group_event(
            db,
            AuditEventType.GROUP_DELETED,
            org_id=group.organization_id,
            actor_user_id=principal.id,
            group_id=group.id,
        )

    db.refresh(group)
    logger.info("Group soft-deleted", extra=build_log_context(user_id=principal.id, group_id=group.id))
    return group


def restore_group(db: Session, principal: Principal, group_id: UUID) -> Group:
    """Undo a soft delete and clear its provenance (SYSTEM_ADMIN only)."""
    ensure_role(principal.role, ROLES_CAN_MANAGE_GROUPS)
    group = get_group(db, group_id)
    if not group.is_deleted:
        raise NotFoundError("Deleted group")

    with atomic(db, "restore_group"):
        audit_service.log_group_event(
            db,
            AuditEventType.GROUP_RESTORED,
            org_id=group.organization_id,
            actor_user_id=principal.id,
            group_id=group.id,
            details={
                "deleted_at": group.deleted_at.isoformat() if group.deleted_at else None,
                "deleted_by": str(group.deleted_by) if group.deleted_by else None,
            },
        )
        group.is_deleted = False
        group.deleted_at = None
        group.deleted_by = None

    db.refresh(group)
    return group


def migrate_group_data(
    db: Session,
    principal: Principal,
    from_group_id: UUID,
    to_group_id: UUID,
    migrate_conversations: bool = True,
    migrate_members: bool = True,
) -> dict[str, int]:
    """
    Move conversations and/or memberships to another group in one transaction.

    Members already present in the target keep their target membership; the
    source memberships are removed either way.
    """
    ensure_role(principal.role, ROLES_CAN_MANAGE_GROUPS)
    if from_group_id == to_group_id:
        raise ValidationError("Source and target groups must differ")

    source = get_group(db, from_group_id)
    target = get_group(db, to_group_id)
    if target.is_deleted:
        raise ValidationError("Target group is deleted")

    conversations_migrated = 0
    members_migrated = 0

    with atomic(db, "migrate_group_data"):
        if migrate_conversations:
            conversations_migrated = (
                db.query(Conversation)
                .filter(Conversation.group_id == source.id)
                .update({Conversation.group_id: target.id}, synchronize_session=False)
            )

        if migrate_members:
            existing = {
                row[0]
                for row in db.query(GroupMembership.user_id)
                .filter(GroupMembership.group_id == target.id)
                .all()
            }
            source_members = (
                db.query(GroupMembership)
                .filter(GroupMembership.group_id == source.id)
                .all()
            )
            for member in source_members:
                if member.user_id not in existing:
                    db.add(GroupMembership(group_id=target.id, user_id=member.user_id, role=member.role))
                    members_migrated += 1
                db.delete(member)

        audit_service.log_group_event(
            db,
            AuditEventType.GROUP_DATA_MIGRATED,
            org_id=source.organization_id,
            actor_user_id=principal.id,
            group_id=source.id,
            details={
                "to_group_id": str(target.id),
                "conversations_migrated": conversations_migrated,
                "members_migrated": members_migrated,
            },
        )

    db.expire_all()
    logger.info(
        "Group data migrated: %s conversations, %s members",
        conversations_migrated,
        members_migrated,
        extra=build_log_context(user_id=principal.id, group_id=source.id),
    )
    return {
        "conversations_migrated": conversations_migrated,
        "members_migrated": members_migrated,
    }


def get_visible_group(db: Session, principal: Principal, group_id: UUID) -> Group:
    """
    A group the principal may see.

    Groups outside the principal's scope and deleted groups (for anyone but
    SYSTEM_ADMIN) look the same as missing ones.
    """
    group = get_group(db, group_id, include_deleted=principal.role == Role.SYSTEM_ADMIN)
    if has_global_scope(principal.role):
        return group
    memberships = membership_service.get_memberships(db, principal.id)
    if not can_access_group(principal.role, memberships, group.id):
        raise NotFoundError("Group")
    return group
