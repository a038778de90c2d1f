"""Membership service - group membership lookups for access checks and directories."""

import logging
from uuid import UUID

from sqlalchemy.orm import Session, joinedload

from app.core.permissions import has_global_scope
from app.db.enums import MembershipRole, Role
from app.db.models import Group, GroupMembership, User
from app.schemas.auth import Principal


logger = logging.getLogger(__name__)


def get_memberships(db: Session, user_id: UUID) -> list[GroupMembership]:
    """All memberships of a user, deleted groups included."""
    return (
        db.query(GroupMembership)
        .filter(GroupMembership.user_id == user_id)
        .all()
    )


def get_membership(db: Session, group_id: UUID, user_id: UUID) -> GroupMembership | None:
    return (
        db.query(GroupMembership)
        .filter(
            GroupMembership.group_id == group_id,
            GroupMembership.user_id == user_id,
        )
        .first()
    )


def list_group_members(db: Session, group_id: UUID) -> list[GroupMembership]:
    """Members of a group with their user rows loaded, ordered by name."""
    return (
        db.query(GroupMembership)
        .join(User, User.id == GroupMembership.user_id)
        .options(joinedload(GroupMembership.user))
        .filter(GroupMembership.group_id == group_id)
        .order_by(User.name, User.email)
        .all()
    )


def list_active_worker_ids(db: Session, group_id: UUID, user_ids: list[UUID]) -> set[UUID]:
    """Subset of ``user_ids`` that are active WORKER-role members of the group."""
    if not user_ids:
        return set()
    rows = (
        db.query(User.id)
        .join(GroupMembership, GroupMembership.user_id == User.id)
        .filter(
            GroupMembership.group_id == group_id,
            User.id.in_(user_ids),
            User.role == Role.WORKER.value,
            User.is_active.is_(True),
        )
        .all()
    )
    return {row[0] for row in rows}


def list_available_groups_for_worker(db: Session, principal: Principal) -> list[Group]:
    """Non-deleted groups a WORKER belongs to. Other roles get an empty list."""
    if principal.role != Role.WORKER:
        return []
    return (
        db.query(Group)
        .join(GroupMembership, GroupMembership.group_id == Group.id)
        .filter(
            GroupMembership.user_id == principal.id,
            Group.is_deleted.is_(False),
        )
        .order_by(Group.name)
        .all()
    )


def list_workers_for_conversation_creation(db: Session, principal: Principal) -> list[User]:
    """
    Counterparts a principal may open a conversation with.

    - WORKER: managers of the worker's groups
    - MANAGER: workers in the manager's groups
    - AREA_MANAGER / SYSTEM_ADMIN: every active worker
    """
    query = db.query(User).filter(User.is_active.is_(True))

    if has_global_scope(principal.role):
        return query.filter(User.role == Role.WORKER.value).order_by(User.name).all()

    group_ids = [m.group_id for m in get_memberships(db, principal.id)]
    if not group_ids:
        return []

    query = query.join(GroupMembership, GroupMembership.user_id == User.id).filter(
        GroupMembership.group_id.in_(group_ids),
        User.id != principal.id,
    )
    if principal.role == Role.WORKER:
        query = query.filter(GroupMembership.role == MembershipRole.MANAGER.value)
    else:
        query = query.filter(User.role == Role.WORKER.value)
    return query.distinct().order_by(User.name).all()


def find_group_manager(db: Session, group_id: UUID) -> User | None:
    """Earliest active MANAGER member of a group; sender of system messages."""
    return (
        db.query(User)
        .join(GroupMembership, GroupMembership.user_id == User.id)
        .filter(
            GroupMembership.group_id == group_id,
            GroupMembership.role == MembershipRole.MANAGER.value,
            User.is_active.is_(True),
        )
        .order_by(GroupMembership.created_at, User.email)
        .first()
    )
