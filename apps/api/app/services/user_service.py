"""User service - user directory administration.

Manager-tier users administer the users of their own groups; SYSTEM_ADMIN
and AREA_MANAGER see everyone. Nobody can act on a user whose role ranks
above their own. Every mutation writes an audit entry in the same
transaction. Users outside the caller's scope surface as
NotFoundError("User").
"""

import logging
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session, selectinload

from app.core.exceptions import AuthorizationError, NotFoundError, ValidationError
from app.core.permissions import has_global_scope, role_at_least, role_rank
from app.core.structured_logging import build_log_context
from app.db.enums import AuditEventType, MembershipRole, Role
from app.db.models import Group, GroupMembership, User
from app.db.session import atomic
from app.schemas.auth import Principal
from app.services import audit_service, group_service, membership_service

logger = logging.getLogger(__name__)

SUPPORTED_LOCALES = ("ja", "vi", "en")
NAME_MAX_LENGTH = 100

# Worker profile fields; stored for WORKER users only
PROFILE_FIELDS = (
    "country_of_origin",
    "date_of_birth",
    "gender",
    "address",
    "phone_number",
    "job_description",
    "hire_date",
    "notes",
)


def _scope_group_ids(db: Session, principal: Principal) -> set[UUID] | None:
    """Group ids the principal administers; None means every group."""
    if has_global_scope(principal.role):
        return None
    return {m.group_id for m in membership_service.get_memberships(db, principal.id)}


def _in_scope(db: Session, user: User, scope: set[UUID] | None) -> bool:
    if scope is None:
        return True
    return any(m.group_id in scope for m in membership_service.get_memberships(db, user.id))


def _load_user(db: Session, user_id: UUID) -> User:
    user = (
        db.query(User)
        .options(selectinload(User.memberships).joinedload(GroupMembership.group))
        .filter(User.id == user_id)
        .first()
    )
    if not user:
        raise NotFoundError("User")
    return user


def _load_managed_user(db: Session, principal: Principal, user_id: UUID) -> User:
    """Target of an administrative action by a manager-tier principal."""
    role_at_least(principal.role, Role.MANAGER)
    user = _load_user(db, user_id)
    if not _in_scope(db, user, _scope_group_ids(db, principal)):
        raise NotFoundError("User")
    if role_rank(user.role) > role_rank(principal.role):
        raise AuthorizationError("Cannot manage a user with a higher role")
    return user


def _clean_name(name: str) -> str:
    name = name.strip()
    if not name:
        raise ValidationError("Name is required", fields={"name": "required"})
    if len(name) > NAME_MAX_LENGTH:
        raise ValidationError(
            f"Name must be at most {NAME_MAX_LENGTH} characters", fields={"name": "too_long"}
        )
    return name


def _check_locale(locale: str) -> None:
    if locale not in SUPPORTED_LOCALES:
        raise ValidationError(f"Unsupported locale: {locale}", fields={"locale": "unsupported"})


def _clean_profile(profile: dict[str, Any] | None) -> dict[str, Any]:
    cleaned = {}
    for field, value in (profile or {}).items():
        if field not in PROFILE_FIELDS:
            raise ValidationError(f"Unknown profile field: {field}", fields={field: "unknown"})
        if isinstance(value, str):
            value = value.strip() or None
        cleaned[field] = value
    return cleaned


def _load_groups(db: Session, group_ids: list[UUID]) -> list[Group]:
    return [group_service.get_group(db, group_id, include_deleted=False) for group_id in group_ids]


def _membership_role(user_role: Role | str) -> MembershipRole:
    return MembershipRole.MEMBER if Role(user_role) == Role.WORKER else MembershipRole.MANAGER


# =============================================================================
# Lookups
# =============================================================================

def get_user(db: Session, principal: Principal, user_id: UUID) -> User:
    """A user the principal may see: themselves, or anyone in their scope."""
    user = _load_user(db, user_id)
    if user.id == principal.id:
        return user
    if principal.role == Role.WORKER or not _in_scope(db, user, _scope_group_ids(db, principal)):
        raise NotFoundError("User")
    return user


def list_users(db: Session, principal: Principal) -> list[User]:
    """
    Users in the principal's scope, newest first (manager tier and above).

    - SYSTEM_ADMIN / AREA_MANAGER: every user
    - MANAGER: users sharing one of their groups
    """
    role_at_least(principal.role, Role.MANAGER)
    query = db.query(User).options(
        selectinload(User.memberships).joinedload(GroupMembership.group)
    )

    scope = _scope_group_ids(db, principal)
    if scope is not None:
        if not scope:
            return []
        query = query.filter(
            User.id.in_(
                db.query(GroupMembership.user_id).filter(GroupMembership.group_id.in_(scope))
            )
        )

    return query.order_by(User.created_at.desc()).all()


def visible_memberships(
    db: Session, principal: Principal, user: User
) -> list[GroupMembership]:
    """Memberships of ``user`` in groups the principal can see."""
    if user.id == principal.id:
        return list(user.memberships)
    scope = _scope_group_ids(db, principal)
    return [m for m in user.memberships if scope is None or m.group_id in scope]


# =============================================================================
# Administration
# =============================================================================

def create_user(
    db: Session,
    principal: Principal,
    email: str,
    name: str,
    role: Role,
    group_ids: list[UUID],
    locale: str = "ja",
    profile: dict[str, Any] | None = None,
) -> User:
    """
    Create a user with memberships in ``group_ids`` (manager tier and above).

    Managers may only place users in their own groups and never create a
    role above their own. Profile fields are kept for workers only.
    """
    role_at_least(principal.role, Role.MANAGER)
    role = Role(role)
    if role_rank(role) > role_rank(principal.role):
        raise AuthorizationError("Cannot create a user with a higher role")

    email = email.strip().lower()
    if "@" not in email:
        raise ValidationError("A valid email address is required", fields={"email": "invalid"})
    name = _clean_name(name)
    _check_locale(locale)
    group_ids = list(dict.fromkeys(group_ids))
    if not group_ids:
        raise ValidationError("At least one group is required", fields={"group_ids": "required"})
    profile = _clean_profile(profile) if role == Role.WORKER else {}

    if db.query(User.id).filter(User.email == email).first():
        raise ValidationError("Email is already in use", fields={"email": "duplicate"})
    groups = _load_groups(db, group_ids)
    scope = _scope_group_ids(db, principal)
    if scope is not None and not set(group_ids) <= scope:
        raise AuthorizationError("Not authorized for one or more groups")

    with atomic(db, "create_user"):
        user = User(email=email, name=name, role=role.value, locale=locale, **profile)
        db.add(user)
        db.flush()
        for group in groups:
            db.add(
                GroupMembership(
                    group_id=group.id, user_id=user.id, role=_membership_role(role).value
                )
            )
        audit_service.log_user_event(
            db,
            AuditEventType.USER_CREATED,
            actor_user_id=principal.id,
            user_id=user.id,
            details={"role": role.value, "group_ids": [str(g) for g in group_ids]},
        )

    logger.info("User created", extra=build_log_context(user_id=principal.id, operation="create_user"))
    return _load_user(db, user.id)


def update_user_profile(
    db: Session,
    principal: Principal,
    user_id: UUID,
    name: str | None = None,
    locale: str | None = None,
    profile: dict[str, Any] | None = None,
) -> User:
    """
    Update name, locale and worker profile fields. None leaves a field unchanged.

    Anyone may edit themselves; editing others needs the manager tier and
    the target in scope.
    """
    if user_id == principal.id:
        user = _load_user(db, user_id)
    else:
        user = _load_managed_user(db, principal, user_id)

    updates: dict[str, Any] = {}
    if name is not None:
        updates["name"] = _clean_name(name)
    if locale is not None:
        _check_locale(locale)
        updates["locale"] = locale
    if profile and user.role != Role.WORKER.value:
        raise ValidationError("Profile fields apply to workers only", fields={"profile": "not_allowed"})
    updates.update(_clean_profile(profile))

    changed = sorted(field for field, value in updates.items() if getattr(user, field) != value)
    if not changed:
        return user

    with atomic(db, "update_user_profile"):
        for field in changed:
            setattr(user, field, updates[field])
        # Field names only; profile values never reach the audit log
        audit_service.log_user_event(
            db,
            AuditEventType.USER_UPDATED,
            actor_user_id=principal.id,
            user_id=user.id,
            details={"fields": changed},
        )

    return _load_user(db, user.id)


def set_user_active(db: Session, principal: Principal, user_id: UUID, is_active: bool) -> User:
    """Activate or deactivate a user. Nobody can deactivate themselves."""
    if user_id == principal.id and not is_active:
        raise ValidationError("You cannot deactivate your own account")
    user = _load_managed_user(db, principal, user_id)
    if user.is_active == is_active:
        raise ValidationError(
            f"User is already {'active' if is_active else 'inactive'}",
            fields={"is_active": "unchanged"},
        )

    with atomic(db, "set_user_active"):
        user.is_active = is_active
        audit_service.log_user_event(
            db,
            AuditEventType.USER_ACTIVATED if is_active else AuditEventType.USER_DEACTIVATED,
            actor_user_id=principal.id,
            user_id=user.id,
        )

    logger.info(
        "User %s",
        "activated" if is_active else "deactivated",
        extra=build_log_context(user_id=principal.id, operation="set_user_active"),
    )
    return _load_user(db, user.id)


def update_user_groups(
    db: Session, principal: Principal, user_id: UUID, group_ids: list[UUID]
) -> User:
    """
    Replace a user's memberships with ``group_ids``.

    Memberships that stay keep their in-group role. Managers may only add
    or remove memberships of their own groups.
    """
    user = _load_managed_user(db, principal, user_id)
    group_ids = list(dict.fromkeys(group_ids))
    _load_groups(db, group_ids)

    current = {m.group_id: m for m in membership_service.get_memberships(db, user.id)}
    added = [g for g in group_ids if g not in current]
    removed = [g for g in current if g not in group_ids]
    if not added and not removed:
        return user

    scope = _scope_group_ids(db, principal)
    if scope is not None and not set(added + removed) <= scope:
        raise AuthorizationError("Not authorized for one or more groups")

    with atomic(db, "update_user_groups"):
        for group_id in removed:
            db.delete(current[group_id])
        for group_id in added:
            db.add(
                GroupMembership(
                    group_id=group_id, user_id=user.id, role=_membership_role(user.role).value
                )
            )
        audit_service.log_user_event(
            db,
            AuditEventType.USER_GROUPS_UPDATED,
            actor_user_id=principal.id,
            user_id=user.id,
            details={
                "added": [str(g) for g in added],
                "removed": [str(g) for g in removed],
            },
        )

    db.expire(user)
    return _load_user(db, user.id)
