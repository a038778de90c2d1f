"""Role and membership predicates.

Pure functions over caller-supplied data; nothing here touches the database,
so every rule can be exercised in isolation.

Global roles are totally ordered:

    WORKER < MANAGER < AREA_MANAGER < SYSTEM_ADMIN

Group access narrows that ordering by membership for the two lower tiers.
"""

from collections.abc import Iterable
from typing import Protocol
from uuid import UUID

from app.core.exceptions import AuthorizationError
from app.db.enums import MembershipRole, Role


ROLE_RANK: dict[Role, int] = {
    Role.WORKER: 0,
    Role.MANAGER: 1,
    Role.AREA_MANAGER: 2,
    Role.SYSTEM_ADMIN: 3,
}

# Roles that see every group and conversation
ROLES_WITH_GLOBAL_SCOPE = frozenset({Role.SYSTEM_ADMIN, Role.AREA_MANAGER})

# Roles that can broadcast and manage consultation cases
ROLES_CAN_BROADCAST = frozenset({Role.MANAGER, Role.AREA_MANAGER, Role.SYSTEM_ADMIN})

# Roles that administer organizations and groups
ROLES_CAN_MANAGE_GROUPS = frozenset({Role.SYSTEM_ADMIN})


class MembershipLike(Protocol):
    group_id: UUID
    role: MembershipRole | str


def _as_role(role: Role | str) -> Role:
    return role if isinstance(role, Role) else Role(role)


def role_rank(role: Role | str) -> int:
    """Rank of a global role (higher is more privileged)."""
    return ROLE_RANK[_as_role(role)]


def ensure_role(role: Role | str, allowed_roles: Iterable[Role]) -> None:
    """Raise AuthorizationError unless ``role`` is one of ``allowed_roles``."""
    if _as_role(role) not in set(allowed_roles):
        raise AuthorizationError("Insufficient role")


def role_at_least(role: Role | str, minimum: Role | str) -> None:
    """Raise AuthorizationError unless ``role`` ranks at or above ``minimum``."""
    if role_rank(role) < role_rank(minimum):
        raise AuthorizationError("Insufficient role tier")


def has_global_scope(role: Role | str) -> bool:
    return _as_role(role) in ROLES_WITH_GLOBAL_SCOPE


def can_access_group(
    role: Role | str,
    memberships: Iterable[MembershipLike],
    target_group_id: UUID,
) -> bool:
    """
    Check whether a user may act on ``target_group_id``.

    - SYSTEM_ADMIN / AREA_MANAGER: always
    - MANAGER: any membership in the group, whatever the in-group role
    - WORKER: only a MEMBER membership in the group
    """
    role = _as_role(role)
    if role in ROLES_WITH_GLOBAL_SCOPE:
        return True

    if role == Role.MANAGER:
        return any(m.group_id == target_group_id for m in memberships)

    return any(
        m.group_id == target_group_id
        and MembershipRole(m.role) == MembershipRole.MEMBER
        for m in memberships
    )
