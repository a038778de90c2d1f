"""Users router - user directory administration."""

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.deps import get_current_principal, get_db, require_csrf_header
from app.db.models import User
from app.schemas.auth import Principal
from app.schemas.user import (
    UserCreate,
    UserGroupsUpdate,
    UserMembershipRead,
    UserRead,
    UserStatusUpdate,
    UserUpdate,
)
from app.services import user_service

router = APIRouter()


def _to_read(db: Session, principal: Principal, user: User) -> UserRead:
    read = UserRead.model_validate(user)
    read.memberships = [
        UserMembershipRead.model_validate(m)
        for m in user_service.visible_memberships(db, principal, user)
    ]
    return read


@router.get("", response_model=list[UserRead])
def list_users(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    """Users in the caller's scope, newest first."""
    return [_to_read(db, principal, u) for u in user_service.list_users(db, principal)]


@router.post(
    "",
    response_model=UserRead,
    status_code=201,
    dependencies=[Depends(require_csrf_header)],
)
def create_user(
    data: UserCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    user = user_service.create_user(
        db,
        principal,
        email=data.email,
        name=data.name,
        role=data.role,
        group_ids=data.group_ids,
        locale=data.locale,
        profile=data.profile.changes() if data.profile else None,
    )
    return _to_read(db, principal, user)


@router.get("/{user_id}", response_model=UserRead)
def get_user(
    user_id: UUID,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return _to_read(db, principal, user_service.get_user(db, principal, user_id))


@router.patch(
    "/{user_id}",
    response_model=UserRead,
    dependencies=[Depends(require_csrf_header)],
)
def update_user(
    user_id: UUID,
    data: UserUpdate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    user = user_service.update_user_profile(
        db,
        principal,
        user_id,
        name=data.name,
        locale=data.locale,
        profile=data.profile.changes() if data.profile else None,
    )
    return _to_read(db, principal, user)


@router.patch(
    "/{user_id}/status",
    response_model=UserRead,
    dependencies=[Depends(require_csrf_header)],
)
def update_user_status(
    user_id: UUID,
    data: UserStatusUpdate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    """Activate or deactivate a user."""
    user = user_service.set_user_active(db, principal, user_id, data.is_active)
    return _to_read(db, principal, user)


@router.put(
    "/{user_id}/groups",
    response_model=UserRead,
    dependencies=[Depends(require_csrf_header)],
)
def replace_user_groups(
    user_id: UUID,
    data: UserGroupsUpdate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    user = user_service.update_user_groups(db, principal, user_id, data.group_ids)
    return _to_read(db, principal, user)
