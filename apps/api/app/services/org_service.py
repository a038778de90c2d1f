"""Organization service - top of the directory hierarchy."""

from uuid import UUID

from sqlalchemy.orm import Session

from app.core.permissions import ROLES_CAN_MANAGE_GROUPS, ensure_role
from app.db.models import Organization
from app.schemas.auth import Principal


def get_org_by_id(db: Session, org_id: UUID) -> Organization | None:
    """Get organization by ID."""
    return db.query(Organization).filter(Organization.id == org_id).first()


def list_organizations(db: Session, principal: Principal) -> list[Organization]:
    """All organizations (SYSTEM_ADMIN only)."""
    ensure_role(principal.role, ROLES_CAN_MANAGE_GROUPS)
    return db.query(Organization).order_by(Organization.name).all()
