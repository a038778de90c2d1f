"""Organizations router."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.deps import get_current_principal, get_db
from app.schemas.auth import Principal
from app.schemas.group import OrganizationRead
from app.services import org_service

router = APIRouter()


@router.get("", response_model=list[OrganizationRead])
def list_organizations(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    """All organizations (SYSTEM_ADMIN only)."""
    return org_service.list_organizations(db, principal)
