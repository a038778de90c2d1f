"""Compliance pre-check router (advisory only)."""

from fastapi import APIRouter, Depends

from app.core.deps import get_current_principal, require_csrf_header
from app.schemas.auth import Principal
from app.schemas.compliance import ComplianceCheckRequest, ComplianceCheckResult
from app.services import compliance_service

router = APIRouter(prefix="/compliance", tags=["compliance"])


@router.post(
    "/check",
    response_model=ComplianceCheckResult,
    dependencies=[Depends(require_csrf_header)],
)
def check_compliance(
    data: ComplianceCheckRequest,
    principal: Principal = Depends(get_current_principal),
):
    return compliance_service.check_message_compliance(principal, data.message)
