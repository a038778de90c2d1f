"""Compliance service - advisory harassment/wording check on manager messages.

The result never blocks a send. Workers are not checked.
"""

import logging

from app.core.async_utils import run_async
from app.core.config import settings
from app.core.exceptions import LLMServiceError
from app.db.enums import Role
from app.schemas.auth import Principal
from app.schemas.compliance import ComplianceCheckResult
from app.services import ai_provider
from app.services.ai_prompt_registry import get_prompt
from app.services.ai_prompt_schemas import AIComplianceOutput
from app.services.ai_provider import AIProvider, ChatMessage
from app.services.ai_response_validation import parse_json_object, validate_model

logger = logging.getLogger(__name__)

NOT_CONFIGURED_REASON = "AI provider not configured"


async def assess_message(text: str, provider: AIProvider) -> ComplianceCheckResult:
    template = get_prompt("compliance_check")
    try:
        response = await provider.chat(
            [
                ChatMessage(role="system", content=template.system),
                ChatMessage(role="user", content=template.render_user(message=text)),
            ],
            model=settings.COMPLIANCE_AI_MODEL or None,
            temperature=0.1,
            max_tokens=300,
        )
    except Exception as exc:
        logger.warning("Compliance check call failed: %s", exc)
        raise LLMServiceError("Unable to check compliance risk", operation="compliance") from exc

    parsed = validate_model(AIComplianceOutput, parse_json_object(response.content))
    if parsed is None:
        raise LLMServiceError("Unable to parse compliance result", operation="compliance")

    reason = (parsed.reason or "").strip()[:100] or None
    return ComplianceCheckResult(
        risk_level=parsed.risk_level,
        reason=reason if parsed.risk_level != "none" else None,
    )


def check_message_compliance(principal: Principal, text: str) -> ComplianceCheckResult:
    """Risk level for a message a manager-tier user is about to send."""
    if principal.role == Role.WORKER:
        return ComplianceCheckResult(risk_level="none")

    provider = ai_provider.get_configured_provider()
    if provider is None:
        return ComplianceCheckResult(risk_level="none", reason=NOT_CONFIGURED_REASON)

    result = run_async(assess_message(text, provider))
    if result.risk_level != "none":
        logger.info("Compliance check flagged message as %s risk", result.risk_level)
    return result
