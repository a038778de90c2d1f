"""Structured logging helpers (PHI-safe)."""

import logging
from typing import Any
from uuid import UUID

from app.core.config import settings


def configure_logging(level: str | None = None) -> None:
    """Apply LOG_LEVEL to the root logger once at startup."""
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def build_log_context(
    *,
    user_id: UUID | str | None = None,
    conversation_id: UUID | str | None = None,
    message_id: UUID | str | None = None,
    group_id: UUID | str | None = None,
    operation: str | None = None,
) -> dict[str, Any]:
    """
    Return a PHI-safe log context dict for ``extra=``.

    Only identifiers go in here; message bodies and profile fields never do.
    """
    context: dict[str, Any] = {}
    if user_id:
        context["user_id"] = str(user_id)
    if conversation_id:
        context["conversation_id"] = str(conversation_id)
    if message_id:
        context["message_id"] = str(message_id)
    if group_id:
        context["group_id"] = str(group_id)
    if operation:
        context["operation"] = operation
    return context
