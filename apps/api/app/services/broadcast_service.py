"""Broadcast service - send one message to many workers of a group.

The recipient list is validated as a whole before anything is written: one
ineligible id rejects the request with zero sends. After that each recipient
is handled in its own session and transaction, so a failed send never rolls
back another recipient's message.
"""

import concurrent.futures
import logging
from typing import Callable
from uuid import UUID

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import AuthorizationError, ValidationError
from app.core.permissions import ROLES_CAN_BROADCAST, can_access_group, ensure_role
from app.core.structured_logging import build_log_context
from app.db.models import User
from app.schemas.auth import Principal
from app.schemas.broadcast import BroadcastRecipientResult, BroadcastResult
from app.services import conversation_service, group_service, membership_service
from app.services.message_events import MessageEventPublisher

logger = logging.getLogger(__name__)


def validate_recipients(db: Session, group_id: UUID, recipient_ids: list[UUID]) -> list[UUID]:
    """
    Deduplicated recipient ids, all active WORKER members of the group.

    Raises:
        ValidationError: any id is missing, inactive, not a worker or not a member
    """
    requested = list(dict.fromkeys(recipient_ids))
    if not requested:
        raise ValidationError("At least one recipient is required", fields={"recipient_ids": "required"})

    eligible = membership_service.list_active_worker_ids(db, group_id, requested)
    invalid = [rid for rid in requested if rid not in eligible]
    if invalid:
        raise ValidationError(
            "Some recipients are invalid or not active members of this group",
            fields={"recipient_ids": ",".join(str(rid) for rid in invalid)},
        )
    return requested


def _send_to_recipient(
    session_factory: Callable[[], Session],
    principal: Principal,
    group_id: UUID,
    recipient_id: UUID,
    body: str,
    publisher: MessageEventPublisher | None,
) -> BroadcastRecipientResult:
    db = session_factory()
    try:
        conversation = conversation_service.resolve_or_create_active_conversation(
            db, group_id, recipient_id, subject=settings.BROADCAST_SUBJECT
        )
        message = conversation_service.append_message(
            db,
            principal,
            conversation.id,
            body=body,
            language=principal.locale,
            publisher=publisher,
        )
        recipient = db.get(User, recipient_id)
        return BroadcastRecipientResult(
            recipient_id=recipient_id,
            recipient_name=recipient.name if recipient else None,
            conversation_id=conversation.id,
            message_id=message.id,
        )
    finally:
        db.close()


def broadcast_message(
    db: Session,
    principal: Principal,
    group_id: UUID,
    body: str,
    recipient_ids: list[UUID],
    session_factory: Callable[[], Session],
    publisher: MessageEventPublisher | None = None,
) -> BroadcastResult:
    """
    Fan a message out to the given workers, one isolated send per recipient.

    Returns ``{sent, failed, total, results}``; ``results`` lists successful
    sends only. Per-recipient failures are logged and counted, never raised.
    """
    ensure_role(principal.role, ROLES_CAN_BROADCAST)
    group = group_service.get_group(db, group_id, include_deleted=False)

    memberships = membership_service.get_memberships(db, principal.id)
    if not can_access_group(principal.role, memberships, group.id):
        raise AuthorizationError("Not authorized to broadcast to this group")

    if not body.strip():
        raise ValidationError("Message body is required", fields={"message": "required"})

    recipients = validate_recipients(db, group.id, recipient_ids)

    results: list[BroadcastRecipientResult] = []
    failed = 0
    max_workers = max(1, min(settings.BROADCAST_MAX_WORKERS, len(recipients)))

    with concurrent.futures.ThreadPoolExecutor(max_workers=max_workers) as pool:
        futures = {
            pool.submit(
                _send_to_recipient,
                session_factory,
                principal,
                group.id,
                recipient_id,
                body,
                publisher,
            ): recipient_id
            for recipient_id in recipients
        }
        for future in concurrent.futures.as_completed(futures):
            recipient_id = futures[future]
            try:
                results.append(future.result())
            except Exception:
                failed += 1
                logger.warning(
                    "Broadcast send failed for recipient %s",
                    recipient_id,
                    exc_info=True,
                    extra=build_log_context(user_id=principal.id, group_id=group.id),
                )

    logger.info(
        "Broadcast finished: %s sent, %s failed",
        len(results),
        failed,
        extra=build_log_context(user_id=principal.id, group_id=group.id, operation="broadcast"),
    )
    return BroadcastResult(
        sent=len(results),
        failed=failed,
        total=len(recipients),
        results=results,
    )
