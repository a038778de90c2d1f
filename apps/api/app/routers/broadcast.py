"""Broadcast router."""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.core.deps import (
    get_current_principal,
    get_db,
    get_event_hub,
    get_session_factory,
    require_csrf_header,
)
from app.core.rate_limit import BROADCAST_LIMIT, limiter
from app.core.websocket import ConversationEventHub
from app.schemas.auth import Principal
from app.schemas.broadcast import BroadcastRequest, BroadcastResult
from app.services import broadcast_service

router = APIRouter()


@router.post("", response_model=BroadcastResult, dependencies=[Depends(require_csrf_header)])
@limiter.limit(BROADCAST_LIMIT)
def broadcast(
    request: Request,
    data: BroadcastRequest,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
    session_factory=Depends(get_session_factory),
    hub: ConversationEventHub = Depends(get_event_hub),
):
    """
    Send one message to several workers of a group.

    Rejected as a whole when any recipient is ineligible; after that each
    recipient succeeds or fails on its own.
    """
    return broadcast_service.broadcast_message(
        db,
        principal,
        group_id=data.group_id,
        body=data.message,
        recipient_ids=data.recipient_ids,
        session_factory=session_factory,
        publisher=hub,
    )
