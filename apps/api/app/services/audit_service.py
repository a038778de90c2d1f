"""Audit logging service - directory and consultation change tracking.

Security guidelines:
- NEVER log message bodies or worker profile fields
- Use IDs instead of raw data where possible
- Every entry links to the previous one through a SHA256 hash chain
"""

import hashlib
import json
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db.enums import AuditEventType
from app.db.models import AuditLog

GENESIS_HASH = "0" * 64  # All zeros for first entry


def canonical_json(obj: dict | None) -> str:
    """
    Serialize object to canonical JSON for consistent hashing.

    Uses sorted keys, compact separators, and str() for non-JSON types.
    """
    return json.dumps(obj or {}, sort_keys=True, separators=(",", ":"), default=str)


def compute_audit_hash(
    prev_hash: str,
    entry_id: str,
    org_id: str,
    event_type: str,
    details_json: str,
    actor_user_id: str = "",
    target_type: str = "",
    target_id: str = "",
) -> str:
    """Hash = SHA256(all immutable fields joined with |)."""
    data = "|".join([
        prev_hash,
        entry_id,
        org_id,
        event_type,
        details_json,
        actor_user_id,
        target_type,
        target_id,
    ])
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def _for_org(query, org_id: UUID | None):
    if org_id is None:
        return query.where(AuditLog.organization_id.is_(None))
    return query.where(AuditLog.organization_id == org_id)


def get_last_audit_hash(db: Session, org_id: UUID | None) -> str:
    """
    Hash of the chain head for an org (or the global chain when None).

    The head is the hashed entry that no other entry names as its
    ``prev_hash``; equal ``created_at`` values cannot reorder it.
    """
    linked = _for_org(
        select(AuditLog.prev_hash).where(AuditLog.prev_hash.isnot(None)), org_id
    )
    query = _for_org(
        select(AuditLog.entry_hash).where(
            AuditLog.entry_hash.isnot(None),
            AuditLog.entry_hash.not_in(linked),
        ),
        org_id,
    )
    result = db.execute(query.order_by(AuditLog.created_at.desc()).limit(1)).scalar()
    return result or GENESIS_HASH


def log_event(
    db: Session,
    org_id: UUID | None,
    event_type: AuditEventType,
    actor_user_id: UUID | None = None,
    target_type: str | None = None,
    target_id: UUID | None = None,
    details: dict[str, Any] | None = None,
) -> AuditLog:
    """
    Log an audit event with hash chain.

    The entry is added and flushed, not committed: it lands in the same
    transaction as the change it describes.
    """
    prev_hash = get_last_audit_hash(db, org_id)

    entry = AuditLog(
        organization_id=org_id,
        actor_user_id=actor_user_id,
        event_type=event_type.value,
        target_type=target_type,
        target_id=target_id,
        details=details,
        prev_hash=prev_hash,
    )
    db.add(entry)
    db.flush()  # Get ID

    entry.entry_hash = compute_audit_hash(
        prev_hash=prev_hash,
        entry_id=str(entry.id),
        org_id=str(org_id) if org_id else "",
        event_type=event_type.value,
        details_json=canonical_json(details),
        actor_user_id=str(actor_user_id) if actor_user_id else "",
        target_type=target_type or "",
        target_id=str(target_id) if target_id else "",
    )
    # Sessions do not autoflush; the next log_event must see this hash
    db.flush()
    return entry


def verify_chain(db: Session, org_id: UUID | None) -> bool:
    """Walk the chain from the genesis hash, recomputing every entry."""
    entries = db.execute(_for_org(select(AuditLog), org_id)).scalars().all()
    successors: dict[str | None, list[AuditLog]] = {}
    for entry in entries:
        successors.setdefault(entry.prev_hash, []).append(entry)

    prev_hash = GENESIS_HASH
    for _ in entries:
        following = successors.get(prev_hash, [])
        if len(following) != 1:
            return False
        entry = following[0]
        expected = compute_audit_hash(
            prev_hash=prev_hash,
            entry_id=str(entry.id),
            org_id=str(org_id) if org_id else "",
            event_type=entry.event_type,
            details_json=canonical_json(entry.details),
            actor_user_id=str(entry.actor_user_id) if entry.actor_user_id else "",
            target_type=entry.target_type or "",
            target_id=str(entry.target_id) if entry.target_id else "",
        )
        if entry.entry_hash != expected:
            return False
        prev_hash = entry.entry_hash
    return True


# =============================================================================
# Directory Events
# =============================================================================

def log_group_event(
    db: Session,
    event_type: AuditEventType,
    org_id: UUID,
    actor_user_id: UUID,
    group_id: UUID,
    details: dict[str, Any] | None = None,
) -> AuditLog:
    """Log group create/update/delete/restore/migrate."""
    return log_event(
        db=db,
        org_id=org_id,
        event_type=event_type,
        actor_user_id=actor_user_id,
        target_type="group",
        target_id=group_id,
        details=details,
    )


# =============================================================================
# Consultation Events
# =============================================================================

def log_consultation_changed(
    db: Session,
    org_id: UUID,
    actor_user_id: UUID,
    consultation_id: UUID,
    created: bool,
    changes: dict[str, Any],
) -> AuditLog:
    """Log consultation case upsert with a {field: {before, after}} diff."""
    return log_event(
        db=db,
        org_id=org_id,
        event_type=(
            AuditEventType.CONSULTATION_CREATED if created
            else AuditEventType.CONSULTATION_UPDATED
        ),
        actor_user_id=actor_user_id,
        target_type="consultation",
        target_id=consultation_id,
        details={"changes": changes},
    )


# =============================================================================
# User Directory Events
# =============================================================================

def log_user_event(
    db: Session,
    event_type: AuditEventType,
    actor_user_id: UUID,
    user_id: UUID,
    details: dict[str, Any] | None = None,
) -> AuditLog:
    """Log user create/update/activation/membership changes on the global chain."""
    return log_event(
        db=db,
        org_id=None,
        event_type=event_type,
        actor_user_id=actor_user_id,
        target_type="user",
        target_id=user_id,
        details=details,
    )
