"""Enum definitions for application constants."""

from enum import Enum


class Role(str, Enum):
    """
    Global user roles with increasing privilege levels.

    - WORKER: case worker; sees only their own conversations
    - MANAGER: handles conversations of the groups they belong to
    - AREA_MANAGER: oversees every group
    - SYSTEM_ADMIN: platform admin (organizations, groups, migrations)

    Ordering lives in ``app.core.permissions.ROLE_RANK``.
    """

    WORKER = "WORKER"
    MANAGER = "MANAGER"
    AREA_MANAGER = "AREA_MANAGER"
    SYSTEM_ADMIN = "SYSTEM_ADMIN"

    @classmethod
    def has_value(cls, value: str) -> bool:
        """Check if value is a valid role."""
        return value in cls._value2member_map_


class MembershipRole(str, Enum):
    """In-group role, independent of the global Role."""

    MEMBER = "MEMBER"
    MANAGER = "MANAGER"


class ConversationStatus(str, Enum):
    ACTIVE = "ACTIVE"
    ON_HOLD = "ON_HOLD"
    RESOLVED = "RESOLVED"
    ESCALATED = "ESCALATED"


class MessageType(str, Enum):
    TEXT = "TEXT"
    IMAGE = "IMAGE"
    FILE = "FILE"
    SYSTEM = "SYSTEM"


class CaseStatus(str, Enum):
    """Consultation case status (mirrors the conversation lifecycle)."""

    IN_PROGRESS = "IN_PROGRESS"
    ON_HOLD = "ON_HOLD"
    RESOLVED = "RESOLVED"
    ESCALATED = "ESCALATED"


class CasePriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class TagChangeAction(str, Enum):
    ADDED = "ADDED"
    REMOVED = "REMOVED"
    MODIFIED = "MODIFIED"
    AI_SUGGESTED = "AI_SUGGESTED"


class HealthConsultationState(str, Enum):
    """
    Scripted health consultation flow, stored on the conversation.

    No state means no consultation has started; COMPLETED restarts when a
    new health concern is raised.
    """

    WAITING_FOR_INTENT = "WAITING_FOR_INTENT"
    WAITING_FOR_SYMPTOM_DETAILS = "WAITING_FOR_SYMPTOM_DETAILS"
    WAITING_FOR_SCHEDULE = "WAITING_FOR_SCHEDULE"
    COMPLETED = "COMPLETED"


class SuggestionAction(str, Enum):
    USED = "USED"
    EDITED = "EDITED"
    IGNORED = "IGNORED"


class AuditEventType(str, Enum):
    """
    Audit events recorded by the messaging core.

    Groups:
    - GROUP_*: directory administration
    - USER_*: user directory (global chain, no organization)
    - CONSULTATION_*: case mutations
    """

    GROUP_CREATED = "group_created"
    GROUP_UPDATED = "group_updated"
    GROUP_DELETED = "group_deleted"
    GROUP_RESTORED = "group_restored"
    GROUP_DATA_MIGRATED = "group_data_migrated"

    USER_CREATED = "user_created"
    USER_UPDATED = "user_updated"
    USER_ACTIVATED = "user_activated"
    USER_DEACTIVATED = "user_deactivated"
    USER_GROUPS_UPDATED = "user_groups_updated"

    CONSULTATION_CREATED = "consultation_created"
    CONSULTATION_UPDATED = "consultation_updated"


# Map conversation status to the case status written alongside it
CONVERSATION_TO_CASE_STATUS = {
    ConversationStatus.ACTIVE: CaseStatus.IN_PROGRESS,
    ConversationStatus.ON_HOLD: CaseStatus.ON_HOLD,
    ConversationStatus.RESOLVED: CaseStatus.RESOLVED,
    ConversationStatus.ESCALATED: CaseStatus.ESCALATED,
}

CASE_TO_CONVERSATION_STATUS = {v: k for k, v in CONVERSATION_TO_CASE_STATUS.items()}
