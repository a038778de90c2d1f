"""Tests for consultation cases, tag change logs, AI tags and suggestion usage logs."""

import uuid

import pytest

from app.core.exceptions import AuthorizationError, LLMServiceError, NotFoundError, ValidationError
from app.db.enums import AuditEventType, CaseStatus, ConversationStatus, SuggestionAction, TagChangeAction
from app.db.models import AuditLog, SuggestionUsageLog, TagChangeLog
from app.schemas.consultation import ConsultationUpsert, SuggestionUsageCreate
from app.services import audit_service, consultation_service, conversation_service, suggestion_log_service
from conftest import principal_for


@pytest.fixture
def conversation(db, manager, worker, group):
    return conversation_service.create_conversation(
        db, principal_for(manager), group.id, worker.id, enrich=False
    )


def _tag_logs(db) -> list[tuple[str, str]]:
    return sorted((log.action, log.tag_name) for log in db.query(TagChangeLog).all())


def test_no_case_yet(db, conversation, manager):
    assert consultation_service.get_consultation_case(db, principal_for(manager), conversation.id) is None


def test_create_requires_category(db, conversation, manager):
    with pytest.raises(ValidationError):
        consultation_service.upsert_consultation_case(
            db, principal_for(manager), conversation.id, ConsultationUpsert(summary="No category")
        )


def test_create_case_is_audited(db, conversation, manager, org):
    case = consultation_service.upsert_consultation_case(
        db,
        principal_for(manager),
        conversation.id,
        ConsultationUpsert(category="Health", summary="Fever", tags=["fever", "fever", " sick leave "]),
    )

    assert case.category == "Health"
    assert case.status == CaseStatus.IN_PROGRESS.value
    assert case.tags == ["fever", "sick leave"]
    assert _tag_logs(db) == [("ADDED", "fever"), ("ADDED", "sick leave")]

    entry = db.query(AuditLog).one()
    assert entry.event_type == AuditEventType.CONSULTATION_CREATED.value
    assert entry.target_id == case.id
    assert entry.details["changes"]["category"] == {"before": None, "after": "Health"}
    assert audit_service.verify_chain(db, org.id)


def test_update_records_diff_and_drives_conversation_status(db, conversation, manager):
    principal = principal_for(manager)
    consultation_service.upsert_consultation_case(
        db, principal, conversation.id, ConsultationUpsert(category="Health", tags=["fever"])
    )

    case = consultation_service.upsert_consultation_case(
        db,
        principal,
        conversation.id,
        ConsultationUpsert(status=CaseStatus.RESOLVED, tags=["sick leave"]),
    )

    assert case.category == "Health"
    assert case.status == CaseStatus.RESOLVED.value
    db.refresh(conversation)
    assert conversation.status == ConversationStatus.RESOLVED.value

    update = (
        db.query(AuditLog)
        .filter(AuditLog.event_type == AuditEventType.CONSULTATION_UPDATED.value)
        .one()
    )
    changes = update.details["changes"]
    assert changes["status"] == {"before": "IN_PROGRESS", "after": "RESOLVED"}
    assert changes["tags"] == {"before": ["fever"], "after": ["sick leave"]}
    assert "category" not in changes
    assert _tag_logs(db) == [("ADDED", "fever"), ("ADDED", "sick leave"), ("REMOVED", "fever")]


def test_unchanged_update_writes_no_audit(db, conversation, manager):
    principal = principal_for(manager)
    consultation_service.upsert_consultation_case(db, principal, conversation.id, ConsultationUpsert(category="Pay"))
    consultation_service.upsert_consultation_case(db, principal, conversation.id, ConsultationUpsert(category="Pay"))

    assert db.query(AuditLog).count() == 1


def test_workers_cannot_manage_cases(db, conversation, worker):
    with pytest.raises(AuthorizationError):
        consultation_service.upsert_consultation_case(
            db, principal_for(worker), conversation.id, ConsultationUpsert(category="Pay")
        )
    with pytest.raises(AuthorizationError):
        consultation_service.update_consultation_tags(db, principal_for(worker), conversation.id, ["pay"])


def test_out_of_scope_case_is_not_found(db, conversation, other_manager):
    with pytest.raises(NotFoundError):
        consultation_service.upsert_consultation_case(
            db, principal_for(other_manager), conversation.id, ConsultationUpsert(category="Pay")
        )


def test_update_tags(db, conversation, manager):
    principal = principal_for(manager)
    with pytest.raises(NotFoundError):
        consultation_service.update_consultation_tags(db, principal, conversation.id, ["pay"])

    consultation_service.upsert_consultation_case(
        db, principal, conversation.id, ConsultationUpsert(category="Pay", tags=["pay"])
    )
    case = consultation_service.update_consultation_tags(
        db, principal, conversation.id, ["pay", "overtime"], is_ai_generated=True
    )

    assert case.tags == ["pay", "overtime"]
    added = db.query(TagChangeLog).filter(TagChangeLog.tag_name == "overtime").one()
    assert added.action == TagChangeAction.ADDED.value
    assert added.is_ai_generated is True
    assert db.query(AuditLog).count() == 2


def test_log_tag_change(db, conversation, manager, other_manager):
    case = consultation_service.upsert_consultation_case(
        db, principal_for(manager), conversation.id, ConsultationUpsert(category="Pay")
    )

    entry = consultation_service.log_tag_change(
        db,
        principal_for(manager),
        case.id,
        TagChangeAction.AI_SUGGESTED,
        "overtime",
        new_value="overtime",
        is_ai_generated=True,
    )
    assert entry.action == "AI_SUGGESTED"
    assert entry.user_id == manager.id

    with pytest.raises(NotFoundError):
        consultation_service.log_tag_change(db, principal_for(other_manager), case.id, TagChangeAction.ADDED, "x")
    with pytest.raises(NotFoundError):
        consultation_service.log_tag_change(db, principal_for(manager), uuid.uuid4(), TagChangeAction.ADDED, "x")



def test_tag_log_hides_whether_case_exists(db, conversation, manager, other_manager):
    case = consultation_service.upsert_consultation_case(
        db, principal_for(manager), conversation.id, ConsultationUpsert(category="Pay")
    )

    errors = []
    for consultation_id in (case.id, uuid.uuid4()):
        with pytest.raises(NotFoundError) as exc_info:
            consultation_service.log_tag_change(
                db, principal_for(other_manager), consultation_id, TagChangeAction.ADDED, "x"
            )
        errors.append(exc_info.value.message)

    assert errors == ["Consultation not found", "Consultation not found"]
    assert db.query(TagChangeLog).count() == 0


# =============================================================================
# AI tags
# =============================================================================

def test_generate_tags_empty_conversation(db, conversation, manager, fake_provider):
    result = consultation_service.generate_consultation_tags(db, principal_for(manager), conversation.id)

    assert result.category == "Uncategorized"
    assert result.tags == []
    assert fake_provider.calls == []


def test_generate_tags(db, conversation, manager, worker, fake_provider):
    conversation_service.append_message(
        db, principal_for(worker), conversation.id, "I have a fever since yesterday", "en", enrich=False
    )

    result = consultation_service.generate_consultation_tags(db, principal_for(manager), conversation.id)

    assert result.category == "Health"
    assert result.tags == ["fever", "sick leave"]
    assert db.query(TagChangeLog).count() == 0
    transcript = fake_provider.calls_of("tags")[0][-1].content
    assert "Member: I have a fever since yesterday" in transcript


def test_generate_tags_failure(db, conversation, manager, worker, fake_provider):
    conversation_service.append_message(db, principal_for(worker), conversation.id, "Hello there", "en", enrich=False)
    fake_provider.failing.add("tags")

    with pytest.raises(LLMServiceError):
        consultation_service.generate_consultation_tags(db, principal_for(manager), conversation.id)


def test_generate_tags_without_provider(db, conversation, manager, worker):
    conversation_service.append_message(db, principal_for(worker), conversation.id, "Hello there", "en", enrich=False)

    with pytest.raises(LLMServiceError):
        consultation_service.generate_consultation_tags(db, principal_for(manager), conversation.id)


# =============================================================================
# Suggestion usage
# =============================================================================

def test_log_suggestion_usage(db, conversation, manager, worker, other_manager):
    message = conversation_service.append_message(
        db, principal_for(worker), conversation.id, "Hello there", "en", enrich=False
    )
    data = SuggestionUsageCreate(
        message_id=message.id,
        suggestion_index=1,
        suggestion_text="That sounds hard.",
        action=SuggestionAction.EDITED,
        edited_text="That sounds really hard.",
        model_used="fake-model",
        tokens_used=15,
    )

    entry = suggestion_log_service.log_suggestion_usage(db, principal_for(manager), data)
    assert entry.action == "EDITED"
    assert db.query(SuggestionUsageLog).count() == 1

    with pytest.raises(NotFoundError):
        suggestion_log_service.log_suggestion_usage(db, principal_for(other_manager), data)
    with pytest.raises(NotFoundError):
        suggestion_log_service.log_suggestion_usage(
            db, principal_for(manager), data.model_copy(update={"message_id": uuid.uuid4()})
        )


def test_usage_log_hides_whether_message_exists(db, conversation, manager, worker, other_manager):
    message = conversation_service.append_message(
        db, principal_for(worker), conversation.id, "Hello there", "en", enrich=False
    )

    errors = []
    for message_id in (message.id, uuid.uuid4()):
        data = SuggestionUsageCreate(
            message_id=message_id,
            suggestion_index=0,
            suggestion_text="Thanks for letting me know.",
            action=SuggestionAction.USED,
        )
        with pytest.raises(NotFoundError) as exc_info:
            suggestion_log_service.log_suggestion_usage(db, principal_for(other_manager), data)
        errors.append(exc_info.value.message)

    assert errors == ["Message not found", "Message not found"]
    assert db.query(SuggestionUsageLog).count() == 0
