"""Tests for conversation segmentation: model output parsing, fallbacks, persistence and access."""

import json
import uuid
from datetime import datetime, timedelta

import pytest

from app.core.exceptions import NotFoundError
from app.db.enums import Role
from app.db.models import ConversationSegment
from app.services import conversation_service, segment_service
from app.services.segment_service import SegmentMessage
from conftest import FakeProvider, principal_for

BASE_TIME = datetime(2026, 3, 2, 9, 0)


def _messages(count: int) -> list[SegmentMessage]:
    roles = (Role.WORKER.value, Role.MANAGER.value)
    return [
        SegmentMessage(
            id=uuid.uuid4(),
            body=f"message {i}",
            sender_role=roles[i % 2],
            created_at=BASE_TIME + timedelta(minutes=i),
        )
        for i in range(count)
    ]


@pytest.fixture
def conversation(db, manager, worker, group):
    return conversation_service.create_conversation(
        db, principal_for(manager), group.id, worker.id, enrich=False
    )


def _chat(db, conversation, worker, manager, bodies):
    for i, body in enumerate(bodies):
        author = worker if i % 2 == 0 else manager
        conversation_service.append_message(
            db, principal_for(author), conversation.id, body, author.locale, enrich=False
        )


# =============================================================================
# Parsing
# =============================================================================

def test_numbered_transcript_labels_speakers():
    transcript = segment_service.format_numbered_transcript(_messages(2))

    assert transcript.splitlines() == [
        "[Message 0] [2026-03-02 09:00] Member: message 0",
        "[Message 1] [2026-03-02 09:01] Manager: message 1",
    ]


def test_drafts_take_ids_and_times_from_messages():
    messages = _messages(5)
    output = json.dumps([
        {"title": "Sick leave", "summary": "Asked for a day off", "start_index": 0, "end_index": 1},
        {"title": "Shift swap", "summary": "Swapped Friday", "startIndex": 2, "endIndex": 4},
    ])

    drafts = segment_service.drafts_from_output(output, messages)

    assert [d.title for d in drafts] == ["Sick leave", "Shift swap"]
    assert drafts[0].message_ids == [messages[0].id, messages[1].id]
    assert drafts[1].message_ids == [m.id for m in messages[2:]]
    assert drafts[1].started_at == messages[2].created_at
    assert drafts[1].ended_at == messages[4].created_at


def test_drafts_clamp_ranges_and_skip_unusable_items():
    messages = _messages(3)
    output = json.dumps([
        {"title": " ", "start_index": -2, "end_index": 0},
        {"title": "Backwards", "start_index": 2, "end_index": 1},
        {"title": "No indices"},
        "not an object",
        {"title": "Tail", "start_index": 1, "end_index": 40},
    ])

    drafts = segment_service.drafts_from_output(output, messages)

    assert [d.title for d in drafts] == [segment_service.UNTITLED, "Tail"]
    assert drafts[1].message_ids == [messages[1].id, messages[2].id]


def test_drafts_none_when_nothing_usable():
    assert segment_service.drafts_from_output("Sorry, I cannot help.", _messages(2)) is None
    assert segment_service.drafts_from_output("[]", _messages(2)) is None


# =============================================================================
# Model call
# =============================================================================

async def test_segment_without_messages_or_provider():
    assert await segment_service.segment_messages([], FakeProvider()) == []

    messages = _messages(3)
    [draft] = await segment_service.segment_messages(messages, None)
    assert draft.title == segment_service.WHOLE_CONVERSATION
    assert draft.summary == ""
    assert draft.message_ids == [m.id for m in messages]


async def test_segment_failure_falls_back_to_one_flagged_segment():
    messages = _messages(2)

    down = FakeProvider(failing={"segments"})
    [draft] = await segment_service.segment_messages(messages, down)
    assert draft.summary == segment_service.ANALYSIS_FAILED

    garbled = FakeProvider(replies={"segments": "topics: many"})
    [draft] = await segment_service.segment_messages(messages, garbled)
    assert draft.title == segment_service.WHOLE_CONVERSATION
    assert draft.summary == segment_service.ANALYSIS_FAILED


async def test_segment_sends_numbered_transcript():
    provider = FakeProvider(replies={"segments": '[{"title": "All", "start_index": 0, "end_index": 1}]'})

    [draft] = await segment_service.segment_messages(_messages(2), provider)

    assert draft.title == "All"
    [call] = provider.calls_of("segments")
    assert "[Message 1]" in call[-1].content


# =============================================================================
# Persistence and access
# =============================================================================

def test_regenerate_replaces_segments(db, conversation, worker, manager, fake_provider):
    _chat(db, conversation, worker, manager, ["Tôi bị sốt", "お大事に", "Ca làm thứ sáu?", "9時からです"])
    fake_provider.replies["segments"] = json.dumps([
        {"title": "Fever", "summary": "Member is sick", "start_index": 0, "end_index": 1},
        {"title": "Friday shift", "summary": "Shift time", "start_index": 2, "end_index": 3},
    ])

    segments = segment_service.regenerate_conversation_segments(db, principal_for(manager), conversation.id)

    assert [s.title for s in segments] == ["Fever", "Friday shift"]
    assert all(len(s.message_ids) == 2 for s in segments)
    assert segments[0].started_at <= segments[1].started_at

    fake_provider.replies["segments"] = '[{"title": "Everything", "start_index": 0, "end_index": 3}]'
    segment_service.regenerate_conversation_segments(db, principal_for(manager), conversation.id)

    stored = db.query(ConversationSegment).all()
    assert [s.title for s in stored] == ["Everything"]
    assert len(stored[0].message_ids) == 4


def test_regenerate_empty_conversation_writes_nothing(db, conversation, manager, fake_provider):
    assert segment_service.regenerate_conversation_segments(db, principal_for(manager), conversation.id) == []
    assert fake_provider.calls == []
    assert db.query(ConversationSegment).count() == 0


def test_segments_follow_conversation_access(db, conversation, worker, manager, other_manager, fake_provider):
    _chat(db, conversation, worker, manager, ["Tôi bị sốt"])
    segment_service.regenerate_segments(db, conversation.id)

    assert len(segment_service.get_conversation_segments(db, principal_for(worker), conversation.id)) == 1
    with pytest.raises(NotFoundError):
        segment_service.get_conversation_segments(db, principal_for(other_manager), conversation.id)
    with pytest.raises(NotFoundError):
        segment_service.regenerate_conversation_segments(db, principal_for(other_manager), conversation.id)


def test_append_regenerates_segments_when_enabled(db, conversation, worker, fake_provider, monkeypatch):
    monkeypatch.setattr(conversation_service.settings, "SEGMENTS_REGENERATE_ON_APPEND", True)
    fake_provider.replies["segments"] = '[{"title": "Fever", "start_index": 0, "end_index": 0}]'

    conversation_service.append_message(db, principal_for(worker), conversation.id, "Tôi bị sốt", "vi")

    assert [s.title for s in db.query(ConversationSegment).all()] == ["Fever"]


def test_append_survives_segmentation_failure(db, conversation, worker, fake_provider, monkeypatch):
    monkeypatch.setattr(conversation_service.settings, "SEGMENTS_REGENERATE_ON_APPEND", True)

    def broken(db, conversation_id):
        raise RuntimeError("segment store unavailable")

    monkeypatch.setattr(segment_service, "regenerate_segments", broken)

    message = conversation_service.append_message(db, principal_for(worker), conversation.id, "Tôi bị sốt", "vi")
    assert message.id is not None
