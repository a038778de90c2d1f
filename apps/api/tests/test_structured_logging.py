"""Tests for structured logging helpers."""

import logging
import uuid

from app.core.structured_logging import build_log_context, configure_logging


def test_build_log_context_includes_only_provided_fields():
    conversation_id = uuid.uuid4()
    context = build_log_context(
        user_id="user-1",
        conversation_id=conversation_id,
        message_id="msg-1",
        group_id="group-1",
        operation="append_message",
    )

    assert context == {
        "user_id": "user-1",
        "conversation_id": str(conversation_id),
        "message_id": "msg-1",
        "group_id": "group-1",
        "operation": "append_message",
    }


def test_build_log_context_ignores_empty_fields():
    context = build_log_context(
        user_id="",
        conversation_id=None,
        operation="enrich",
    )

    assert context == {"operation": "enrich"}


def test_configure_logging_accepts_lowercase_level(monkeypatch):
    calls = []
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: calls.append(kwargs))

    configure_logging("debug")

    assert calls[0]["level"] == "DEBUG"
