"""Tests for broadcast fan-out."""

import uuid

import pytest

from app.core.exceptions import AuthorizationError, NotFoundError, ValidationError
from app.db.enums import MembershipRole, Role
from app.db.models import Conversation, Message
from app.services import broadcast_service, conversation_service, group_service
from conftest import principal_for

BODY = "明日は棚卸しがあります"


@pytest.fixture(autouse=True)
def single_writer(monkeypatch):
    # SQLite allows one writer at a time
    monkeypatch.setattr(broadcast_service.settings, "BROADCAST_MAX_WORKERS", 1)


def _broadcast(db, session_factory, user, group, recipients, publisher=None, body=BODY):
    return broadcast_service.broadcast_message(
        db,
        principal_for(user),
        group.id,
        body,
        [r.id if hasattr(r, "id") else r for r in recipients],
        session_factory,
        publisher,
    )


def test_broadcast_reaches_every_recipient(db, session_factory, manager, worker, other_worker, group, publisher):
    existing = conversation_service.create_conversation(
        db, principal_for(manager), group.id, worker.id, enrich=False
    )

    result = _broadcast(db, session_factory, manager, group, [worker, other_worker, worker], publisher)

    assert (result.sent, result.failed, result.total) == (2, 0, 2)
    by_recipient = {r.recipient_id: r for r in result.results}
    assert by_recipient[worker.id].conversation_id == existing.id
    assert by_recipient[other_worker.id].recipient_name == "Tran"

    db.expire_all()
    created = db.get(Conversation, by_recipient[other_worker.id].conversation_id)
    assert created.subject == broadcast_service.settings.BROADCAST_SUBJECT
    bodies = [m.body for m in db.query(Message).all()]
    assert bodies == [BODY, BODY]
    assert len(publisher.events) == 2


def test_invalid_recipient_rejects_whole_request(db, session_factory, manager, worker, group, make_user, other_group):
    outsider = make_user(Role.WORKER, memberships=[(other_group, MembershipRole.MEMBER)])
    inactive = make_user(Role.WORKER, memberships=[(group, MembershipRole.MEMBER)], is_active=False)

    for bad in (outsider, inactive, manager, uuid.uuid4()):
        with pytest.raises(ValidationError):
            _broadcast(db, session_factory, manager, group, [worker, bad])

    assert db.query(Message).count() == 0
    assert db.query(Conversation).count() == 0


def test_one_failed_send_does_not_block_others(db, session_factory, manager, worker, other_worker, group, monkeypatch):
    real_append = conversation_service.append_message

    def flaky_append(session, principal, conversation_id, *args, **kwargs):
        conversation = session.get(Conversation, conversation_id)
        if conversation.worker_id == other_worker.id:
            raise RuntimeError("store unavailable")
        return real_append(session, principal, conversation_id, *args, **kwargs)

    monkeypatch.setattr(conversation_service, "append_message", flaky_append)

    result = _broadcast(db, session_factory, manager, group, [worker, other_worker])

    assert (result.sent, result.failed, result.total) == (1, 1, 2)
    assert [r.recipient_id for r in result.results] == [worker.id]
    db.expire_all()
    assert [m.body for m in db.query(Message).all()] == [BODY]


def test_broadcast_permissions(db, session_factory, worker, other_manager, area_manager, group):
    with pytest.raises(AuthorizationError):
        _broadcast(db, session_factory, worker, group, [worker])
    with pytest.raises(AuthorizationError):
        _broadcast(db, session_factory, other_manager, group, [worker])

    result = _broadcast(db, session_factory, area_manager, group, [worker])
    assert result.sent == 1


def test_broadcast_requires_body_and_live_group(db, session_factory, manager, admin, worker, group):
    with pytest.raises(ValidationError):
        _broadcast(db, session_factory, manager, group, [worker], body="  ")
    with pytest.raises(ValidationError):
        _broadcast(db, session_factory, manager, group, [])

    group_service.soft_delete_group(db, principal_for(admin), group.id)
    with pytest.raises(NotFoundError):
        _broadcast(db, session_factory, manager, group, [worker])
