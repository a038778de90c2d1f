"""HTTP API tests: auth, error shape, conversations, consultations, broadcast, directory."""

import uuid

import pytest
from httpx import ASGITransport, AsyncClient

from app.core.websocket import NEW_MESSAGE_EVENT
from app.main import app
from app.services import broadcast_service

MEMBER_TEXT = "Hôm nay tôi muốn nghỉ làm một ngày"


class FakeWebSocket:
    def __init__(self):
        self.sent: list[str] = []

    async def accept(self):
        pass

    async def send_text(self, data: str):
        self.sent.append(data)


async def _create_conversation(client, group, worker, **extra) -> dict:
    response = await client.post(
        "/conversations",
        json={"group_id": str(group.id), "worker_id": str(worker.id), "subject": "Shift", **extra},
    )
    assert response.status_code == 201, response.text
    return response.json()


# =============================================================================
# Plumbing
# =============================================================================

async def test_health(client_for, manager):
    response = await client_for(manager).get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


async def test_unauthenticated_requests_are_rejected(client_for):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/conversations")

    assert response.status_code == 401
    assert response.json() == {"detail": "Not authenticated", "code": "AUTHENTICATION_ERROR"}


async def test_bearer_token_authenticates(client_for, manager):
    from app.core.security import create_session_token

    client = client_for(manager)
    client.cookies.clear()

    response = await client.get("/conversations", headers={"Authorization": "Basic abc"})
    assert response.status_code == 401

    token = create_session_token(manager.id, manager.role, manager.locale)
    response = await client.get("/conversations", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 200


async def test_mutations_require_csrf_header(client_for, manager, worker, group):
    client = client_for(manager)
    del client.headers["X-Requested-With"]

    response = await client.post(
        "/conversations", json={"group_id": str(group.id), "worker_id": str(worker.id)}
    )

    assert response.status_code == 403
    assert response.json()["code"] == "AUTHORIZATION_ERROR"


# =============================================================================
# Conversations
# =============================================================================

async def test_conversation_flow(client_for, hub, manager, worker, group, fake_provider):
    fake_provider.replies["translate"] = "今日は一日休みたいです"
    manager_client = client_for(manager)
    worker_client = client_for(worker)

    conversation = await _create_conversation(manager_client, group, worker)
    assert conversation["status"] == "ACTIVE"
    assert conversation["worker"]["id"] == str(worker.id)

    subscriber = FakeWebSocket()
    await hub.connect(subscriber)
    await hub.join(subscriber, conversation["id"])

    response = await worker_client.post(
        f"/conversations/{conversation['id']}/messages",
        json={"body": MEMBER_TEXT, "language": "vi"},
    )
    assert response.status_code == 201, response.text
    message = response.json()
    assert message["artifact"]["translation"] == "今日は一日休みたいです"
    assert len(message["artifact"]["suggestions"]) == 3

    await hub.drain()
    assert len(subscriber.sent) == 1
    assert NEW_MESSAGE_EVENT in subscriber.sent[0]
    assert message["id"] in subscriber.sent[0]

    detail = (await manager_client.get(f"/conversations/{conversation['id']}")).json()
    assert [m["id"] for m in detail["messages"]] == [message["id"]]
    assert detail["messages"][0]["sender"]["role"] == "WORKER"

    listed = (await manager_client.get("/conversations")).json()
    assert [c["id"] for c in listed] == [conversation["id"]]
    assert listed[0]["last_message"]["id"] == message["id"]


async def test_create_with_initial_message_and_metadata(client_for, manager, worker, group):
    conversation = await _create_conversation(
        client_for(manager),
        group,
        worker,
        initial_message={"body": "明日のシフトは9時からです", "language": "ja", "metadata": {"pinned": True}},
    )

    detail = (await client_for(worker).get(f"/conversations/{conversation['id']}")).json()
    assert detail["messages"][0]["metadata"] == {"pinned": True}
    assert detail["messages"][0]["artifact"]["translation_lang"] == "vi"


async def test_out_of_scope_conversation_is_404(client_for, manager, other_manager, worker, group):
    conversation = await _create_conversation(client_for(manager), group, worker)

    response = await client_for(other_manager).get(f"/conversations/{conversation['id']}")
    assert response.status_code == 404
    assert response.json() == {"detail": "Conversation not found", "code": "NOT_FOUND_ERROR"}

    response = await client_for(other_manager).get(f"/conversations/{uuid.uuid4()}")
    assert response.status_code == 404


async def test_message_validation(client_for, manager, worker, group):
    conversation = await _create_conversation(client_for(manager), group, worker)

    response = await client_for(worker).post(
        f"/conversations/{conversation['id']}/messages",
        json={"body": "", "language": "vi", "type": "IMAGE"},
    )
    assert response.status_code == 422


async def test_regenerate_suggestions(client_for, manager, worker, group, fake_provider):
    manager_client = client_for(manager)
    conversation = await _create_conversation(manager_client, group, worker)

    preview = await manager_client.post(f"/conversations/{conversation['id']}/suggestions")
    assert preview.status_code == 200, preview.text
    assert preview.json()["kind"] == "preview"
    assert len(preview.json()["suggestions"]) == 3

    await client_for(worker).post(
        f"/conversations/{conversation['id']}/messages", json={"body": MEMBER_TEXT, "language": "vi"}
    )
    regenerated = await manager_client.post(f"/conversations/{conversation['id']}/suggestions")
    body = regenerated.json()
    assert body["kind"] == "message"
    assert [s["tone"] for s in body["message"]["artifact"]["suggestions"]] == ["question", "empathy", "solution"]

    fake_provider.failing.add("suggest")
    failed = await manager_client.post(f"/conversations/{conversation['id']}/suggestions")
    assert failed.status_code == 503
    assert failed.json()["code"] == "LLM_SERVICE_ERROR"


# =============================================================================
# Consultations and logs
# =============================================================================

async def test_consultation_endpoints(client_for, manager, worker, group, fake_provider):
    client = client_for(manager)
    conversation = await _create_conversation(client, group, worker)
    cid = conversation["id"]

    assert (await client.get(f"/consultations/{cid}")).json() is None

    response = await client.put(f"/consultations/{cid}", json={"category": "Health", "tags": ["fever"]})
    assert response.status_code == 200, response.text
    case = response.json()
    assert case["status"] == "IN_PROGRESS"

    response = await client.patch(f"/consultations/{cid}/tags", json={"tags": ["fever", "sick leave"]})
    assert response.json()["tags"] == ["fever", "sick leave"]

    await client_for(worker).post(f"/conversations/{cid}/messages", json={"body": MEMBER_TEXT, "language": "vi"})
    suggested = await client.post(f"/consultations/{cid}/tags")
    assert suggested.json()["category"] == "Health"

    logged = await client.post(
        "/tags/log",
        json={"consultation_id": case["id"], "action": "AI_SUGGESTED", "tag_name": "sick leave", "is_ai_generated": True},
    )
    assert logged.status_code == 201
    assert logged.json()["action"] == "AI_SUGGESTED"

    forbidden = await client_for(worker).put(f"/consultations/{cid}", json={"category": "Pay"})
    assert forbidden.status_code == 403


async def test_suggestion_usage_log(client_for, manager, worker, group):
    conversation = await _create_conversation(client_for(manager), group, worker)
    message = (
        await client_for(worker).post(
            f"/conversations/{conversation['id']}/messages", json={"body": MEMBER_TEXT, "language": "vi"}
        )
    ).json()

    response = await client_for(manager).post(
        "/suggestions/log",
        json={
            "message_id": message["id"],
            "suggestion_index": 0,
            "suggestion_text": "How are you feeling?",
            "action": "USED",
        },
    )
    assert response.status_code == 201
    assert response.json()["action"] == "USED"


# =============================================================================
# Broadcast, compliance, directory
# =============================================================================

async def test_broadcast_endpoint(client_for, manager, worker, other_worker, group, monkeypatch):
    monkeypatch.setattr(broadcast_service.settings, "BROADCAST_MAX_WORKERS", 1)
    client = client_for(manager)

    response = await client.post(
        "/broadcast",
        json={
            "group_id": str(group.id),
            "message": "明日は棚卸しがあります",
            "recipient_ids": [str(worker.id), str(other_worker.id)],
        },
    )
    assert response.status_code == 200, response.text
    assert {k: response.json()[k] for k in ("sent", "failed", "total")} == {"sent": 2, "failed": 0, "total": 2}

    rejected = await client.post(
        "/broadcast",
        json={"group_id": str(group.id), "message": "Hello", "recipient_ids": [str(manager.id)]},
    )
    assert rejected.status_code == 400
    assert rejected.json()["code"] == "VALIDATION_ERROR"


async def test_compliance_check(client_for, manager, fake_provider):
    fake_provider.replies["compliance"] = '{"risk_level": "medium", "reason": "Abrupt tone"}'

    response = await client_for(manager).post("/compliance/check", json={"message": "Come in now."})

    assert response.json() == {"risk_level": "medium", "reason": "Abrupt tone"}


async def test_group_directory(client_for, admin, manager, worker, group, other_group, org):
    listed = (await client_for(manager).get("/groups")).json()
    assert [(g["id"], g["member_count"]) for g in listed] == [(str(group.id), 2)]

    available = (await client_for(worker).get("/groups/available")).json()
    assert [g["id"] for g in available] == [str(group.id)]

    assert (await client_for(manager).get(f"/groups/{other_group.id}")).status_code == 404

    created = await client_for(admin).post(
        "/groups", json={"organization_id": str(org.id), "name": "Kyoto Store"}
    )
    assert created.status_code == 201
    deleted = await client_for(admin).delete(f"/groups/{created.json()['id']}")
    assert deleted.status_code in (200, 204)

    orgs = await client_for(admin).get("/organizations")
    assert [o["id"] for o in orgs.json()] == [str(org.id)]
    assert (await client_for(manager).get("/organizations")).status_code == 403


@pytest.mark.parametrize("path", ["/groups/workers", "/groups/available"])
async def test_directory_lookups_require_auth(path):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        assert (await client.get(path)).status_code == 401


# =============================================================================
# Segments and users
# =============================================================================

async def test_conversation_segments(client_for, manager, worker, other_manager, group, fake_provider):
    manager_client = client_for(manager)
    conversation = await _create_conversation(manager_client, group, worker)
    path = f"/conversations/{conversation['id']}/segments"

    assert (await manager_client.get(path)).json() == {"segments": []}

    await client_for(worker).post(
        f"/conversations/{conversation['id']}/messages", json={"body": MEMBER_TEXT, "language": "vi"}
    )
    fake_provider.replies["segments"] = '[{"title": "Day off", "summary": "Asked for leave", "start_index": 0, "end_index": 0}]'
    regenerated = await manager_client.post(path)
    assert regenerated.status_code == 200, regenerated.text
    [segment] = regenerated.json()["segments"]
    assert segment["title"] == "Day off"
    assert len(segment["message_ids"]) == 1

    assert (await client_for(worker).get(path)).json()["segments"][0]["id"] == segment["id"]
    assert (await client_for(other_manager).get(path)).status_code == 404


async def test_user_administration(client_for, manager, worker, group):
    client = client_for(manager)

    created = await client.post(
        "/users",
        json={
            "email": "lan@example.com",
            "name": "Pham Lan",
            "locale": "vi",
            "group_ids": [str(group.id)],
            "profile": {"country_of_origin": "Vietnam", "hire_date": "2026-04-01"},
        },
    )
    assert created.status_code == 201, created.text
    user = created.json()
    assert user["role"] == "WORKER"
    assert user["hire_date"] == "2026-04-01"
    assert [m["group"]["id"] for m in user["memberships"]] == [str(group.id)]

    listed = (await client.get("/users")).json()
    assert user["id"] in {u["id"] for u in listed}

    renamed = await client.patch(f"/users/{user['id']}", json={"name": "Pham Thi Lan"})
    assert renamed.json()["name"] == "Pham Thi Lan"

    status = await client.patch(f"/users/{user['id']}/status", json={"is_active": False})
    assert status.status_code == 200
    assert status.json()["is_active"] is False

    groups = await client.put(f"/users/{worker.id}/groups", json={"group_ids": [str(group.id)]})
    assert groups.status_code == 200

    assert (await client_for(worker).get("/users")).status_code == 403
    assert (await client_for(worker).get(f"/users/{worker.id}")).json()["name"] == "Nguyen"


async def test_deactivated_user_is_rejected(client_for, manager, worker):
    worker_client = client_for(worker)
    assert (await worker_client.get("/conversations")).status_code == 200

    response = await client_for(manager).patch(f"/users/{worker.id}/status", json={"is_active": False})
    assert response.status_code == 200

    rejected = await worker_client.get("/conversations")
    assert rejected.status_code == 401
    assert rejected.json()["code"] == "AUTHENTICATION_ERROR"
