"""
Test configuration and fixtures.

Provides:
- A fresh SQLite database file per test (broadcast opens its own sessions,
  so data must be committed and visible across connections)
- Organization / group / user fixtures for every role tier
- A scripted fake AI provider and a recording event publisher
- JWT token minting and an authenticated HTTPX AsyncClient factory
"""
import os
import tempfile
import uuid
from dataclasses import dataclass, field
from typing import AsyncGenerator, Callable, Generator

os.environ["TESTING"] = "1"
os.environ["REDIS_URL"] = "memory://"
os.environ["AI_PROVIDER"] = ""
os.environ["AI_API_KEY"] = ""
os.environ["MESSAGE_ENRICHMENT_INLINE"] = "true"
os.environ.setdefault(
    "DATABASE_URL",
    "sqlite:///" + os.path.join(tempfile.gettempdir(), "messaging-api-tests.db"),
)

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from app.core.deps import COOKIE_NAME, get_db, get_session_factory
from app.core.security import create_session_token
from app.core.websocket import ConversationEventHub
from app.db.base import Base
from app.db.enums import MembershipRole, Role
from app.db.models import Group, GroupMembership, Organization, User
from app.main import app
from app.schemas.auth import Principal
from app.services import ai_provider, enrichment_service
from app.services.ai_provider import AIProvider, ChatMessage, ChatResponse


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture(scope="function")
def db(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(autouse=True)
def clear_translation_cache():
    enrichment_service.translation_cache.clear()
    yield
    enrichment_service.translation_cache.clear()


# =============================================================================
# Directory Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def org(db: Session) -> Organization:
    org = Organization(name=f"Test Organization {uuid.uuid4().hex[:6]}")
    db.add(org)
    db.commit()
    return org


def _make_group(db: Session, org: Organization, name: str) -> Group:
    group = Group(organization_id=org.id, name=name, address="1-2-3 Shibuya", phone_number="03-0000-0000")
    db.add(group)
    db.commit()
    return group


@pytest.fixture(scope="function")
def group(db: Session, org: Organization) -> Group:
    return _make_group(db, org, "Tokyo Store")


@pytest.fixture(scope="function")
def other_group(db: Session, org: Organization) -> Group:
    return _make_group(db, org, "Osaka Store")


@pytest.fixture(scope="function")
def make_user(db: Session) -> Callable[..., User]:
    """Create a user, optionally with memberships [(group, MembershipRole)]."""

    def _make(
        role: Role,
        *,
        locale: str = "ja",
        name: str | None = None,
        memberships: list[tuple[Group, MembershipRole]] | None = None,
        is_active: bool = True,
    ) -> User:
        user = User(
            email=f"{role.value.lower()}-{uuid.uuid4().hex[:8]}@test.com",
            name=name or f"{role.value.title()} User",
            role=role.value,
            locale=locale,
            is_active=is_active,
        )
        db.add(user)
        db.flush()
        for target, membership_role in memberships or []:
            db.add(GroupMembership(group_id=target.id, user_id=user.id, role=membership_role.value))
        db.commit()
        return user

    return _make


@pytest.fixture(scope="function")
def admin(make_user) -> User:
    return make_user(Role.SYSTEM_ADMIN, name="Admin")


@pytest.fixture(scope="function")
def area_manager(make_user) -> User:
    return make_user(Role.AREA_MANAGER, name="Area Manager")


@pytest.fixture(scope="function")
def manager(make_user, group) -> User:
    return make_user(Role.MANAGER, name="Sato", memberships=[(group, MembershipRole.MANAGER)])


@pytest.fixture(scope="function")
def other_manager(make_user, other_group) -> User:
    return make_user(Role.MANAGER, name="Suzuki", memberships=[(other_group, MembershipRole.MANAGER)])


@pytest.fixture(scope="function")
def worker(make_user, group) -> User:
    return make_user(Role.WORKER, locale="vi", name="Nguyen", memberships=[(group, MembershipRole.MEMBER)])


@pytest.fixture(scope="function")
def other_worker(make_user, group) -> User:
    return make_user(Role.WORKER, locale="vi", name="Tran", memberships=[(group, MembershipRole.MEMBER)])


def principal_for(user: User) -> Principal:
    return Principal(id=user.id, role=Role(user.role), locale=user.locale)


# =============================================================================
# AI Provider Fixtures
# =============================================================================

# Substrings identifying each prompt in the rendered user message
PROMPT_MARKERS = {
    "translate": "Translate the following message",
    "suggest": "Suggest the next message",
    "image_analysis": "Analyze the attached image",
    "image_replies": "sent an image",
    "tags": "Analyze this consultation chat",
    "compliance": "Assess the compliance risk",
    "segments": "Split this conversation into topics",
    "health": "Decide whether this conversation is a health consultation",
    "intent": "Decide whether the member wants to see a doctor",
}


class ProviderDown(Exception):
    pass


@dataclass
class FakeProvider(AIProvider):
    """Scripted provider: replies by prompt kind, or raises for kinds in ``failing``."""

    replies: dict[str, str] = field(default_factory=dict)
    failing: set[str] = field(default_factory=set)
    calls: list[tuple[str, list[ChatMessage], str | None]] = field(default_factory=list)
    name: str = "fake"
    default_model: str = "fake-model"

    @staticmethod
    def kind_of(messages: list[ChatMessage]) -> str:
        user_text = messages[-1].content
        for kind, marker in PROMPT_MARKERS.items():
            if marker in user_text:
                return kind
        return "unknown"

    def calls_of(self, kind: str) -> list[list[ChatMessage]]:
        return [messages for k, messages, _ in self.calls if k == kind]

    async def chat(self, messages, model=None, temperature=0.7, max_tokens=2000) -> ChatResponse:
        kind = self.kind_of(messages)
        self.calls.append((kind, messages, model))
        if kind in self.failing:
            raise ProviderDown(f"{kind} backend unavailable")
        return ChatResponse(
            content=self.replies.get(kind, ""),
            prompt_tokens=10,
            completion_tokens=5,
            total_tokens=15,
            model=model or self.default_model,
        )


DEFAULT_REPLIES = {
    "translate": "Xin chào",
    "suggest": "question: How are you feeling?\nempathy: That sounds hard.\nsolution: Let's talk tomorrow.",
    "tags": '{"category": "Health", "tags": ["fever", "sick leave"], "summary": "Member is sick"}',
    "compliance": '{"risk_level": "none"}',
}


@pytest.fixture
def fake_provider(monkeypatch) -> FakeProvider:
    provider = FakeProvider(replies=dict(DEFAULT_REPLIES))
    monkeypatch.setattr(ai_provider, "get_configured_provider", lambda: provider)
    return provider


# =============================================================================
# Event Fixtures
# =============================================================================

@dataclass
class RecordingPublisher:
    events: list[tuple[str, str, dict]] = field(default_factory=list)

    def emit(self, conversation_id, event_type, data) -> None:
        self.events.append((str(conversation_id), event_type, data))


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
async def hub() -> AsyncGenerator[ConversationEventHub, None]:
    hub = ConversationEventHub(instance_id="test-instance")
    await hub.start()
    yield hub
    await hub.stop()


# =============================================================================
# Client Fixtures
# =============================================================================

@pytest.fixture(scope="function")
async def client_for(
    session_factory, hub: ConversationEventHub
) -> AsyncGenerator[Callable[[User], AsyncClient], None]:
    """
    Factory for AsyncClients authenticated as a given user (JWT cookie + CSRF header).

    ASGITransport does not run the lifespan, so the hub is attached here.
    """

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.state.event_hub = hub

    clients: list[AsyncClient] = []

    def _make(user: User) -> AsyncClient:
        token = create_session_token(user.id, user.role, user.locale)
        client = AsyncClient(
            transport=ASGITransport(app=app),
            base_url="http://test",
            cookies={COOKIE_NAME: token},
            headers={"X-Requested-With": "XMLHttpRequest"},  # CSRF header
        )
        clients.append(client)
        return client

    yield _make

    for client in clients:
        await client.aclose()
    app.dependency_overrides.clear()
