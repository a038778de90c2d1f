"""Tests for the AI provider wire formats."""

import json

import httpx
import pytest

from app.core.config import settings
from app.services import ai_provider
from app.services.ai_provider import (
    ChatMessage,
    GeminiProvider,
    ImagePart,
    OpenAIProvider,
    get_configured_provider,
    get_provider,
)


def _mock_transport(monkeypatch, handler):
    real_client = httpx.AsyncClient
    monkeypatch.setattr(
        ai_provider.httpx,
        "AsyncClient",
        lambda **kwargs: real_client(transport=httpx.MockTransport(handler), **kwargs),
    )


def test_get_provider_factory():
    assert isinstance(get_provider("openai", "key"), OpenAIProvider)
    gemini = get_provider("gemini", "key", model="gemini-custom")
    assert isinstance(gemini, GeminiProvider)
    assert gemini.default_model == "gemini-custom"
    with pytest.raises(ValueError):
        get_provider("other", "key")


def test_configured_provider_requires_key(monkeypatch):
    monkeypatch.setattr(settings, "AI_PROVIDER", "openai")
    monkeypatch.setattr(settings, "AI_API_KEY", "")
    assert get_configured_provider() is None

    monkeypatch.setattr(settings, "AI_API_KEY", "sk-test")
    assert isinstance(get_configured_provider(), OpenAIProvider)


async def test_openai_chat_sends_image_as_data_url(monkeypatch):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "choices": [{"message": {"content": "ok"}}],
                "usage": {"prompt_tokens": 3, "completion_tokens": 1, "total_tokens": 4},
            },
        )

    _mock_transport(monkeypatch, handler)
    provider = OpenAIProvider("sk-test")

    response = await provider.chat(
        [
            ChatMessage(role="system", content="describe"),
            ChatMessage(role="user", content="photo", image=ImagePart(data="aGk=", mime_type="image/png")),
        ]
    )

    assert (response.content, response.total_tokens, response.model) == ("ok", 4, "gpt-4o-mini")
    assert seen["auth"] == "Bearer sk-test"
    system, user = seen["body"]["messages"]
    assert system == {"role": "system", "content": "describe"}
    assert user["content"][1]["image_url"]["url"] == "data:image/png;base64,aGk="


async def test_gemini_chat_moves_system_prompt(monkeypatch):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["key"] = request.url.params["key"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "candidates": [{"content": {"parts": [{"text": "xin chào"}]}}],
                "usageMetadata": {"promptTokenCount": 5, "candidatesTokenCount": 2},
            },
        )

    _mock_transport(monkeypatch, handler)
    provider = GeminiProvider("g-key")

    response = await provider.chat(
        [
            ChatMessage(role="system", content="translate"),
            ChatMessage(role="assistant", content="earlier"),
            ChatMessage(role="user", content="hello"),
        ]
    )

    assert response.content == "xin chào"
    assert response.total_tokens == 7
    assert seen["key"] == "g-key"
    assert seen["body"]["systemInstruction"] == {"parts": [{"text": "translate"}]}
    assert [c["role"] for c in seen["body"]["contents"]] == ["model", "user"]


async def test_http_error_is_raised(monkeypatch):
    _mock_transport(monkeypatch, lambda request: httpx.Response(500, json={"error": "boom"}))

    with pytest.raises(httpx.HTTPStatusError):
        await OpenAIProvider("sk-test").chat([ChatMessage(role="user", content="hi")])
