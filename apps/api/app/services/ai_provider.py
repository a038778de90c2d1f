"""AI Provider abstraction layer.

Supports OpenAI and Google Gemini with a unified interface, including a
single inline image per message for vision calls.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import httpx

from app.core.config import settings

logger = logging.getLogger(__name__)


@dataclass
class ImagePart:
    """Base64-encoded image attached to a chat message."""

    data: str
    mime_type: str = "image/jpeg"


@dataclass
class ChatMessage:
    """A single message in a conversation."""

    role: str  # 'system', 'user', 'assistant'
    content: str
    image: ImagePart | None = None


@dataclass
class ChatResponse:
    """Response from an AI provider."""

    content: str
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    model: str


class AIProvider(ABC):
    """Abstract base class for AI providers."""

    name = "unknown"
    default_model = ""
    timeout = 60.0

    @abstractmethod
    async def chat(
        self,
        messages: list[ChatMessage],
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 2000,
    ) -> ChatResponse:
        """Send a chat completion request."""
        pass

    async def _post_json(self, url: str, body: dict[str, Any], **kwargs: Any) -> dict[str, Any]:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(url, json=body, **kwargs)
        if response.is_error:
            logger.warning("%s request failed with status %s", self.name, response.status_code)
        response.raise_for_status()
        return response.json()


class OpenAIProvider(AIProvider):
    """OpenAI API provider."""

    name = "openai"

    def __init__(self, api_key: str, default_model: str = "gpt-4o-mini", timeout: float = 60.0):
        self.api_key = api_key
        self.default_model = default_model
        self.timeout = timeout
        self.base_url = "https://api.openai.com/v1"

    @staticmethod
    def _format(message: ChatMessage) -> dict[str, Any]:
        if message.image is None:
            return {"role": message.role, "content": message.content}
        return {
            "role": message.role,
            "content": [
                {"type": "text", "text": message.content},
                {
                    "type": "image_url",
                    "image_url": {
                        "url": f"data:{message.image.mime_type};base64,{message.image.data}"
                    },
                },
            ],
        }

    async def chat(
        self,
        messages: list[ChatMessage],
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 2000,
    ) -> ChatResponse:
        model = model or self.default_model

        data = await self._post_json(
            f"{self.base_url}/chat/completions",
            {
                "model": model,
                "messages": [self._format(m) for m in messages],
                "temperature": temperature,
                "max_tokens": max_tokens,
            },
            headers={"Authorization": f"Bearer {self.api_key}"},
        )

        usage = data.get("usage", {})
        return ChatResponse(
            content=data["choices"][0]["message"]["content"],
            prompt_tokens=usage.get("prompt_tokens", 0),
            completion_tokens=usage.get("completion_tokens", 0),
            total_tokens=usage.get("total_tokens", 0),
            model=model,
        )


class GeminiProvider(AIProvider):
    """Google Gemini API provider."""

    name = "gemini"

    def __init__(self, api_key: str, default_model: str = "gemini-2.0-flash", timeout: float = 60.0):
        self.api_key = api_key
        self.default_model = default_model
        self.timeout = timeout
        self.base_url = "https://generativelanguage.googleapis.com/v1beta"

    async def chat(
        self,
        messages: list[ChatMessage],
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 2000,
    ) -> ChatResponse:
        model = model or self.default_model

        # Gemini uses 'user' and 'model' roles, system goes in systemInstruction
        system_instruction = None
        contents = []

        for msg in messages:
            if msg.role == "system":
                system_instruction = msg.content
                continue
            role = "model" if msg.role == "assistant" else "user"
            parts: list[dict[str, Any]] = [{"text": msg.content}]
            if msg.image is not None:
                parts.append(
                    {"inline_data": {"mime_type": msg.image.mime_type, "data": msg.image.data}}
                )
            contents.append({"role": role, "parts": parts})

        request_body: dict[str, Any] = {
            "contents": contents,
            "generationConfig": {
                "temperature": temperature,
                "maxOutputTokens": max_tokens,
            },
        }

        if system_instruction:
            request_body["systemInstruction"] = {
                "parts": [{"text": system_instruction}]
            }

        data = await self._post_json(
            f"{self.base_url}/models/{model}:generateContent",
            request_body,
            params={"key": self.api_key},
        )

        content = data["candidates"][0]["content"]["parts"][0]["text"]

        usage = data.get("usageMetadata", {})
        prompt_tokens = usage.get("promptTokenCount", 0)
        completion_tokens = usage.get("candidatesTokenCount", 0)

        return ChatResponse(
            content=content,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
            model=model,
        )


def get_provider(
    provider_name: str, api_key: str, model: str | None = None
) -> AIProvider:
    """Factory function to get the appropriate AI provider."""
    timeout = settings.AI_TIMEOUT_SECONDS
    if provider_name == "openai":
        return OpenAIProvider(api_key, default_model=model or "gpt-4o-mini", timeout=timeout)
    elif provider_name == "gemini":
        return GeminiProvider(api_key, default_model=model or "gemini-2.0-flash", timeout=timeout)
    else:
        raise ValueError(f"Unknown provider: {provider_name}")


def get_configured_provider() -> AIProvider | None:
    """Provider from settings, or None when AI is not configured."""
    if not settings.ai_configured:
        return None
    return get_provider(settings.AI_PROVIDER, settings.AI_API_KEY, settings.AI_MODEL or None)
