"""Message enrichment pipeline.

For a member-authored message the pipeline produces a translation into the
manager's locale plus ranked reply suggestions in that locale. Image messages
swap the translator for an image-analysis step feeding an image-aware reply
generator. Manager-authored messages are only translated for the worker.

Model output is untrusted. Unparseable output degrades to empty suggestions,
except on explicit regenerate calls (``strict``), which raise LLMServiceError.
Provider failures always raise LLMServiceError; inline callers catch it.
"""

import asyncio
import base64
import logging
import re
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Sequence
from urllib.parse import urljoin
from uuid import UUID

import httpx
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from app.core.async_utils import run_async
from app.core.config import settings
from app.core.exceptions import DatabaseError, LLMServiceError, NotFoundError
from app.core.structured_logging import build_log_context
from app.db.enums import MessageType, Role
from app.db.models import Conversation, Group, Message, MessageArtifact, User
from app.db.session import atomic
from app.schemas.enrichment import (
    ConversationTagsResult,
    EnrichmentResult,
    ImageAnalysisResult,
    SuggestedReply,
    TranslationResult,
)
from app.services import ai_provider
from app.services.ai_prompt_registry import get_prompt
from app.services.ai_prompt_schemas import AIConversationTagsOutput
from app.services.ai_provider import AIProvider, ChatMessage, ChatResponse, ImagePart
from app.services.ai_response_validation import (
    parse_json_object,
    parse_tone_lines,
    validate_model,
)

logger = logging.getLogger(__name__)

SUGGESTION_COUNT = 3
CACHE_HIT_WARNING = "Translation retrieved from cache"
UNCATEGORIZED = "Uncategorized"

KNOWN_TONES = frozenset({
    "question", "empathy", "solution",
    "welcome", "check-in", "gentle-follow-up", "continuation", "encouragement",
    "confirmation", "guidance", "support",
})
IMAGE_REPLY_TONES = frozenset({"confirmation", "guidance", "support"})

HEALTH_PATTERN = re.compile(
    r"体調|痛|怪我|ケガ|病気|熱|風邪|頭痛|腹痛|咳|吐き気|めまい|病院|医者|診察"
    r"|\b(?:sick|pain|fever|injur\w*|hurt|hospital|doctor|clinic)\b",
    re.IGNORECASE,
)

# Markers of a model explaining instead of translating
EXPLANATION_MARKERS = (
    "please provide",
    "cannot translate",
    "unable to translate",
    "vui lòng cung cấp",
    "xin vui lòng",
    "không thể dịch",
    "提供",
    "ください",
)

LOCALE_LABELS = {
    "ja": "Japanese",
    "vi": "Vietnamese",
    "en": "English",
    "id": "Indonesian",
    "tl": "Tagalog",
    "fil": "Tagalog",
    "zh": "Chinese",
    "ne": "Nepali",
    "my": "Burmese",
    "pt": "Portuguese",
}


def normalize_locale(locale: str | None) -> str:
    """'ja-JP' -> 'ja'."""
    return (locale or "").split("-")[0].strip().lower()


def locale_label(locale: str | None) -> str:
    return LOCALE_LABELS.get(normalize_locale(locale), locale or "unknown")


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


# =============================================================================
# Translation cache
# =============================================================================

class TranslationCache:
    """Bounded LRU of translations with a TTL. Safe to share across threads."""

    def __init__(self, max_size: int, ttl_seconds: float):
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._entries: OrderedDict[str, tuple[float, TranslationResult]] = OrderedDict()
        self._lock = threading.Lock()

    @staticmethod
    def key(content: str, source_language: str, target_language: str) -> str:
        return f"{source_language}:{target_language}:{content[:200]}"

    def get(self, content: str, source_language: str, target_language: str) -> TranslationResult | None:
        key = self.key(content, source_language, target_language)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            stored_at, result = entry
            if time.monotonic() - stored_at >= self.ttl_seconds:
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return result

    def set(
        self, content: str, source_language: str, target_language: str, result: TranslationResult
    ) -> None:
        key = self.key(content, source_language, target_language)
        with self._lock:
            self._entries[key] = (time.monotonic(), result)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_size:
                self._entries.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


translation_cache = TranslationCache(
    settings.TRANSLATION_CACHE_SIZE, settings.TRANSLATION_CACHE_TTL_SECONDS
)


# =============================================================================
# Pipeline inputs
# =============================================================================

def calculate_age(date_of_birth: date, today: date | None = None) -> int:
    today = today or date.today()
    age = today.year - date_of_birth.year
    if (today.month, today.day) < (date_of_birth.month, date_of_birth.day):
        age -= 1
    return age


def years_of_service(hire_date: date, today: date | None = None) -> str:
    today = today or date.today()
    months = (today.year - hire_date.year) * 12 + (today.month - hire_date.month)
    if today.day < hire_date.day:
        months -= 1
    years, months = divmod(max(months, 0), 12)
    if years == 0:
        return f"{months} months"
    if months == 0:
        return f"{years} years"
    return f"{years} years {months} months"


@dataclass
class WorkerProfile:
    name: str | None = None
    locale: str | None = None
    country_of_origin: str | None = None
    date_of_birth: date | None = None
    gender: str | None = None
    address: str | None = None
    phone_number: str | None = None
    job_description: str | None = None
    hire_date: date | None = None
    notes: str | None = None

    @classmethod
    def from_user(cls, user: User) -> "WorkerProfile":
        return cls(
            name=user.name,
            locale=user.locale,
            country_of_origin=user.country_of_origin,
            date_of_birth=user.date_of_birth,
            gender=user.gender,
            address=user.address,
            phone_number=user.phone_number,
            job_description=user.job_description,
            hire_date=user.hire_date,
            notes=user.notes,
        )

    def describe(self) -> list[str]:
        lines = []
        if self.country_of_origin:
            lines.append(f"Country of origin: {self.country_of_origin}")
        if self.date_of_birth:
            lines.append(f"Age: {calculate_age(self.date_of_birth)}")
        if self.gender:
            lines.append(f"Gender: {self.gender}")
        if self.job_description:
            lines.append(f"Job: {self.job_description}")
        if self.hire_date:
            lines.append(f"Length of service: {years_of_service(self.hire_date)}")
        if self.address:
            lines.append(f"Address: {self.address}")
        if self.notes:
            lines.append(f"Notes: {self.notes}")
        return lines


@dataclass
class GroupProfile:
    name: str | None = None
    address: str | None = None
    phone_number: str | None = None

    @classmethod
    def from_group(cls, group: Group) -> "GroupProfile":
        return cls(name=group.name, address=group.address, phone_number=group.phone_number)

    def describe(self) -> list[str]:
        lines = []
        if self.name:
            lines.append(f"Group: {self.name}")
        if self.address:
            lines.append(f"Group address: {self.address}")
        if self.phone_number:
            lines.append(f"Group phone: {self.phone_number}")
        return lines


@dataclass
class HistoryEntry:
    body: str
    sender_role: str  # global Role value of the sender
    created_at: datetime

    @property
    def from_member(self) -> bool:
        return self.sender_role == Role.WORKER.value


@dataclass
class EnrichmentFlags:
    """
    Switches for one enrichment pass.

    ``suggestion_locale`` defaults to the target locale; suggestions are also
    translated into ``worker_locale`` when it differs.
    """
    translate: bool = True
    suggest: bool = True
    initial_greeting: bool = False
    strict: bool = False
    image_ref: str | None = None
    suggestion_locale: str | None = None
    worker_locale: str | None = None


def days_since_last_member_message(
    history: Sequence[HistoryEntry], now: datetime | None = None
) -> float:
    now = now or datetime.now(timezone.utc)
    for entry in reversed(history):
        if entry.from_member:
            return (now - _as_utc(entry.created_at)).total_seconds() / 86400
    return 0.0


def select_suggestion_context(
    history: Sequence[HistoryEntry],
    worker_name: str,
    days_since: float,
    initial_greeting: bool = False,
) -> tuple[str, list[str]]:
    """Pick the prompt context and the three tones for the next suggestions."""
    if initial_greeting:
        return (
            f"Write a first message to {worker_name}. Warmly explain that they can use this chat "
            "for anything about work, shifts or problems they run into.",
            ["welcome", "welcome", "welcome"],
        )

    member_messages = [entry for entry in history if entry.from_member][-3:]
    if member_messages and HEALTH_PATTERN.search(member_messages[-1].body or ""):
        return (
            f"{worker_name} raised a health concern. Ask about the symptoms and when they want "
            "to see a doctor; for an injury, check whether it happened at work. Offer to help "
            "find a clinic if needed.",
            ["empathy", "question", "solution"],
        )

    if days_since > 7:
        return (
            f"More than a week has passed since the last exchange. Check in warmly on how "
            f"{worker_name} is doing and whether anything is troubling them.",
            ["check-in", "check-in", "check-in"],
        )

    if days_since > 3:
        return (
            f"More than three days have passed. Gently follow up with {worker_name} on the "
            "previous topic.",
            ["gentle-follow-up", "gentle-follow-up", "continuation"],
        )

    last_three = list(history)[-3:]
    if sum(1 for entry in last_three if not entry.from_member) >= 2:
        return (
            f"The manager has sent several messages in a row. Suggest messages that make it "
            f"easy for {worker_name} to reply: continue the topic or encourage them.",
            ["continuation", "encouragement", "empathy"],
        )

    return (
        f"Suggest appropriate replies to {worker_name}'s latest message.",
        ["question", "empathy", "solution"],
    )


def _format_transcript(history: Sequence[HistoryEntry]) -> str:
    if not history:
        return "(no messages yet)"
    return "\n".join(
        f"[{_as_utc(entry.created_at):%Y-%m-%d %H:%M}] "
        f"{'Member' if entry.from_member else 'Manager'}: {entry.body}"
        for entry in history
    )


# =============================================================================
# Provider calls
# =============================================================================

async def complete_prompt(
    provider: AIProvider,
    prompt_key: str,
    *,
    operation: str,
    image: ImagePart | None = None,
    model: str | None = None,
    temperature: float = 0.7,
    max_tokens: int = 1000,
    **params,
) -> ChatResponse:
    template = get_prompt(prompt_key)
    messages = [
        ChatMessage(role="system", content=template.system),
        ChatMessage(role="user", content=template.render_user(**params), image=image),
    ]
    started = time.monotonic()
    try:
        response = await provider.chat(
            messages, model=model, temperature=temperature, max_tokens=max_tokens
        )
    except Exception as exc:
        logger.warning("AI %s call failed: %s", operation, exc)
        raise LLMServiceError(f"AI provider call failed ({operation})", operation=operation) from exc
    logger.debug(
        "AI %s call took %.0fms (%s tokens)",
        operation,
        (time.monotonic() - started) * 1000,
        response.total_tokens,
    )
    return response


def _is_explanation(output: str, original: str) -> bool:
    lowered = output.lower()
    if any(marker in lowered for marker in EXPLANATION_MARKERS):
        return True
    return len(output) > len(original) * 3


async def translate(
    content: str,
    source_language: str,
    target_language: str,
    provider: AIProvider | None,
) -> TranslationResult:
    """
    Translate one message.

    Without a provider the original text comes back as an offline result.
    An answer that looks like an explanation rather than a translation is
    replaced by the original text and not cached.
    """
    cached = translation_cache.get(content, source_language, target_language)
    if cached is not None:
        return cached.model_copy(update={"warnings": [CACHE_HIT_WARNING]})

    if provider is None:
        return TranslationResult(
            translation=content,
            provider="mock",
            model="offline",
            warnings=["AI provider not configured; returning original content"],
        )

    response = await complete_prompt(
        provider,
        "translate_message",
        operation="translate",
        temperature=0.3,
        source_language=locale_label(source_language),
        target_language=locale_label(target_language),
        content=content,
    )
    output = (response.content or "").strip()

    if not output or _is_explanation(output, content):
        return TranslationResult(
            translation=content,
            provider=provider.name,
            model=response.model,
            warnings=["Translation uncertain; returning original text"],
        )

    result = TranslationResult(translation=output, provider=provider.name, model=response.model)
    translation_cache.set(content, source_language, target_language, result)
    return result


async def _translate_suggestions(
    suggestions: list[SuggestedReply],
    source_language: str,
    target_language: str | None,
    provider: AIProvider | None,
) -> list[SuggestedReply]:
    if not target_language or normalize_locale(target_language) == normalize_locale(source_language):
        return suggestions

    results = await asyncio.gather(
        *(translate(s.content, source_language, target_language, provider) for s in suggestions),
        return_exceptions=True,
    )
    translated = []
    for suggestion, result in zip(suggestions, results):
        if isinstance(result, LLMServiceError):
            logger.warning("Suggestion translation failed; keeping original text")
            translated.append(suggestion)
        elif isinstance(result, BaseException):
            raise result
        else:
            translated.append(
                suggestion.model_copy(
                    update={"translation": result.translation, "translation_lang": target_language}
                )
            )
    return translated


def _to_replies(
    output: str, language: str, known_tones: frozenset[str], strict: bool, operation: str
) -> list[SuggestedReply]:
    pairs = parse_tone_lines(output, known_tones)
    if not pairs:
        if strict:
            raise LLMServiceError("Model returned no parseable suggestions", operation=operation)
        logger.warning("No suggestions parsed from %s output", operation)
        return []
    return [
        SuggestedReply(content=content, tone=tone, language=language)
        for tone, content in pairs[:SUGGESTION_COUNT]
    ]


async def generate_suggestions(
    history: Sequence[HistoryEntry],
    worker: WorkerProfile,
    group: GroupProfile,
    language: str,
    provider: AIProvider | None,
    *,
    worker_locale: str | None = None,
    initial_greeting: bool = False,
    strict: bool = False,
    now: datetime | None = None,
) -> list[SuggestedReply]:
    """Ranked replies in ``language``, each translated into ``worker_locale`` when it differs."""
    if provider is None:
        return []

    history = list(history)[-settings.ENRICHMENT_HISTORY_LIMIT:]
    worker_name = worker.name or "the member"
    days_since = 0.0 if initial_greeting else days_since_last_member_message(history, now)
    description, tones = select_suggestion_context(
        history, worker_name, days_since, initial_greeting
    )

    worker_lines = worker.describe()
    group_lines = group.describe()
    response = await complete_prompt(
        provider,
        "suggest_replies",
        operation="suggestions",
        worker_name=worker_name,
        worker_language=locale_label(worker.locale),
        language=locale_label(language),
        context_description=description,
        worker_section=("\n\nMember information:\n" + "\n".join(worker_lines)) if worker_lines else "",
        group_section=("\n\nGroup information:\n" + "\n".join(group_lines)) if group_lines else "",
        tone_1=tones[0],
        tone_2=tones[1],
        tone_3=tones[2],
        transcript=_format_transcript(history),
        days_since=round(days_since),
    )

    replies = _to_replies(response.content, language, KNOWN_TONES, strict, "suggestions")
    return await _translate_suggestions(replies, language, worker_locale, provider)


# =============================================================================
# Image variant
# =============================================================================

def resolve_image_url(image_ref: str) -> str:
    """Absolute URL for an image reference; relative refs resolve against PUBLIC_BASE_URL."""
    if image_ref.startswith(("http://", "https://")):
        return image_ref
    return urljoin(settings.PUBLIC_BASE_URL.rstrip("/") + "/", image_ref.lstrip("/"))


async def fetch_image(url: str) -> ImagePart:
    async with httpx.AsyncClient(timeout=settings.AI_TIMEOUT_SECONDS, follow_redirects=True) as client:
        response = await client.get(url)
        response.raise_for_status()
    mime_type = response.headers.get("content-type", "image/jpeg").split(";")[0].strip()
    return ImagePart(
        data=base64.b64encode(response.content).decode("ascii"),
        mime_type=mime_type or "image/jpeg",
    )


async def analyze_image(
    image_ref: str,
    user_text: str | None,
    provider: AIProvider | None,
    *,
    language: str = "ja",
    strict: bool = False,
) -> ImageAnalysisResult | None:
    """Describe an image; None when it cannot be fetched or parsed (non-strict)."""
    if provider is None:
        return None

    url = resolve_image_url(image_ref)
    try:
        image = await fetch_image(url)
    except httpx.HTTPError as exc:
        logger.warning("Failed to fetch image for analysis: %s", exc)
        if strict:
            raise LLMServiceError("Image could not be downloaded", operation="image_analysis") from exc
        return None

    response = await complete_prompt(
        provider,
        "analyze_image",
        operation="image_analysis",
        image=image,
        model=settings.AI_IMAGE_MODEL or None,
        temperature=0.2,
        user_message_context=f'Message from the member: "{user_text}"\n\n' if user_text else "",
        language=locale_label(language),
    )
    analysis = validate_model(ImageAnalysisResult, parse_json_object(response.content))
    if analysis is None and strict:
        raise LLMServiceError("Model returned an unparseable image analysis", operation="image_analysis")
    return analysis


async def generate_image_replies(
    analysis: ImageAnalysisResult,
    user_text: str | None,
    worker: WorkerProfile,
    language: str,
    provider: AIProvider | None,
    *,
    worker_locale: str | None = None,
    strict: bool = False,
) -> list[SuggestedReply]:
    if provider is None:
        return []

    worker_name = worker.name or "the member"
    urgency_context = {
        "high": "This is urgent and needs a quick response.",
        "medium": "This needs to be handled.",
    }.get(analysis.urgency or "", "For reference.")
    actions = "\n".join(
        f"  {i}. {action}" for i, action in enumerate(analysis.suggested_actions, start=1)
    ) or "  none"

    response = await complete_prompt(
        provider,
        "image_replies",
        operation="image_replies",
        worker_name=worker_name,
        user_message_context=f'{worker_name}\'s message: "{user_text}"\n\n' if user_text else "",
        description=analysis.description,
        document_type=analysis.document_type or "unknown",
        urgency=analysis.urgency or "unknown",
        urgency_context=urgency_context,
        suggested_actions=actions,
        language=locale_label(language),
    )

    replies = _to_replies(response.content, language, IMAGE_REPLY_TONES, strict, "image_replies")
    return await _translate_suggestions(replies, language, worker_locale, provider)


# =============================================================================
# Pipeline
# =============================================================================

async def enrich(
    content: str,
    source_locale: str,
    target_locale: str,
    history: Sequence[HistoryEntry],
    worker_profile: WorkerProfile,
    group_profile: GroupProfile,
    flags: EnrichmentFlags | None = None,
    provider: AIProvider | None = None,
) -> EnrichmentResult:
    """
    One enrichment pass over a message (or over an empty conversation).

    - initial greeting: suggestions only
    - image reference: image analysis feeding image-aware replies; falls back
      to the text path when no analysis could be produced
    - text: translation when the locales differ, then suggestions
    """
    flags = flags or EnrichmentFlags()
    history = list(history)[-settings.ENRICHMENT_HISTORY_LIMIT:]
    suggestion_locale = flags.suggestion_locale or target_locale
    result = EnrichmentResult()

    if flags.initial_greeting:
        if flags.suggest:
            result.suggestions = await generate_suggestions(
                [],
                worker_profile,
                group_profile,
                suggestion_locale,
                provider,
                worker_locale=flags.worker_locale,
                initial_greeting=True,
                strict=flags.strict,
            )
        return result

    if flags.image_ref:
        result.image_analysis = await analyze_image(
            flags.image_ref,
            content,
            provider,
            language=suggestion_locale,
            strict=flags.strict,
        )
        if result.image_analysis is not None:
            if flags.suggest:
                result.suggestions = await generate_image_replies(
                    result.image_analysis,
                    content,
                    worker_profile,
                    suggestion_locale,
                    provider,
                    worker_locale=flags.worker_locale,
                    strict=flags.strict,
                )
            return result

    if (
        flags.translate
        and content.strip()
        and normalize_locale(source_locale) != normalize_locale(target_locale)
    ):
        result.translation = await translate(content, source_locale, target_locale, provider)
        result.translation_lang = target_locale

    if flags.suggest:
        result.suggestions = await generate_suggestions(
            history,
            worker_profile,
            group_profile,
            suggestion_locale,
            provider,
            worker_locale=flags.worker_locale,
            strict=flags.strict,
        )
    return result


async def tag_conversation(
    history: Sequence[HistoryEntry], provider: AIProvider
) -> ConversationTagsResult:
    """Suggest a category, tags and summary for a conversation. Nothing is stored."""
    response = await complete_prompt(
        provider,
        "conversation_tags",
        operation="tagging",
        temperature=0.3,
        transcript=_format_transcript(history),
    )
    parsed = validate_model(AIConversationTagsOutput, parse_json_object(response.content))
    if parsed is None:
        raise LLMServiceError("Model returned unparseable tags", operation="tagging")
    tags = [tag.strip() for tag in parsed.tags if isinstance(tag, str) and tag.strip()]
    return ConversationTagsResult(
        category=parsed.category.strip() or UNCATEGORIZED,
        tags=list(dict.fromkeys(tags)),
        summary=parsed.summary,
    )


# =============================================================================
# Persistence
# =============================================================================

def load_history(
    db: Session,
    conversation_id: UUID,
    upto: Message | None = None,
    limit: int | None = None,
) -> list[HistoryEntry]:
    """The most recent messages (oldest first), optionally ending at ``upto``."""
    limit = limit or settings.ENRICHMENT_HISTORY_LIMIT
    query = (
        db.query(Message, User.role)
        .join(User, User.id == Message.sender_id)
        .filter(Message.conversation_id == conversation_id)
    )
    if upto is not None:
        query = query.filter(Message.created_at <= upto.created_at)
    rows = query.order_by(Message.created_at.desc()).limit(limit).all()
    return [
        HistoryEntry(body=message.body, sender_role=role, created_at=message.created_at)
        for message, role in reversed(rows)
    ]


def _write_artifact(db: Session, message_id: UUID, values: dict) -> MessageArtifact:
    with atomic(db, "upsert_message_artifact"):
        artifact = (
            db.query(MessageArtifact)
            .filter(MessageArtifact.message_id == message_id)
            .first()
        )
        if artifact is None:
            artifact = MessageArtifact(message_id=message_id, **values)
            db.add(artifact)
        else:
            for field, value in values.items():
                setattr(artifact, field, value)
    db.refresh(artifact)
    return artifact


def upsert_artifact(db: Session, message_id: UUID, result: EnrichmentResult) -> MessageArtifact:
    """Create or fully replace the artifact of a message. One row per message."""
    values = {
        "translation": result.translation.translation if result.translation else None,
        "translation_lang": result.translation_lang if result.translation else None,
        "suggestions": [s.model_dump() for s in result.suggestions],
        "extra": result.extra() or None,
    }
    try:
        return _write_artifact(db, message_id, values)
    except DatabaseError as exc:
        if not isinstance(exc.original_error, IntegrityError):
            raise
        # Lost a create race; the row exists now
        return _write_artifact(db, message_id, values)


def enrich_message(
    db: Session,
    message_id: UUID,
    *,
    manager_locale: str | None = None,
    strict: bool = False,
    health_consultation_in_progress: bool | None = None,
) -> MessageArtifact:
    """
    Run the pipeline for a stored message and upsert its artifact.

    Member-authored: translation into the manager locale plus suggestions
    (image-aware for IMAGE messages). Manager-authored: translation into the
    worker locale only.

    ``health_consultation_in_progress`` is recorded on member messages; when
    true the health flow has answered the message and no suggestions are made.
    """
    message = (
        db.query(Message)
        .options(
            joinedload(Message.sender),
            joinedload(Message.conversation).joinedload(Conversation.worker),
            joinedload(Message.conversation).joinedload(Conversation.group),
        )
        .filter(Message.id == message_id)
        .first()
    )
    if message is None:
        raise NotFoundError("Message")

    conversation = message.conversation
    worker_locale = conversation.worker.locale or settings.DEFAULT_WORKER_LOCALE
    manager_locale = manager_locale or settings.DEFAULT_MANAGER_LOCALE

    if message.sender.role == Role.WORKER.value:
        target_locale = manager_locale
        flags = EnrichmentFlags(
            strict=strict,
            image_ref=message.content_url if message.type == MessageType.IMAGE.value else None,
            suggestion_locale=manager_locale,
            worker_locale=worker_locale,
        )
        if health_consultation_in_progress:
            flags.suggest = False
    else:
        health_consultation_in_progress = None
        target_locale = worker_locale
        flags = EnrichmentFlags(suggest=False, strict=strict)

    provider = ai_provider.get_configured_provider()
    if strict and provider is None:
        raise LLMServiceError("AI provider not configured", operation="enrichment")

    history = load_history(db, conversation.id, upto=message)
    result = run_async(
        enrich(
            message.body,
            message.language,
            target_locale,
            history,
            WorkerProfile.from_user(conversation.worker),
            GroupProfile.from_group(conversation.group),
            flags,
            provider,
        )
    )
    result.health_consultation_in_progress = health_consultation_in_progress

    artifact = upsert_artifact(db, message.id, result)
    logger.info(
        "Message enriched (%s suggestions)",
        len(result.suggestions),
        extra=build_log_context(
            conversation_id=conversation.id, message_id=message.id, operation="enrichment"
        ),
    )
    return artifact


def preview_initial_suggestions(
    db: Session, conversation: Conversation, manager_locale: str | None = None
) -> list[SuggestedReply]:
    """Greeting suggestions for a conversation with no member message. Not stored."""
    provider = ai_provider.get_configured_provider()
    if provider is None:
        raise LLMServiceError("AI provider not configured", operation="enrichment")

    manager_locale = manager_locale or settings.DEFAULT_MANAGER_LOCALE
    worker_locale = conversation.worker.locale or settings.DEFAULT_WORKER_LOCALE
    result = run_async(
        enrich(
            "",
            worker_locale,
            manager_locale,
            [],
            WorkerProfile.from_user(conversation.worker),
            GroupProfile.from_group(conversation.group),
            EnrichmentFlags(
                initial_greeting=True,
                strict=True,
                suggestion_locale=manager_locale,
                worker_locale=worker_locale,
            ),
            provider,
        )
    )
    return result.suggestions
