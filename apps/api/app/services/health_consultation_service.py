"""Health consultation flow.

When a member raises a health concern the conversation enters a short
scripted exchange: confirm they want to see a doctor, ask about symptoms,
then ask when. The state lives on the conversation. Replies are returned
to the caller, which posts them as SYSTEM messages in REPLY_LANGUAGE;
they reach the member through the usual translation of manager messages.

Model failures never break a send: analysis degrades to "not health
related" and intent analysis to "no consultation wanted".
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Sequence

from sqlalchemy.orm import Session

from app.core.async_utils import run_async
from app.core.exceptions import LLMServiceError
from app.core.structured_logging import build_log_context
from app.db.enums import HealthConsultationState
from app.db.models import Message
from app.db.session import atomic
from app.services import ai_provider, enrichment_service
from app.services.ai_prompt_schemas import AIConsultationIntentOutput, AIHealthAnalysisOutput
from app.services.ai_provider import AIProvider
from app.services.ai_response_validation import parse_json_object, validate_model
from app.services.enrichment_service import HistoryEntry, complete_prompt

logger = logging.getLogger(__name__)

REPLY_LANGUAGE = "ja"
ANALYSIS_HISTORY = 5
INTENT_HISTORY = 3

ACTIVE_STATES = frozenset({
    HealthConsultationState.WAITING_FOR_INTENT.value,
    HealthConsultationState.WAITING_FOR_SYMPTOM_DETAILS.value,
    HealthConsultationState.WAITING_FOR_SCHEDULE.value,
})

CANCEL_KEYWORDS = (
    "医療相談を中止",
    "中止します",
    "キャンセル",
    "やめます",
    "tôi muốn dừng tư vấn y tế",
    "hủy bỏ tư vấn",
    "dừng tư vấn",
    "stop the consultation",
)

CONFIRMATION = "病院に行く必要がありそうですか？"
SYMPTOM_INQUIRY = (
    "承知しました。\n\nもう少し詳しく教えてください。\n"
    "・いつから症状がありますか？\n・他に気になる症状はありますか？\n"
    "・痛みや辛さの程度はどのくらいですか？"
)
DECLINED = (
    "承知しました。\n\n無理せず、もし症状が悪化したらいつでもお知らせくださいね。"
    "お大事にしてください。"
)
SCHEDULE_REQUEST = "ありがとうございます。\n\nいつ受診したいですか？\n\n例：\n・今日の午後\n・明日の午前中\n・今週中"
SCHEDULE_UNCLEAR = (
    "申し訳ございませんが、ご希望の日時がわかりませんでした。\n\n"
    "例：\n・今日の午後\n・明日の午前中\n・今週中\n\nのようにお知らせください。"
)
SCHEDULE_CONFIRMED = (
    "承知しました。{when}での受診をご希望とのことですね。\n\n"
    "担当者から近隣の医療機関をご案内します。少々お待ちください。"
)
CANCELLED = "承知しました。医療相談を中止します。\n\nまた何かございましたら、いつでもお知らせください。"

DATE_LABELS = {"today": "本日", "tomorrow": "明日", "this_week": "今週中"}
TIME_LABELS = {"morning": "午前", "afternoon": "午後", "evening": "夕方"}


@dataclass
class SystemReply:
    body: str
    metadata: dict[str, Any]


@dataclass
class HealthStep:
    """
    Outcome of one member message.

    ``handled`` means the flow answered the message, so reply suggestions
    for it are suppressed.
    """
    previous_state: str | None
    state: str | None
    data: dict[str, Any] | None
    handled: bool = False
    replies: list[SystemReply] = field(default_factory=list)

    @property
    def state_changed(self) -> bool:
        return self.state != self.previous_state


def is_cancellation(body: str) -> bool:
    text = (body or "").strip().lower()
    for keyword in CANCEL_KEYWORDS:
        if (
            text == keyword
            or text.startswith(keyword)
            or text.endswith(keyword)
            or keyword + "。" in text
            or keyword + "、" in text
        ):
            return True
    return False


def describe_schedule(intent: AIConsultationIntentOutput) -> str:
    if intent.preferred_date == "specific_date":
        day = intent.specific_date or ""
    else:
        day = DATE_LABELS.get(intent.preferred_date or "", "")
    return (day + TIME_LABELS.get(intent.time_preference or "", "")) or "ご希望の日時"


def _transcript(history: Sequence[HistoryEntry]) -> str:
    return "\n".join(
        f"{'Member' if entry.from_member else 'Manager'}: {entry.body}" for entry in history
    ) or "(no messages yet)"


# =============================================================================
# Model calls
# =============================================================================

async def analyze_health(
    history: Sequence[HistoryEntry], address: str | None, provider: AIProvider | None
) -> AIHealthAnalysisOutput:
    """Whether the recent conversation is about the member's health."""
    if provider is None:
        return AIHealthAnalysisOutput()
    try:
        response = await complete_prompt(
            provider,
            "health_consultation",
            operation="health_analysis",
            temperature=0.2,
            transcript=_transcript(list(history)[-ANALYSIS_HISTORY:]),
            address=address or "not registered",
        )
    except LLMServiceError:
        return AIHealthAnalysisOutput()
    return (
        validate_model(AIHealthAnalysisOutput, parse_json_object(response.content))
        or AIHealthAnalysisOutput()
    )


async def analyze_intent(
    history: Sequence[HistoryEntry], reply: str, provider: AIProvider | None
) -> AIConsultationIntentOutput:
    """Whether the member wants to see a doctor, and when."""
    if provider is None:
        return AIConsultationIntentOutput()
    try:
        response = await complete_prompt(
            provider,
            "consultation_intent",
            operation="consultation_intent",
            temperature=0.2,
            transcript=_transcript(list(history)[-INTENT_HISTORY:]),
            reply=reply,
        )
    except LLMServiceError:
        return AIConsultationIntentOutput()
    return (
        validate_model(AIConsultationIntentOutput, parse_json_object(response.content))
        or AIConsultationIntentOutput()
    )


# =============================================================================
# Flow
# =============================================================================

async def plan_step(
    state: str | None,
    data: dict[str, Any] | None,
    body: str,
    history: Sequence[HistoryEntry],
    address: str | None,
    provider: AIProvider | None,
) -> HealthStep:
    """
    Decide the next state and replies for a member message.

    Outside an active flow every message is analyzed; a health concern
    starts a new flow, also after a completed one. Inside an active flow the
    member's answer drives the flow directly.
    """
    step = HealthStep(previous_state=state, state=state, data=data)

    def reply(next_state: str | None, text: str, kind: str, next_data=None, **extra) -> HealthStep:
        step.handled = True
        step.state = next_state
        if next_data is not None:
            step.data = next_data
        step.replies.append(SystemReply(body=text, metadata={"type": kind, **extra}))
        return step

    if state not in ACTIVE_STATES:
        analysis = await analyze_health(history, address, provider)
        if not analysis.is_health_related:
            return step
        analysis_data = analysis.model_dump()
        return reply(
            HealthConsultationState.WAITING_FOR_INTENT.value,
            CONFIRMATION,
            "health_consultation_confirmation",
            next_data={"analysis": analysis_data},
            showYesNoButtons=True,
            healthAnalysis=analysis_data,
        )

    if is_cancellation(body):
        return reply(
            HealthConsultationState.COMPLETED.value, CANCELLED, "health_consultation_cancelled"
        )

    data = dict(data or {})
    if state == HealthConsultationState.WAITING_FOR_INTENT.value:
        intent = await analyze_intent(history, body, provider)
        if not intent.wants_consultation:
            return reply(
                HealthConsultationState.COMPLETED.value, DECLINED, "health_consultation_declined"
            )
        return reply(
            HealthConsultationState.WAITING_FOR_SYMPTOM_DETAILS.value,
            SYMPTOM_INQUIRY,
            "health_consultation_symptom_inquiry",
            next_data={**data, "intent": intent.model_dump()},
        )

    if state == HealthConsultationState.WAITING_FOR_SYMPTOM_DETAILS.value:
        return reply(
            HealthConsultationState.WAITING_FOR_SCHEDULE.value,
            SCHEDULE_REQUEST,
            "health_consultation_schedule_request",
        )

    intent = await analyze_intent(history, body, provider)
    if not (intent.preferred_date or intent.time_preference):
        return reply(state, SCHEDULE_UNCLEAR, "health_consultation_schedule_unclear")
    schedule = intent.model_dump()
    return reply(
        HealthConsultationState.COMPLETED.value,
        SCHEDULE_CONFIRMED.format(when=describe_schedule(intent)),
        "health_consultation_schedule_confirmed",
        next_data={**data, "schedule": schedule},
        schedule=schedule,
    )


def advance(db: Session, message: Message) -> HealthStep:
    """
    Run the flow for a stored member message and persist the new state.

    ``message.conversation`` and its worker must be loadable.
    """
    conversation = message.conversation
    history = enrichment_service.load_history(
        db, conversation.id, upto=message, limit=ANALYSIS_HISTORY
    )
    step = run_async(
        plan_step(
            conversation.health_consultation_state,
            conversation.health_consultation_data,
            message.body,
            history,
            conversation.worker.address,
            ai_provider.get_configured_provider(),
        )
    )

    if step.state_changed or step.data != conversation.health_consultation_data:
        with atomic(db, "update_health_consultation"):
            conversation.health_consultation_state = step.state
            conversation.health_consultation_data = step.data
    if step.handled:
        logger.info(
            "Health consultation %s -> %s",
            step.previous_state or "none",
            step.state or "none",
            extra=build_log_context(
                conversation_id=conversation.id, message_id=message.id, operation="health_consultation"
            ),
        )
    return step
