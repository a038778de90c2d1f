"""Central registry for AI system prompts and templates."""

from dataclasses import dataclass


@dataclass(frozen=True)
class PromptTemplate:
    key: str
    version: str
    system: str
    user: str | None = None

    def render_user(self, **kwargs) -> str:
        if not self.user:
            raise ValueError(f"Prompt '{self.key}' has no user template")
        return self.user.format(**kwargs)


MANAGER_PERSONA = (
    "You are an experienced manager supporting foreign workers in a Japanese workplace."
)


PROMPTS: dict[str, PromptTemplate] = {
    "translate_message": PromptTemplate(
        key="translate_message",
        version="v1",
        system="You are a translator specializing in internal workplace communications between managers and part-time employees.",
        user="""Translate the following message from {source_language} to {target_language}.

IMPORTANT Guidelines:
- Match the tone of the original message - it can be casual, friendly, or formal depending on the context
- This is internal workplace communication, NOT customer support, so professional formality is not required
- Preserve the original meaning, intent, and emotional tone
- Use natural, conversational language that native speakers would use in workplace chat
- Return ONLY the translated text, without any additional explanation or formatting
- If the message is too short, unclear, or contains only random characters, translate it literally
- NEVER ask for clarification or explain that translation is not possible
- If you cannot translate meaningfully, return the original text exactly as provided

Message:
{content}""",
    ),
    "suggest_replies": PromptTemplate(
        key="suggest_replies",
        version="v1",
        system=MANAGER_PERSONA,
        user="""Suggest the next message to send to {worker_name} ({worker_language} speaker). Write exactly 3 suggestions in {language}.

{context_description}{worker_section}{group_section}

IMPORTANT: Return exactly 3 messages in this format (one per line):
{tone_1}: [message 1]
{tone_2}: [message 2]
{tone_3}: [message 3]

Do NOT use numbering or markdown.
Personalize the messages using the member and group information above.

Conversation history:
{transcript}

Days since the member's last message: {days_since}""",
    ),
    "analyze_image": PromptTemplate(
        key="analyze_image",
        version="v1",
        system=MANAGER_PERSONA,
        user="""{user_message_context}Analyze the attached image and provide, in {language}:

1. description: what the image shows, in detail
2. document_type: if it is an official or important document, its type (pension book, insurance card, notice, invoice, ...)
3. urgency: how urgently it needs handling (high/medium/low)
4. suggested_actions: concrete steps the worker who received it should take
5. extracted_text: important text in the image (dates, amounts, addressee)

Respond with ONLY valid JSON, no markdown:
{{
  "description": "...",
  "document_type": "...",
  "urgency": "high|medium|low",
  "suggested_actions": ["step 1", "step 2", "step 3"],
  "extracted_text": "..."
}}""",
    ),
    "image_replies": PromptTemplate(
        key="image_replies",
        version="v1",
        system=MANAGER_PERSONA,
        user="""{worker_name} sent an image.

{user_message_context}[Image analysis]
- Content: {description}
- Document type: {document_type}
- Urgency: {urgency}
- {urgency_context}
- Suggested actions:
{suggested_actions}

Suggest 3 replies to {worker_name} about this image, written in {language}.

IMPORTANT: Return exactly 3 messages in this format (one per line):
confirmation: [acknowledge that you checked the content]
guidance: [explain the concrete steps to take]
support: [offer help]

Do NOT use numbering or markdown.""",
    ),
    "conversation_tags": PromptTemplate(
        key="conversation_tags",
        version="v1",
        system="You analyze support chat conversations between workers and their managers.",
        user="""Analyze this consultation chat and generate its category and tags.

Instructions:
1. Choose one primary category (e.g. salary, working hours, leave, health insurance, relationships, other)
2. Generate 2 to 5 detailed tags
3. Summarize the consultation in one line

Respond with ONLY valid JSON, no markdown:
{{
  "category": "category name",
  "tags": ["tag 1", "tag 2", "tag 3"],
  "summary": "one-line summary"
}}

Conversation:
{transcript}""",
    ),
    "segment_conversation": PromptTemplate(
        key="segment_conversation",
        version="v1",
        system="You analyze support chat conversations between workers and their managers.",
        user="""Split this conversation into topics. Each topic is a run of consecutive messages about the same subject.

Rules:
- Use the message numbers shown in brackets; they start at 0
- Every message belongs to exactly one topic, in order
- Give each topic a short title and a one or two sentence summary

Respond with ONLY a valid JSON array, no markdown:
[
  {{"title": "topic title", "summary": "what was discussed", "start_index": 0, "end_index": 3}}
]

Conversation:
{transcript}""",
    ),
    "health_consultation": PromptTemplate(
        key="health_consultation",
        version="v1",
        system="You triage workplace chats for health concerns.",
        user="""Decide whether this conversation is a health consultation (feeling unwell, an injury, an illness).

Conversation:
{transcript}

Member address: {address}

Respond with ONLY valid JSON, no markdown:
{{
  "is_health_related": true,
  "symptom_type": "internal medicine|surgery|orthopedics|dentistry|dermatology|ENT|ophthalmology|null",
  "urgency": "immediate|today|this_week|flexible",
  "needs_medical_facility": false,
  "injury_context": "for injuries, whether it happened at work; otherwise null",
  "suggested_questions": ["one to three natural follow-up questions not asked yet"]
}}""",
    ),
    "consultation_intent": PromptTemplate(
        key="consultation_intent",
        version="v1",
        system="You triage workplace chats for health concerns.",
        user="""Decide whether the member wants to see a doctor, based on the recent conversation and their latest reply.

Recent conversation:
{transcript}

Latest reply from the member: {reply}

Criteria:
- wants_consultation is true for a clear yes ("yes", "please", "I want to go to the hospital"), and for "I'm fine with that" when a hospital visit was just proposed
- wants_consultation is false for a clear no ("no", "not needed", "I'm okay now")
- preferred_date: "today", "tomorrow", "this_week", or "specific_date" when an exact date is named
- specific_date: that date as YYYY-MM-DD
- time_preference: "morning", "afternoon" or "evening" when mentioned

Respond with ONLY valid JSON, no markdown:
{{
  "wants_consultation": true,
  "preferred_date": null,
  "specific_date": null,
  "time_preference": null
}}""",
    ),
    "compliance_check": PromptTemplate(
        key="compliance_check",
        version="v1",
        system="You are a workplace compliance reviewer.",
        user="""Assess the compliance risk of this message a manager is about to send to a team member.

Message:
\"\"\"
{message}
\"\"\"

Consider:
- Power harassment (intimidation, personal attacks, excessive demands)
- Sexual harassment (sexual remarks, inappropriate comments)
- Other harassment (discrimination, privacy violations)
- Inappropriate wording or expressions

Risk levels:
- high: likely clear harassment or a serious compliance violation
- medium: inappropriate or easily misunderstood; needs care
- none: no problem

Respond with ONLY valid JSON, no markdown:
{{
  "risk_level": "high|medium|none",
  "reason": "short concrete reason, only when there is a risk (max 100 characters)"
}}""",
    ),
}


def get_prompt(key: str) -> PromptTemplate:
    """Return a prompt by key."""
    if key not in PROMPTS:
        raise KeyError(f"Unknown prompt key: {key}")
    return PROMPTS[key]
