"""Pydantic schemas for structured AI responses."""

from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class AIImageAnalysisOutput(BaseModel):
    model_config = ConfigDict(extra="ignore")

    description: str
    document_type: str | None = None
    urgency: Literal["high", "medium", "low"] | None = None
    suggested_actions: list[str] = Field(default_factory=list)
    extracted_text: str | None = None

    @field_validator("urgency", mode="before")
    @classmethod
    def normalize_urgency(cls, v):
        if isinstance(v, str):
            v = v.strip().lower()
            return v if v in {"high", "medium", "low"} else None
        return v


class AIConversationTagsOutput(BaseModel):
    model_config = ConfigDict(extra="ignore")

    category: str = ""
    tags: list[str] = Field(default_factory=list)
    summary: str | None = None


class AISegmentOutput(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str | None = None
    summary: str | None = None
    start_index: int = Field(validation_alias=AliasChoices("start_index", "startIndex"))
    end_index: int = Field(validation_alias=AliasChoices("end_index", "endIndex"))


class AIHealthAnalysisOutput(BaseModel):
    model_config = ConfigDict(extra="ignore")

    is_health_related: bool = False
    symptom_type: str | None = None
    urgency: Literal["immediate", "today", "this_week", "flexible"] | None = None
    needs_medical_facility: bool = False
    injury_context: str | None = None
    suggested_questions: list[str] = Field(default_factory=list)

    @field_validator("urgency", mode="before")
    @classmethod
    def normalize_urgency(cls, v):
        if isinstance(v, str):
            v = v.strip().lower()
            return v if v in {"immediate", "today", "this_week", "flexible"} else None
        return v


class AIConsultationIntentOutput(BaseModel):
    model_config = ConfigDict(extra="ignore")

    wants_consultation: bool = False
    preferred_date: Literal["today", "tomorrow", "this_week", "specific_date"] | None = None
    specific_date: str | None = None
    time_preference: Literal["morning", "afternoon", "evening"] | None = None

    @field_validator("preferred_date", mode="before")
    @classmethod
    def normalize_date(cls, v):
        if isinstance(v, str):
            v = v.strip().lower()
            return v if v in {"today", "tomorrow", "this_week", "specific_date"} else None
        return v

    @field_validator("time_preference", mode="before")
    @classmethod
    def normalize_time(cls, v):
        if isinstance(v, str):
            v = v.strip().lower()
            return v if v in {"morning", "afternoon", "evening"} else None
        return v


class AIComplianceOutput(BaseModel):
    model_config = ConfigDict(extra="ignore")

    risk_level: Literal["none", "medium", "high"]
    reason: str | None = None
