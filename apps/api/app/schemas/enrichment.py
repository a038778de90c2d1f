"""Pydantic schemas for message enrichment results."""

from pydantic import BaseModel, Field

from app.services.ai_prompt_schemas import AIImageAnalysisOutput


class SuggestedReply(BaseModel):
    """One ranked reply suggestion for a manager."""

    content: str
    tone: str
    language: str
    translation: str | None = None
    translation_lang: str | None = None


class TranslationResult(BaseModel):
    translation: str
    provider: str
    model: str
    warnings: list[str] = Field(default_factory=list)


class ImageAnalysisResult(AIImageAnalysisOutput):
    """Structured description of an image attached to a message."""


class EnrichmentResult(BaseModel):
    """Output of one enrichment pass. Nothing here is persisted by itself."""

    translation: TranslationResult | None = None
    translation_lang: str | None = None
    suggestions: list[SuggestedReply] = Field(default_factory=list)
    image_analysis: ImageAnalysisResult | None = None
    health_consultation_in_progress: bool | None = None

    def extra(self) -> dict:
        """Artifact ``extra`` payload: provenance, image analysis and health flow flag."""
        data: dict = {}
        if self.health_consultation_in_progress is not None:
            data["health_consultation_in_progress"] = self.health_consultation_in_progress
        if self.translation is not None:
            data["provider"] = self.translation.provider
            data["model"] = self.translation.model
            if self.translation.warnings:
                data["warnings"] = list(self.translation.warnings)
        if self.image_analysis is not None:
            data["image_analysis"] = self.image_analysis.model_dump()
        return data


class ConversationTagsResult(BaseModel):
    category: str
    tags: list[str] = Field(default_factory=list)
    summary: str | None = None
