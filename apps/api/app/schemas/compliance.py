"""Schemas for the advisory compliance pre-check."""

from typing import Literal

from pydantic import BaseModel, Field


class ComplianceCheckRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=10000)


class ComplianceCheckResult(BaseModel):
    risk_level: Literal["none", "medium", "high"]
    reason: str | None = None
