"""Helpers for parsing and validating AI responses.

Model output is untrusted: every helper here returns None or an empty
list on malformed input instead of raising.
"""

from __future__ import annotations

import json
import logging
import re
from typing import TypeVar

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

DEFAULT_TONE = "solution"
_BULLET_PREFIX = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s*")


def _strip_code_fences(text: str) -> str:
    content = text.strip()
    if content.startswith("```"):
        lines = content.splitlines()
        if lines:
            lines = lines[1:]
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        content = "\n".join(lines).strip()
    return content


def parse_json_object(text: str) -> dict | None:
    content = _strip_code_fences(text)
    try:
        data = json.loads(content)
    except json.JSONDecodeError as exc:
        match = re.search(r"\{[\s\S]*\}", content)
        if not match:
            logger.warning("Failed to parse JSON object: %s", exc)
            return None
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError as inner_exc:
            logger.warning("Failed to parse JSON object: %s", inner_exc)
            return None
    return data if isinstance(data, dict) else None


def parse_json_array(text: str) -> list | None:
    content = _strip_code_fences(text)
    try:
        data = json.loads(content)
    except json.JSONDecodeError as exc:
        match = re.search(r"\[[\s\S]*\]", content)
        if not match:
            logger.warning("Failed to parse JSON array: %s", exc)
            return None
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError as inner_exc:
            logger.warning("Failed to parse JSON array: %s", inner_exc)
            return None
    return data if isinstance(data, list) else None


def validate_model(model_cls: type[ModelT], data: dict | None) -> ModelT | None:
    if data is None:
        return None
    try:
        return model_cls.model_validate(data)
    except ValidationError as exc:
        logger.warning("Model validation failed: %s", exc)
        return None


def parse_tone_lines(
    text: str,
    known_tones: frozenset[str] | set[str],
    default_tone: str = DEFAULT_TONE,
) -> list[tuple[str, str]]:
    """
    Parse ``tone: text`` lines into (tone, content) pairs.

    Bullets and numbering are stripped. A line without a colon is kept with
    the default tone; an unknown tone label also maps to the default.
    """
    pairs: list[tuple[str, str]] = []
    for raw in _strip_code_fences(text or "").splitlines():
        line = _BULLET_PREFIX.sub("", raw).strip()
        if not line:
            continue
        label, sep, rest = line.partition(":")
        if not sep:
            pairs.append((default_tone, line))
            continue
        content = rest.strip() or line
        tone = label.strip().lower()
        pairs.append((tone if tone in known_tones else default_tone, content))
    return [(tone, content) for tone, content in pairs if content]
