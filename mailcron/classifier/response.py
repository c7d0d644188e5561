"""
Parsing of AI classifier output.

Backends return free text that should contain one JSON object. Parsing is
two-stage: a strict decode of the whole text, then a decode of the first
balanced {...} substring. Whatever happens, the caller gets a fully
populated ClassificationResult.
"""

import json
import logging
from numbers import Real
from typing import Any, Optional

from mailcron.models import Category, ClassificationResult, METHOD_AI

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.5
DEFAULT_REASON = "AI classification"
UNPARSEABLE_REASON = "Failed to parse AI response"


def unparseable_result() -> ClassificationResult:
    return ClassificationResult(
        important=False,
        category=Category.OTHER,
        confidence=0.0,
        reason=UNPARSEABLE_REASON,
        method=METHOD_AI,
    )


def extract_json_object(text: str) -> Optional[str]:
    """
    Return the first balanced JSON object substring in ``text``.

    Braces inside string literals are ignored. Returns None when no opening
    brace is ever closed.

    Example:
        >>> extract_json_object('Sure! {"a": {"b": "}"}} trailing')
        '{"a": {"b": "}"}}'
    """
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(text)):
            char = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return text[start : index + 1]
        start = text.find("{", start + 1)
    return None


def _coerce_category(value: Any) -> Optional[Category]:
    if not isinstance(value, str):
        return None
    try:
        return Category(value.strip().upper())
    except ValueError:
        return None


def validate_payload(payload: dict) -> ClassificationResult:
    """
    Turn a decoded JSON object into a schema-valid result.

    - non-boolean ``important`` becomes False
    - ``confidence`` that is non-numeric or outside [0, 1] becomes 0.5
    - missing or non-string ``reason`` becomes a fixed placeholder
    - ``category`` outside the closed set becomes OTHER with confidence 0
      and important False
    """
    important = payload.get("important")
    if not isinstance(important, bool):
        important = False

    confidence = payload.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, Real) or not 0 <= confidence <= 1:
        confidence = DEFAULT_CONFIDENCE

    reason = payload.get("reason")
    if not isinstance(reason, str) or not reason.strip():
        reason = DEFAULT_REASON

    category = _coerce_category(payload.get("category"))
    if category is None:
        category = Category.OTHER
        confidence = 0.0
        important = False

    return ClassificationResult(
        important=important,
        category=category,
        confidence=float(confidence),
        reason=reason,
        method=METHOD_AI,
    )


def _decode_object(text: str) -> Optional[dict]:
    try:
        decoded = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return None
    return decoded if isinstance(decoded, dict) else None


def parse_ai_response(raw: Optional[str]) -> ClassificationResult:
    """
    Parse raw backend text into a ClassificationResult. Never raises.

    Args:
        raw: Text returned by the AI backend

    Returns:
        Validated result, or the fixed unparseable result
    """
    if not raw or not isinstance(raw, str):
        logger.warning("Empty AI response")
        return unparseable_result()

    text = raw.strip()
    payload = _decode_object(text)

    if payload is None:
        candidate = extract_json_object(text)
        if candidate is not None:
            payload = _decode_object(candidate)

    if payload is None:
        logger.warning(
            "Failed to parse AI response",
            extra={"extra_data": {"response": text[:200]}},
        )
        return unparseable_result()

    return validate_payload(payload)
