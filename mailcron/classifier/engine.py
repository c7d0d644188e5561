"""
Two-level email classifier.

Tier 1 (keyword scoring) always runs. Tier 2 asks an AI backend, and only
when the Tier-1 score lands strictly between the low and high thresholds.
Nothing raised by Tier 2 escapes classify().
"""

import logging
from typing import Optional

from mailcron.ai.base import AIBackend
from mailcron.ai.prompts import build_classify_email_prompt
from mailcron.models import (
    ClassificationResult,
    NormalizedMessage,
    METHOD_KEYWORD,
    METHOD_KEYWORD_FALLBACK,
)
from mailcron.resilience import CircuitBreaker
from .response import parse_ai_response
from .rules import KeywordScore, keyword_classify

logger = logging.getLogger(__name__)

AI_THRESHOLD_LOW = 3
AI_THRESHOLD_HIGH = 8
AI_TIMEOUT_SECONDS = 10


class EmailClassifier:
    """Maps one NormalizedMessage to exactly one ClassificationResult."""

    def __init__(
        self,
        ai_backend: Optional[AIBackend] = None,
        threshold_low: int = AI_THRESHOLD_LOW,
        threshold_high: int = AI_THRESHOLD_HIGH,
        timeout: float = AI_TIMEOUT_SECONDS,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.ai_backend = ai_backend
        self.threshold_low = threshold_low
        self.threshold_high = threshold_high
        self.timeout = timeout
        self.breaker = breaker or CircuitBreaker(failure_threshold=5, recovery_timeout=300.0)

    def needs_ai(self, score: int) -> bool:
        """True when the Tier-1 score is in the uncertain band."""
        return self.threshold_low < score < self.threshold_high

    def classify(self, message: NormalizedMessage) -> ClassificationResult:
        keyword = keyword_classify(message)

        logger.debug(
            "Keyword classification result",
            extra={
                "extra_data": {
                    "uniqueId": message.unique_id,
                    "category": keyword.category.value,
                    "score": keyword.score,
                    "important": keyword.important,
                }
            },
        )

        if not self.needs_ai(keyword.score):
            return keyword.to_result(METHOD_KEYWORD)

        if self.ai_backend is None:
            return keyword.to_result(METHOD_KEYWORD_FALLBACK)

        return self._ai_classify(message, keyword)

    def _ai_classify(self, message: NormalizedMessage, keyword: KeywordScore) -> ClassificationResult:
        prompt = build_classify_email_prompt(message)
        try:
            raw = self.breaker.call(self.ai_backend.complete, prompt, timeout=self.timeout)
        except Exception as e:
            logger.warning(
                f"AI classification failed, falling back to keyword: {e}",
                extra={"extra_data": {"uniqueId": message.unique_id}},
            )
            return keyword.to_result(METHOD_KEYWORD_FALLBACK)

        return parse_ai_response(raw)
