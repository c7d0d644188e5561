"""
Classifier Package - keyword scoring plus optional AI fallback

Usage:
    from mailcron.classifier import EmailClassifier, keyword_classify

    score = keyword_classify(message)          # Tier 1 only, pure
    result = EmailClassifier(backend).classify(message)
"""

from .engine import EmailClassifier, AI_THRESHOLD_LOW, AI_THRESHOLD_HIGH, AI_TIMEOUT_SECONDS
from .response import parse_ai_response, extract_json_object
from .rules import KeywordScore, keyword_classify

__all__ = [
    "EmailClassifier",
    "AI_THRESHOLD_LOW",
    "AI_THRESHOLD_HIGH",
    "AI_TIMEOUT_SECONDS",
    "KeywordScore",
    "keyword_classify",
    "parse_ai_response",
    "extract_json_object",
]
