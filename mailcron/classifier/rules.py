"""
Tier 1 - keyword scoring.

Pure function of the message text and sender; no I/O and no hidden state.
"""

from dataclasses import dataclass, field
from typing import Dict, List

from mailcron.models import Category, ClassificationResult, NormalizedMessage, METHOD_KEYWORD
from .keywords import (
    KEYWORD_SCORES,
    NEGATIVE_KEYWORDS,
    NEGATIVE_PENALTY,
    SENDER_BONUS,
    TIER_POINTS,
    TRUSTED_SENDER_PATTERNS,
)

NO_MATCH_REASON = "No strong keyword matches"
IMPORTANT_MIN_SCORE = 2


@dataclass(frozen=True)
class KeywordScore:
    """Tier-1 verdict plus the numbers behind it."""

    category: Category
    score: int
    important: bool
    reason: str
    sender_bonus: int = 0
    negative_penalty: int = 0
    category_scores: Dict[Category, int] = field(default_factory=dict)
    matched_keywords: Dict[Category, List[str]] = field(default_factory=dict)

    @property
    def confidence(self) -> float:
        return min(self.score / 10, 1.0)

    def to_result(self, method: str = METHOD_KEYWORD) -> ClassificationResult:
        return ClassificationResult(
            important=self.important,
            category=self.category,
            confidence=self.confidence,
            reason=self.reason,
            method=method,
        )


def build_scan_text(message: NormalizedMessage) -> str:
    return f"{message.subject or ''} {message.snippet or ''} {message.body or ''}".lower()


def sender_bonus(sender: str) -> int:
    """Flat bonus when the sender looks like a recruiter or job board."""
    sender = (sender or "").lower()
    for pattern in TRUSTED_SENDER_PATTERNS:
        if pattern.search(sender):
            return SENDER_BONUS
    return 0


def negative_penalty(text: str) -> int:
    return sum(NEGATIVE_PENALTY for keyword in NEGATIVE_KEYWORDS if keyword in text)


def score_category(category: Category, text: str):
    """Return (raw score, matched keywords) for one category."""
    score = 0
    matched = []
    tiers = KEYWORD_SCORES[category]
    for tier, points in TIER_POINTS:
        for keyword in tiers[tier]:
            if keyword in text:
                score += points
                matched.append(keyword)
    return score, matched


def keyword_classify(message: NormalizedMessage) -> KeywordScore:
    """
    Score a message against every category and pick the winner.

    The penalty is subtracted from each category's keyword score (floored at
    zero) before the winner is chosen; ties keep the earlier category. The
    sender bonus is then added to the winner only. When nothing scores above
    zero the message is OTHER with a score of zero.

    Args:
        message: Normalized message to score

    Returns:
        KeywordScore with category, score, importance and a short reason
    """
    text = build_scan_text(message)
    penalty = negative_penalty(text)
    bonus = sender_bonus(message.sender)

    category_scores: Dict[Category, int] = {}
    matched_keywords: Dict[Category, List[str]] = {}
    winner = Category.OTHER
    best = 0

    for category in Category.scored():
        raw, matched = score_category(category, text)
        adjusted = max(0, raw - penalty)
        category_scores[category] = adjusted
        matched_keywords[category] = matched
        if adjusted > best:
            best = adjusted
            winner = category

    score = best + bonus if winner is not Category.OTHER else 0
    important = winner is not Category.OTHER and score >= IMPORTANT_MIN_SCORE

    winning_matches = matched_keywords.get(winner, [])
    if winning_matches:
        reason = f"Matched keywords: {', '.join(winning_matches[:3])}"
    else:
        reason = NO_MATCH_REASON

    return KeywordScore(
        category=winner,
        score=score,
        important=important,
        reason=reason,
        sender_bonus=bonus,
        negative_penalty=penalty,
        category_scores=category_scores,
        matched_keywords=matched_keywords,
    )
