"""
Core data types shared by the fetch adapters, classifier, storage and pipeline.

Every fetch adapter produces NormalizedMessage values; the classifier turns
each one into a ClassificationResult; the sweeps report back through the
result records at the bottom of this module.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class Provider(str, Enum):
    """Supported mail services."""

    GMAIL = "gmail"
    OUTLOOK = "outlook"

    @property
    def display_name(self) -> str:
        return "Gmail" if self is Provider.GMAIL else "Outlook"


class Category(str, Enum):
    """
    Closed set of classification labels.

    Declaration order is significant: Tier-1 ties go to the category
    declared first.
    """

    PLACEMENT_DRIVE = "PLACEMENT_DRIVE"
    INTERVIEW = "INTERVIEW"
    ASSESSMENT = "ASSESSMENT"
    SHORTLISTED = "SHORTLISTED"
    OTHER = "OTHER"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ")

    @classmethod
    def scored(cls) -> List["Category"]:
        """Categories that carry keywords (everything except the catch-all)."""
        return [c for c in cls if c is not cls.OTHER]


# Classification tiers, recorded on every result
METHOD_KEYWORD = "keyword"
METHOD_KEYWORD_FALLBACK = "keyword_fallback"
METHOD_AI = "ai"


@dataclass(frozen=True)
class NormalizedMessage:
    """Provider-agnostic representation of one mailbox item."""

    provider: Provider
    message_id: str
    subject: str
    sender: str
    received_at: datetime
    to: str = ""
    snippet: str = ""
    body: str = ""
    web_link: str = ""
    is_spam: bool = False
    thread_id: Optional[str] = None

    @property
    def unique_id(self) -> str:
        """Global dedup key, stable across fetches of the same message."""
        return f"{Provider(self.provider).value}_{self.message_id}"


@dataclass(frozen=True)
class ClassificationResult:
    """Outcome of classifying one message."""

    important: bool
    category: Category
    confidence: float
    reason: str
    method: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "important": self.important,
            "category": self.category.value,
            "confidence": self.confidence,
            "reason": self.reason,
            "method": self.method,
        }


@dataclass
class ProviderAccount:
    """One connected mailbox for a recipient, plus its sweep bookkeeping."""

    provider: Provider
    enabled: bool = False
    refresh_token: Optional[str] = None
    email: Optional[str] = None
    connected_at: Optional[datetime] = None
    last_error: Optional[str] = None
    last_error_at: Optional[datetime] = None
    last_checked_at: Optional[datetime] = None
    last_failure_alert_at: Optional[datetime] = None

    @property
    def can_sweep(self) -> bool:
        return self.enabled and bool(self.refresh_token)


def _default_categories() -> Dict[Category, bool]:
    return {category: True for category in Category.scored()}


@dataclass
class Recipient:
    """A user who receives notifications, keyed by their Telegram chat id."""

    chat_id: str
    first_name: str = "User"
    last_name: Optional[str] = None
    username: Optional[str] = None
    notifications_enabled: bool = True
    categories: Dict[Category, bool] = field(default_factory=_default_categories)
    is_active: bool = True
    accounts: Dict[Provider, ProviderAccount] = field(default_factory=dict)

    def account(self, provider: Provider) -> ProviderAccount:
        return self.accounts.get(provider) or ProviderAccount(provider=provider)

    def enabled_providers(self) -> List[Provider]:
        """Providers with a usable credential, in declaration order."""
        return [p for p in Provider if self.account(p).can_sweep]

    def category_enabled(self, category: Category) -> bool:
        # Only an explicit False disables a category
        return self.categories.get(category, True) is not False


@dataclass(frozen=True)
class ProviderSweepResult:
    provider: Provider
    emails_scanned: int = 0
    important_found: int = 0
    notifications_sent: int = 0


@dataclass(frozen=True)
class UserSweepResult:
    chat_id: str
    name: str
    emails_scanned: int = 0
    important_found: int = 0
    notifications_sent: int = 0
    errors: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chatId": self.chat_id,
            "name": self.name,
            "emailsScanned": self.emails_scanned,
            "importantFound": self.important_found,
            "notificationsSent": self.notifications_sent,
            "errors": list(self.errors),
        }


@dataclass(frozen=True)
class RunSummary:
    """Immutable result of one orchestrator invocation."""

    run_id: str
    start_time: datetime
    end_time: datetime
    users_processed: int = 0
    emails_scanned: int = 0
    important_found: int = 0
    notifications_sent: int = 0
    failures: int = 0
    user_results: Tuple[UserSweepResult, ...] = ()

    @property
    def duration_ms(self) -> int:
        return int((self.end_time - self.start_time).total_seconds() * 1000)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "runId": self.run_id,
            "startTime": self.start_time.isoformat(),
            "endTime": self.end_time.isoformat(),
            "durationMs": self.duration_ms,
            "usersProcessed": self.users_processed,
            "emailsScanned": self.emails_scanned,
            "importantFound": self.important_found,
            "notificationsSent": self.notifications_sent,
            "failures": self.failures,
            "userResults": [r.to_dict() for r in self.user_results],
        }
