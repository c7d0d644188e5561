"""
Base Fetch Adapter - Abstract base class for mailbox providers

Every provider turns its native message format into NormalizedMessage and
either returns the complete list for the window or raises FetchError.
"""

import logging
import re
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Tuple

from bs4 import BeautifulSoup

from mailcron.models import NormalizedMessage, Provider

logger = logging.getLogger(__name__)

SNIPPET_MAX_CHARS = 300
BODY_MAX_CHARS = 2000
NO_SUBJECT = "(No Subject)"


class FetchError(Exception):
    """Raised when a provider cannot be reached or rejects our credential."""

    def __init__(self, provider: Provider, message: str):
        super().__init__(message)
        self.provider = provider


class FetchAdapter(ABC):
    """
    Abstract base class for mailbox fetch adapters.

    Subclasses must implement:
        - provider: The Provider this adapter serves
        - fetch(): Messages received at or after a timestamp
        - get_auth_url() / exchange_code(): OAuth onboarding hooks
    """

    @property
    @abstractmethod
    def provider(self) -> Provider:
        pass

    @abstractmethod
    def fetch(self, credential: str, since: datetime) -> List[NormalizedMessage]:
        """
        Fetch messages received since ``since``.

        Args:
            credential: The user's refresh token
            since: Aware UTC lower bound for the fetch window

        Returns:
            Messages de-duplicated by message id, in provider order

        Raises:
            FetchError: On any auth or transport failure
        """
        pass

    @abstractmethod
    def get_auth_url(self, state: str) -> str:
        """Return the provider consent URL carrying our CSRF ``state``."""
        pass

    @abstractmethod
    def exchange_code(self, code: str) -> Tuple[Optional[str], Optional[str]]:
        """Exchange an OAuth code for (refresh_token, mailbox address)."""
        pass


def html_to_text(html: str) -> str:
    """Convert an HTML email body to collapsed plain text."""
    if not html:
        return ""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["style", "script", "head"]):
        tag.decompose()
    text = soup.get_text(" ")
    return re.sub(r"\s+", " ", text).strip()


def truncate(text: Optional[str], max_length: int) -> str:
    if not text:
        return ""
    return text[:max_length]


def dedupe(messages: List[NormalizedMessage]) -> List[NormalizedMessage]:
    """Drop repeats of a message id, keeping the first occurrence."""
    seen = set()
    unique = []
    for message in messages:
        if message.message_id in seen:
            continue
        seen.add(message.message_id)
        unique.append(message)
    return unique
