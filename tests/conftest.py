"""
Pytest configuration and shared fixtures for Mail Cron tests.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from mailcron.database import Database
from mailcron.models import NormalizedMessage, Provider
from mailcron.providers.base import FetchAdapter, FetchError

CHAT_ID = "1001"
NOW = datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)


class FixedClock:
    """Callable clock that only moves when a test moves it."""

    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class FakeFetcher(FetchAdapter):
    """
    In-memory fetch adapter.

    Returns ``messages`` on every fetch (or raises ``error``) and records the
    (credential, since) pair of each call.
    """

    def __init__(self, provider=Provider.GMAIL, messages=None, error=None):
        self._provider = provider
        self.messages = list(messages or [])
        self.error = error
        self.calls = []
        self.exchanged = []

    @property
    def provider(self):
        return self._provider

    def fetch(self, credential, since):
        self.calls.append((credential, since))
        if self.error is not None:
            raise self.error
        return list(self.messages)

    def get_auth_url(self, state):
        return f"https://auth.example.com/{self._provider.value}?state={state}"

    def exchange_code(self, code):
        self.exchanged.append(code)
        return f"refresh-{code}", f"student@{self._provider.value}.example.com"


@pytest.fixture
def db():
    """
    Fresh in-memory database with the full schema.

    Yields:
        Database: storage collaborator backed by ':memory:'
    """
    database = Database(":memory:")
    yield database
    database.close()


@pytest.fixture
def clock():
    """Fixed clock starting at NOW."""
    return FixedClock()


@pytest.fixture
def make_message():
    """
    Factory for NormalizedMessage values.

    Usage:
        message = make_message(subject="Interview invitation", message_id="m1")
    """

    def _make(
        subject="Hello",
        sender="friend@example.com",
        body="",
        snippet="",
        message_id="msg-1",
        provider=Provider.GMAIL,
        received_at=NOW - timedelta(minutes=5),
        is_spam=False,
    ):
        return NormalizedMessage(
            provider=provider,
            message_id=message_id,
            subject=subject,
            sender=sender,
            body=body,
            snippet=snippet,
            received_at=received_at,
            web_link=f"https://mail.example.com/{message_id}",
            is_spam=is_spam,
        )

    return _make


@pytest.fixture
def important_message(make_message):
    """An interview invitation from a recruiter address (keyword score 11)."""
    return make_message(
        subject="Interview invitation",
        sender="hr@acme-corp.com",
        body="Please join us for a technical interview on Monday.",
        message_id="interview-1",
    )


@pytest.fixture
def recipient(db):
    """
    A user with a connected Gmail account.

    Returns:
        Recipient: as loaded back from the database
    """
    db.find_or_create_user({"id": int(CHAT_ID), "first_name": "Asha", "username": "asha"})
    return db.update_provider_credentials(
        CHAT_ID, Provider.GMAIL, "gmail-refresh-token", "asha@gmail.com", when=NOW
    )


@pytest.fixture
def notifier():
    """
    Mock notifier that confirms every delivery.

    Returns:
        Mock: with notify_important and notify_failure returning True
    """
    mock = Mock()
    mock.notify_important.return_value = True
    mock.notify_failure.return_value = True
    return mock


@pytest.fixture
def fake_fetcher():
    return FakeFetcher


@pytest.fixture
def fetch_error():
    return FetchError
