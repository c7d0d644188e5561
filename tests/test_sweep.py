"""
Tests for the provider and user sweeps.

Uses the in-memory database, FakeFetcher and a Mock notifier so each test
can check exactly which messages were delivered and what was recorded.
"""

from datetime import timedelta
from unittest.mock import Mock

import pytest

from mailcron.classifier import EmailClassifier
from mailcron.models import Category, Provider
from mailcron.pipeline import FailureAlerter, ProviderSweep, UserSweep
from mailcron.providers.base import FetchError

from tests.conftest import CHAT_ID, NOW, FakeFetcher


def _sweep(db, fetcher, notifier, clock, classifier=None):
    return ProviderSweep(
        db,
        {fetcher.provider: fetcher},
        classifier or EmailClassifier(None),
        notifier,
        clock=clock,
    )


# ===== ProviderSweep =====


def test_important_message_is_delivered_and_recorded(db, recipient, notifier, clock, important_message):
    """Test the happy path: notify, record, advance the checkpoint."""
    fetcher = FakeFetcher(messages=[important_message])

    result = _sweep(db, fetcher, notifier, clock).run(recipient, Provider.GMAIL)

    assert result.emails_scanned == 1
    assert result.important_found == 1
    assert result.notifications_sent == 1
    notifier.notify_important.assert_called_once()
    assert db.is_notified(CHAT_ID, Provider.GMAIL, "interview-1")
    assert db.get_checkpoint(CHAT_ID, Provider.GMAIL) == NOW

    credential, since = fetcher.calls[0]
    assert credential == "gmail-refresh-token"
    assert since == NOW - timedelta(minutes=30)


def test_message_delivered_at_most_once(db, recipient, notifier, clock, important_message):
    """Test that the same message seen by two sweeps is sent once."""
    fetcher = FakeFetcher(messages=[important_message])
    sweep = _sweep(db, fetcher, notifier, clock)

    sweep.run(recipient, Provider.GMAIL)
    clock.advance(minutes=15)
    second = sweep.run(recipient, Provider.GMAIL)

    assert notifier.notify_important.call_count == 1
    assert second.emails_scanned == 1
    assert second.important_found == 0
    assert second.notifications_sent == 0
    assert db.count_user_emails(CHAT_ID) == 1


def test_notified_message_is_not_reclassified(db, recipient, notifier, clock, important_message):
    """Test that the ledger check happens before classification."""
    classifier = Mock(wraps=EmailClassifier(None))
    sweep = _sweep(db, FakeFetcher(messages=[important_message]), notifier, clock, classifier)

    sweep.run(recipient, Provider.GMAIL)
    sweep.run(recipient, Provider.GMAIL)

    assert classifier.classify.call_count == 1


def test_failed_delivery_is_retried_next_sweep(db, recipient, notifier, clock, important_message):
    """Test that an unconfirmed delivery leaves no ledger record."""
    notifier.notify_important.side_effect = [False, True]
    sweep = _sweep(db, FakeFetcher(messages=[important_message]), notifier, clock)

    first = sweep.run(recipient, Provider.GMAIL)

    assert first.important_found == 1
    assert first.notifications_sent == 0
    assert not db.is_notified(CHAT_ID, Provider.GMAIL, "interview-1")

    clock.advance(minutes=15)
    second = sweep.run(recipient, Provider.GMAIL)

    assert second.notifications_sent == 1
    assert db.is_notified(CHAT_ID, Provider.GMAIL, "interview-1")


def test_unimportant_message_is_not_recorded(db, recipient, notifier, clock, make_message):
    sweep = _sweep(db, FakeFetcher(messages=[make_message(subject="Lunch on Friday?")]), notifier, clock)

    result = sweep.run(recipient, Provider.GMAIL)

    assert result.emails_scanned == 1
    assert result.important_found == 0
    notifier.notify_important.assert_not_called()
    assert db.count_user_emails(CHAT_ID) == 0


def test_disabled_category_is_skipped(db, recipient, notifier, clock, important_message):
    """Test that an important message in a muted category is not sent."""
    db.set_category_enabled(CHAT_ID, Category.INTERVIEW, False)
    recipient = db.get_recipient(CHAT_ID)

    result = _sweep(db, FakeFetcher(messages=[important_message]), notifier, clock).run(
        recipient, Provider.GMAIL
    )

    notifier.notify_important.assert_not_called()
    assert result.important_found == 0
    assert result.notifications_sent == 0
    assert result.emails_scanned == 1


def test_fetch_error_leaves_checkpoint(db, recipient, notifier, clock):
    """Test that a failed fetch propagates and does not advance the window."""
    fetcher = FakeFetcher(error=FetchError(Provider.GMAIL, "invalid_grant"))

    with pytest.raises(FetchError, match="invalid_grant"):
        _sweep(db, fetcher, notifier, clock).run(recipient, Provider.GMAIL)

    assert db.get_checkpoint(CHAT_ID, Provider.GMAIL) is None


def test_message_error_does_not_stop_sweep(db, recipient, notifier, clock, important_message, make_message):
    """Test that one bad message is skipped and the checkpoint still advances."""
    second = make_message(
        subject="Interview invitation", sender="hr@acme-corp.com", message_id="interview-2"
    )
    notifier.notify_important.side_effect = [RuntimeError("boom"), True]

    result = _sweep(db, FakeFetcher(messages=[important_message, second]), notifier, clock).run(
        recipient, Provider.GMAIL
    )

    assert result.emails_scanned == 2
    assert result.notifications_sent == 1
    assert db.is_notified(CHAT_ID, Provider.GMAIL, "interview-2")
    assert not db.is_notified(CHAT_ID, Provider.GMAIL, "interview-1")
    assert db.get_checkpoint(CHAT_ID, Provider.GMAIL) == NOW


def test_window_starts_at_checkpoint(db, recipient, notifier, clock):
    fetcher = FakeFetcher()
    db.set_checkpoint(CHAT_ID, Provider.GMAIL, NOW - timedelta(minutes=10))

    _sweep(db, fetcher, notifier, clock).run(recipient, Provider.GMAIL)

    assert fetcher.calls[0][1] == NOW - timedelta(minutes=10)


def test_stale_checkpoint_is_clamped_to_lookback(db, recipient, notifier, clock):
    fetcher = FakeFetcher()
    db.set_checkpoint(CHAT_ID, Provider.GMAIL, NOW - timedelta(days=2))

    _sweep(db, fetcher, notifier, clock).run(recipient, Provider.GMAIL)

    assert fetcher.calls[0][1] == NOW - timedelta(minutes=30)


def test_missing_adapter_raises_fetch_error(db, recipient, notifier, clock):
    sweep = ProviderSweep(db, {}, EmailClassifier(None), notifier, clock=clock)

    with pytest.raises(FetchError):
        sweep.run(recipient, Provider.OUTLOOK)


def test_ledger_is_scoped_per_recipient(db, recipient, notifier, clock, important_message):
    """Test that one user's delivery does not suppress another's."""
    db.find_or_create_user({"id": 2002, "first_name": "Ravi"})
    other = db.update_provider_credentials("2002", Provider.GMAIL, "other-token", "ravi@gmail.com")
    sweep = _sweep(db, FakeFetcher(messages=[important_message]), notifier, clock)

    sweep.run(recipient, Provider.GMAIL)
    result = sweep.run(other, Provider.GMAIL)

    assert result.notifications_sent == 1
    assert notifier.notify_important.call_count == 2


# ===== UserSweep =====


def _user_sweep(db, fetchers, notifier, clock):
    provider_sweep = ProviderSweep(db, fetchers, EmailClassifier(None), notifier, clock=clock)
    return UserSweep(provider_sweep, FailureAlerter(db, notifier, clock=clock))


def test_one_provider_failure_does_not_block_other(db, recipient, notifier, clock, important_message, make_message):
    """Test that a Gmail outage still lets Outlook mail through."""
    db.update_provider_credentials(CHAT_ID, Provider.OUTLOOK, "outlook-token", "asha@outlook.com")
    recipient = db.get_recipient(CHAT_ID)
    outlook_message = make_message(
        subject="Interview invitation",
        sender="hr@acme-corp.com",
        provider=Provider.OUTLOOK,
        message_id="outlook-1",
    )
    fetchers = {
        Provider.GMAIL: FakeFetcher(error=FetchError(Provider.GMAIL, "token revoked")),
        Provider.OUTLOOK: FakeFetcher(Provider.OUTLOOK, messages=[outlook_message]),
    }

    result = _user_sweep(db, fetchers, notifier, clock).run(recipient)

    assert result.errors == ("gmail: token revoked",)
    assert result.emails_scanned == 1
    assert result.notifications_sent == 1
    notifier.notify_failure.assert_called_once()
    assert db.get_checkpoint(CHAT_ID, Provider.GMAIL) is None
    assert db.get_checkpoint(CHAT_ID, Provider.OUTLOOK) == NOW


def test_paused_user_is_not_swept(db, recipient, notifier, clock, important_message):
    db.set_notifications_enabled(CHAT_ID, False)
    fetcher = FakeFetcher(messages=[important_message])

    result = _user_sweep(db, {Provider.GMAIL: fetcher}, notifier, clock).run(db.get_recipient(CHAT_ID))

    assert fetcher.calls == []
    assert result.emails_scanned == 0
    assert result.errors == ()


def test_user_sweep_only_visits_enabled_providers(db, recipient, notifier, clock):
    gmail = FakeFetcher()
    outlook = FakeFetcher(Provider.OUTLOOK)

    _user_sweep(db, {Provider.GMAIL: gmail, Provider.OUTLOOK: outlook}, notifier, clock).run(recipient)

    assert len(gmail.calls) == 1
    assert outlook.calls == []
