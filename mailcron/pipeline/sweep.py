"""
Provider and user sweeps.

ProviderSweep handles one (recipient, provider) pair: window, fetch, then
ledger check, classify, notify and persist for each message, then advance
the checkpoint. UserSweep fans a recipient out over their connected
providers and keeps one provider's failure from affecting the others.
"""

import logging
import threading
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Tuple

from mailcron.classifier import EmailClassifier
from mailcron.models import (
    NormalizedMessage,
    Provider,
    ProviderSweepResult,
    Recipient,
    UserSweepResult,
)
from mailcron.providers.base import FetchAdapter, FetchError
from .alerts import FailureAlerter
from .window import DEFAULT_LOOKBACK, compute_since

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RecipientLocks:
    """
    One mutex per recipient around the ledger check-and-record step.

    Only effective when every sweep in the process shares the same
    instance; the ledger claim covers sweeps in other processes.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = defaultdict(threading.Lock)

    def get(self, chat_id: str) -> threading.Lock:
        with self._guard:
            return self._locks[str(chat_id)]


class ProviderSweep:
    """Processes one (recipient, provider) pair for one invocation."""

    def __init__(
        self,
        db,
        fetchers: Dict[Provider, FetchAdapter],
        classifier: EmailClassifier,
        notifier,
        lookback: timedelta = DEFAULT_LOOKBACK,
        clock: Optional[Callable[[], datetime]] = None,
        locks: Optional[RecipientLocks] = None,
    ):
        self.db = db
        self.fetchers = fetchers
        self.classifier = classifier
        self.notifier = notifier
        self.lookback = lookback
        self.clock = clock or utcnow
        self.locks = locks or RecipientLocks()

    def run(self, recipient: Recipient, provider: Provider) -> ProviderSweepResult:
        """
        Sweep one provider for one recipient.

        Raises:
            FetchError: If the adapter fails; the checkpoint is left untouched
        """
        chat_id = recipient.chat_id
        adapter = self.fetchers.get(provider)
        if adapter is None:
            raise FetchError(provider, f"No fetch adapter configured for {provider.value}")

        now = self.clock()
        since = compute_since(self.db.get_checkpoint(chat_id, provider), now, self.lookback)

        logger.debug(
            "Fetching emails",
            extra={"extra_data": {"chatId": chat_id, "provider": provider.value, "since": since.isoformat()}},
        )
        messages = adapter.fetch(recipient.account(provider).refresh_token, since)

        important_found = 0
        notifications_sent = 0
        with self.locks.get(chat_id):
            for message in messages:
                try:
                    counted, delivered = self._process_message(recipient, message)
                except Exception as e:
                    logger.warning(
                        f"Failed to process email: {e}",
                        extra={"extra_data": {"chatId": chat_id, "uniqueId": message.unique_id}},
                    )
                    continue
                important_found += int(counted)
                notifications_sent += int(delivered)

        self.db.set_checkpoint(chat_id, provider, now)

        return ProviderSweepResult(
            provider=provider,
            emails_scanned=len(messages),
            important_found=important_found,
            notifications_sent=notifications_sent,
        )

    def _process_message(self, recipient: Recipient, message: NormalizedMessage) -> Tuple[bool, bool]:
        """Returns (counted as important, delivered)."""
        chat_id = recipient.chat_id
        if self.db.is_notified(chat_id, message.provider, message.message_id):
            return False, False

        result = self.classifier.classify(message)
        if not result.important:
            return False, False

        if not recipient.category_enabled(result.category):
            logger.debug(
                "Category disabled, skipping notification",
                extra={"extra_data": {"chatId": chat_id, "category": result.category.value}},
            )
            return False, False

        # Another sweep (thread or process) may be delivering this message now
        if not self.db.claim_notification(chat_id, message, result, when=self.clock()):
            return False, False

        try:
            delivered = self.notifier.notify_important(recipient, message, result)
        except Exception:
            self.db.release_notification(chat_id, message)
            raise

        if not delivered:
            # Released, so the next sweep retries it
            self.db.release_notification(chat_id, message)
            return True, False

        self.db.upsert_notification(chat_id, message, result, when=self.clock())
        return True, True


class UserSweep:
    """Fans one recipient out across their connected providers."""

    def __init__(self, provider_sweep: ProviderSweep, alerter: FailureAlerter):
        self.provider_sweep = provider_sweep
        self.alerter = alerter

    def run(self, recipient: Recipient) -> UserSweepResult:
        scanned = important = sent = 0
        errors: List[str] = []

        if not recipient.notifications_enabled:
            logger.debug(
                "Notifications paused for user",
                extra={"extra_data": {"chatId": recipient.chat_id}},
            )
            return UserSweepResult(chat_id=recipient.chat_id, name=recipient.first_name)

        logger.info(
            f"Processing user: {recipient.first_name}",
            extra={"extra_data": {"chatId": recipient.chat_id}},
        )

        for provider in recipient.enabled_providers():
            try:
                result = self.provider_sweep.run(recipient, provider)
            except Exception as e:
                error_text = str(e) or e.__class__.__name__
                logger.error(
                    f"{provider.display_name} sweep failed: {error_text}",
                    extra={"extra_data": {"chatId": recipient.chat_id, "provider": provider.value}},
                )
                errors.append(f"{provider.value}: {error_text}")
                self.alerter.handle(recipient, provider, error_text)
                continue

            scanned += result.emails_scanned
            important += result.important_found
            sent += result.notifications_sent

        return UserSweepResult(
            chat_id=recipient.chat_id,
            name=recipient.first_name,
            emails_scanned=scanned,
            important_found=important,
            notifications_sent=sent,
            errors=tuple(errors),
        )
