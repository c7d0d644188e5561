"""
Cooldown-gated outage notices.

A broken provider connection produces at most one notice per cooldown
period for each (recipient, provider) pair.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from mailcron.models import Provider, Recipient

logger = logging.getLogger(__name__)

FAILURE_ALERT_COOLDOWN = timedelta(hours=2)


class FailureAlerter:
    """Records provider errors and sends rate-limited outage notices."""

    def __init__(
        self,
        db,
        notifier,
        cooldown: timedelta = FAILURE_ALERT_COOLDOWN,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db
        self.notifier = notifier
        self.cooldown = cooldown
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def handle(self, recipient: Recipient, provider: Provider, error_text: str) -> bool:
        """
        Record ``error_text`` and send a notice if the cooldown allows.

        Returns True only when a notice was delivered. Never raises.
        """
        chat_id = recipient.chat_id
        try:
            now = self.clock()
            self.db.record_provider_error(chat_id, provider, error_text, when=now)

            if not self.db.can_send_failure_alert(chat_id, provider, now, self.cooldown):
                logger.debug(
                    "Failure alert suppressed by cooldown",
                    extra={"extra_data": {"chatId": chat_id, "provider": provider.value}},
                )
                return False

            if not self.notifier.notify_failure(recipient, provider, error_text):
                return False

            self.db.record_failure_alert(chat_id, provider, now)
            logger.info(
                "Failure alert sent",
                extra={"extra_data": {"chatId": chat_id, "provider": provider.value}},
            )
            return True
        except Exception as e:
            logger.error(f"Failed to handle provider failure: {e}")
            return False
