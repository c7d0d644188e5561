"""
Run orchestrator - one invocation of the mail check over every active user.
"""

import logging
import random
import string
from datetime import datetime
from typing import Callable, List, Optional

from mailcron.logging_config import LogContext
from mailcron.models import RunSummary, UserSweepResult
from .sweep import UserSweep, utcnow

logger = logging.getLogger(__name__)


def generate_run_id(now: datetime) -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
    return f"run_{int(now.timestamp() * 1000)}_{suffix}"


class RunOrchestrator:
    """
    Sweeps all active recipients sequentially and builds a RunSummary.

    Holds no state between runs; everything persistent lives in the
    database. A failure to list recipients propagates to the caller.
    """

    def __init__(self, db, user_sweep: UserSweep, clock: Optional[Callable[[], datetime]] = None):
        self.db = db
        self.user_sweep = user_sweep
        self.clock = clock or utcnow

    def run(self, run_id: Optional[str] = None) -> RunSummary:
        start = self.clock()
        run_id = run_id or generate_run_id(start)

        with LogContext(logger, runId=run_id):
            logger.info("Cron run started")

            recipients = self.db.list_active_recipients()
            logger.info(f"Processing {len(recipients)} active users")

            results: List[UserSweepResult] = []
            failures = 0
            for recipient in recipients:
                try:
                    result = self.user_sweep.run(recipient)
                except Exception as e:
                    logger.error(
                        f"User processing failed: {e}",
                        extra={"extra_data": {"chatId": recipient.chat_id}},
                    )
                    failures += 1
                    continue
                results.append(result)
                failures += len(result.errors)

            summary = RunSummary(
                run_id=run_id,
                start_time=start,
                end_time=self.clock(),
                users_processed=len(results),
                emails_scanned=sum(r.emails_scanned for r in results),
                important_found=sum(r.important_found for r in results),
                notifications_sent=sum(r.notifications_sent for r in results),
                failures=failures,
                user_results=tuple(results),
            )

            logger.info(
                "Cron run completed",
                extra={
                    "extra_data": {
                        "durationMs": summary.duration_ms,
                        "usersProcessed": summary.users_processed,
                        "emailsScanned": summary.emails_scanned,
                        "importantFound": summary.important_found,
                        "notificationsSent": summary.notifications_sent,
                        "failures": summary.failures,
                    }
                },
            )
        return summary
