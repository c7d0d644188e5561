"""
Explicit service container for the web app.

Everything a request handler needs is built once per app and stored on
``app.extensions["mailcron"]``; handlers fetch it with get_services().
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from flask import current_app

from mailcron.ai import AIBackend, get_backend
from mailcron.classifier import EmailClassifier
from mailcron.config import Config
from mailcron.database import Database
from mailcron.models import Provider
from mailcron.notifier import TelegramClient, TelegramNotifier
from mailcron.onboarding import CommandRouter
from mailcron.pipeline import RecipientLocks, RunOrchestrator, build_orchestrator
from mailcron.providers import FetchAdapter, build_fetchers

logger = logging.getLogger(__name__)

EXTENSION_KEY = "mailcron"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class AppServices:
    config: Config
    db: Database
    telegram: TelegramClient
    notifier: TelegramNotifier
    fetchers: Dict[Provider, FetchAdapter]
    classifier: EmailClassifier
    router: CommandRouter
    clock: Callable[[], datetime] = field(default=utcnow)
    locks: RecipientLocks = field(default_factory=RecipientLocks)

    def orchestrator(self) -> RunOrchestrator:
        """A fresh orchestrator for one cron invocation, sharing the app's recipient locks."""
        return build_orchestrator(
            self.db,
            self.fetchers,
            self.classifier,
            self.notifier,
            lookback=self.config.lookback,
            cooldown=self.config.failure_alert_cooldown,
            clock=self.clock,
            locks=self.locks,
        )


def build_services(
    config: Config,
    database: Optional[Database] = None,
    telegram: Optional[TelegramClient] = None,
    fetchers: Optional[Dict[Provider, FetchAdapter]] = None,
    ai_backend: Optional[AIBackend] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> AppServices:
    """Construct collaborators from config; explicit arguments win."""
    clock = clock or utcnow
    db = database or Database(config.database_path)
    telegram = telegram or TelegramClient(
        config.telegram_bot_token,
        timeout=config.delivery_timeout,
        max_retries=config.delivery_max_retries,
    )

    if ai_backend is None:
        ai_backend = get_backend(config.to_dict())
    if ai_backend is None:
        logger.info("AI classification disabled; using keyword scoring only")
    else:
        logger.info(f"AI classification via {ai_backend.provider_name} ({ai_backend.model_name})")

    classifier = EmailClassifier(
        ai_backend,
        threshold_low=config.ai_threshold_low,
        threshold_high=config.ai_threshold_high,
        timeout=config.ai_timeout,
    )

    return AppServices(
        config=config,
        db=db,
        telegram=telegram,
        notifier=TelegramNotifier(telegram),
        fetchers=fetchers if fetchers is not None else build_fetchers(config),
        classifier=classifier,
        router=CommandRouter(db, telegram, config.base_url, clock=clock),
        clock=clock,
    )


def get_services() -> AppServices:
    return current_app.extensions[EXTENSION_KEY]
