"""
Mail Cron - Application Factory

Polls connected Gmail and Outlook mailboxes, picks out placement and
interview emails, and notifies users on Telegram.
"""

import logging

from flask import Flask

from mailcron.config import get_config

logger = logging.getLogger(__name__)


def create_app(config_path=None, database=None, telegram=None, fetchers=None, ai_backend=None, clock=None):
    """
    Application factory for creating Flask app instances.

    Args:
        config_path: Optional path to config.yaml file
        database: Database to use instead of one at config.database_path
        telegram: TelegramClient to use instead of one built from the env token
        fetchers: Provider -> FetchAdapter mapping (defaults to Gmail + Outlook)
        ai_backend: AI backend for Tier 2 (defaults to the configured one, if keyed)
        clock: Callable returning the current aware UTC datetime

    Returns:
        Configured Flask application instance
    """
    # Load environment variables
    from dotenv import load_dotenv

    load_dotenv()

    # Load configuration
    try:
        config = get_config(config_path)
    except (FileNotFoundError, ValueError) as e:
        logger.error(f"Configuration Error: {e}")
        raise

    app = Flask(__name__)
    app.config["MAILCRON_CONFIG"] = config

    from mailcron.services import EXTENSION_KEY, build_services

    app.extensions[EXTENSION_KEY] = build_services(
        config,
        database=database,
        telegram=telegram,
        fetchers=fetchers,
        ai_backend=ai_backend,
        clock=clock,
    )

    register_blueprints(app)

    return app


def register_blueprints(app):
    """Register all Flask blueprints."""
    from mailcron.routes import register_all_blueprints

    register_all_blueprints(app)
