#!/usr/bin/env python3
"""
Mail Cron - Main Entry Point

Uses the application factory pattern via mailcron.create_app().

Usage:
    python run.py

Environment Variables:
    FLASK_ENV: development (default), production, testing
    LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (optional)
    PORT: Port to listen on (default 3000)
"""

import os
import sys
from pathlib import Path

APP_DIR = Path(__file__).parent

# Load environment variables from .env file
from dotenv import load_dotenv

load_dotenv(APP_DIR / ".env")

# Initialize logging first
from mailcron.logging_config import setup_logging, get_logger

flask_env = os.environ.get("FLASK_ENV", "development")
log_level = os.environ.get("LOG_LEVEL")
json_logs = flask_env == "production"

setup_logging(level=log_level, json_logs=json_logs)
logger = get_logger(__name__)


def main():
    """Main entry point for Mail Cron."""

    logger.info("=" * 60)
    logger.info("Mail Cron - Starting Up")
    logger.info("=" * 60)

    from mailcron.startup import StartupError, run_startup_validation

    logger.info("Running startup validation...")
    try:
        validation_passed, _ = run_startup_validation(strict=False, log_results=True)
    except StartupError as e:
        logger.error(str(e))
        sys.exit(1)

    if not validation_passed:
        logger.error("Startup validation failed. Please fix the errors above.")
        sys.exit(1)

    from mailcron import create_app
    from mailcron.config import get_config

    app = create_app()
    config = get_config()
    port = int(os.environ.get("PORT", 3000))

    logger.info("")
    logger.info("=" * 60)
    logger.info(f"  Environment: {flask_env}")
    logger.info(f"  Database: {config.database_path}")
    logger.info(f"  Lookback: {config.lookback}")
    logger.info(f"  AI provider: {config.ai_provider}")
    logger.info("")
    logger.info(f"  Health: http://localhost:{port}/health")
    logger.info(f"  Webhook setup: http://localhost:{port}/webhook/setup")
    logger.info(f"  Cron: http://localhost:{port}/cron/check")
    logger.info("=" * 60)
    logger.info("")

    debug_mode = flask_env != "production"
    app.run(debug=debug_mode, host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
