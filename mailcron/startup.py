"""
Startup validation and health checks for Mail Cron.

Validates environment, configuration, and service dependencies
before the application starts.
"""

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from mailcron.ai import has_api_key
from mailcron.config import Config, get_config
from mailcron.logging_config import LOGS_DIR, get_logger

logger = get_logger(__name__)

REQUIRED_TABLES = ("users", "provider_accounts", "emails", "sessions")


class StartupError(Exception):
    """Raised when startup validation fails."""

    pass


class ValidationResult:
    """Result of a validation check."""

    def __init__(
        self,
        name: str,
        passed: bool,
        message: str,
        severity: str = "error",  # error, warning, info
        fix_hint: Optional[str] = None,
    ):
        self.name = name
        self.passed = passed
        self.message = message
        self.severity = severity
        self.fix_hint = fix_hint

    def __str__(self) -> str:
        status = "PASS" if self.passed else self.severity.upper()
        return f"[{status}] {self.name}: {self.message}"


def validate_environment(config: Config) -> List[ValidationResult]:
    """
    Validate environment variables.

    A missing bot token is an error. Missing OAuth clients and a missing AI
    key only limit functionality, so they are warnings.
    """
    results = []

    if config.telegram_bot_token:
        results.append(
            ValidationResult("Telegram Bot", True, "Bot token configured", severity="info")
        )
    else:
        results.append(
            ValidationResult(
                "Telegram Bot",
                False,
                "TELEGRAM_BOT_TOKEN not set",
                severity="error",
                fix_hint="Create a bot with @BotFather and set TELEGRAM_BOT_TOKEN in .env",
            )
        )

    clients = [
        ("Gmail OAuth", config.gmail_client_id, config.gmail_client_secret, "GMAIL_CLIENT_ID/GMAIL_CLIENT_SECRET"),
        ("Outlook OAuth", config.outlook_client_id, config.outlook_client_secret, "OUTLOOK_CLIENT_ID/OUTLOOK_CLIENT_SECRET"),
    ]
    for name, client_id, client_secret, env_vars in clients:
        if client_id and client_secret:
            results.append(ValidationResult(name, True, "OAuth client configured", severity="info"))
        else:
            results.append(
                ValidationResult(
                    name,
                    False,
                    "OAuth client not configured; users cannot connect this provider",
                    severity="warning",
                    fix_hint=f"Set {env_vars} in .env",
                )
            )

    if has_api_key(config.ai_provider):
        results.append(
            ValidationResult(
                "AI Classification",
                True,
                f"{config.ai_provider} API key configured",
                severity="info",
            )
        )
    else:
        results.append(
            ValidationResult(
                "AI Classification",
                False,
                f"No API key for {config.ai_provider}; running in keyword-only mode",
                severity="warning",
                fix_hint="Set GEMINI_API_KEY (or ANTHROPIC_API_KEY with ai.provider: claude)",
            )
        )

    if not os.environ.get("BASE_URL"):
        results.append(
            ValidationResult(
                "Base URL",
                False,
                f"BASE_URL not set, using {config.base_url}",
                severity="warning",
                fix_hint="Set BASE_URL to the public URL Telegram and OAuth providers can reach",
            )
        )

    flask_env = os.environ.get("FLASK_ENV", "development")
    results.append(
        ValidationResult("Flask Environment", True, f"Running in {flask_env} mode", severity="info")
    )

    return results


def validate_file_system(config: Config) -> List[ValidationResult]:
    """Validate that the database and log directories are writable."""
    results = []

    db_dir = Path(config.database_path).resolve().parent
    if not db_dir.exists():
        results.append(
            ValidationResult(
                "Database Directory",
                False,
                f"Database directory does not exist: {db_dir}",
                severity="error",
                fix_hint="Create the directory or change DATABASE_PATH",
            )
        )
    elif not os.access(db_dir, os.W_OK):
        results.append(
            ValidationResult(
                "Database Directory",
                False,
                f"No write permission for database directory: {db_dir}",
                severity="error",
                fix_hint="Fix directory permissions: chmod 755",
            )
        )
    else:
        results.append(
            ValidationResult("Database Directory", True, "Database directory accessible", severity="info")
        )

    if LOGS_DIR.exists() and not os.access(LOGS_DIR, os.W_OK):
        results.append(
            ValidationResult(
                "Logs Directory",
                False,
                f"No write permission for logs directory: {LOGS_DIR}",
                severity="warning",
            )
        )

    return results


def validate_database(config: Config) -> List[ValidationResult]:
    """Validate database connection and schema."""
    results = []

    try:
        from mailcron.database import Database

        db = Database(config.database_path)
        results.append(
            ValidationResult("Database Connection", True, "Database initialized successfully", severity="info")
        )

        with db.connect() as conn:
            for table in REQUIRED_TABLES:
                found = conn.execute(
                    "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table,)
                ).fetchone()
                if not found:
                    results.append(
                        ValidationResult(
                            f"Table: {table}", False, f"Critical table '{table}' missing", severity="error"
                        )
                    )
    except Exception as e:
        results.append(
            ValidationResult(
                "Database Connection",
                False,
                f"Database error: {e}",
                severity="error",
                fix_hint="Check database file permissions and integrity",
            )
        )

    return results


def validate_dependencies(config: Config) -> List[ValidationResult]:
    """Validate Python package dependencies."""
    results = []

    critical_packages = [
        ("flask", "Flask web framework"),
        ("requests", "HTTP client"),
        ("yaml", "PyYAML"),
        ("bs4", "BeautifulSoup"),
        ("google.oauth2", "Google OAuth"),
        ("googleapiclient", "Gmail API"),
    ]

    ai_packages = {
        "gemini": ("google.generativeai", "Google Gemini SDK"),
        "claude": ("anthropic", "Claude AI SDK"),
    }

    for package, description in critical_packages:
        try:
            __import__(package)
            results.append(
                ValidationResult(f"Package: {package}", True, f"{description} available", severity="info")
            )
        except ImportError:
            results.append(
                ValidationResult(
                    f"Package: {package}",
                    False,
                    f"{description} not installed",
                    severity="error",
                    fix_hint="Run: pip install -e .",
                )
            )

    package, description = ai_packages[config.ai_provider]
    try:
        __import__(package)
    except ImportError:
        results.append(
            ValidationResult(
                f"Package: {package}",
                False,
                f"{description} not installed; AI classification unavailable",
                severity="warning",
            )
        )

    return results


def run_startup_validation(
    config: Optional[Config] = None, strict: bool = False, log_results: bool = True
) -> Tuple[bool, List[ValidationResult]]:
    """
    Run all startup validations.

    Args:
        config: Loaded configuration (defaults to get_config())
        strict: If True, treat warnings as errors
        log_results: If True, log validation results

    Returns:
        Tuple of (all_passed, results)

    Raises:
        StartupError: If the configuration itself cannot be loaded
    """
    if config is None:
        try:
            config = get_config()
        except (FileNotFoundError, ValueError) as e:
            raise StartupError(f"Invalid configuration: {e}") from e

    all_results = []

    validators = [
        ("Environment", validate_environment),
        ("File System", validate_file_system),
        ("Database", validate_database),
        ("Dependencies", validate_dependencies),
    ]

    for category, validator in validators:
        try:
            all_results.extend(validator(config))
        except Exception as e:
            all_results.append(
                ValidationResult(
                    f"{category} Validation",
                    False,
                    f"Validation failed with error: {e}",
                    severity="error",
                )
            )

    if log_results:
        logger.info("=" * 60)
        logger.info("STARTUP VALIDATION RESULTS")
        logger.info("=" * 60)

        for result in all_results:
            if result.passed:
                logger.info(str(result))
            elif result.severity == "error":
                logger.error(str(result))
                if result.fix_hint:
                    logger.error(f"  Hint: {result.fix_hint}")
            elif result.severity == "warning":
                logger.warning(str(result))
                if result.fix_hint:
                    logger.warning(f"  Hint: {result.fix_hint}")
            else:
                logger.info(str(result))

        logger.info("=" * 60)

    errors = [r for r in all_results if not r.passed and r.severity == "error"]
    warnings = [r for r in all_results if not r.passed and r.severity == "warning"]

    if errors:
        logger.error(f"Startup validation failed with {len(errors)} error(s)")
        return False, all_results

    if strict and warnings:
        logger.error(f"Startup validation failed with {len(warnings)} warning(s) (strict mode)")
        return False, all_results

    logger.info("Startup validation passed")
    return True, all_results


def get_health_status(db) -> Dict:
    """
    Get current health status for the health check endpoint.

    Returns:
        Health status dictionary
    """
    status = {
        "status": "OK",
        "database": "connected",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    try:
        with db.connect() as conn:
            conn.execute("SELECT 1").fetchone()
    except Exception as e:
        status["status"] = "ERROR"
        status["database"] = "disconnected"
        status["error"] = str(e)

    return status
