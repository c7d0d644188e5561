"""
Configuration Loader for Mail Cron

Tunables come from an optional config.yaml; secrets and deployment values
come from the environment (populated from .env by python-dotenv).
"""

import os
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config.yaml"

AI_PROVIDERS = ("gemini", "claude")

DEFAULTS: Dict[str, Dict[str, Any]] = {
    "polling": {"lookback_minutes": 30},
    "alerts": {"failure_cooldown_hours": 2},
    "ai": {
        "provider": "gemini",
        "model": None,
        "timeout_seconds": 10,
        "threshold_low": 3,
        "threshold_high": 8,
    },
    "delivery": {"max_retries": 2, "timeout_seconds": 10},
    "fetch": {"max_results": 50, "timeout_seconds": 30},
}


class Config:
    """Configuration manager for Mail Cron."""

    def __init__(self, config_path: Optional[Path] = None):
        """
        Initialize configuration.

        Args:
            config_path: Path to config.yaml. When omitted, ./config.yaml is
                used if present and built-in defaults otherwise.
        """
        self.config_path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
        self._explicit = config_path is not None
        self._config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML and merge it over the defaults."""
        loaded: Dict[str, Any] = {}
        if self.config_path.exists():
            with open(self.config_path, "r") as f:
                loaded = yaml.safe_load(f) or {}
        elif self._explicit:
            raise FileNotFoundError(
                f"Config file not found: {self.config_path}\n"
                f"Copy config.example.yaml to config.yaml or omit the path to use defaults."
            )

        if not isinstance(loaded, dict):
            raise ValueError("config.yaml must contain a mapping at the top level")

        config = {section: dict(values) for section, values in DEFAULTS.items()}
        for section, values in loaded.items():
            if section in config and isinstance(values, dict):
                config[section].update(values)
            else:
                config[section] = values

        self._validate_config(config)
        return config

    def _validate_config(self, config: Dict[str, Any]) -> None:
        """Validate tunables; raises ValueError on the first bad value."""
        if config["polling"]["lookback_minutes"] <= 0:
            raise ValueError("polling.lookback_minutes must be positive")

        if config["alerts"]["failure_cooldown_hours"] < 0:
            raise ValueError("alerts.failure_cooldown_hours cannot be negative")

        ai = config["ai"]
        if str(ai["provider"]).lower() not in AI_PROVIDERS:
            raise ValueError(
                f"Unknown ai.provider: '{ai['provider']}'. Available: {', '.join(AI_PROVIDERS)}"
            )
        if ai["threshold_low"] >= ai["threshold_high"]:
            raise ValueError("ai.threshold_low must be below ai.threshold_high")
        if ai["timeout_seconds"] <= 0:
            raise ValueError("ai.timeout_seconds must be positive")

        if config["delivery"]["max_retries"] < 0:
            raise ValueError("delivery.max_retries cannot be negative")

    def to_dict(self) -> Dict[str, Any]:
        return {section: dict(values) for section, values in self._config.items()}

    # ===== POLLING =====

    @property
    def lookback(self) -> timedelta:
        """Maximum fetch window looking back from now."""
        return timedelta(minutes=self._config["polling"]["lookback_minutes"])

    @property
    def failure_alert_cooldown(self) -> timedelta:
        """Minimum gap between outage notices for one (recipient, provider)."""
        return timedelta(hours=self._config["alerts"]["failure_cooldown_hours"])

    @property
    def fetch_max_results(self) -> int:
        return self._config["fetch"]["max_results"]

    @property
    def fetch_timeout(self) -> float:
        return self._config["fetch"]["timeout_seconds"]

    # ===== AI =====

    @property
    def ai_provider(self) -> str:
        return str(self._config["ai"]["provider"]).lower()

    @property
    def ai_model(self) -> Optional[str]:
        return self._config["ai"].get("model")

    @property
    def ai_timeout(self) -> float:
        return self._config["ai"]["timeout_seconds"]

    @property
    def ai_threshold_low(self) -> int:
        return self._config["ai"]["threshold_low"]

    @property
    def ai_threshold_high(self) -> int:
        return self._config["ai"]["threshold_high"]

    # ===== DELIVERY =====

    @property
    def delivery_max_retries(self) -> int:
        return self._config["delivery"]["max_retries"]

    @property
    def delivery_timeout(self) -> float:
        return self._config["delivery"]["timeout_seconds"]

    # ===== ENVIRONMENT =====

    @property
    def telegram_bot_token(self) -> str:
        return os.environ.get("TELEGRAM_BOT_TOKEN", "")

    @property
    def base_url(self) -> str:
        return os.environ.get("BASE_URL", "http://localhost:3000").rstrip("/")

    @property
    def database_path(self) -> str:
        return os.environ.get("DATABASE_PATH", str(Path(__file__).parent.parent / "mailcron.db"))

    @property
    def gmail_client_id(self) -> str:
        return os.environ.get("GMAIL_CLIENT_ID", "")

    @property
    def gmail_client_secret(self) -> str:
        return os.environ.get("GMAIL_CLIENT_SECRET", "")

    @property
    def outlook_client_id(self) -> str:
        return os.environ.get("OUTLOOK_CLIENT_ID", "")

    @property
    def outlook_client_secret(self) -> str:
        return os.environ.get("OUTLOOK_CLIENT_SECRET", "")

    @property
    def outlook_tenant_id(self) -> str:
        return os.environ.get("OUTLOOK_TENANT_ID", "common")

    def oauth_redirect_uri(self, provider: str) -> str:
        return f"{self.base_url}/oauth/{provider}/callback"


_config: Optional[Config] = None


def get_config(config_path: Optional[Path] = None) -> Config:
    """Return the process configuration, loading it on first use."""
    global _config
    if _config is None or config_path is not None:
        _config = Config(config_path)
    return _config
