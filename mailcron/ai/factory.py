"""
AI Backend Factory - Creates the configured AI backend, if any

Tier 2 classification is optional: with no API key the factory returns
None and the classifier runs in keyword-only mode.
"""

import importlib
import logging
import os
from typing import Any, Dict, Optional

from .base import AIBackend

logger = logging.getLogger(__name__)

# Registry of available backends
BACKENDS = {
    "gemini": "mailcron.ai.gemini.GeminiBackend",
    "claude": "mailcron.ai.claude.ClaudeBackend",
}

# Environment variables that enable each backend
BACKEND_KEYS = {
    "gemini": ("GEMINI_API_KEY", "GOOGLE_API_KEY"),
    "claude": ("ANTHROPIC_API_KEY",),
}

DEFAULT_BACKEND = "gemini"


def has_api_key(provider_name: str) -> bool:
    return any(os.environ.get(var) for var in BACKEND_KEYS.get(provider_name, ()))


def get_backend(config: Optional[Dict[str, Any]] = None) -> Optional[AIBackend]:
    """
    Get the configured AI backend instance.

    Reads the 'ai.provider' setting and instantiates the matching backend
    class. Returns None when that backend has no API key configured.

    Args:
        config: Configuration dict (as produced by Config.to_dict())

    Returns:
        AIBackend instance or None

    Raises:
        ValueError: If the specified provider is not supported
        ImportError: If the provider's package is not installed

    Example:
        >>> backend = get_backend({'ai': {'provider': 'claude'}})
        >>> backend.provider_name if backend else 'keyword-only'
        'claude'
    """
    config = config or {}
    provider_name = (config.get("ai", {}).get("provider") or DEFAULT_BACKEND).lower()

    if provider_name not in BACKENDS:
        available = ", ".join(BACKENDS.keys())
        raise ValueError(f"Unknown AI provider: '{provider_name}'. Available providers: {available}")

    if not has_api_key(provider_name):
        logger.warning(
            f"No API key for AI provider '{provider_name}'; classifier will use keywords only"
        )
        return None

    module_path, class_name = BACKENDS[provider_name].rsplit(".", 1)
    try:
        module = importlib.import_module(module_path)
    except ImportError as e:
        logger.error(f"Failed to import {provider_name} backend: {e}")
        raise ImportError(
            f"Failed to load {provider_name} backend. "
            f"Ensure the required package is installed. Error: {e}"
        )

    backend = getattr(module, class_name)(config)
    logger.info(f"AI backend ready: {backend.provider_name} ({backend.model_name})")
    return backend
