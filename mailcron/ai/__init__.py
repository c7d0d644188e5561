"""
AI Package - optional Tier 2 backends for the email classifier

Usage:
    from mailcron.ai import get_backend

    backend = get_backend(config.to_dict())  # None in keyword-only mode
    raw = backend.complete(prompt, timeout=10)
"""

from .base import AIBackend, AIBackendError
from .factory import get_backend, has_api_key
from .prompts import build_classify_email_prompt

__all__ = [
    "AIBackend",
    "AIBackendError",
    "get_backend",
    "has_api_key",
    "build_classify_email_prompt",
]
