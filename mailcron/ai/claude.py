"""
Claude AI Backend - Anthropic Claude implementation
"""

import logging
import os
from typing import Dict, Optional

import anthropic

from mailcron.resilience import APIRateLimiters
from .base import AIBackend, AIBackendError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-20250514"


class ClaudeBackend(AIBackend):
    """Claude backend using the Anthropic API."""

    def __init__(self, config: Optional[Dict] = None):
        """
        Initialize Claude backend.

        Args:
            config: Configuration dict with optional 'ai.model' setting
        """
        config = config or {}
        ai_config = config.get("ai", {})
        self._model = ai_config.get("model") or DEFAULT_MODEL

        api_key = os.environ.get("ANTHROPIC_API_KEY")
        if not api_key:
            raise ValueError(
                "ANTHROPIC_API_KEY not found. " "Set it in .env or environment variables."
            )

        # The sweep owns retry policy; a slow model must fail fast
        self._client = anthropic.Anthropic(api_key=api_key, max_retries=0)

    @property
    def provider_name(self) -> str:
        return "claude"

    @property
    def model_name(self) -> str:
        return self._model

    def complete(self, prompt: str, timeout: float) -> str:
        remaining = self._acquire_slot(APIRateLimiters.claude, timeout)

        try:
            response = self._client.messages.create(
                model=self._model,
                max_tokens=256,
                messages=[{"role": "user", "content": prompt}],
                timeout=remaining,
            )
        except Exception as e:
            logger.error(f"Claude generation error: {e}")
            raise

        if not response.content:
            raise AIBackendError("Empty response from Claude")
        return response.content[0].text.strip()
