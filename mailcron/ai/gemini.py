"""
Gemini AI Backend - Google Gemini implementation
"""

import logging
import os
from typing import Dict, Optional

import google.generativeai as genai

from mailcron.resilience import APIRateLimiters
from .base import AIBackend, AIBackendError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-1.5-flash"


class GeminiBackend(AIBackend):
    """Gemini backend using the google-generativeai SDK."""

    def __init__(self, config: Optional[Dict] = None):
        """
        Initialize Gemini backend.

        Args:
            config: Configuration dict with optional 'ai.model' setting
        """
        config = config or {}
        ai_config = config.get("ai", {})
        self._model_name = ai_config.get("model") or DEFAULT_MODEL

        api_key = os.environ.get("GEMINI_API_KEY") or os.environ.get("GOOGLE_API_KEY")
        if not api_key:
            raise ValueError(
                "GEMINI_API_KEY not found. " "Set it in .env or environment variables."
            )

        genai.configure(api_key=api_key)
        self._model = genai.GenerativeModel(self._model_name)

    @property
    def provider_name(self) -> str:
        return "gemini"

    @property
    def model_name(self) -> str:
        return self._model_name

    def complete(self, prompt: str, timeout: float) -> str:
        remaining = self._acquire_slot(APIRateLimiters.gemini, timeout)

        try:
            response = self._model.generate_content(
                prompt,
                generation_config=genai.GenerationConfig(
                    temperature=0.1,
                    max_output_tokens=256,
                    response_mime_type="application/json",
                ),
                request_options={"timeout": remaining},
            )
        except Exception as e:
            logger.error(f"Gemini generation error: {e}")
            raise

        text = (response.text or "").strip()
        if not text:
            raise AIBackendError("Empty response from Gemini")
        return text
