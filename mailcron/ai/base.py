"""
Base AI Backend - Abstract base class for AI classification backends

The classifier only needs one capability from a model: take a prompt and
return text. Parsing and validation of that text happen in the classifier,
so every backend stays a thin transport wrapper.
"""

import logging
import time
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)


class AIBackendError(Exception):
    """Raised when a backend call fails or returns nothing usable."""

    pass


class AIBackend(ABC):
    """
    Abstract base class for AI backends (Gemini, Claude).

    Implementations must raise on transport errors and timeouts; they must
    not try to interpret the model output.
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """
        Return the name of this AI provider.

        Returns:
            str: Provider name (e.g., 'gemini', 'claude')
        """
        pass

    @property
    @abstractmethod
    def model_name(self) -> str:
        """
        Return the model being used.

        Returns:
            str: Model identifier (e.g., 'gemini-1.5-flash')
        """
        pass

    @abstractmethod
    def complete(self, prompt: str, timeout: float) -> str:
        """
        Send a prompt and return the raw response text.

        Args:
            prompt: Full prompt text
            timeout: Seconds before the call is abandoned

        Returns:
            str: Raw model output, expected to contain a JSON object

        Raises:
            AIBackendError: On empty output, or if the rate limiter uses up the timeout
            Exception: Transport errors from the underlying SDK
        """
        pass

    def _acquire_slot(self, limiter, timeout: float) -> float:
        """
        Wait for a rate-limit slot and return what is left of ``timeout``.

        Waiting for the slot and the request itself share one deadline, so
        a full limiter can never stretch a call past ``timeout``.

        Raises:
            AIBackendError: If no slot frees up, or none of the budget is left
        """
        deadline = time.monotonic() + timeout
        if not limiter.acquire(timeout=timeout):
            raise AIBackendError(f"{self.provider_name} rate limit: no slot within timeout")

        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise AIBackendError(f"{self.provider_name} rate limit: timeout spent waiting for a slot")
        return remaining
