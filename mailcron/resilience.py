"""
Resilience helpers for the outbound calls a sweep makes.

- retry_with_backoff: Telegram delivery retries transient HTTP failures
- RateLimiter: keeps AI and Telegram calls under each API's quota
- CircuitBreaker: stops calling the AI backend after repeated failures so
  Tier 2 drops straight to keyword results instead of burning timeouts
"""

import time
import random
import functools
import threading
from typing import Callable, Optional, Type, Tuple
from collections import deque

from mailcron.logging_config import get_logger

logger = get_logger(__name__)


class RetryError(Exception):
    """Raised when all retry attempts are exhausted."""

    def __init__(self, message: str, last_exception: Optional[Exception] = None):
        super().__init__(message)
        self.last_exception = last_exception


class CircuitOpenError(Exception):
    """Raised instead of calling through an open circuit breaker."""

    pass


def retry_with_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    jitter: bool = True,
    retryable_exceptions: Tuple[Type[Exception], ...] = (Exception,),
    on_retry: Optional[Callable[[Exception, int], None]] = None,
):
    """
    Retry the decorated call, doubling the delay after each failure.

    Args:
        max_retries: Extra attempts after the first (0 means a single try)
        base_delay: Delay before the first retry, in seconds
        max_delay: Upper bound for any single delay
        jitter: Spread each delay by +/-25% so parallel senders drift apart
        retryable_exceptions: Only these are retried; anything else propagates
        on_retry: Called with (exception, attempt number) before each retry

    Raises:
        RetryError: Once the last attempt fails, carrying that exception
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except retryable_exceptions as e:
                    if attempt == max_retries:
                        logger.error(f"{func.__name__} failed after {attempt + 1} attempt(s): {e}")
                        raise RetryError(
                            f"Failed after {max_retries} retries: {e}", last_exception=e
                        ) from e

                    delay = min(base_delay * (2**attempt), max_delay)
                    if jitter:
                        delay *= 0.75 + random.random() * 0.5

                    logger.warning(
                        f"Retry {attempt + 1}/{max_retries} for {func.__name__} in {delay:.2f}s: {e}"
                    )
                    if on_retry:
                        on_retry(e, attempt + 1)
                    time.sleep(delay)

        return wrapper

    return decorator


class RateLimiter:
    """
    Sliding-window limiter: at most ``calls`` acquisitions per ``period``
    seconds, shared by every thread in the process.
    """

    def __init__(self, calls: int, period: float = 60.0):
        self.calls = calls
        self.period = period
        self._lock = threading.Lock()
        self._call_times: deque = deque()

    def acquire(self, timeout: Optional[float] = None) -> bool:
        """
        Take a slot, waiting for one to free up if the window is full.

        Args:
            timeout: Longest time to wait, in seconds (None waits forever)

        Returns:
            False without waiting when the next slot frees up after ``timeout``
        """
        deadline = None if timeout is None else time.monotonic() + timeout

        while True:
            with self._lock:
                now = time.monotonic()
                while self._call_times and self._call_times[0] <= now - self.period:
                    self._call_times.popleft()

                if len(self._call_times) < self.calls:
                    self._call_times.append(now)
                    return True

                wait = self._call_times[0] + self.period - now

            if deadline is not None and now + wait > deadline:
                return False
            time.sleep(wait)


class CircuitBreaker:
    """
    Fails fast once a dependency has failed ``failure_threshold`` times in
    a row.

    After ``recovery_timeout`` seconds the breaker goes HALF_OPEN and lets
    one trial call through: success closes it, failure opens it again.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(self, failure_threshold: int = 5, recovery_timeout: float = 300.0):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout

        self._state = self.CLOSED
        self._failure_count = 0
        self._opened_at: Optional[float] = None
        self._lock = threading.Lock()

    @property
    def state(self) -> str:
        with self._lock:
            if self._state == self.OPEN and time.monotonic() - self._opened_at >= self.recovery_timeout:
                self._state = self.HALF_OPEN
            return self._state

    def record_success(self) -> None:
        with self._lock:
            if self._state == self.HALF_OPEN:
                logger.info("Circuit breaker closed after successful trial call")
            self._state = self.CLOSED
            self._failure_count = 0

    def record_failure(self) -> None:
        with self._lock:
            self._failure_count += 1
            if self._state == self.HALF_OPEN or self._failure_count >= self.failure_threshold:
                if self._state != self.OPEN:
                    logger.warning(f"Circuit breaker opened after {self._failure_count} failure(s)")
                self._state = self.OPEN
                self._opened_at = time.monotonic()

    def call(self, func: Callable, *args, **kwargs):
        """
        Run ``func`` through the breaker.

        Raises:
            CircuitOpenError: While the breaker is open; ``func`` is not called
        """
        if self.state == self.OPEN:
            raise CircuitOpenError("Circuit breaker is open - service temporarily unavailable")

        try:
            result = func(*args, **kwargs)
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result


class APIRateLimiters:
    """Process-wide limiters for the APIs a sweep calls."""

    # Gemini free tier: 15 requests/minute on flash models
    gemini = RateLimiter(calls=15, period=60.0)

    claude = RateLimiter(calls=50, period=60.0)

    # Bot API: about 30 messages/second across all chats
    telegram = RateLimiter(calls=30, period=1.0)
