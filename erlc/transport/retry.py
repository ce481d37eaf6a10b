"""Retry policy with exponential backoff and jitter.

This module holds the retry configuration used by the request pipeline: how
long to back off between attempts, which failures are transient, and how to
turn a 429 response into a wait duration.
"""

import asyncio
import random
import time
from dataclasses import dataclass, field
from datetime import timezone
from email.utils import parsedate_to_datetime
from typing import Any, FrozenSet, Mapping, Optional, Tuple, Type

import httpx

# Wait applied to a 429 response that carries no usable hint
DEFAULT_RATE_LIMIT_WAIT = 5.0

_RETRYABLE_MESSAGES = ("other side closed", "socket hang up", "reset by peer")


@dataclass
class RetryPolicy:
    """Configuration for retry behavior with exponential backoff.

    Attributes:
        max_retries: Maximum number of retry attempts (default: 3, i.e. 4 attempts)
        base_delay: Initial delay between retries in seconds (default: 1.0)
        min_delay: Floor applied after jitter, in seconds (default: 0.5)
        exponential_base: Base for exponential calculation (default: 2.0)
        jitter: Relative jitter applied in both directions (default: 0.125)
        retryable_status_codes: HTTP statuses retried with backoff
        retryable_exceptions: Exception types that trigger a retry

    Example:
        >>> policy = RetryPolicy(max_retries=5, base_delay=1.0, jitter=0)
        >>> policy.calculate_delay(attempt=2)
        4.0
    """

    max_retries: int = 3
    base_delay: float = 1.0
    min_delay: float = 0.5
    exponential_base: float = 2.0
    jitter: float = 0.125
    retryable_status_codes: FrozenSet[int] = field(default_factory=lambda: frozenset({502, 503, 504}))
    retryable_exceptions: Tuple[Type[BaseException], ...] = (
        httpx.TimeoutException,
        httpx.NetworkError,
        httpx.RemoteProtocolError,
        asyncio.TimeoutError,
        ConnectionError,
    )

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def calculate_delay(self, attempt: int) -> float:
        """Calculate the delay for a given retry attempt.

        delay = max(min_delay, base_delay * exponential_base ** attempt * (1 ± jitter))

        Args:
            attempt: The attempt that just failed (0-indexed)

        Returns:
            Delay in seconds
        """
        delay = self.base_delay * (self.exponential_base**attempt)
        if self.jitter:
            delay += delay * random.uniform(-self.jitter, self.jitter)
        return max(self.min_delay, delay)

    def is_retryable(self, exception: BaseException) -> bool:
        """Check if an exception should trigger a retry.

        The exception's cause chain is inspected too, so wrapped transport
        failures are still recognised.
        """
        seen: set[int] = set()
        current: Optional[BaseException] = exception
        while current is not None and id(current) not in seen:
            seen.add(id(current))
            if isinstance(current, self.retryable_exceptions):
                return True
            message = str(current).lower()
            if any(fragment in message for fragment in _RETRYABLE_MESSAGES):
                return True
            current = current.__cause__
        return False

    def is_retryable_status(self, status_code: int) -> bool:
        return status_code in self.retryable_status_codes


def parse_retry_after(
    headers: Mapping[str, str],
    body: Any = None,
    now: Optional[float] = None,
    default: float = DEFAULT_RATE_LIMIT_WAIT,
) -> float:
    """Work out how long to wait after a 429 response.

    Sources are consulted in priority order: a ``retry_after`` field in the
    JSON body, the ``Retry-After`` header (seconds or HTTP date), the
    ``X-RateLimit-Reset`` epoch, and finally ``default``.

    Args:
        headers: Response headers
        body: Parsed JSON body, if any
        now: Current Unix time (defaults to ``time.time()``)
        default: Fallback wait in seconds

    Returns:
        Wait duration in seconds (always positive)
    """
    now = time.time() if now is None else now

    if isinstance(body, dict):
        hint = body.get("retry_after")
        if isinstance(hint, (int, float)) and not isinstance(hint, bool) and hint > 0:
            return float(hint)

    retry_after = headers.get("Retry-After")
    if retry_after:
        try:
            seconds = float(retry_after)
        except ValueError:
            try:
                retry_at = parsedate_to_datetime(retry_after)
                # "-0000" dates parse as naive but are still UTC
                if retry_at.tzinfo is None:
                    retry_at = retry_at.replace(tzinfo=timezone.utc)
                seconds = retry_at.timestamp() - now
            except (TypeError, ValueError):
                seconds = 0.0
        if seconds > 0:
            return seconds

    reset = headers.get("X-RateLimit-Reset")
    if reset:
        try:
            seconds = float(reset) - now
        except ValueError:
            seconds = 0.0
        if seconds > 0:
            return seconds

    return default
