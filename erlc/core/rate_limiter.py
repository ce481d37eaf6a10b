"""Rate limit tracking.

The PRC API reports its rate limit window through ``X-RateLimit-*`` response
headers. :class:`RateLimiter` remembers the last window seen per bucket and
tells callers how long to hold off before the next request.
"""

import time
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

GLOBAL_BUCKET = "global"


@dataclass
class RateLimitWindow:
    """Last known rate limit window for a bucket.

    Attributes:
        bucket: Bucket identifier
        limit: Requests allowed per window
        remaining: Requests left in the current window
        reset: Unix timestamp (seconds) at which the window resets
    """

    bucket: str
    limit: int
    remaining: int
    reset: float

    def to_dict(self) -> dict:
        return {
            "bucket": self.bucket,
            "limit": self.limit,
            "remaining": self.remaining,
            "reset": self.reset,
        }


@dataclass(frozen=True)
class WaitDecision:
    """Result of a rate limit check."""

    should_wait: bool
    duration: float = 0.0


class RateLimiter:
    """Per-bucket rate limit window tracker.

    Absence of a recorded window means no constraint is known, so callers
    are never asked to wait for an unseen bucket.
    """

    def __init__(self) -> None:
        self._windows: Dict[str, RateLimitWindow] = {}

    def record_window(self, bucket: str, limit: int, remaining: int, reset: float) -> RateLimitWindow:
        """Replace the window recorded for a bucket.

        Args:
            bucket: Bucket identifier
            limit: Requests allowed per window
            remaining: Requests left
            reset: Unix timestamp (seconds) of the window reset

        Returns:
            The recorded window
        """
        window = RateLimitWindow(bucket=bucket, limit=limit, remaining=remaining, reset=reset)
        self._windows[bucket] = window
        return window

    def update_from_headers(self, bucket: str, headers: Mapping[str, str]) -> Optional[RateLimitWindow]:
        """Record the window advertised by ``X-RateLimit-*`` headers.

        Headers with a missing or non-positive limit are ignored.

        Returns:
            The recorded window, or None if the headers carried none
        """
        limit = _int_header(headers, "X-RateLimit-Limit")
        if limit <= 0:
            return None
        remaining = _int_header(headers, "X-RateLimit-Remaining")
        reset = _int_header(headers, "X-RateLimit-Reset")
        return self.record_window(bucket, limit, remaining, float(reset))

    def should_wait(self, bucket: str) -> WaitDecision:
        """Decide whether a request on ``bucket`` must wait.

        Returns:
            ``WaitDecision(True, seconds_until_reset)`` when the window is
            exhausted and has not reset yet, otherwise ``WaitDecision(False)``
        """
        window = self._windows.get(bucket)
        if window is None:
            return WaitDecision(False)

        if window.remaining <= 0:
            wait = window.reset - time.time()
            if wait > 0:
                return WaitDecision(True, wait)

        return WaitDecision(False)

    def status(self, bucket: str) -> Optional[RateLimitWindow]:
        return self._windows.get(bucket)

    def clear(self, bucket: str) -> None:
        self._windows.pop(bucket, None)

    def clear_all(self) -> None:
        self._windows.clear()


def _int_header(headers: Mapping[str, str], name: str) -> int:
    try:
        return int(float(headers.get(name) or 0))
    except (TypeError, ValueError):
        return 0
