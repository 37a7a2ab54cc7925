"""
Rate limiting for classification backends.

One RateLimiter instance guards one provider adapter, so a slow or throttled
backend never blocks callers of another one. Uses a token bucket refilled at
R tokens per minute plus a per-minute window counter.
"""

import logging
import threading
import time
from collections import deque
from typing import Callable, Deque, Dict, Optional

from .context import RequestContext
from .exceptions import CancelledError

logger = logging.getLogger(__name__)

# Conservative default for free-tier APIs (requests per minute)
DEFAULT_REQUESTS_PER_MINUTE = 8

WINDOW_SECONDS = 60.0


class RateLimiter:
    """
    Token bucket rate limiter for a single backend.

    Thread-safe. All state changes happen under one lock; the lock is released
    while the caller waits for a token.

    Besides the bucket, the limiter remembers the timestamps of its last R
    grants so that no rolling 60 second window ever sees more than R grants,
    whatever the call pattern.
    """

    def __init__(
        self,
        requests_per_minute: int = DEFAULT_REQUESTS_PER_MINUTE,
        name: str = "default",
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize rate limiter.

        Args:
            requests_per_minute: Target rate R (bucket capacity)
            name: Label used in logs and status output
            clock: Monotonic time source (injectable for tests)
        """
        if requests_per_minute <= 0:
            raise ValueError("requests_per_minute must be positive")

        self.requests_per_minute = requests_per_minute
        self.name = name
        self.refill_interval = WINDOW_SECONDS / requests_per_minute
        self._clock = clock

        self._tokens = requests_per_minute
        self._last_refill = clock()
        self._window_count = 0
        self._window_reset: Optional[float] = None
        self._grants: Deque[float] = deque(maxlen=requests_per_minute)
        self._lock = threading.Lock()

    def _roll_window(self, now: float) -> None:
        """Start the per-minute window on first use, reset it once elapsed."""
        if self._window_reset is None:
            self._window_reset = now + WINDOW_SECONDS
        elif now >= self._window_reset:
            self._window_count = 0
            self._window_reset = now + WINDOW_SECONDS
            self._tokens = self.requests_per_minute
            self._last_refill = now

    def _refill_tokens(self, now: float) -> None:
        """Add one token per whole refill interval elapsed, capped at R."""
        added = int((now - self._last_refill) // self.refill_interval)
        if added > 0:
            self._tokens = min(self.requests_per_minute, self._tokens + added)
            self._last_refill = now

    def _history_wait(self, now: float) -> float:
        """Seconds until the oldest of the last R grants leaves the window."""
        if len(self._grants) < self.requests_per_minute:
            return 0.0
        return max(0.0, self._grants[0] + WINDOW_SECONDS - now)

    def _try_take(self, now: float) -> Optional[float]:
        """
        Consume a token if allowed. Caller holds the lock.

        Returns:
            None on success, otherwise the time to wait before retrying.
        """
        self._roll_window(now)
        self._refill_tokens(now)

        if self._tokens <= 0:
            return self.refill_interval

        history_wait = self._history_wait(now)
        if history_wait > 0:
            return history_wait

        self._tokens -= 1
        self._window_count += 1
        self._grants.append(now)
        return None

    def acquire(self, ctx: Optional[RequestContext] = None) -> bool:
        """
        Block until a request may be sent.

        Args:
            ctx: Cancellation/deadline context

        Returns:
            True once a token has been consumed

        Raises:
            CancelledError: if the context is cancelled while waiting. No token
                is consumed in that case.
        """
        ctx = ctx or RequestContext.background()

        while True:
            with self._lock:
                now = self._clock()
                wait_time = self._try_take(now)
                if wait_time is None:
                    return True
                starved = self._tokens <= 0

            logger.debug(f"Rate limiter '{self.name}' waiting {wait_time:.2f}s")
            if ctx.wait(wait_time):
                logger.info(f"Rate limit wait cancelled for {self.name}")
                raise CancelledError(f"rate limit wait cancelled for {self.name}")

            if starved:
                # One refill interval has passed: grant the waiter a token
                with self._lock:
                    if self._tokens <= 0:
                        self._tokens = 1
                        self._last_refill = self._clock()

    def try_acquire(self) -> bool:
        """Non-blocking variant. Returns False instead of waiting."""
        with self._lock:
            return self._try_take(self._clock()) is None

    def get_status(self) -> Dict:
        """
        Get current bucket state.

        Returns:
            Dict with available tokens, capacity and window counters
        """
        with self._lock:
            now = self._clock()
            self._refill_tokens(now)
            window_resets_in = None
            if self._window_reset is not None:
                window_resets_in = max(0.0, self._window_reset - now)

            return {
                "name": self.name,
                "available_tokens": self._tokens,
                "max_tokens": self.requests_per_minute,
                "requests_per_minute": self.requests_per_minute,
                "refill_interval_seconds": self.refill_interval,
                "requests_this_window": self._window_count,
                "window_resets_in_seconds": window_resets_in,
            }

    def reset(self) -> None:
        """Restore a full bucket and forget grant history."""
        with self._lock:
            self._tokens = self.requests_per_minute
            self._last_refill = self._clock()
            self._window_count = 0
            self._window_reset = None
            self._grants.clear()
