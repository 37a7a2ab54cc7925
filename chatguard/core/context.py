"""
Cancellation and deadline propagation for blocking calls.

A RequestContext wraps a threading.Event (the cancel signal shared by the
whole call tree) and an optional absolute deadline on the monotonic clock.
"""

import threading
import time
from typing import Optional

from .exceptions import CancelledError


class RequestContext:
    """
    Cancel signal plus optional deadline.

    Usage:
        stop = threading.Event()
        ctx = RequestContext(stop, timeout=30)

        if ctx.wait(2.0):
            raise CancelledError("interrupted")
    """

    def __init__(
        self,
        cancel_event: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
        deadline: Optional[float] = None,
    ):
        self._event = cancel_event if cancel_event is not None else threading.Event()
        if timeout is not None:
            candidate = time.monotonic() + timeout
            deadline = candidate if deadline is None else min(deadline, candidate)
        self.deadline = deadline

    @classmethod
    def background(cls) -> "RequestContext":
        """A context that is never cancelled and has no deadline."""
        return cls()

    @property
    def cancel_event(self) -> threading.Event:
        return self._event

    def cancel(self) -> None:
        self._event.set()

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, None when unbounded."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def check(self) -> None:
        """Raise CancelledError if the context is done."""
        if self.cancelled():
            raise CancelledError("operation cancelled")

    def wait(self, seconds: float) -> bool:
        """
        Sleep for up to `seconds`.

        Returns:
            True if the context was cancelled (or hit its deadline) while waiting.
        """
        if self.cancelled():
            return True
        remaining = self.remaining()
        if remaining is not None and remaining < seconds:
            self._event.wait(remaining)
            return True
        if self._event.wait(max(0.0, seconds)):
            return True
        return self.cancelled()

    def child(self, timeout: Optional[float] = None) -> "RequestContext":
        """Derive a context sharing the cancel signal with a tighter deadline."""
        return RequestContext(self._event, timeout=timeout, deadline=self.deadline)
