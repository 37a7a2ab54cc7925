"""
Unit tests for RequestContext cancellation and deadlines.
"""

import threading
import time

import pytest

from chatguard.core.context import RequestContext
from chatguard.core.exceptions import CancelledError


class TestRequestContext:
    def test_background_is_never_cancelled(self):
        ctx = RequestContext.background()

        assert ctx.cancelled() is False
        assert ctx.remaining() is None
        ctx.check()

    def test_cancel_sets_shared_event(self):
        event = threading.Event()
        ctx = RequestContext(event)

        ctx.cancel()

        assert event.is_set()
        with pytest.raises(CancelledError):
            ctx.check()

    def test_wait_returns_false_when_not_cancelled(self):
        assert RequestContext().wait(0.0) is False

    @pytest.mark.timeout(5)
    def test_wait_stops_at_deadline(self):
        ctx = RequestContext(timeout=0.05)
        start = time.monotonic()

        assert ctx.wait(10) is True
        assert time.monotonic() - start < 2

    def test_child_shares_cancel_and_tightens_deadline(self):
        parent = RequestContext(timeout=100)
        child = parent.child(timeout=1)

        assert child.remaining() <= 1
        parent.cancel()
        assert child.cancelled() is True

    def test_child_never_extends_parent_deadline(self):
        parent = RequestContext(timeout=0.5)
        child = parent.child(timeout=100)

        assert child.remaining() <= 0.5
