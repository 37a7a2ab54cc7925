"""
Unit tests for the per-provider RateLimiter.

All timing goes through a fake clock and a fake context, so no test sleeps.
"""

import random
import threading

import pytest

from chatguard.core.context import RequestContext
from chatguard.core.exceptions import CancelledError
from chatguard.core.rate_limiter import DEFAULT_REQUESTS_PER_MINUTE, RateLimiter


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeContext:
    """Advances the fake clock instead of sleeping."""

    def __init__(self, clock: FakeClock, cancel_after: int = -1):
        self.clock = clock
        self.waits = []
        self.cancel_after = cancel_after

    def wait(self, seconds: float) -> bool:
        if self.cancel_after == len(self.waits):
            self.waits.append(0.0)
            return True
        self.waits.append(seconds)
        self.clock.now += seconds
        return False


class TestRateLimiterBasics:
    """Basic token bucket behaviour."""

    def test_default_rate(self):
        """Default is 8 requests per minute."""
        limiter = RateLimiter()

        assert limiter.requests_per_minute == DEFAULT_REQUESTS_PER_MINUTE == 8
        assert limiter.refill_interval == pytest.approx(7.5)

    def test_rejects_non_positive_rate(self):
        with pytest.raises(ValueError):
            RateLimiter(0)

    def test_burst_up_to_capacity_is_immediate(self):
        """R acquires in a row never wait."""
        clock = FakeClock()
        limiter = RateLimiter(5, clock=clock)
        ctx = FakeContext(clock)

        for _ in range(5):
            assert limiter.acquire(ctx) is True

        assert ctx.waits == []
        assert limiter.get_status()["available_tokens"] == 0

    def test_try_acquire_does_not_block(self):
        clock = FakeClock()
        limiter = RateLimiter(2, clock=clock)

        assert limiter.try_acquire() is True
        assert limiter.try_acquire() is True
        assert limiter.try_acquire() is False

    def test_refill_uses_whole_intervals(self):
        """One token per full refill interval, partial intervals add nothing."""
        clock = FakeClock()
        limiter = RateLimiter(6, clock=clock)  # one token every 10s
        for _ in range(6):
            limiter.try_acquire()

        clock.now += 9.0
        assert limiter.get_status()["available_tokens"] == 0

        clock.now += 1.0
        assert limiter.get_status()["available_tokens"] == 1

    def test_tokens_capped_at_capacity(self):
        clock = FakeClock()
        limiter = RateLimiter(4, clock=clock)
        limiter.try_acquire()

        clock.now += 3600
        assert limiter.get_status()["available_tokens"] == 4

    def test_reset_restores_full_bucket(self):
        clock = FakeClock()
        limiter = RateLimiter(3, clock=clock)
        for _ in range(3):
            limiter.try_acquire()

        limiter.reset()

        status = limiter.get_status()
        assert status["available_tokens"] == 3
        assert status["requests_this_window"] == 0


class TestBlockingAcquire:
    """Blocking behaviour and cancellation."""

    def test_exhausted_bucket_waits_for_refill(self):
        """A starved caller waits before being granted."""
        clock = FakeClock()
        limiter = RateLimiter(3, clock=clock)
        ctx = FakeContext(clock)
        for _ in range(3):
            limiter.acquire(ctx)

        assert limiter.acquire(ctx) is True

        assert ctx.waits[0] == pytest.approx(20.0)
        # The fourth grant may not land within 60s of the first
        assert clock.now >= 1000.0 + 60.0

    def test_cancelled_wait_consumes_no_token(self):
        clock = FakeClock()
        limiter = RateLimiter(2, clock=clock)
        for _ in range(2):
            limiter.try_acquire()
        before = limiter.get_status()

        with pytest.raises(CancelledError):
            limiter.acquire(FakeContext(clock, cancel_after=0))

        after = limiter.get_status()
        assert after["available_tokens"] == before["available_tokens"] == 0
        assert after["requests_this_window"] == before["requests_this_window"] == 2

    @pytest.mark.timeout(5)
    def test_real_context_cancellation_returns_promptly(self):
        """A cancelled event releases a blocked acquire."""
        limiter = RateLimiter(1, name="slow")
        limiter.acquire()
        event = threading.Event()
        errors = []

        def worker():
            try:
                limiter.acquire(RequestContext(event))
            except CancelledError as e:
                errors.append(e)

        t = threading.Thread(target=worker)
        t.start()
        event.set()
        t.join(timeout=2)

        assert not t.is_alive()
        assert len(errors) == 1

    @pytest.mark.timeout(5)
    def test_deadline_interrupts_wait(self):
        limiter = RateLimiter(1)
        limiter.acquire()

        with pytest.raises(CancelledError):
            limiter.acquire(RequestContext(timeout=0.05))

    def test_limiters_are_independent(self):
        """Exhausting one provider's limiter does not affect another."""
        clock = FakeClock()
        first = RateLimiter(1, name="gemini", clock=clock)
        second = RateLimiter(1, name="groq", clock=clock)
        first.try_acquire()

        assert first.try_acquire() is False
        assert second.try_acquire() is True


class TestRollingWindow:
    """No rolling 60s window ever sees more than R grants."""

    @staticmethod
    def _max_in_any_window(grants):
        worst = 0
        for i, start in enumerate(grants):
            count = sum(1 for g in grants[i:] if g < start + 60.0)
            worst = max(worst, count)
        return worst

    @pytest.mark.parametrize("rpm", [1, 3, 8, 20])
    def test_random_call_pattern_respects_rate(self, rpm):
        rng = random.Random(rpm)
        clock = FakeClock()
        limiter = RateLimiter(rpm, clock=clock)
        grants = []

        for i in range(200):
            clock.now += rng.choice([0.0, 0.0, 0.5, 3.0, 7.5, 15.0, 61.0])
            if i % 17 == 5:
                # A cancelled waiter mixed into the pattern
                try:
                    limiter.acquire(FakeContext(clock, cancel_after=0))
                except CancelledError:
                    pass
                else:
                    grants.append(clock.now)
                continue
            limiter.acquire(FakeContext(clock))
            grants.append(clock.now)

        assert self._max_in_any_window(grants) <= rpm

    def test_window_counter_resets_after_a_minute(self):
        clock = FakeClock()
        limiter = RateLimiter(4, clock=clock)
        limiter.try_acquire()
        limiter.try_acquire()
        assert limiter.get_status()["requests_this_window"] == 2

        clock.now += 61
        limiter.try_acquire()

        assert limiter.get_status()["requests_this_window"] == 1

    def test_status_fields(self):
        limiter = RateLimiter(8, name="groq", clock=FakeClock())
        status = limiter.get_status()

        assert status["name"] == "groq"
        assert status["max_tokens"] == 8
        assert status["refill_interval_seconds"] == pytest.approx(7.5)
        assert status["window_resets_in_seconds"] is None
