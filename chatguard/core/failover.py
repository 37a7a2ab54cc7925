"""
Multi-provider failover client.

Holds an ordered, fixed list of (adapter, rate limiter, failure counter)
slots and one active index. A provider is switched out after
`max_failures_before_switch` consecutive failures, or immediately when it
signals throttling. Order never changes after construction.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .context import RequestContext
from .exceptions import (
    AllProvidersFailedError,
    CancelledError,
    ConfigError,
    is_rate_limit_error,
)
from .rate_limiter import DEFAULT_REQUESTS_PER_MINUTE, RateLimiter
from ..providers.base import ClassificationProvider, ClassificationResult
from ..providers.factory import ProviderFactory

logger = logging.getLogger(__name__)

DEFAULT_MAX_FAILURES = 3


@dataclass
class ProviderSlot:
    """One configured backend with its own limiter and failure counter."""

    provider: ClassificationProvider
    limiter: RateLimiter
    failures: int = 0

    @property
    def name(self) -> str:
        return self.provider.get_name()


class FailoverClient:
    """
    Classification client rotating over several providers.

    Each call runs one attempt round: attempt i goes to provider
    (active + i) mod n, so every provider is tried at most once per call.
    The shared active index only moves on a threshold or rate-limit failure.

    Usage:
        client = FailoverClient.from_config(load_config())
        result = client.classify(RequestContext(timeout=30), "some text")
    """

    def __init__(
        self,
        slots: List[ProviderSlot],
        max_failures_before_switch: int = DEFAULT_MAX_FAILURES,
    ):
        if not slots:
            raise ConfigError("at least one provider is required")
        if max_failures_before_switch < 1:
            raise ConfigError("max_failures_before_switch must be >= 1")

        self._slots = list(slots)
        self.max_failures_before_switch = max_failures_before_switch
        self._current = 0
        self._lock = threading.Lock()

    @classmethod
    def from_providers(
        cls,
        providers: List[ClassificationProvider],
        requests_per_minute: int = DEFAULT_REQUESTS_PER_MINUTE,
        max_failures_before_switch: int = DEFAULT_MAX_FAILURES,
    ) -> "FailoverClient":
        """Wrap ready-made providers, each with a fresh rate limiter."""
        slots = [
            ProviderSlot(p, RateLimiter(requests_per_minute, name=p.get_name()))
            for p in providers
        ]
        return cls(slots, max_failures_before_switch)

    @classmethod
    def from_config(
        cls, cfg: Dict[str, Any], factory: type = ProviderFactory
    ) -> "FailoverClient":
        """
        Build the client from the `providers` list of the configuration.

        Entries with an unknown type or that fail to initialise are skipped.

        Raises:
            ConfigError: if no provider could be created
        """
        slots: List[ProviderSlot] = []
        for entry in cfg.get("providers") or []:
            provider_type = entry.get("type", "")
            if not factory.is_registered(provider_type):
                logger.warning(f"Unknown provider type '{provider_type}', skipping")
                continue
            try:
                provider = factory.create(provider_type, entry)
            except (ConfigError, ValueError) as e:
                logger.error(f"Failed to initialize {provider_type} provider: {e}")
                continue

            rpm = int(entry.get("requests_per_minute") or DEFAULT_REQUESTS_PER_MINUTE)
            slots.append(
                ProviderSlot(provider, RateLimiter(rpm, name=provider.get_name()))
            )
            logger.info(
                f"Initialized {provider.get_name()} provider "
                f"(model {provider.describe().get('model')}, {rpm} req/min)"
            )

        if not slots:
            raise ConfigError("no classification provider could be initialized")

        return cls(
            slots,
            int(cfg.get("max_failures_before_switch") or DEFAULT_MAX_FAILURES),
        )

    def __len__(self) -> int:
        return len(self._slots)

    @property
    def current_index(self) -> int:
        with self._lock:
            return self._current

    def _record_success(self, index: int) -> None:
        with self._lock:
            self._slots[index].failures = 0

    def _record_failure(self, index: int, error: Exception) -> None:
        """Count a failure and switch providers if warranted."""
        with self._lock:
            slot = self._slots[index]
            slot.failures += 1
            rate_limited = is_rate_limit_error(error)
            should_switch = (
                slot.failures >= self.max_failures_before_switch or rate_limited
            )
            # Another caller may already have moved past this provider
            if not should_switch or self._current != index:
                return
            self._current = (index + 1) % len(self._slots)
            next_name = self._slots[self._current].name
            failures = slot.failures

        reason = "rate limit" if rate_limited else f"{failures} consecutive failures"
        logger.warning(
            f"Switching provider from {slot.name} to {next_name} ({reason})"
        )

    def classify(
        self, ctx: Optional[RequestContext], text: str
    ) -> ClassificationResult:
        """
        Classify text with the active provider, failing over as needed.

        Raises:
            AllProvidersFailedError: every provider failed in this round
            CancelledError: the context was cancelled
        """
        ctx = ctx or RequestContext.background()
        with self._lock:
            start = self._current
        count = len(self._slots)

        errors: Dict[str, Exception] = {}
        for attempt in range(count):
            ctx.check()
            index = (start + attempt) % count
            slot = self._slots[index]

            slot.limiter.acquire(ctx)
            try:
                result = slot.provider.classify(ctx, text)
            except CancelledError:
                raise
            except Exception as e:
                logger.error(f"Provider {slot.name} failed: {e}")
                errors[f"{index}:{slot.name}"] = e
                self._record_failure(index, e)
                continue

            self._record_success(index)
            return result

        raise AllProvidersFailedError(errors)

    def describe(self) -> Dict[str, Any]:
        """Active provider, its index and failure count."""
        with self._lock:
            slot = self._slots[self._current]
            return {
                "provider": slot.name,
                "model": slot.provider.describe().get("model", ""),
                "index": self._current,
                "failures": slot.failures,
                "total_providers": len(self._slots),
            }

    def providers_info(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [
                {
                    "index": i,
                    "provider": slot.name,
                    "model": slot.provider.describe().get("model", ""),
                    "failures": slot.failures,
                    "is_current": i == self._current,
                    "rate_limit": slot.limiter.get_status(),
                }
                for i, slot in enumerate(self._slots)
            ]

    def close(self) -> None:
        for slot in self._slots:
            try:
                slot.provider.close()
            except Exception as e:
                logger.warning(f"Error closing provider {slot.name}: {e}")
