"""
Core modules for ChatGuard.

This package contains the ingestion and classification pipeline:
- context: cancellation and deadlines for blocking calls
- crypto: envelope encryption of message content
- rate_limiter: per-provider request throttling
- prompt_engine: shared classification prompt
- failover: multi-provider classification client
- notifier: incident notifications
- pipeline: per-conversation ingestion
- poller: periodic ingestion loop

Heavier modules (failover, pipeline, poller) import the provider package and
are not re-exported here.
"""

from .context import RequestContext
from .crypto import KeyManager
from .exceptions import (
    AllProvidersFailedError,
    CancelledError,
    ChatGuardError,
    ConfigError,
    ProviderError,
)
from .prompt_engine import PromptEngine, get_prompt_engine
from .rate_limiter import RateLimiter

__all__ = [
    "RequestContext",
    "KeyManager",
    "AllProvidersFailedError",
    "CancelledError",
    "ChatGuardError",
    "ConfigError",
    "ProviderError",
    "PromptEngine",
    "get_prompt_engine",
    "RateLimiter",
]
