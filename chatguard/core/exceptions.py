"""
Exception hierarchy for the ingestion, encryption and classification core.

Configuration problems are fatal at startup. Everything else is recovered
per item or per conversation by the pipeline.
"""

from typing import Dict, Optional


class ChatGuardError(Exception):
    """Base class for all ChatGuard errors."""


class ConfigError(ChatGuardError):
    """Missing or malformed configuration (master key, provider list...)."""


class CancelledError(ChatGuardError):
    """A blocking operation was interrupted by its context."""


class KeyUnwrapError(ChatGuardError):
    """A tenant data key could not be decrypted under the master key."""


class EncryptError(ChatGuardError):
    """Encryption failed (usually an invalid key)."""


class DecryptError(ChatGuardError):
    """Ciphertext is truncated, malformed or failed tag verification."""


class ProviderError(ChatGuardError):
    """A classification backend call failed."""

    def __init__(
        self,
        message: str,
        provider: str = "",
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class AllProvidersFailedError(ChatGuardError):
    """Every configured provider failed during one attempt round."""

    def __init__(self, errors: Optional[Dict[str, Exception]] = None):
        self.errors = errors or {}
        details = "; ".join(f"{name}: {err}" for name, err in self.errors.items())
        message = "all providers failed"
        if details:
            message = f"{message} ({details})"
        super().__init__(message)


class SourceFetchError(ChatGuardError):
    """The source collector could not be reached or returned garbage."""


class RepositoryError(ChatGuardError):
    """A persistence operation failed."""


class CursorUpdateError(RepositoryError):
    """The conversation cursor could not be advanced."""


_RATE_LIMIT_MARKERS = ("429", "quota", "rate limit")


def is_rate_limit_error(exc: Optional[BaseException]) -> bool:
    """Return True if the error looks like provider throttling."""
    if exc is None:
        return False
    if getattr(exc, "status_code", None) == 429:
        return True
    text = str(exc).lower()
    return any(marker in text for marker in _RATE_LIMIT_MARKERS)
