"""
Base provider interface for threat classification.

This module defines the closed category enumeration, the canonical
classification result, the abstract provider interface and a retrying base
class that concrete HTTP adapters (Gemini, Groq, OpenRouter, OpenAI, Ollama)
build on.
"""

import json
import math
import os
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, Dict, Optional, Tuple

import requests
from requests.exceptions import RequestException, Timeout

from ..core.context import RequestContext
from ..core.exceptions import CancelledError, ConfigError, ProviderError
from ..core.prompt_engine import PromptEngine, get_prompt_engine, strip_code_fence
from ..utils.logger import logger
from ..utils.secrets import get_api_key


class ThreatCategory(IntEnum):
    """Closed set of classification categories. NEUTRAL is the only non-threat."""

    GROOMING = 1
    BLACKMAIL = 2
    BULLYING = 3
    SUICIDE_ENCOURAGEMENT = 4
    DANGEROUS_ACTIVITIES = 5
    DRUG_PROPAGANDA = 6
    FINANCIAL_FRAUD = 7
    PHISHING = 8
    NEUTRAL = 9

    @property
    def label(self) -> str:
        return CATEGORY_LABELS[self]

    @classmethod
    def is_valid(cls, value: Any) -> bool:
        if isinstance(value, bool) or not isinstance(value, int):
            return False
        return cls.GROOMING <= value <= cls.NEUTRAL


CATEGORY_LABELS = {
    ThreatCategory.GROOMING: "Grooming",
    ThreatCategory.BLACKMAIL: "Threats, blackmail, extortion",
    ThreatCategory.BULLYING: "Physical violence / bullying",
    ThreatCategory.SUICIDE_ENCOURAGEMENT: "Encouragement of suicide / self-harm",
    ThreatCategory.DANGEROUS_ACTIVITIES: "Encouragement of dangerous activities",
    ThreatCategory.DRUG_PROPAGANDA: "Propaganda of prohibited substances",
    ThreatCategory.FINANCIAL_FRAUD: "Financial fraud",
    ThreatCategory.PHISHING: "Collection of personal data (phishing)",
    ThreatCategory.NEUTRAL: "Neutral communication",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ClassificationResult:
    """
    Canonical result of classifying one message.

    Attributes:
        category_id: ThreatCategory value (1-9)
        category_name: Canonical label of the category
        justification: Free-text explanation from the model
        confidence: 0.0-1.0 self-assessed confidence
        provider: Provider identifier (gemini, groq, ...)
        model: Provider model identifier
        annotated_at: UTC timestamp of the classification
        tokens_used: Token count reported by the provider (0 if unknown)
        latency_ms: Response time of the successful attempt
    """

    category_id: int
    category_name: str
    justification: str = ""
    confidence: float = 1.0
    provider: str = ""
    model: str = ""
    annotated_at: datetime = field(default_factory=_utcnow)
    tokens_used: int = 0
    latency_ms: int = 0

    @property
    def category(self) -> ThreatCategory:
        return ThreatCategory(self.category_id)

    @property
    def is_threat(self) -> bool:
        return self.category_id != ThreatCategory.NEUTRAL

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category_id": self.category_id,
            "category_name": self.category_name,
            "justification": self.justification,
            "confidence": self.confidence,
            "provider": self.provider,
            "model": self.model,
            "annotated_at": self.annotated_at.isoformat(),
            "tokens_used": self.tokens_used,
            "latency_ms": self.latency_ms,
        }


class ClassificationProvider(ABC):
    """
    Abstract base class for classification backends.

    The failover client only relies on this interface, so every adapter is
    interchangeable.
    """

    @abstractmethod
    def classify(
        self, ctx: Optional[RequestContext], text: str
    ) -> ClassificationResult:
        """
        Classify one message.

        Raises:
            ProviderError: when the backend could not produce a valid result
            CancelledError: when the context is cancelled
        """

    @abstractmethod
    def describe(self) -> Dict[str, Any]:
        """Return provider/model metadata for observability."""

    @abstractmethod
    def get_name(self) -> str:
        """Return provider identifier for logging and metrics."""

    def close(self) -> None:
        """Release resources held by the provider."""

    def health_check(self) -> bool:
        """Check if the provider service is reachable."""
        return True


class RetryingProvider(ClassificationProvider):
    """
    Shared retry loop for HTTP adapters.

    Subclasses implement `_request`, which performs one HTTP round trip and
    returns the raw model text. This class strips code fences, parses the JSON,
    validates the category and retries with a fixed delay on any failure.
    """

    NAME = "base"
    DEFAULT_MODEL = ""
    REQUIRES_API_KEY = True

    def __init__(self, config: Optional[Dict] = None):
        """
        Args:
            config: Provider configuration with:
                - model: Model name (provider default otherwise)
                - api_key: API key, `${ENV_VAR}` references are expanded
                - max_retries: Attempts per classify call (default: 3)
                - retry_delay: Seconds between attempts (default: 2)
                - timeout: HTTP timeout in seconds (default: 30)
                - temperature: Sampling temperature (default: 0.3)
                - base_url: Override the API endpoint
        """
        config = config or {}
        self.model = config.get("model") or self.DEFAULT_MODEL
        self.max_retries = int(config.get("max_retries") or 3)
        self.retry_delay = float(config.get("retry_delay", 2.0))
        self.timeout = float(config.get("timeout", 30))
        self.temperature = float(config.get("temperature", 0.3))
        self.prompt_engine: PromptEngine = (
            config.get("prompt_engine") or get_prompt_engine()
        )

        self.api_key = self._resolve_api_key(config.get("api_key"))
        if self.REQUIRES_API_KEY and not self.api_key:
            raise ConfigError(
                f"{self.NAME} API key is required "
                f"(set 'api_key' in config or store '{self.NAME}_api_key' in keyring)"
            )

    def _resolve_api_key(self, configured: Optional[str]) -> Optional[str]:
        if configured:
            expanded = os.path.expandvars(configured).strip()
            if expanded and "${" not in expanded:
                return expanded
        if not self.REQUIRES_API_KEY:
            return None
        return get_api_key(self.NAME)

    def get_name(self) -> str:
        return self.NAME

    def describe(self) -> Dict[str, Any]:
        return {
            "provider": self.NAME,
            "model": self.model,
            "max_retries": self.max_retries,
            "retry_delay": self.retry_delay,
        }

    @abstractmethod
    def _request(
        self, ctx: RequestContext, prompt: str
    ) -> Tuple[str, int]:
        """
        Perform one HTTP request.

        Returns:
            (model response text, tokens used)
        """

    def _request_timeout(self, ctx: RequestContext) -> float:
        remaining = ctx.remaining()
        if remaining is None:
            return self.timeout
        if remaining <= 0:
            raise CancelledError(f"{self.NAME} request deadline exceeded")
        return min(self.timeout, remaining)

    def _post_json(
        self,
        ctx: RequestContext,
        url: str,
        payload: Dict,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict:
        """POST a JSON body and return the decoded JSON response."""
        timeout = self._request_timeout(ctx)
        try:
            response = requests.post(
                url,
                json=payload,
                headers={"Content-Type": "application/json", **(headers or {})},
                timeout=timeout,
            )
        except Timeout as e:
            raise ProviderError(f"{self.NAME} request timed out", self.NAME) from e
        except RequestException as e:
            raise ProviderError(f"{self.NAME} API error: {e}", self.NAME) from e

        if response.status_code != 200:
            raise ProviderError(
                f"{self.NAME} API returned status {response.status_code}: "
                f"{response.text[:200]}",
                self.NAME,
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError(
                f"failed to decode {self.NAME} response body: {e}", self.NAME
            ) from e
        if not isinstance(data, dict):
            raise ProviderError(
                f"unexpected {self.NAME} response body: {type(data).__name__}",
                self.NAME,
            )
        return data

    @staticmethod
    def _extract(data: Any, *path: Any) -> Any:
        """
        Walk nested dicts (str keys) and lists (int indexes) of a response body.

        Returns None as soon as a level is missing or has the wrong type.
        """
        current = data
        for key in path:
            if isinstance(key, int):
                if not isinstance(current, list) or len(current) <= key:
                    return None
                current = current[key]
            else:
                if not isinstance(current, dict):
                    return None
                current = current.get(key)
        return current

    @staticmethod
    def _token_count(*values: Any) -> int:
        """Sum the integer token counters, ignoring missing or odd ones."""
        return sum(
            v for v in values if isinstance(v, int) and not isinstance(v, bool)
        )

    def _text_content(self, content: Any) -> str:
        """Model text from a response body; wrong types are provider errors."""
        if content is None:
            raise ProviderError(f"empty response from {self.NAME}", self.NAME)
        if not isinstance(content, str):
            raise ProviderError(
                f"unexpected response type from {self.NAME}: {type(content).__name__}",
                self.NAME,
            )
        return content

    def classify(
        self, ctx: Optional[RequestContext], text: str
    ) -> ClassificationResult:
        ctx = ctx or RequestContext.background()
        prompt = self.prompt_engine.build_user_prompt(text)

        last_error: Optional[ProviderError] = None
        for attempt in range(self.max_retries):
            if attempt > 0:
                logger.warning(
                    f"Retrying {self.NAME} request "
                    f"(attempt {attempt + 1}/{self.max_retries})"
                )
                if ctx.wait(self.retry_delay):
                    raise CancelledError(f"{self.NAME} retry cancelled")
            ctx.check()

            start_time = time.time()
            try:
                content, tokens_used = self._request(ctx, prompt)
                result = self._parse_response(content)
            except ProviderError as e:
                last_error = e
                logger.error(f"{self.NAME} attempt {attempt + 1} failed: {e}")
                continue

            result.tokens_used = tokens_used
            result.latency_ms = int((time.time() - start_time) * 1000)
            logger.debug(
                f"Classified message with {self.NAME}: category {result.category_id} "
                f"(attempt {attempt + 1})"
            )
            return result

        raise ProviderError(
            f"{self.NAME} failed after {self.max_retries} attempts: {last_error}",
            self.NAME,
            status_code=getattr(last_error, "status_code", None),
        )

    def _parse_response(self, content: str) -> ClassificationResult:
        """Parse and validate the model's JSON answer."""
        if not isinstance(content, str):
            raise ProviderError(
                f"unexpected response type from {self.NAME}: {type(content).__name__}",
                self.NAME,
            )
        if not content.strip():
            raise ProviderError(f"empty response from {self.NAME}", self.NAME)

        cleaned = strip_code_fence(content)
        try:
            data = json.loads(cleaned)
        except json.JSONDecodeError as e:
            raise ProviderError(
                f"failed to parse {self.NAME} response: {e}", self.NAME
            ) from e

        if not isinstance(data, dict):
            raise ProviderError(f"{self.NAME} response is not a JSON object", self.NAME)

        category_id = data.get("category_id")
        if not ThreatCategory.is_valid(category_id):
            raise ProviderError(f"invalid category ID: {category_id!r}", self.NAME)

        try:
            confidence = float(data.get("confidence", 1.0))
        except (TypeError, ValueError):
            confidence = 1.0
        if math.isnan(confidence):
            confidence = 1.0

        category = ThreatCategory(category_id)
        return ClassificationResult(
            category_id=int(category),
            category_name=category.label,
            justification=str(data.get("justification") or ""),
            confidence=min(max(confidence, 0.0), 1.0),
            provider=self.NAME,
            model=self.model,
        )
