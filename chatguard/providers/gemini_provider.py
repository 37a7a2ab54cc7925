"""
Google Gemini provider.

Uses the Generative Language REST API with a system instruction and JSON
response mode.
"""

from typing import Dict, Optional, Tuple

import requests
from requests.exceptions import RequestException

from .base import RetryingProvider
from ..core.context import RequestContext
from ..core.exceptions import ProviderError
from ..utils.logger import logger


class GeminiProvider(RetryingProvider):
    """
    Google Gemini adapter.

    Defaults to gemini-2.0-flash-exp (fast, free tier).
    """

    NAME = "gemini"
    DEFAULT_MODEL = "gemini-2.0-flash-exp"
    DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"

    def __init__(self, config: Optional[Dict] = None):
        config = config or {}
        super().__init__(config)
        self.base_url = config.get("base_url", self.DEFAULT_BASE_URL).rstrip("/")
        self.max_tokens = int(config.get("max_tokens", 500))

    def _request(self, ctx: RequestContext, prompt: str) -> Tuple[str, int]:
        endpoint = f"{self.base_url}/models/{self.model}:generateContent"
        data = self._post_json(
            ctx,
            endpoint,
            {
                "systemInstruction": {
                    "parts": [{"text": self.prompt_engine.system_instruction}]
                },
                "contents": [{"parts": [{"text": prompt}]}],
                "generationConfig": {
                    "temperature": self.temperature,
                    "topP": 0.9,
                    "topK": 40,
                    "maxOutputTokens": self.max_tokens,
                    "responseMimeType": "application/json",
                },
            },
            headers={"x-goog-api-key": self.api_key},
        )

        if not self._extract(data, "candidates"):
            raise ProviderError("empty response from gemini", self.NAME)
        text = self._extract(data, "candidates", 0, "content", "parts", 0, "text")
        if not isinstance(text, str):
            raise ProviderError("unexpected response type from gemini", self.NAME)

        tokens_used = self._token_count(
            self._extract(data, "usageMetadata", "promptTokenCount"),
            self._extract(data, "usageMetadata", "candidatesTokenCount"),
        )
        return text, tokens_used

    def health_check(self) -> bool:
        """Use the models list endpoint for a lightweight check."""
        try:
            response = requests.get(
                f"{self.base_url}/models",
                headers={"x-goog-api-key": self.api_key},
                timeout=10,
            )
        except RequestException as e:
            logger.warning(f"Gemini health check failed: {e}")
            return False

        if response.status_code in (400, 403):
            logger.error("Gemini API key is invalid")
            return False
        if response.status_code == 429:
            logger.warning("Gemini rate limit hit during health check")
            return True  # API is reachable, just rate limited
        return response.status_code == 200
