"""
OpenAI-compatible chat completions provider.

Works with api.openai.com and any endpoint speaking the same protocol
(Groq and OpenRouter subclass it).
"""

from typing import Dict, Optional, Tuple

import requests
from requests.exceptions import RequestException

from .base import RetryingProvider
from ..core.context import RequestContext
from ..core.exceptions import ProviderError
from ..utils.logger import logger


class OpenAIProvider(RetryingProvider):
    """
    Chat completions adapter.

    Sends the shared system instruction as the system message and the rendered
    prompt as the user message.
    """

    NAME = "openai"
    DEFAULT_MODEL = "gpt-4o-mini"
    DEFAULT_BASE_URL = "https://api.openai.com/v1"
    JSON_MODE = True

    def __init__(self, config: Optional[Dict] = None):
        config = config or {}
        super().__init__(config)
        self.base_url = config.get("base_url", self.DEFAULT_BASE_URL).rstrip("/")
        self.max_tokens = int(config.get("max_tokens", 300))

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    def _payload(self, prompt: str) -> Dict:
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": self.prompt_engine.system_instruction},
                {"role": "user", "content": prompt},
            ],
            "stream": False,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        if self.JSON_MODE:
            payload["response_format"] = {"type": "json_object"}
        return payload

    def _request(self, ctx: RequestContext, prompt: str) -> Tuple[str, int]:
        data = self._post_json(
            ctx,
            f"{self.base_url}/chat/completions",
            self._payload(prompt),
            headers=self._headers(),
        )

        if not self._extract(data, "choices"):
            raise ProviderError(f"empty response from {self.NAME}", self.NAME)

        content = self._text_content(
            self._extract(data, "choices", 0, "message", "content")
        )
        tokens_used = self._token_count(self._extract(data, "usage", "total_tokens"))
        return content, tokens_used

    def health_check(self) -> bool:
        """Use the models endpoint for a lightweight check."""
        try:
            response = requests.get(
                f"{self.base_url}/models", headers=self._headers(), timeout=10
            )
        except RequestException as e:
            logger.warning(f"{self.NAME} health check failed: {e}")
            return False

        if response.status_code == 401:
            logger.error(f"{self.NAME} API key is invalid")
            return False
        if response.status_code == 429:
            logger.warning(f"{self.NAME} rate limit hit during health check")
            return True
        return response.status_code == 200
