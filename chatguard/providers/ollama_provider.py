"""
Ollama provider for local inference.

Zero cloud cost and no API key; message text never leaves the machine.
"""

from typing import Dict, Optional, Tuple

import requests
from requests.exceptions import RequestException

from .base import RetryingProvider
from ..core.context import RequestContext
from ..core.exceptions import ProviderError
from ..utils.logger import logger


class OllamaProvider(RetryingProvider):
    """
    Ollama adapter using the /api/generate endpoint in JSON format mode.
    """

    NAME = "ollama"
    DEFAULT_MODEL = "llama3"
    DEFAULT_BASE_URL = "http://localhost:11434"
    REQUIRES_API_KEY = False

    def __init__(self, config: Optional[Dict] = None):
        config = config or {}
        super().__init__(config)
        self.base_url = config.get("base_url", self.DEFAULT_BASE_URL).rstrip("/")
        self.api_endpoint = f"{self.base_url}/api/generate"

    def _request(self, ctx: RequestContext, prompt: str) -> Tuple[str, int]:
        data = self._post_json(
            ctx,
            self.api_endpoint,
            {
                "model": self.model,
                "system": self.prompt_engine.system_instruction,
                "prompt": prompt,
                "stream": False,
                "format": "json",
                "options": {"temperature": self.temperature},
            },
        )

        content = self._text_content(data.get("response"))
        if not content:
            raise ProviderError("empty response from ollama", self.NAME)
        tokens_used = self._token_count(
            data.get("prompt_eval_count"), data.get("eval_count")
        )
        return content, tokens_used

    def health_check(self) -> bool:
        """Check that Ollama is running and the model is pulled."""
        try:
            response = requests.get(f"{self.base_url}/api/tags", timeout=5)
        except RequestException as e:
            logger.warning(f"Ollama health check failed: {e}")
            return False

        if response.status_code != 200:
            return False
        models = [m.get("name", "") for m in response.json().get("models", [])]
        available = any(name.split(":")[0] == self.model.split(":")[0] for name in models)
        if not available:
            logger.warning(f"Ollama model '{self.model}' not found. Available: {models}")
        return available
