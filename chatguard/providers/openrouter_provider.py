"""
OpenRouter provider (OpenAI-compatible API with attribution headers).
"""

from typing import Dict, Optional

from .openai_provider import OpenAIProvider


class OpenRouterProvider(OpenAIProvider):
    """OpenRouter adapter. Defaults to a free Llama model."""

    NAME = "openrouter"
    DEFAULT_MODEL = "meta-llama/llama-3.2-3b-instruct:free"
    DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
    JSON_MODE = False

    def __init__(self, config: Optional[Dict] = None):
        config = config or {}
        super().__init__(config)
        self.referer = config.get("referer", "https://github.com/chatguard/chatguard")
        self.app_title = config.get("app_title", "ChatGuard")

    def _headers(self) -> Dict[str, str]:
        headers = super()._headers()
        headers["HTTP-Referer"] = self.referer
        headers["X-Title"] = self.app_title
        return headers
