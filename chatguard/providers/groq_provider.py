"""
Groq provider (OpenAI-compatible API).
"""

from .openai_provider import OpenAIProvider


class GroqProvider(OpenAIProvider):
    """Groq adapter. Defaults to llama-3.3-70b-versatile (fast and accurate)."""

    NAME = "groq"
    DEFAULT_MODEL = "llama-3.3-70b-versatile"
    DEFAULT_BASE_URL = "https://api.groq.com/openai/v1"
    JSON_MODE = False
