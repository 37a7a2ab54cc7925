"""
Classification providers package for ChatGuard.

Every backend implements the same ClassificationProvider interface:
- Gemini: Google's Gemini models (cloud)
- Groq: Llama models on Groq (cloud, OpenAI-compatible)
- OpenRouter: free community models (cloud, OpenAI-compatible)
- OpenAI: GPT-4o-mini and friends (cloud)
- Ollama: Local inference (free, privacy-focused)

Use the ProviderFactory for creating provider instances:
    from chatguard.providers import ProviderFactory
    provider = ProviderFactory.create("groq", {"api_key": "${GROQ_API_KEY}"})
"""

from .base import (
    CATEGORY_LABELS,
    ClassificationProvider,
    ClassificationResult,
    RetryingProvider,
    ThreatCategory,
)
from .factory import ProviderFactory
from .gemini_provider import GeminiProvider
from .groq_provider import GroqProvider
from .ollama_provider import OllamaProvider
from .openai_provider import OpenAIProvider
from .openrouter_provider import OpenRouterProvider

__all__ = [
    "CATEGORY_LABELS",
    "ClassificationProvider",
    "ClassificationResult",
    "RetryingProvider",
    "ThreatCategory",
    "ProviderFactory",
    "GeminiProvider",
    "GroqProvider",
    "OllamaProvider",
    "OpenAIProvider",
    "OpenRouterProvider",
]
