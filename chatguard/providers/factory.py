"""
Provider factory for classification backends.

Single entry point to instantiate any provider from its config entry.
Uses a registry pattern so new adapters only need to register a class.
"""

import logging
from typing import Dict, List, Optional, Type

from .base import ClassificationProvider

logger = logging.getLogger(__name__)


class ProviderFactory:
    """
    Registry of provider classes keyed by their config `type`.

    Every `create` call returns a fresh instance: each failover slot owns its
    adapter.
    """

    _providers: Dict[str, Type[ClassificationProvider]] = {}

    @classmethod
    def register(cls, name: str, provider_class: Type[ClassificationProvider]) -> None:
        """
        Register a provider class.

        Args:
            name: Provider identifier (e.g., 'gemini', 'groq')
            provider_class: ClassificationProvider subclass
        """
        cls._providers[name] = provider_class
        logger.debug(f"Registered provider: {name}")

    @classmethod
    def create(cls, name: str, config: Optional[Dict] = None) -> ClassificationProvider:
        """
        Create a provider instance.

        Args:
            name: Provider name (gemini, groq, openrouter, openai, ollama)
            config: Provider-specific configuration

        Returns:
            ClassificationProvider instance

        Raises:
            ValueError: If provider name is unknown
            ConfigError: If the provider config is unusable (e.g. no API key)
        """
        if name not in cls._providers:
            available = list(cls._providers.keys())
            raise ValueError(f"Unknown provider: '{name}'. Available: {available}")

        try:
            instance = cls._providers[name](config or {})
        except Exception as e:
            logger.error(f"Failed to create provider '{name}': {e}")
            raise

        logger.info(f"Created provider instance: {name}")
        return instance

    @classmethod
    def list_providers(cls) -> List[str]:
        """List all registered provider names."""
        return list(cls._providers.keys())

    @classmethod
    def is_registered(cls, name: str) -> bool:
        """Check if a provider is registered."""
        return name in cls._providers

    @classmethod
    def unregister(cls, name: str) -> bool:
        """
        Unregister a provider (mainly for testing).

        Returns:
            True if provider was unregistered
        """
        if name not in cls._providers:
            return False
        del cls._providers[name]
        return True


def _auto_register_providers():
    """
    Register the built-in adapters.
    Called on module import.
    """
    from .gemini_provider import GeminiProvider
    from .groq_provider import GroqProvider
    from .ollama_provider import OllamaProvider
    from .openai_provider import OpenAIProvider
    from .openrouter_provider import OpenRouterProvider

    for provider_class in (
        GeminiProvider,
        GroqProvider,
        OpenRouterProvider,
        OpenAIProvider,
        OllamaProvider,
    ):
        ProviderFactory.register(provider_class.NAME, provider_class)


_auto_register_providers()
