"""
Unit tests for the provider registry.
"""

import pytest

from chatguard.providers.base import ClassificationProvider
from chatguard.providers.factory import ProviderFactory
from chatguard.providers.groq_provider import GroqProvider
from chatguard.providers.ollama_provider import OllamaProvider


class DummyProvider(ClassificationProvider):
    def __init__(self, config=None):
        self.config = config or {}

    def classify(self, ctx, text):
        raise NotImplementedError

    def describe(self):
        return {"provider": "dummy", "model": "none"}

    def get_name(self):
        return "dummy"


class TestProviderFactory:
    """Registry pattern behaviour."""

    def teardown_method(self):
        ProviderFactory.unregister("dummy")

    def test_builtin_providers_registered(self):
        providers = ProviderFactory.list_providers()

        for name in ("gemini", "groq", "openrouter", "openai", "ollama"):
            assert name in providers

    def test_create_ollama(self):
        provider = ProviderFactory.create("ollama", {"model": "llama3"})

        assert isinstance(provider, OllamaProvider)
        assert provider.get_name() == "ollama"

    def test_create_passes_config(self):
        provider = ProviderFactory.create(
            "groq", {"api_key": "gsk", "model": "llama-3.1-8b-instant"}
        )

        assert isinstance(provider, GroqProvider)
        assert provider.model == "llama-3.1-8b-instant"

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown provider"):
            ProviderFactory.create("does-not-exist")

    def test_new_instance_per_call(self):
        """Each failover slot gets its own adapter, even for identical configs."""
        config = {"model": "llama3"}

        assert ProviderFactory.create("ollama", config) is not ProviderFactory.create(
            "ollama", config
        )

    def test_same_type_twice_in_failover(self):
        from chatguard.core.failover import FailoverClient

        client = FailoverClient.from_config(
            {"providers": [{"type": "ollama"}, {"type": "ollama", "model": "mistral"}]}
        )

        info = client.providers_info()
        assert [p["model"] for p in info] == ["llama3", "mistral"]

    def test_register_and_unregister(self):
        ProviderFactory.register("dummy", DummyProvider)

        assert ProviderFactory.is_registered("dummy")
        assert isinstance(ProviderFactory.create("dummy"), DummyProvider)
        assert ProviderFactory.unregister("dummy") is True
        assert not ProviderFactory.is_registered("dummy")
        assert ProviderFactory.unregister("dummy") is False
