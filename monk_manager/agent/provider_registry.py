#!/usr/bin/env python3
"""
Provider Registry
================

Maps provider names to BaseModelClient implementations and builds the
configured client. Credentials and settings are passed in explicitly.
"""

import logging
from typing import Dict, List, Type

from monk_manager.agent.base_model_client import BaseModelClient, ModelInfo
from monk_manager.agent.providers import (
    AnthropicModelClient,
    MockModelClient,
    OpenRouterModelClient,
)
from monk_manager.config.settings import Settings
from monk_manager.exceptions import ConfigError

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Registry of available backends."""

    def __init__(self):
        self._providers: Dict[str, Type[BaseModelClient]] = {}

    def register_provider(self, name: str, provider_class: Type[BaseModelClient]) -> None:
        """
        Register a provider class.

        Args:
            name: Provider name (e.g., "anthropic", "openrouter")
            provider_class: Class that inherits from BaseModelClient
        """
        if not issubclass(provider_class, BaseModelClient):
            raise ConfigError(
                f"Provider class {provider_class} must inherit from BaseModelClient",
                field_name="provider",
            )
        self._providers[name] = provider_class
        logger.debug("Registered provider: %s", name)

    def get_registered_providers(self) -> List[str]:
        return sorted(self._providers)

    def create_client(self, settings: Settings) -> BaseModelClient:
        """Instantiate the client for ``settings.provider``."""
        provider_class = self._providers.get(settings.provider)
        if provider_class is None:
            raise ConfigError(
                f"Provider '{settings.provider}' is not registered. "
                f"Available providers: {self.get_registered_providers()}",
                field_name="provider",
            )

        model_info = ModelInfo(
            name=settings.model_name,
            provider=settings.provider,
            max_tokens=settings.max_tokens,
            temperature=settings.temperature,
        )
        if provider_class is MockModelClient:
            return MockModelClient(model_info=model_info)

        return provider_class(
            model_info,
            api_key=settings.require_credentials(),
            base_url=settings.api_base_url,
            timeout=settings.request_timeout,
        )


def default_registry() -> ProviderRegistry:
    registry = ProviderRegistry()
    registry.register_provider("anthropic", AnthropicModelClient)
    registry.register_provider("openrouter", OpenRouterModelClient)
    registry.register_provider("mock", MockModelClient)
    return registry


def create_model_client(settings: Settings) -> BaseModelClient:
    return default_registry().create_client(settings)
