from .anthropic_model_client import AnthropicModelClient
from .mock_model_client import MockModelClient, ScriptedStream
from .openrouter_model_client import OpenRouterModelClient

__all__ = [
    "AnthropicModelClient",
    "MockModelClient",
    "OpenRouterModelClient",
    "ScriptedStream",
]
