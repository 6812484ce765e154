from relay.providers.base import GenerationOptions, ProviderAdapter
from relay.providers.gemini import GeminiProvider
from relay.providers.mock import MockProvider
from relay.providers.ollama import OllamaProvider
from relay.providers.registry import ProviderRegistry, build_registry

__all__ = [
    "GeminiProvider",
    "GenerationOptions",
    "MockProvider",
    "OllamaProvider",
    "ProviderAdapter",
    "ProviderRegistry",
    "build_registry",
]
