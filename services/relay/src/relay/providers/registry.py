"""Provider selection: configured default plus per-request override."""
import httpx
import structlog

from shared.errors import ValidationError

from relay.config import RelaySettings
from relay.providers.base import ProviderAdapter
from relay.providers.gemini import GeminiProvider
from relay.providers.mock import MockProvider
from relay.providers.ollama import OllamaProvider

logger = structlog.get_logger(__name__)


class ProviderRegistry:
    def __init__(self, providers: dict[str, ProviderAdapter], default: str) -> None:
        if default not in providers:
            raise ValueError(f"default provider {default!r} is not configured")
        self._providers = providers
        self.default_name = default

    @property
    def default(self) -> ProviderAdapter:
        return self._providers[self.default_name]

    def names(self) -> list[str]:
        return list(self._providers)

    def get(self, name: str | None = None) -> ProviderAdapter:
        """Provider for a request; ``name`` overrides the configured default."""
        if not name:
            return self.default
        provider = self._providers.get(name)
        if provider is None:
            raise ValidationError.single(
                "provider",
                f"Unknown provider {name!r}. Available: {', '.join(self._providers)}",
            )
        return provider

    def describe(self) -> dict[str, dict]:
        return {
            name: {
                "models": p.models,
                "default": p.default_model,
                "supportsStreaming": p.supports_streaming,
            }
            for name, p in self._providers.items()
        }

    async def aclose(self) -> None:
        for provider in self._providers.values():
            await provider.aclose()


def build_registry(settings: RelaySettings, http_client: httpx.AsyncClient) -> ProviderRegistry:
    """Construct every configured provider once for the process lifetime."""
    if settings.mock or settings.provider == "mock":
        return ProviderRegistry({"mock": MockProvider()}, "mock")

    providers: dict[str, ProviderAdapter] = {
        "ollama": OllamaProvider(
            http_client,
            settings.ollama_url,
            models=settings.ollama_model_list,
            default_model=settings.ollama_default_model,
            api_key=settings.ollama_api_key,
            stream_format=settings.stream_format,
        ),
    }
    if settings.gemini_api_key:
        providers["gemini"] = GeminiProvider.from_api_key(
            settings.gemini_api_key,
            models=settings.gemini_model_list,
            default_model=settings.gemini_default_model,
        )
    elif settings.provider == "gemini":
        logger.warning("gemini_not_configured", fallback="ollama")

    default = settings.provider if settings.provider in providers else "ollama"
    logger.info("providers_configured", providers=list(providers), default=default)
    return ProviderRegistry(providers, default)
