"""Provider adapter interface.

Every text-generation backend exposes the same two calls, so the relay never
branches on which provider is active.
"""
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass

import structlog

from shared.cancellation import CancellationToken

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class GenerationOptions:
    model: str | None = None
    temperature: float = 0.7
    max_tokens: int = 2048
    json_mode: bool = False


class ProviderAdapter(ABC):
    name: str = ""
    supports_streaming: bool = True

    def __init__(self, models: list[str], default_model: str) -> None:
        self.models = list(models)
        self.default_model = default_model

    def resolve_model(self, requested: str | None) -> str:
        """Requested model if this provider offers it, else the default."""
        if not requested:
            return self.default_model
        if requested in self.models:
            return requested
        logger.warning(
            "model_not_available",
            provider=self.name,
            model=requested,
            fallback=self.default_model,
        )
        return self.default_model

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        options: GenerationOptions,
        token: CancellationToken | None = None,
    ) -> str:
        """Generate the complete text for prompt."""
        ...

    @abstractmethod
    def generate_stream(
        self,
        prompt: str,
        options: GenerationOptions,
        token: CancellationToken | None = None,
    ) -> AsyncIterator[str]:
        """Yield text fragments as the upstream produces them.

        Raises CancellationOutcome when ``token`` fires.
        """
        ...

    async def health(self) -> bool:
        return True

    async def aclose(self) -> None:
        return None
