"""Gemini provider backed by the google-genai SDK."""
from collections.abc import AsyncIterator

import httpx
import structlog
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from shared.cancellation import CancellationToken, guarded
from shared.errors import (
    CancellationOutcome,
    ProviderConnectionError,
    ProviderProtocolError,
)

from relay.providers.base import GenerationOptions, ProviderAdapter

logger = structlog.get_logger(__name__)


class GeminiProvider(ProviderAdapter):
    name = "gemini"

    def __init__(
        self,
        client: genai.Client,
        *,
        models: list[str],
        default_model: str,
    ) -> None:
        super().__init__(models, default_model)
        self._client = client

    @classmethod
    def from_api_key(cls, api_key: str, *, models: list[str], default_model: str) -> "GeminiProvider":
        return cls(genai.Client(api_key=api_key), models=models, default_model=default_model)

    def _config(self, options: GenerationOptions) -> types.GenerateContentConfig:
        return types.GenerateContentConfig(
            temperature=options.temperature,
            max_output_tokens=options.max_tokens,
            response_mime_type="application/json" if options.json_mode else None,
        )

    async def generate(
        self,
        prompt: str,
        options: GenerationOptions,
        token: CancellationToken | None = None,
    ) -> str:
        if token is not None:
            token.raise_if_cancelled()
        try:
            response = await self._client.aio.models.generate_content(
                model=self.resolve_model(options.model),
                contents=prompt,
                config=self._config(options),
            )
        except genai_errors.APIError as e:
            raise ProviderProtocolError(f"Gemini API error ({e.code}): {e.message}") from e
        except httpx.TransportError as e:
            raise ProviderConnectionError(f"Cannot connect to provider at Gemini API: {e}") from e
        if token is not None:
            token.raise_if_cancelled()
        return response.text or ""

    async def generate_stream(
        self,
        prompt: str,
        options: GenerationOptions,
        token: CancellationToken | None = None,
    ) -> AsyncIterator[str]:
        if token is not None:
            token.raise_if_cancelled()
        try:
            stream = await self._client.aio.models.generate_content_stream(
                model=self.resolve_model(options.model),
                contents=prompt,
                config=self._config(options),
            )
            async for chunk in guarded(stream, token):
                if chunk.text:
                    yield chunk.text
        except CancellationOutcome:
            logger.debug("provider_stream_cancelled", provider=self.name)
            raise
        except genai_errors.APIError as e:
            raise ProviderProtocolError(f"Gemini API error ({e.code}): {e.message}") from e
        except httpx.TransportError as e:
            raise ProviderConnectionError(f"Cannot connect to provider at Gemini API: {e}") from e
