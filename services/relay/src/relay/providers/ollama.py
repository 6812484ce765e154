"""Ollama-style HTTP provider.

``POST {base_url}/api/generate`` with
``{model, prompt, stream, options: {temperature, num_predict}}``.
Buffered responses are one JSON object; streamed responses are
newline-delimited JSON objects shaped ``{response, done}`` (or the same
objects behind ``data: `` lines, or raw text, depending on ``stream_format``).
"""
from collections.abc import AsyncIterator
from typing import Any, Literal

import httpx
import structlog

from shared.cancellation import CancellationToken, guarded
from shared.errors import (
    CancellationOutcome,
    ProviderConnectionError,
    ProviderProtocolError,
)
from shared.events import DATA_PREFIX
from shared.framing import LineFramer, aiter_frames

from relay.providers.base import GenerationOptions, ProviderAdapter

logger = structlog.get_logger(__name__)

StreamFormat = Literal["jsonl", "sse", "text"]


class OllamaProvider(ProviderAdapter):
    name = "ollama"

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str,
        *,
        models: list[str],
        default_model: str,
        api_key: str = "",
        stream_format: StreamFormat = "jsonl",
    ) -> None:
        super().__init__(models, default_model)
        self._client = client
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._stream_format = stream_format

    @property
    def endpoint(self) -> str:
        return f"{self._base_url}/api/generate"

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _payload(self, prompt: str, options: GenerationOptions, stream: bool) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.resolve_model(options.model),
            "prompt": prompt,
            "stream": stream,
            "options": {
                "temperature": options.temperature,
                "num_predict": options.max_tokens,
            },
        }
        if options.json_mode:
            payload["format"] = "json"
        return payload

    def _connection_error(self, exc: Exception) -> ProviderConnectionError:
        return ProviderConnectionError(
            f"Cannot connect to provider at {self._base_url}: {exc}"
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
            resp = await self._client.post(
                self.endpoint,
                headers=self._headers(),
                json=self._payload(prompt, options, stream=False),
            )
        except httpx.TransportError as e:
            raise self._connection_error(e) from e

        if resp.status_code >= 400:
            raise ProviderProtocolError(
                f"Provider error ({resp.status_code}): {resp.text[:500]}"
            )
        content_type = resp.headers.get("content-type", "")
        if "application/json" not in content_type:
            raise ProviderProtocolError(
                f"Unexpected content type from provider: {content_type!r}, expected application/json"
            )
        try:
            data = resp.json()
        except ValueError as e:
            raise ProviderProtocolError(f"Provider returned invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ProviderProtocolError("Invalid response format from provider: expected JSON object")
        if not data.get("response") and data.get("done") is not True:
            logger.warning("provider_response_missing_text", provider=self.name)
        return str(data.get("response") or "")

    async def generate_stream(
        self,
        prompt: str,
        options: GenerationOptions,
        token: CancellationToken | None = None,
    ) -> AsyncIterator[str]:
        if token is not None:
            token.raise_if_cancelled()
        try:
            async with self._client.stream(
                "POST",
                self.endpoint,
                headers=self._headers(),
                json=self._payload(prompt, options, stream=True),
            ) as resp:
                if resp.status_code >= 400:
                    body = (await resp.aread()).decode("utf-8", errors="replace")
                    raise ProviderProtocolError(
                        f"Provider error ({resp.status_code}): {body[:500]}"
                    )
                content_type = resp.headers.get("content-type", "")
                if not any(t in content_type for t in ("json", "text/plain", "event-stream")):
                    logger.warning("provider_unexpected_content_type", content_type=content_type)

                if self._stream_format == "text":
                    async for text in guarded(resp.aiter_text(), token):
                        if text:
                            yield text
                    return

                framer = LineFramer(prefix=DATA_PREFIX if self._stream_format == "sse" else None)
                async for frame in guarded(aiter_frames(resp.aiter_bytes(), framer), token):
                    text = frame.get("response")
                    if isinstance(text, str) and text:
                        yield text
                    if frame.get("done") is True:
                        return
        except CancellationOutcome:
            logger.debug("provider_stream_cancelled", provider=self.name)
            raise
        except httpx.TransportError as e:
            if token is not None and token.cancelled:
                raise CancellationOutcome(token.reason or "cancelled") from e
            raise self._connection_error(e) from e

    async def health(self) -> bool:
        try:
            resp = await self._client.get(f"{self._base_url}/api/tags", headers=self._headers())
        except httpx.TransportError as e:
            logger.warning("provider_unreachable", provider=self.name, error=str(e))
            return False
        return resp.status_code < 400
