"""HTTP client for the relay service.

Buffered calls go through the retry policy. Streamed calls are never
replayed: fragments already delivered to the caller cannot be taken back.
"""
import asyncio
from collections.abc import Callable
from typing import Any

import httpx
import structlog

from shared.cancellation import CancellationToken
from shared.errors import (
    ApiError,
    AuthenticationError,
    CancellationOutcome,
    RelayStreamError,
    StreamTimeoutError,
)
from shared.events import DATA_PREFIX, ChunkEvent, DoneEvent, ErrorEvent, decode_event
from shared.framing import LineFramer, aiter_frames
from shared.http_client import (
    RETRYABLE_STATUSES,
    RetryableStatusError,
    call_with_retries,
    create_http_client,
)

from relay_client.auth import CredentialProvider
from relay_client.config import RelayClientSettings

logger = structlog.get_logger(__name__)

FragmentCallback = Callable[[str, str], None]

SESSION_EXPIRED_MESSAGE = "Your session has expired. Please sign in again."
STATUS_MESSAGES = {
    400: "Invalid request. Please check your input and try again.",
    401: SESSION_EXPIRED_MESSAGE,
    403: "You don't have permission to perform this action.",
    404: "The requested resource was not found.",
    408: "Request timed out. Please try again.",
    429: "Too many requests. Please wait a moment and try again.",
    500: "Server error. Please try again in a moment.",
    502: "Service temporarily unavailable. Please try again in a moment.",
    503: "Service is currently unavailable. Please try again later.",
    504: "Request timed out. Please try again.",
}

_OPTION_KEYS = {
    "model": "model",
    "temperature": "temperature",
    "max_tokens": "maxTokens",
    "provider": "provider",
    "json_mode": "jsonMode",
}


def build_payload(prompt: str, **options: Any) -> dict[str, Any]:
    unknown = set(options) - set(_OPTION_KEYS)
    if unknown:
        raise TypeError(f"unknown generation options: {', '.join(sorted(unknown))}")
    payload: dict[str, Any] = {"prompt": prompt}
    for name, value in options.items():
        if value is not None:
            payload[_OPTION_KEYS[name]] = value
    return payload


async def api_error(resp: httpx.Response) -> ApiError:
    """User-facing error for a failed relay response."""
    message = STATUS_MESSAGES.get(resp.status_code)
    if message is None:
        await resp.aread()
        try:
            data = resp.json()
        except ValueError:
            data = None
        if isinstance(data, dict):
            message = data.get("message") or data.get("error")
        message = message or f"Request failed: {resp.reason_phrase or resp.status_code}"
    return ApiError(resp.status_code, str(message))


class RelayClient:
    def __init__(
        self,
        base_url: str,
        credentials: CredentialProvider | None = None,
        *,
        on_auth_required: Callable[[], None] | None = None,
        timeout: float = 60.0,
        stream_timeout: float = 300.0,
        max_retries: int = 3,
        retry_base_seconds: float = 1.0,
        streaming: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._credentials = credentials
        self._on_auth_required = on_auth_required
        self._stream_timeout = stream_timeout
        self._max_retries = max_retries
        self._retry_base = retry_base_seconds
        self._sleep = sleep
        self.streaming = streaming
        self._client = create_http_client(timeout, base_url=self._base_url, transport=transport)

    @classmethod
    def from_settings(
        cls,
        settings: RelayClientSettings | None = None,
        credentials: CredentialProvider | None = None,
        **kwargs: Any,
    ) -> "RelayClient":
        settings = settings or RelayClientSettings()
        return cls(
            settings.base_url,
            credentials,
            timeout=settings.timeout_seconds,
            stream_timeout=settings.stream_timeout_seconds,
            max_retries=settings.max_retries,
            retry_base_seconds=settings.retry_base_seconds,
            streaming=settings.streaming,
            **kwargs,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "RelayClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    def _auth_failed(self) -> None:
        logger.warning("relay_auth_required")
        if self._on_auth_required is not None:
            self._on_auth_required()

    async def _headers(self, force_refresh: bool = False) -> dict[str, str]:
        if self._credentials is None:
            return {}
        try:
            token = await self._credentials.get_token(force_refresh=force_refresh)
        except AuthenticationError:
            self._auth_failed()
            raise
        return {"Authorization": f"Bearer {token}"} if token else {}

    async def _send(
        self,
        path: str,
        payload: dict[str, Any],
        *,
        stream: bool = False,
    ) -> httpx.Response:
        """POST with the current credential; on 401 refresh once and resend once."""
        headers = await self._headers()
        resp = await self._post(path, payload, headers, stream)
        if resp.status_code == 401 and self._credentials is not None:
            await resp.aclose()
            logger.info("relay_token_refresh", path=path)
            headers = await self._headers(force_refresh=True)
            resp = await self._post(path, payload, headers, stream)
        if resp.status_code == 401:
            await resp.aclose()
            self._auth_failed()
            raise AuthenticationError(SESSION_EXPIRED_MESSAGE)
        return resp

    async def _post(
        self,
        path: str,
        payload: dict[str, Any],
        headers: dict[str, str],
        stream: bool,
    ) -> httpx.Response:
        request = self._client.build_request("POST", path, json=payload, headers=headers)
        return await self._client.send(request, stream=stream)

    async def generate(self, prompt: str, **options: Any) -> str:
        """Buffered generation. Retries transport failures and retryable statuses."""
        payload = build_payload(prompt, **options)

        async def attempt() -> httpx.Response:
            resp = await self._send("/generate", payload)
            if resp.status_code in RETRYABLE_STATUSES:
                raise RetryableStatusError(resp)
            if resp.status_code >= 400:
                raise await api_error(resp)
            return resp

        try:
            resp = await call_with_retries(
                attempt,
                max_retries=self._max_retries,
                base_delay=self._retry_base,
                sleep=self._sleep,
            )
        except RetryableStatusError as e:
            raise await api_error(e.response) from e

        try:
            data = resp.json()
        except ValueError as e:
            raise ApiError(resp.status_code, "Invalid response from server") from e
        return str(data.get("content") or "") if isinstance(data, dict) else ""

    async def stream(
        self,
        prompt: str,
        on_fragment: FragmentCallback | None = None,
        *,
        cancel_token: CancellationToken | None = None,
        timeout: float | None = None,
        **options: Any,
    ) -> str:
        """Incremental generation; ``on_fragment(chunk, accumulated)`` runs per fragment.

        Returns the final accumulated text. Raises RelayStreamError on an error
        event, StreamTimeoutError when ``timeout`` elapses and
        CancellationOutcome when ``cancel_token`` fires.
        """
        if not self.streaming:
            text = await self.generate(prompt, **options)
            if on_fragment is not None and text:
                on_fragment(text, text)
            return text

        payload = build_payload(prompt, **options)
        token = CancellationToken()
        if cancel_token is not None:
            token.link(cancel_token)
        limit = self._stream_timeout if timeout is None else timeout

        work = asyncio.ensure_future(self._consume(payload, on_fragment))
        waiter = asyncio.ensure_future(token.wait())
        try:
            await asyncio.wait({work, waiter}, timeout=limit, return_when=asyncio.FIRST_COMPLETED)
            if work.done():
                return work.result()
            if token.cancelled:
                logger.debug("relay_stream_cancelled", reason=token.reason)
                raise CancellationOutcome(token.reason or "cancelled")
            token.cancel("timeout")
            logger.warning("relay_stream_timeout", timeout_seconds=limit)
            raise StreamTimeoutError()
        finally:
            waiter.cancel()
            work.cancel()
            await asyncio.gather(work, waiter, return_exceptions=True)

    async def _consume(self, payload: dict[str, Any], on_fragment: FragmentCallback | None) -> str:
        resp = await self._send("/stream", payload, stream=True)
        try:
            if resp.status_code >= 400:
                raise await api_error(resp)

            accumulated = ""
            content_type = resp.headers.get("content-type", "")
            if "text/event-stream" not in content_type:
                # Buffering intermediary: the whole reply arrives as one JSON body.
                logger.info("relay_stream_unbuffered_fallback", content_type=content_type)
                await resp.aread()
                data = resp.json() if "json" in content_type else {}
                accumulated = str(data.get("content") or "") if isinstance(data, dict) else ""
                if on_fragment is not None and accumulated:
                    on_fragment(accumulated, accumulated)
                return accumulated

            framer = LineFramer(prefix=DATA_PREFIX)
            async for frame in aiter_frames(resp.aiter_bytes(), framer):
                event = decode_event(frame)
                if isinstance(event, ErrorEvent):
                    raise RelayStreamError(event.message, public_message=event.message)
                if isinstance(event, DoneEvent):
                    return accumulated
                if isinstance(event, ChunkEvent) and event.text:
                    accumulated += event.text
                    if on_fragment is not None:
                        on_fragment(event.text, accumulated)
            logger.warning("relay_stream_ended_without_terminal_event", chars=len(accumulated))
            return accumulated
        finally:
            await resp.aclose()
