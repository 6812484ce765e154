"""Streaming session: one request, one upstream stream, one outbound event stream.

The session advances the provider stream one fragment at a time while keeping
two loop-owned timers: the heartbeat cadence and the overall duration bound.
Both end with the session. Exactly one outcome is recorded per session, and
at most one terminal event is emitted; nothing is emitted after it, nor after
the caller has gone.
"""
import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Literal

import anyio
import structlog

from shared.cancellation import CancellationToken
from shared.errors import CancellationOutcome, ProviderError, StreamTimeoutError
from shared.events import ChunkEvent, DoneEvent, ErrorEvent, Heartbeat, StreamEvent

from relay.metrics import FIRST_FRAGMENT_SECONDS, STREAM_OUTCOMES, STREAMS_STARTED
from relay.providers import GenerationOptions, ProviderAdapter

logger = structlog.get_logger(__name__)

Outcome = Literal["done", "error", "timeout", "cancelled"]

STREAM_FAILED_MESSAGE = "Failed to stream content"
DEFAULT_HEARTBEAT_SECONDS = 20.0
DEFAULT_MAX_DURATION_SECONDS = 300.0


class StreamSession:
    def __init__(
        self,
        provider: ProviderAdapter,
        prompt: str,
        options: GenerationOptions,
        *,
        heartbeat_interval: float = DEFAULT_HEARTBEAT_SECONDS,
        max_duration: float = DEFAULT_MAX_DURATION_SECONDS,
        is_disconnected: Callable[[], Awaitable[bool]] | None = None,
        token: CancellationToken | None = None,
    ) -> None:
        self._provider = provider
        self._prompt = prompt
        self._options = options
        self._heartbeat = heartbeat_interval
        self._max_duration = max_duration
        self._is_disconnected = is_disconnected
        self.token = token or CancellationToken()
        self.started_at: float | None = None
        self.outcome: Outcome | None = None
        self.chunks_sent = 0

    def cancel(self, reason: str = "cancelled") -> None:
        self.token.cancel(reason)

    async def _client_gone(self) -> bool:
        if self._is_disconnected is None:
            return False
        return await self._is_disconnected()

    def _finish(self, outcome: Outcome) -> None:
        if self.outcome is not None:
            return
        self.outcome = outcome
        STREAM_OUTCOMES.labels(provider=self._provider.name, outcome=outcome).inc()
        logger.info(
            "stream_finished",
            provider=self._provider.name,
            outcome=outcome,
            chunks=self.chunks_sent,
            reason=self.token.reason if outcome == "cancelled" else None,
        )

    def _disconnected(self) -> None:
        self.token.cancel("client disconnected")
        self._finish("cancelled")

    def _timed_out(self) -> ErrorEvent:
        logger.warning(
            "stream_max_duration_exceeded",
            provider=self._provider.name,
            max_duration_seconds=self._max_duration,
        )
        self.token.cancel("timeout")
        self._finish("timeout")
        return ErrorEvent(StreamTimeoutError.public_message)

    def _failed(self, exc: Exception) -> ErrorEvent:
        if isinstance(exc, ProviderError):
            logger.error(
                "stream_provider_error",
                provider=self._provider.name,
                error_type=type(exc).__name__,
                error=str(exc),
            )
        else:
            logger.exception("stream_unexpected_error", provider=self._provider.name)
        self.token.cancel("upstream failed")
        self._finish("error")
        return ErrorEvent(STREAM_FAILED_MESSAGE)

    async def events(self) -> AsyncIterator[StreamEvent | Heartbeat]:
        loop = asyncio.get_running_loop()
        self.started_at = loop.time()
        deadline = self.started_at + self._max_duration
        STREAMS_STARTED.labels(provider=self._provider.name).inc()

        stream = self._provider.generate_stream(self._prompt, self._options, self.token)
        waiter = asyncio.ensure_future(self.token.wait())
        pending: asyncio.Future | None = None
        try:
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    yield self._timed_out()
                    return
                if pending is None:
                    pending = asyncio.ensure_future(stream.__anext__())
                last_tick = remaining <= self._heartbeat
                await asyncio.wait(
                    {pending, waiter},
                    timeout=min(self._heartbeat, remaining),
                    return_when=asyncio.FIRST_COMPLETED,
                )

                if not pending.done():
                    if self.token.cancelled:
                        self._finish("cancelled")
                        return
                    if last_tick:
                        yield self._timed_out()
                        return
                    if await self._client_gone():
                        self._disconnected()
                        return
                    yield Heartbeat()
                    continue

                step, pending = pending, None
                try:
                    fragment = step.result()
                except StopAsyncIteration:
                    self._finish("done")
                    yield DoneEvent()
                    return
                except CancellationOutcome:
                    self._finish("cancelled")
                    return
                except Exception as e:
                    yield self._failed(e)
                    return

                if await self._client_gone():
                    self._disconnected()
                    return
                if not fragment:
                    continue
                if self.chunks_sent == 0:
                    FIRST_FRAGMENT_SECONDS.labels(provider=self._provider.name).observe(
                        loop.time() - self.started_at
                    )
                self.chunks_sent += 1
                yield ChunkEvent(fragment)
        finally:
            self.token.cancel("session closed")
            waiter.cancel()
            # The server re-delivers cancellation to this task until it exits;
            # the upstream close must run to completion regardless.
            with anyio.CancelScope(shield=True):
                try:
                    if pending is not None:
                        pending.cancel()
                        await asyncio.wait({pending})
                        if not pending.cancelled():
                            pending.exception()
                finally:
                    await stream.aclose()
                    self._finish("cancelled")
