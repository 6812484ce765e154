"""HTTP client construction and retry policy."""
import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")

RETRYABLE_STATUSES = frozenset({408, 429, 500, 502, 503, 504})


class RetryableStatusError(Exception):
    """Response status that is worth another attempt."""

    def __init__(self, response: httpx.Response) -> None:
        super().__init__(f"HTTP {response.status_code}")
        self.response = response
        self.status_code = response.status_code


def create_http_client(
    timeout: float = 30.0,
    *,
    base_url: str = "",
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Create async HTTP client with timeout. Retries are handled above transport level."""
    return httpx.AsyncClient(
        base_url=base_url,
        timeout=httpx.Timeout(timeout),
        transport=transport or httpx.AsyncHTTPTransport(retries=0),
    )


def is_retryable(exc: BaseException) -> bool:
    """Network-class failures and retryable statuses; never auth/validation."""
    if isinstance(exc, RetryableStatusError):
        return exc.status_code in RETRYABLE_STATUSES
    return isinstance(exc, httpx.TransportError)


def _log_retry(state: RetryCallState) -> None:
    exc = state.outcome.exception() if state.outcome else None
    logger.warning(
        "request_retry",
        attempt=state.attempt_number,
        delay_seconds=state.next_action.sleep if state.next_action else None,
        error=str(exc) if exc else None,
    )


def retry_policy(
    max_retries: int = 3,
    base_delay: float = 1.0,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> AsyncRetrying:
    """Exponential backoff ``base_delay * 2 ** attempt``, ``max_retries`` retries after the first try."""
    return AsyncRetrying(
        retry=retry_if_exception(is_retryable),
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_exponential(multiplier=base_delay, exp_base=2),
        sleep=sleep,
        before_sleep=_log_retry,
        reraise=True,
    )


async def call_with_retries(
    fn: Callable[[], Awaitable[T]],
    *,
    max_retries: int = 3,
    base_delay: float = 1.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``fn`` under the retry policy, re-raising the last error on exhaustion."""
    async for attempt in retry_policy(max_retries, base_delay, sleep=sleep):
        with attempt:
            return await fn()
    raise AssertionError("unreachable")
