"""Tests for the shared retry policy."""
import httpx
import pytest

from shared.errors import ValidationError
from shared.http_client import RetryableStatusError, call_with_retries, is_retryable


class Sleeps:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.mark.asyncio
async def test_backoff_doubles_from_base_and_stops_after_three_retries() -> None:
    sleeps = Sleeps()
    calls = 0

    async def fn() -> str:
        nonlocal calls
        calls += 1
        raise RetryableStatusError(httpx.Response(503))

    with pytest.raises(RetryableStatusError):
        await call_with_retries(fn, max_retries=3, base_delay=1.0, sleep=sleeps)
    assert calls == 4
    assert sleeps.delays == [1, 2, 4]


@pytest.mark.asyncio
async def test_transport_error_then_success() -> None:
    sleeps = Sleeps()
    calls = 0

    async def fn() -> str:
        nonlocal calls
        calls += 1
        if calls < 3:
            raise httpx.ConnectError("connection refused")
        return "ok"

    assert await call_with_retries(fn, sleep=sleeps) == "ok"
    assert calls == 3
    assert sleeps.delays == [1, 2]


@pytest.mark.asyncio
async def test_validation_error_is_not_retried() -> None:
    sleeps = Sleeps()
    calls = 0

    async def fn() -> str:
        nonlocal calls
        calls += 1
        raise ValidationError.single("prompt", "Prompt cannot be empty")

    with pytest.raises(ValidationError):
        await call_with_retries(fn, sleep=sleeps)
    assert calls == 1
    assert sleeps.delays == []


def test_retryable_statuses() -> None:
    for status in (408, 429, 500, 502, 503, 504):
        assert is_retryable(RetryableStatusError(httpx.Response(status)))
    for status in (400, 401, 403, 404):
        assert not is_retryable(RetryableStatusError(httpx.Response(status)))
    assert is_retryable(httpx.ReadTimeout("slow"))
    assert not is_retryable(ValueError("nope"))
