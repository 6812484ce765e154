"""Mock provider for local runs: deterministic text, no network."""
import asyncio
import re
from collections.abc import AsyncIterator

from shared.cancellation import CancellationToken

from relay.providers.base import GenerationOptions, ProviderAdapter


def _mock_reply(prompt: str) -> str:
    first_line = prompt.strip().splitlines()[0] if prompt.strip() else ""
    return f"This is a mock reply to: {first_line[:200]}"


class MockProvider(ProviderAdapter):
    name = "mock"

    def __init__(
        self,
        fragments: list[str] | None = None,
        *,
        delay_seconds: float = 0.0,
    ) -> None:
        super().__init__(["mock"], "mock")
        self._fragments = fragments
        self._delay = delay_seconds

    def _pieces(self, prompt: str) -> list[str]:
        if self._fragments is not None:
            return list(self._fragments)
        return re.findall(r"\S+\s*", _mock_reply(prompt))

    async def generate(
        self,
        prompt: str,
        options: GenerationOptions,
        token: CancellationToken | None = None,
    ) -> str:
        if token is not None:
            token.raise_if_cancelled()
        return "".join(self._pieces(prompt))

    async def generate_stream(
        self,
        prompt: str,
        options: GenerationOptions,
        token: CancellationToken | None = None,
    ) -> AsyncIterator[str]:
        for piece in self._pieces(prompt):
            if token is not None:
                token.raise_if_cancelled()
            if self._delay:
                await asyncio.sleep(self._delay)
            yield piece
