"""Cancellation token passed through every layer of a stream.

One token per session. ``cancel`` is idempotent: the first call records the
reason and wakes every waiter, later calls are no-ops.
"""
import asyncio
from collections.abc import AsyncIterator, Callable
from typing import TypeVar

from shared.errors import CancellationOutcome

T = TypeVar("T")


class CancellationToken:
    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None
        self._callbacks: list[Callable[[str], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> bool:
        """Cancel the token. Returns True only for the call that took effect."""
        if self._event.is_set():
            return False
        self._reason = reason
        self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback(reason)
        return True

    def add_callback(self, callback: Callable[[str], None]) -> None:
        """Run callback on cancellation (immediately if already cancelled)."""
        if self._event.is_set():
            callback(self._reason or "cancelled")
        else:
            self._callbacks.append(callback)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CancellationOutcome(self._reason or "cancelled")

    async def wait(self) -> str:
        await self._event.wait()
        return self._reason or "cancelled"

    def link(self, other: "CancellationToken") -> None:
        """Cancel this token whenever ``other`` is cancelled."""
        other.add_callback(self.cancel)


async def guarded(source: AsyncIterator[T], token: CancellationToken | None) -> AsyncIterator[T]:
    """Iterate ``source`` but stop as soon as ``token`` fires.

    A read blocked on the network is interrupted rather than awaited to
    completion; the source is closed and CancellationOutcome is raised.
    """
    if token is None:
        async for item in source:
            yield item
        return

    iterator = source.__aiter__()
    waiter = asyncio.ensure_future(token.wait())
    step: asyncio.Future | None = None
    try:
        while True:
            token.raise_if_cancelled()
            step = asyncio.ensure_future(iterator.__anext__())
            await asyncio.wait({step, waiter}, return_when=asyncio.FIRST_COMPLETED)
            if not step.done():
                token.raise_if_cancelled()
            finished, step = step, None
            try:
                item = finished.result()
            except StopAsyncIteration:
                return
            yield item
    finally:
        waiter.cancel()
        if step is not None and not step.done():
            step.cancel()
            await asyncio.wait({step})
        aclose = getattr(iterator, "aclose", None)
        if aclose is not None:
            await aclose()
