"""Cooperative cancellation for pipeline runs."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable

T = TypeVar("T")


class RunCancelledError(Exception):
    """Raised when a cancellation signal wins the race against a stage call."""


class CancellationSource:
    """Cancellation signal for a single run.

    Combines the orchestrator's own event with any caller-supplied events.
    ``cancel()`` may be called from any thread and never blocks.
    """

    def __init__(self, *linked: asyncio.Event) -> None:
        self._event = asyncio.Event()
        self._linked = linked
        self._loop = asyncio.get_running_loop()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set() or any(e.is_set() for e in self._linked)

    def cancel(self) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._event.set()
        elif not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._event.set)

    async def wait(self) -> None:
        """Block until any linked signal fires."""
        waiters = [asyncio.ensure_future(e.wait()) for e in (self._event, *self._linked)]
        try:
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless cancellation fires first.

        The losing call is cancelled and awaited so its resources are released.

        Raises:
            RunCancelledError: If the signal fired before the call finished.
        """
        call = asyncio.ensure_future(awaitable)
        signal = asyncio.ensure_future(self.wait())
        try:
            done, _ = await asyncio.wait({call, signal}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            signal.cancel()
            if not call.done():
                call.cancel()
                # Errors raised while unwinding the abandoned call are irrelevant
                await asyncio.gather(call, return_exceptions=True)
        if call in done:
            return call.result()
        raise RunCancelledError
