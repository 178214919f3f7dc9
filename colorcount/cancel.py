"""Cooperative cancellation shared by every pipeline stage."""

from __future__ import annotations

import asyncio
import contextlib
from typing import Awaitable, TypeVar

from colorcount.exceptions import Cancelled

T = TypeVar("T")


class CancelToken:
    """
    Single shared cancellation signal.

    Set once (typically from a signal handler) and observed at every blocking
    point: channel operations, the connection retry poll and HTTP calls.
    """

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()

    async def sleep(self, delay: float) -> bool:
        """
        Sleep for ``delay`` seconds unless cancelled first.

        Returns:
            True if the full delay elapsed, False if the token fired.
        """
        if self.cancelled:
            return False
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return True
        return False

    async def guard(self, aw: Awaitable[T]) -> T:
        """
        Await ``aw`` but give up as soon as the token fires.

        Raises:
            Cancelled: token fired before ``aw`` completed; ``aw`` is cancelled.
        """
        task = asyncio.ensure_future(aw)
        if self.cancelled:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await task
            raise Cancelled()

        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task.done():
            return task.result()

        task.cancel()
        with contextlib.suppress(asyncio.CancelledError, Exception):
            await task
        raise Cancelled()
