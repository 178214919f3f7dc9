"""
Bounded channels and worker stages.

A Channel connects two pipeline stages. It is bounded, so a full channel
suspends its producer (backpressure), and it is closable, so consumers learn
that upstream work is finished. A Stage runs a pool of workers that share one
input and fan in to one output channel; the last worker to exit closes it.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import AsyncIterator, Awaitable, Callable, Generic, Optional, TypeVar

from colorcount.cancel import CancelToken
from colorcount.exceptions import ChannelClosed

T = TypeVar("T")


class Channel(Generic[T]):
    """Bounded FIFO hand-off between pipeline stages."""

    def __init__(self, capacity: int = 1):
        # capacity 0 behaves as a one-slot hand-off
        self._capacity = max(1, capacity)
        self._items: deque[T] = deque()
        self._closed = False
        self._cond: Optional[asyncio.Condition] = None

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return len(self._items)

    def _condition(self) -> asyncio.Condition:
        # created lazily so channels can be built outside a running loop
        if self._cond is None:
            self._cond = asyncio.Condition()
        return self._cond

    async def _send(self, item: T) -> None:
        cond = self._condition()
        async with cond:
            await cond.wait_for(lambda: self._closed or len(self._items) < self._capacity)
            if self._closed:
                raise ChannelClosed()
            self._items.append(item)
            cond.notify_all()

    async def _receive(self) -> T:
        cond = self._condition()
        async with cond:
            await cond.wait_for(lambda: self._closed or len(self._items) > 0)
            if self._items:
                item = self._items.popleft()
                cond.notify_all()
                return item
            raise ChannelClosed()

    async def send(self, item: T, token: Optional[CancelToken] = None) -> None:
        """
        Push ``item``, waiting while the channel is full.

        Raises:
            ChannelClosed: channel was closed.
            Cancelled: token fired while waiting for room.
        """
        if self._closed:
            raise ChannelClosed()
        if token is None:
            await self._send(item)
        else:
            await token.guard(self._send(item))

    async def receive(self, token: Optional[CancelToken] = None) -> T:
        """
        Pull the next item, waiting while the channel is empty.

        Items already buffered are still delivered after close.

        Raises:
            ChannelClosed: channel is closed and drained.
            Cancelled: token fired while waiting for an item.
        """
        if self._closed and not self._items:
            raise ChannelClosed()
        if token is None:
            return await self._receive()
        return await token.guard(self._receive())

    async def close(self) -> None:
        """Close the channel. Safe to call more than once."""
        if self._closed:
            return
        cond = self._condition()
        async with cond:
            self._closed = True
            cond.notify_all()

    async def __aiter__(self) -> AsyncIterator[T]:
        while True:
            try:
                yield await self.receive()
            except ChannelClosed:
                return


class Stage:
    """
    Pool of identical workers with fan-in completion.

    Every worker is wrapped so that, whatever way it exits, a shared
    completion counter is decremented; the worker that brings the counter to
    zero closes ``output``.
    """

    def __init__(self, name: str, output: Optional[Channel] = None,
                 logger: Optional[logging.Logger] = None):
        self.name = name
        self.output = output
        self._log = logger or logging.getLogger("colorcount").getChild(name)
        self._tasks: list[asyncio.Task] = []
        self._remaining = 0

    @property
    def running(self) -> int:
        return self._remaining

    def spawn(self, n: int, worker: Callable[[int], Awaitable[None]]) -> None:
        """Start ``n`` workers; ``worker`` receives its 1-based runner number."""
        n = max(1, n)
        self._remaining += n
        for num in range(1, n + 1):
            self._tasks.append(asyncio.create_task(self._run(worker, num),
                                                   name=f"{self.name}-{num}"))
        self._log.debug(f"[Stage] {self.name}: runners started amount={n}")

    async def _run(self, worker: Callable[[int], Awaitable[None]], num: int) -> None:
        try:
            await worker(num)
        finally:
            self._remaining -= 1
            if self._remaining == 0 and self.output is not None:
                await self.output.close()

    async def wait_and_close(self) -> None:
        """
        Barrier: wait for every worker, then make sure the output is closed.

        A worker that crashed does not cut the wait short. Once all of them
        have exited, the first crash is re-raised.
        """
        errors: list[BaseException] = []
        if self._tasks:
            results = await asyncio.gather(*self._tasks, return_exceptions=True)
            for task, res in zip(self._tasks, results):
                if isinstance(res, BaseException):
                    self._log.error(f"[Stage] {task.get_name()} crashed error={res!r}")
                    errors.append(res)
        if self.output is not None:
            await self.output.close()
        if errors:
            raise errors[0]
