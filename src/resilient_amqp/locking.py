"""Shared/exclusive asyncio lock for cached broker handles."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)


class ReadWriteLock:
    """Many concurrent readers or a single writer, served in FIFO order.

    Once a writer is queued, later readers wait behind it, so a handle that is
    being (re)created is never read half-way. Not reentrant: a task holding
    the read side must leave it before asking for the write side.
    """

    def __init__(self) -> None:
        self._readers = 0
        self._writer = False
        self._waiters: deque[tuple[bool, asyncio.Future[None]]] = deque()

    @property
    def readers(self) -> int:
        return self._readers

    @property
    def write_locked(self) -> bool:
        return self._writer

    @asynccontextmanager
    async def read(self) -> AsyncIterator[None]:
        """Hold the shared side for the duration of the block."""
        await self._acquire(write=False)
        try:
            yield
        finally:
            self._release(write=False)

    @asynccontextmanager
    async def write(self) -> AsyncIterator[None]:
        """Hold the exclusive side for the duration of the block."""
        await self._acquire(write=True)
        logger.debug("Write lock acquired")
        try:
            yield
        finally:
            self._release(write=True)

    def _can_grant(self, write: bool) -> bool:
        if write:
            return not self._writer and self._readers == 0
        return not self._writer

    def _grant(self, write: bool) -> None:
        if write:
            self._writer = True
        else:
            self._readers += 1

    async def _acquire(self, write: bool) -> None:
        if not self._waiters and self._can_grant(write):
            self._grant(write)
            return

        fut: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append((write, fut))
        try:
            await fut
        except asyncio.CancelledError:
            if fut.done() and not fut.cancelled():
                # Granted just before the cancellation landed; hand it back.
                self._release(write)
            else:
                self._wake()
            raise

    def _release(self, write: bool) -> None:
        if write:
            self._writer = False
        else:
            self._readers -= 1
        self._wake()

    def _wake(self) -> None:
        while self._waiters:
            write, fut = self._waiters[0]
            if fut.done():
                self._waiters.popleft()
                continue
            if not self._can_grant(write):
                return
            self._waiters.popleft()
            self._grant(write)
            fut.set_result(None)
            if write:
                return
