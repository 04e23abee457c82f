"""
Bulkhead: bounds the number of in-flight upstream calls.

A plain asyncio.Semaphore does not promise FIFO wake-up and lets a fresh
acquirer overtake a waiter that has been woken but not yet resumed. Here a
released permit is handed directly to the longest-waiting acquirer, so the
slot count never overshoots and grants follow arrival order.
"""

import asyncio
import logging
from collections import deque
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)


class Bulkhead:

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._capacity = capacity
        self._active = 0
        self._waiters: deque[asyncio.Future] = deque()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def in_use(self) -> int:
        return self._active

    @property
    def waiting(self) -> int:
        return sum(1 for w in self._waiters if not w.done())

    async def acquire(self) -> None:
        if self._active < self._capacity and not self.waiting:
            self._active += 1
            return

        fut = asyncio.get_running_loop().create_future()
        self._waiters.append(fut)
        logger.debug("Bulkhead full (%d/%d), queued", self._active, self._capacity)
        try:
            await fut
        except asyncio.CancelledError:
            if fut.done() and not fut.cancelled():
                # permit was transferred just before cancellation; pass it on
                self.release()
            else:
                try:
                    self._waiters.remove(fut)
                except ValueError:
                    pass
            raise
        # the releaser kept _active unchanged when it handed us the permit

    def release(self) -> None:
        if self._active <= 0:
            raise RuntimeError("Bulkhead.release() called without a held permit")
        while self._waiters:
            fut = self._waiters.popleft()
            if not fut.done():
                fut.set_result(None)
                return
        self._active -= 1

    @asynccontextmanager
    async def slot(self):
        """Hold one permit for the duration of the block; released exactly once."""
        await self.acquire()
        try:
            yield self
        finally:
            self.release()
