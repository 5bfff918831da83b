"""
An ordered, deduplicating, rate-limited work queue of hashable items.

Unlike `asyncio.Queue`, every item is present in the queue at most once,
regardless of how many times it is added, and an item is never processed
by two consumers at the same time:

* An item added while it is already queued keeps its original position.
* An item added while it is being processed (between :meth:`WorkQueue.get`
  and :meth:`WorkQueue.done`) is not queued immediately: it is queued when
  the processing is done, so that the consumer sees the latest state again.

The items can also be added with a delay, or with a delay as decided by
a rate limiter -- usually for the retries of the failed items.

All the mutating methods are synchronous, and so atomic within the event
loop: no locks are needed. Only :meth:`WorkQueue.get` is a coroutine,
which blocks until an item is available or the queue is shut down.
"""
import asyncio
import collections
import contextlib
from typing import Deque, Dict, Generic, Hashable, Optional, Set, TypeVar

from declsync._cogs.aiokits import aiolimiters, aiotasks

_K = TypeVar('_K', bound=Hashable)


class QueueShutDown(Exception):
    """ Raised from the getters when the queue is shut down and depleted. """


class WorkQueue(Generic[_K]):

    def __init__(
            self,
            *,
            limiter: Optional[aiolimiters.RateLimiter] = None,
            name: Optional[str] = None,
    ) -> None:
        super().__init__()
        self._name = name
        self._limiter = limiter
        self._queue: Deque[_K] = collections.deque()
        self._dirty: Set[_K] = set()
        self._processing: Set[_K] = set()
        self._waiting: Dict[_K, asyncio.TimerHandle] = {}
        self._getters: Deque[aiotasks.Future] = collections.deque()
        self._shutdown_waiters: Set[aiotasks.Future] = set()
        self._shutting_down = False

    def __repr__(self) -> str:
        name = f' {self._name}' if self._name else ''
        return f'<{self.__class__.__name__}{name}: {len(self._queue)} queued, ' \
               f'{len(self._processing)} processing, {len(self._waiting)} waiting>'

    def __len__(self) -> int:
        return len(self._queue)

    def shutting_down(self) -> bool:
        return self._shutting_down

    def shutdown(self) -> None:
        """
        Stop accepting new items; wake up all getters.

        The items already in the queue are still given to the getters.
        Once the queue is depleted, the getters raise `QueueShutDown`.
        """
        self._shutting_down = True
        for handle in self._waiting.values():
            handle.cancel()
        self._waiting.clear()
        for waiter in self._shutdown_waiters:
            if not waiter.done():
                waiter.set_result(None)
        while self._getters:
            getter = self._getters.popleft()
            if not getter.done():
                getter.set_result(None)

    def add(self, item: _K) -> None:
        if self._shutting_down:
            return
        if item in self._dirty:
            return
        self._dirty.add(item)
        if item in self._processing:
            return
        self._queue.append(item)
        self._wakeup_next()

    async def get(self) -> _K:
        loop = asyncio.get_running_loop()
        while not self._queue and not self._shutting_down:
            getter = loop.create_future()
            self._getters.append(getter)
            try:
                await getter
            except asyncio.CancelledError:
                getter.cancel()
                with contextlib.suppress(ValueError):
                    self._getters.remove(getter)
                # If woken up but cancelled, pass the wake-up to another getter.
                if not getter.cancelled() and self._queue:
                    self._wakeup_next()
                raise

        if not self._queue:
            raise QueueShutDown()

        item = self._queue.popleft()
        self._processing.add(item)
        self._dirty.discard(item)
        return item

    async def wait_shutdown(self) -> None:
        """ Block until the queue is shut down (or return at once if it is already). """
        if self._shutting_down:
            return
        waiter = asyncio.get_running_loop().create_future()
        self._shutdown_waiters.add(waiter)
        try:
            await waiter
        finally:
            self._shutdown_waiters.discard(waiter)

    def done(self, item: _K) -> None:
        """ Mark the item as processed; re-queue it if it was added meanwhile. """
        self._processing.discard(item)
        if item in self._dirty:
            self._queue.append(item)
            self._wakeup_next()

    def add_after(self, item: _K, delay: float) -> None:
        """
        Add the item after a delay (in seconds).

        If the item is already waiting to be added, the earliest time wins.
        """
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(item)
            return

        loop = asyncio.get_running_loop()
        ready_at = loop.time() + delay
        existing = self._waiting.get(item)
        if existing is not None and existing.when() <= ready_at:
            return
        if existing is not None:
            existing.cancel()
        self._waiting[item] = loop.call_at(ready_at, self._add_waiting, item)

    def add_rate_limited(self, item: _K) -> None:
        delay = self._limiter.when(item) if self._limiter is not None else 0
        self.add_after(item, delay)

    def forget(self, item: _K) -> None:
        if self._limiter is not None:
            self._limiter.forget(item)

    def num_requeues(self, item: _K) -> int:
        return self._limiter.num_requeues(item) if self._limiter is not None else 0

    def _add_waiting(self, item: _K) -> None:
        self._waiting.pop(item, None)
        self.add(item)

    def _wakeup_next(self) -> None:
        while self._getters:
            getter = self._getters.popleft()
            if not getter.done():
                getter.set_result(None)
                break
