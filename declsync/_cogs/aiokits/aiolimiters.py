"""
Rate limiters for the retries of the failed work items.

A rate limiter tells how long an item should wait before it is retried.
The limiters are consulted by the work queue (see :mod:`aioqueues`),
so that the retries never happen via ad-hoc sleeps in the processing code.

Two basic limiters are combined for the retries of the reconciler:

* the per-item exponential backoff: an item that fails repeatedly is retried
  less and less often, while the other items are not affected by it;
* the overall token bucket: the retries of all items together never exceed
  a fixed rate (after an initial burst), e.g. on mass failures of the store.
"""
import abc
import time
from typing import Callable, Dict, Hashable


class RateLimiter(metaclass=abc.ABCMeta):

    @abc.abstractmethod
    def when(self, item: Hashable) -> float:
        """ Register one more failure of the item, return the retry delay in seconds. """
        raise NotImplementedError

    @abc.abstractmethod
    def forget(self, item: Hashable) -> None:
        """ Stop tracking the item, e.g. when it has succeeded. """
        raise NotImplementedError

    @abc.abstractmethod
    def num_requeues(self, item: Hashable) -> int:
        raise NotImplementedError


class ItemExponentialLimiter(RateLimiter):
    """ Per-item exponential backoff: ``base_delay * 2 ** failures``, capped. """

    def __init__(self, *, base_delay: float, max_delay: float) -> None:
        super().__init__()
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._failures: Dict[Hashable, int] = {}

    def when(self, item: Hashable) -> float:
        exponent = self._failures.get(item, 0)
        self._failures[item] = exponent + 1
        if exponent >= 64:  # floats overflow far above any reasonable cap anyway.
            return self._max_delay
        return min(self._base_delay * 2 ** exponent, self._max_delay)

    def forget(self, item: Hashable) -> None:
        self._failures.pop(item, None)

    def num_requeues(self, item: Hashable) -> int:
        return self._failures.get(item, 0)


class BucketLimiter(RateLimiter):
    """
    The overall token bucket: ``qps`` tokens per second, at most ``burst`` at once.

    Every retry reserves one token. When the bucket is empty, the reservation
    is made in the future, and the delay until then is returned.
    """

    def __init__(
            self,
            *,
            qps: float,
            burst: int,
            clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__()
        self._qps = qps
        self._burst = burst
        self._clock = clock
        self._tokens = float(burst)
        self._last = clock()

    def when(self, item: Hashable) -> float:
        now = self._clock()
        self._tokens = min(float(self._burst), self._tokens + (now - self._last) * self._qps)
        self._last = now
        self._tokens -= 1
        return 0.0 if self._tokens >= 0 else -self._tokens / self._qps

    def forget(self, item: Hashable) -> None:
        pass

    def num_requeues(self, item: Hashable) -> int:
        return 0


class MaxOfLimiter(RateLimiter):
    """ The strictest of several limiters: the longest of their delays. """

    def __init__(self, *limiters: RateLimiter) -> None:
        super().__init__()
        self._limiters = limiters

    def when(self, item: Hashable) -> float:
        # All limiters must register the failure, so no short-circuiting here.
        delays = [limiter.when(item) for limiter in self._limiters]
        return max(delays, default=0.0)

    def forget(self, item: Hashable) -> None:
        for limiter in self._limiters:
            limiter.forget(item)

    def num_requeues(self, item: Hashable) -> int:
        return max((limiter.num_requeues(item) for limiter in self._limiters), default=0)
