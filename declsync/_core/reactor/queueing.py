"""
The queue of the actual objects to be remediated, as seen by the watchers.

The watch-streams deliver the changes of the same objects many times:
e.g. a deployment is modified several times per second while it rolls out.
Reconciling every intermediate state is useless: only the latest one matters.
Neither should the same object be reconciled by two workers at the same time.

The object queue solves both. It keeps only the best known observation
of every object (the latest one, unless it is of an older generation),
while the underlying :class:`aioqueues.WorkQueue` keeps the keys in order,
deduplicated, and never given to two workers at the same time.

The tricky part is the objects that arrive while being processed:

1. The queue contains the 1st generation of an object.
2. A worker gets the object, the key is not dirty anymore.
3. The watcher adds the 2nd generation: it is stored, the key is dirty again.
4. The worker finishes with the 1st generation & marks it as done.
5. Since the key is dirty, the 2nd generation is kept in the queue,
   and the underlying work queue makes the key available to the workers again.
6. A worker gets the 2nd generation, processes it, and marks it as done.
7. Since the key is not dirty anymore, the object is removed from the queue.

All the methods except :meth:`ObjectQueue.get` are synchronous, and so atomic
within the event loop; the state of the queue is never observed half-updated.
"""
import logging
from typing import Dict, Set

from declsync._cogs.aiokits import aiolimiters, aioqueues
from declsync._cogs.configs import configuration
from declsync._cogs.structs import bodies, ids

logger = logging.getLogger(__name__)

QueueShutDown = aioqueues.QueueShutDown


def make_limiter(settings: configuration.ReconcilerSettings) -> aiolimiters.RateLimiter:
    return aiolimiters.MaxOfLimiter(
        aiolimiters.ItemExponentialLimiter(
            base_delay=settings.queueing.base_delay,
            max_delay=settings.queueing.max_delay,
        ),
        aiolimiters.BucketLimiter(
            qps=settings.queueing.qps,
            burst=settings.queueing.burst,
        ),
    )


class ObjectQueue:

    def __init__(
            self,
            *,
            limiter: aiolimiters.RateLimiter,
            name: str = 'objects',
    ) -> None:
        super().__init__()
        self._underlying: aioqueues.WorkQueue[ids.ResourceIdentity]
        self._underlying = aioqueues.WorkQueue(limiter=limiter, name=name)
        self._objects: Dict[ids.ResourceIdentity, bodies.Body] = {}
        self._dirty: Set[ids.ResourceIdentity] = set()

    def __repr__(self) -> str:
        return f'<{self.__class__.__name__}: {len(self._objects)} objects, ' \
               f'{len(self._dirty)} dirty, {len(self._underlying)} queued>'

    def __len__(self) -> int:
        return len(self._underlying)

    def add(self, obj: bodies.Body) -> None:
        identity = obj.identity

        # Generation is not incremented when metadata is changed. Therefore if generation is equal,
        # the new object is accepted, as it may have new labels, annotations, or other metadata.
        current = self._objects.get(identity)
        if current is not None and (current.generation or 0) > (obj.generation or 0):
            logger.debug(f"Ignoring {identity} of generation {obj.generation}: "
                         f"the queue already has generation {current.generation}.")
            return

        self._objects[identity] = obj
        self._dirty.add(identity)
        self._underlying.add(identity)

    def replace(self, obj: bodies.Body) -> None:
        """
        Replace the stored observation, but do not queue it.

        Used while the object is being processed, e.g. to refresh its state
        before a retry: the retry itself decides when the object is redelivered.
        """
        self._objects[obj.identity] = obj

    def retry(self, obj: bodies.Body) -> None:
        """ Re-add the object after a per-object backoff (the object itself is kept). """
        identity = obj.identity
        self._dirty.add(identity)
        self._underlying.add_rate_limited(identity)

    async def get(self) -> bodies.Body:
        """
        Get the next object to process; block until there is one.

        Raises `QueueShutDown` when the queue is shut down and depleted.
        """
        while True:
            identity = await self._underlying.get()
            obj = self._objects.get(identity)
            if obj is not None:
                self._dirty.discard(identity)
                return obj

            # Only possible if forgotten & done without re-adding; never normally.
            logger.warning(f"Found no object for {identity} in the queue; skipping it.")
            self._underlying.forget(identity)
            self._underlying.done(identity)

    def done(self, obj: bodies.Body) -> None:
        identity = obj.identity
        self._underlying.done(identity)
        if identity in self._dirty:
            logger.debug(f"Leaving the dirty object in the queue: {identity}")
        else:
            self._objects.pop(identity, None)

    def forget(self, obj: bodies.Body) -> None:
        """ Reset the backoff of the object, e.g. after a successful processing. """
        self._underlying.forget(obj.identity)

    def num_requeues(self, obj: bodies.Body) -> int:
        return self._underlying.num_requeues(obj.identity)

    def shutting_down(self) -> bool:
        return self._underlying.shutting_down()

    def shutdown(self) -> None:
        self._underlying.shutdown()

    async def wait_shutdown(self) -> None:
        await self._underlying.wait_shutdown()
