"""
Remediation: driving the individual actual objects to their declared state.

The workers take the objects from the object queue one by one, compare them
to their declared state, and fix the drift if there is any -- e.g. when
someone has modified or deleted a managed object manually. The object queue
guarantees that the same object is never remediated by two workers at once.

The failures are classified (see :mod:`declsync._core.actions.errors`):
the transient ones are retried with a per-object backoff, the others are
reported and dropped until the object or its declaration changes again.

The workers are paused while the bulk applier is running, so that they do not
interfere with the full apply of the newly declared state (e.g. by recreating
the objects which are just being pruned).
"""
import asyncio
import logging
from typing import Dict, List, Optional

import aiohttp

from declsync._cogs.aiokits import aiotasks, aiotoggles
from declsync._cogs.clients import errors as api_errors
from declsync._cogs.helpers import typedefs
from declsync._cogs.structs import bodies, ids, metadata, scopes
from declsync._core.actions import differ, errors, loggers
from declsync._core.engines import applying
from declsync._core.intents import declared
from declsync._core.reactor import queueing

logger = logging.getLogger(__name__)

# All the errors that are classified for retrying; the others are unexpected.
OBJECT_ERRORS = (errors.ReconcilerError, api_errors.APIError, aiohttp.ClientError, asyncio.TimeoutError)


class Remediator:

    def __init__(
            self,
            *,
            scope: scopes.Scope,
            resources: declared.DeclaredResources,
            applier: applying.Applier,
    ) -> None:
        super().__init__()
        self._scope = scope
        self._resources = resources
        self._applier = applier
        self._conflicts: Dict[ids.ObjectKey, errors.ManagementConflictError] = {}
        self.paused = aiotoggles.Toggle(False, name='remediator paused')

    @property
    def applier(self) -> applying.Applier:
        return self._applier

    def conflict_errors(self) -> List[errors.ManagementConflictError]:
        """ The management conflicts seen since the objects were last remediated. """
        return list(self._conflicts.values())

    async def pause(self) -> None:
        await self.paused.turn_to(True)

    async def resume(self) -> None:
        await self.paused.turn_to(False)

    async def remediate(
            self,
            identity: ids.ResourceIdentity,
            obj: Optional[bodies.Body],
            *,
            logger: typedefs.Logger = logger,
    ) -> None:
        """
        Bring one object to its declared state, or leave it as is.

        The object is either the actual state, or a tombstone of the deleted
        object, or ``None`` if the object is known to be absent.
        """
        actual = None if obj is None or obj.deleted else obj
        decl = self._resources.get(identity)
        operation = differ.operation(decl, actual, self._scope)
        logger.debug(f"Remediating with the operation: {operation.value}")

        if operation is not differ.Operation.MANAGEMENT_CONFLICT:
            self._conflicts.pop(identity.key, None)

        if operation is differ.Operation.NOOP:
            pass
        elif operation is differ.Operation.CREATE and decl is not None:
            await self._applier.create(decl.identity, decl, logger=logger)
        elif operation is differ.Operation.UPDATE and decl is not None and actual is not None:
            await self._applier.update(identity, decl, actual, logger=logger)
        elif operation is differ.Operation.DELETE and actual is not None:
            await self._applier.delete(identity, actual, logger=logger)
        elif operation is differ.Operation.UNMANAGE and actual is not None:
            await self._applier.remove_bookkeeping(identity, actual, logger=logger)
        elif operation is differ.Operation.UNMANAGE_PROTECTED and actual is not None:
            logger.warning("Unmanaging a protected object instead of deleting it.")
            await self._applier.remove_bookkeeping(identity, actual, logger=logger)
        elif operation is differ.Operation.ERROR:
            value = metadata.get_annotation(decl or {}, metadata.MANAGEMENT_KEY)
            raise errors.IllegalManagementError(
                f"Invalid value of the {metadata.MANAGEMENT_KEY} annotation: {value!r}",
                identity=identity)
        elif operation is differ.Operation.MANAGEMENT_CONFLICT:
            manager = metadata.get_annotation(actual or {}, metadata.MANAGER_KEY)
            conflict = errors.ManagementConflictError(
                f"Declared in {self._scope.manager!r}, but managed by {manager!r}.",
                identity=identity, manager=manager)
            self._conflicts[identity.key] = conflict
            raise conflict
        else:
            raise errors.InternalError(f"Unexpected operation {operation!r} "
                                       f"for declared={decl!r} & actual={actual!r}",
                                       identity=identity)


async def worker(
        *,
        remediator: Remediator,
        queue: queueing.ObjectQueue,
) -> None:
    """
    Process the objects from the queue until the queue is shut down.

    Several workers can run at once on the same queue:
    they never get the same object at the same time.

    The pause is checked after an object is taken, not before: a worker idling
    in the queue when the remediator is paused must not process the objects
    that arrive meanwhile. The taken object stays in the queue's processing
    state until the remediator is resumed, so its newer observations are kept.
    """
    while True:
        try:
            obj = await queue.get()
        except queueing.QueueShutDown:
            logger.debug("The object queue is shut down; the worker exits.")
            return

        resumed = False
        try:
            resumed = await wait_for_resume(remediator=remediator, queue=queue)
            if resumed:
                await process(obj, remediator=remediator, queue=queue)
        finally:
            queue.done(obj)

        if not resumed:
            logger.debug("The object queue is shut down while paused; the worker exits.")
            return


async def wait_for_resume(
        *,
        remediator: Remediator,
        queue: queueing.ObjectQueue,
) -> bool:
    """
    Wait while the remediator is paused. Return ``False`` if the queue shuts down meanwhile.
    """
    while remediator.paused.is_on():
        if queue.shutting_down():
            return False
        resumed = asyncio.create_task(remediator.paused.wait_for(False), name="resume waiter")
        shutdown = asyncio.create_task(queue.wait_shutdown(), name="shutdown waiter")
        try:
            await aiotasks.wait({resumed, shutdown}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            await aiotasks.stop({resumed, shutdown}, title="Pause", quiet=True)
    return True


async def process(
        obj: bodies.Body,
        *,
        remediator: Remediator,
        queue: queueing.ObjectQueue,
) -> None:
    """
    Remediate one object, and decide what happens to it next in the queue.
    """
    logger = loggers.ObjectLogger(body=obj)
    try:
        await remediator.remediate(obj.identity, obj, logger=logger)
    except OBJECT_ERRORS as e:
        if isinstance(e, (errors.ConflictError, api_errors.APIConflictError)):
            logger.info(f"The object has changed meanwhile; will retry with a fresh state: {e}")
            await refresh(obj, applier=remediator.applier, queue=queue, logger=logger)
            queue.retry(obj)
        elif isinstance(e, errors.InternalError):
            logger.exception(f"Internal error; leaving the object intact: {e}")
            queue.forget(obj)
        elif errors.is_retriable(e):
            attempts = queue.num_requeues(obj)
            logger.warning(f"Failed to remediate; will retry (attempt {attempts + 1}): {e!r}")
            queue.retry(obj)
        else:
            logger.error(f"Failed to remediate; will not retry: {e}")
            queue.forget(obj)
    except Exception as e:
        logger.exception(f"Unexpected error; leaving the object intact: {e}")
        queue.forget(obj)
    else:
        queue.forget(obj)


async def refresh(
        obj: bodies.Body,
        *,
        applier: applying.Applier,
        queue: queueing.ObjectQueue,
        logger: typedefs.Logger = logger,
) -> None:
    """
    Replace the queued state of the object with its current state in the store.

    If the object is gone, it is replaced with its tombstone. If the current
    state cannot be fetched, the queued state remains as is. The object is not
    requeued: the caller decides when it is processed again.
    """
    try:
        fresh = await applier.get(obj.identity, logger=logger)
    except (errors.TransientError, api_errors.APIError,
            aiohttp.ClientError, asyncio.TimeoutError) as e:
        logger.warning(f"Failed to refresh the object: {e!r}")
        return
    queue.replace(obj.as_tombstone() if fresh is None else fresh)
