"""
Keeping track of the watched kinds: one watcher per declared kind.

The set of the declared kinds changes with every re-read of the repository.
The watch manager starts the watchers for the newly declared kinds, and stops
the watchers of the kinds that are not declared anymore. The latter is safe:
by the time the kind is not declared anymore, the bulk applier has already
pruned or unmanaged all the objects of that kind.

The kinds must be known to the store to be watched. If the kind is not served
(e.g. its custom resource definition is declared in the same repository
and is not applied yet), the error is reported, and the manager remembers
that it needs another update, which is usually done on the next resync.
"""
import asyncio
import logging
from typing import AbstractSet, Dict, FrozenSet, Optional, Tuple

from declsync._cogs.aiokits import aiotasks
from declsync._cogs.clients import errors as api_errors, scanning
from declsync._cogs.configs import configuration
from declsync._cogs.structs import ids, scopes
from declsync._core.actions import errors
from declsync._core.intents import declared
from declsync._core.reactor import queueing, watchers

logger = logging.getLogger(__name__)


class WatchManager:

    def __init__(
            self,
            *,
            settings: configuration.ReconcilerSettings,
            scope: scopes.Scope,
            resources: declared.DeclaredResources,
            queue: queueing.ObjectQueue,
            mapper: scanning.ResourceMapper,
    ) -> None:
        super().__init__()
        self._settings = settings
        self._scope = scope
        self._resources = resources
        self._queue = queue
        self._mapper = mapper
        self._lock = asyncio.Lock()
        self._watchers: Dict[ids.GroupVersionKind, watchers.FilteredWatcher] = {}
        self._tasks: Dict[ids.GroupVersionKind, aiotasks.Task] = {}
        self._needs_update = False

    @property
    def needs_update(self) -> bool:
        """ Whether the last update has failed for some kinds, so it must be repeated. """
        return self._needs_update

    def kinds(self) -> FrozenSet[ids.GroupVersionKind]:
        return frozenset(self._watchers)

    def watching(self, gvk: ids.GroupVersionKind) -> bool:
        return gvk in self._watchers

    def management_conflict(self) -> bool:
        """ Whether any of the watchers has seen an object managed by a higher-authority scope. """
        return any(watcher.management_conflict for watcher in self._watchers.values())

    def clear_management_conflict(self) -> None:
        """ Forget the conflicts seen so far, e.g. once they are reported. """
        for watcher in self._watchers.values():
            watcher.clear_management_conflict()

    async def update_watches(
            self,
            kinds: AbstractSet[ids.GroupVersionKind],
    ) -> Tuple[FrozenSet[ids.GroupVersionKind], Optional[errors.MultiError]]:
        """
        Bring the watchers in line with the declared kinds.

        Returns the kinds that are watched after the update, and the errors of
        the kinds that could not be watched (or ``None`` if there are none).
        """
        async with self._lock:
            self._forget_finished_watchers()

            obsolete = set(self._watchers) - set(kinds)
            await self._stop_watchers(obsolete)

            errs: Optional[errors.MultiError] = None
            for gvk in sorted(set(kinds) - set(self._watchers)):
                try:
                    await self._start_watcher(gvk)
                except (errors.ReconcilerError, api_errors.APIError) as e:
                    logger.warning(f"Failed to start watching {gvk}: {e}")
                    errs = errors.append(errs, e)

            self._needs_update = errs is not None
            return frozenset(self._watchers), errs

    async def stop(self) -> None:
        """ Stop all the watchers and wait until they exit. """
        async with self._lock:
            await self._stop_watchers(set(self._watchers))

    async def _start_watcher(self, gvk: ids.GroupVersionKind) -> None:
        resource = await self._mapper.resolve(gvk, logger=logger)
        if resource is None:
            raise errors.UnknownTypeError(f"The kind {gvk} is not served by the store.")
        if resource.verbs and not {'list', 'watch'} <= resource.verbs:
            raise errors.ApplyError(f"The kind {gvk} is not watchable: verbs={sorted(resource.verbs)}")

        watcher = watchers.FilteredWatcher(
            settings=self._settings,
            resource=resource,
            scope=self._scope,
            resources=self._resources,
            queue=self._queue,
        )
        self._watchers[gvk] = watcher
        self._tasks[gvk] = aiotasks.create_guarded_task(
            name=f"watcher for {gvk}",
            coro=watcher.run(),
            finishable=True,
            cancellable=True,
            logger=logger,
        )
        logger.debug(f"Started watching {gvk}.")

    async def _stop_watchers(self, gvks: AbstractSet[ids.GroupVersionKind]) -> None:
        for gvk in gvks:
            self._watchers.pop(gvk).stop()

        # The stopped watchers exit on their own; the cancellation is for those stuck on anything.
        tasks = [self._tasks.pop(gvk) for gvk in gvks if gvk in self._tasks]
        if tasks:
            done, pending = await aiotasks.wait(tasks, timeout=self._settings.remediating.exit_timeout)
            await aiotasks.stop(pending, title="Watcher", quiet=True, logger=logger)
        for gvk in gvks:
            logger.debug(f"Stopped watching {gvk}.")

    def _forget_finished_watchers(self) -> None:
        """ Forget the crashed watchers, so that they are restarted on this update. """
        for gvk, task in list(self._tasks.items()):
            if task.done():
                logger.warning(f"The watcher for {gvk} has exited unexpectedly; restarting it.")
                del self._tasks[gvk]
                self._watchers.pop(gvk, None)
