"""
The top-level orchestration of the reconciler: the root tasks and their lifecycle.

The syncer re-reads the manifests periodically and applies them in full,
while the workers remediate the individual objects as the watchers see them.
All of them run until a signal or a stop-flag, and then exit together.
"""
import asyncio
import logging
import signal
import threading
from typing import Any, Collection, Dict, List, Optional, Sequence

from declsync._cogs.aiokits import aiotasks
from declsync._cogs.clients import scanning, sessions
from declsync._cogs.configs import configuration
from declsync._cogs.helpers import loaders
from declsync._cogs.structs import metadata, scopes
from declsync._core.actions import errors
from declsync._core.engines import applying, inventory as inventories, syncing
from declsync._core.intents import declared
from declsync._core.reactor import observation, queueing, remediation

logger = logging.getLogger(__name__)


def run(
        *,
        server: str,
        paths: Sequence[str],
        scope: Optional[scopes.Scope] = None,
        settings: Optional[configuration.ReconcilerSettings] = None,
        stop_flag: Optional[asyncio.Event] = None,
) -> None:
    """
    Run the whole reconciler synchronously, until stopped by a signal.

    This function should be used to run a reconciler in normal sync mode.
    """
    try:
        asyncio.run(operator(
            server=server,
            paths=paths,
            scope=scope,
            settings=settings,
            stop_flag=stop_flag,
        ))
    except asyncio.CancelledError:
        pass


async def operator(
        *,
        server: str,
        paths: Sequence[str],
        scope: Optional[scopes.Scope] = None,
        settings: Optional[configuration.ReconcilerSettings] = None,
        stop_flag: Optional[asyncio.Event] = None,
) -> None:
    """
    Run the whole reconciler asynchronously.

    This function should be used to run a reconciler in an asyncio event-loop
    if the reconciler is orchestrated explicitly and manually.
    """
    scope = scope if scope is not None else scopes.ROOT
    settings = settings if settings is not None else configuration.ReconcilerSettings()

    context = sessions.APIContext(server)
    sessions.context_var.set(context)
    try:
        resources = declared.DeclaredResources()
        queue = queueing.ObjectQueue(limiter=queueing.make_limiter(settings))
        mapper = scanning.ResourceMapper(settings=settings)
        inventory = inventories.Inventory(settings=settings, scope=scope)
        applier = applying.Applier(settings=settings, scope=scope, mapper=mapper,
                                   inventory_id=inventory.id)
        remediator = remediation.Remediator(scope=scope, resources=resources, applier=applier)
        bulk_applier = syncing.BulkApplier(scope=scope, applier=applier, inventory=inventory)
        watch_manager = observation.WatchManager(settings=settings, scope=scope, mapper=mapper,
                                                 resources=resources, queue=queue)

        logger.info(f"Starting the reconciler in the scope {scope.manager!r} for {server}.")
        signal_flag: aiotasks.Future = asyncio.get_running_loop().create_future()
        tasks: List[aiotasks.Task] = []
        tasks.append(asyncio.create_task(
            name="stop-flag checker",
            coro=_stop_flag_checker(
                signal_flag=signal_flag,
                stop_flag=stop_flag)))
        tasks.append(aiotasks.create_guarded_task(
            name="syncer", logger=logger,
            coro=syncer(
                paths=paths,
                settings=settings,
                scope=scope,
                inventory_id=inventory.id,
                resources=resources,
                remediator=remediator,
                bulk_applier=bulk_applier,
                watch_manager=watch_manager)))
        for idx in range(max(1, settings.remediating.workers)):
            tasks.append(aiotasks.create_guarded_task(
                name=f"worker #{idx}", logger=logger, finishable=True,
                coro=remediation.worker(
                    remediator=remediator,
                    queue=queue)))

        _install_signal_handlers(signal_flag)
        await run_tasks(tasks, queue=queue, watch_manager=watch_manager, settings=settings)
    finally:
        await context.close()
        logger.info("The reconciler has stopped.")


async def run_tasks(
        root_tasks: Collection[aiotasks.Task],
        *,
        queue: queueing.ObjectQueue,
        watch_manager: observation.WatchManager,
        settings: configuration.ReconcilerSettings,
) -> None:
    """
    Orchestrate the tasks and terminate them gracefully when needed.

    The root tasks are expected to run forever. Once any of them exits,
    the whole reconciler and all other root tasks should exit.
    The workers are let to finish their current objects for a short while.
    """
    try:
        root_done, root_pending = await aiotasks.wait(root_tasks, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        queue.shutdown()
        await watch_manager.stop()
        await aiotasks.stop(root_tasks, title="Root", logger=logger)
        raise

    queue.shutdown()
    await watch_manager.stop()
    exiting_done, exiting_pending = await aiotasks.wait(root_pending,
                                                        timeout=settings.remediating.exit_timeout)
    root_cancelled, _ = await aiotasks.stop(exiting_pending, title="Root", logger=logger)

    # If succeeded or if cancellation is silenced, re-raise from failed tasks (if any).
    await aiotasks.reraise(root_done | exiting_done | root_cancelled)


async def syncer(
        *,
        paths: Sequence[str],
        settings: configuration.ReconcilerSettings,
        scope: scopes.Scope,
        inventory_id: str,
        resources: declared.DeclaredResources,
        remediator: remediation.Remediator,
        bulk_applier: syncing.BulkApplier,
        watch_manager: observation.WatchManager,
) -> None:
    """
    Re-read the repository and apply the declared state periodically, forever.
    """
    while True:
        await sync_once(
            paths=paths,
            scope=scope,
            inventory_id=inventory_id,
            resources=resources,
            remediator=remediator,
            bulk_applier=bulk_applier,
            watch_manager=watch_manager,
        )
        await asyncio.sleep(settings.applying.resync_period)


async def sync_once(
        *,
        paths: Sequence[str],
        scope: scopes.Scope,
        inventory_id: str,
        resources: declared.DeclaredResources,
        remediator: remediation.Remediator,
        bulk_applier: syncing.BulkApplier,
        watch_manager: observation.WatchManager,
) -> Optional[errors.MultiError]:
    """
    Do one full sync: read, apply, prune, and (re)watch the declared kinds.

    If the manifests cannot be read, the previously declared state remains,
    and nothing is applied or pruned until the manifests are fixed.
    """
    loop = asyncio.get_running_loop()
    try:
        raw_objs = await loop.run_in_executor(None, loaders.load_manifests, list(paths))
        stamped = [metadata.stamp(raw, manager=scope.manager, inventory_id=inventory_id)
                   for raw in raw_objs]
        resources.update(stamped)
    except (loaders.ManifestError, declared.DeclarationError, ValueError) as e:
        logger.error(f"Failed to read the declared state; keeping the previous one: {e}")
        return None

    logger.debug(f"Read {len(resources)} declared object(s); applying them.")
    await remediator.pause()
    try:
        kinds, errs = await bulk_applier.apply(resources.all())
    finally:
        await remediator.resume()

    watched, watch_errs = await watch_manager.update_watches(kinds)
    errs = errors.append(errs, watch_errs)
    if errs is not None:
        logger.warning(f"The sync has finished with {errs}")
    else:
        logger.info(f"The sync has finished; watching {len(watched)} kind(s).")
    # The same objects can conflict both in the bulk pass and in the remediation.
    conflicts: Dict[Any, errors.ManagementConflictError] = {}
    for conflict in syncing.conflicts(errs) + remediator.conflict_errors():
        conflicts.setdefault(conflict.identity or id(conflict), conflict)
    for conflict in conflicts.values():
        logger.warning(f"The declared object is managed by another scope: {conflict}")
    if watch_manager.management_conflict():
        logger.warning("Some declared objects are managed by another scope; see the logs above.")
        watch_manager.clear_management_conflict()
    return errs


async def _stop_flag_checker(
        signal_flag: aiotasks.Future,
        stop_flag: Optional[asyncio.Event],
) -> None:
    """
    A top-level task for external stopping by setting a stop-flag. Once set,
    this task will exit, and thus all other top-level tasks will be cancelled.
    """
    flags: List[aiotasks.Future] = [signal_flag]
    if stop_flag is not None:
        flags.append(asyncio.create_task(stop_flag.wait(), name="stop-flag waiter"))

    try:
        done, pending = await asyncio.wait(flags, return_when=asyncio.FIRST_COMPLETED)
        result = done.pop().result()
    except asyncio.CancelledError:
        pass  # the reconciler is stopping for any other reason
    else:
        if isinstance(result, signal.Signals):
            logger.info(f"Signal {result.name} is received. The reconciler is stopping.")
        else:
            logger.info("Stop-flag is set. The reconciler is stopping.")
    finally:
        for flag in flags[1:]:
            flag.cancel()


def _install_signal_handlers(signal_flag: aiotasks.Future) -> None:
    # On Ctrl+C or pod termination, cancel all tasks gracefully.
    if threading.current_thread() is threading.main_thread():
        loop = asyncio.get_running_loop()
        # Handle NotImplementedError when ran on Windows since asyncio only supports Unix signals
        try:
            loop.add_signal_handler(signal.SIGINT, signal_flag.set_result, signal.SIGINT)
            loop.add_signal_handler(signal.SIGTERM, signal_flag.set_result, signal.SIGTERM)
        except NotImplementedError:
            logger.warning("OS signals are ignored: can't add signal handler in Windows.")
    else:
        logger.warning("OS signals are ignored: running not in the main thread.")
