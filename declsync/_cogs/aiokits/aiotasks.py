"""
Helpers for orchestrating asyncio tasks.

These utilities only support tasks, not more generic futures, coroutines,
or other awaitables: the reconciler's tasks are not only awaited,
but also cancelled, and their names are used in the logs.
"""
import asyncio
from typing import TYPE_CHECKING, Any, Collection, Coroutine, Optional, Set, Tuple

from declsync._cogs.helpers import typedefs

# A workaround for a difference in tasks at runtime and type-checking time.
# Otherwise, at runtime: TypeError: 'type' object is not subscriptable.
if TYPE_CHECKING:
    Future = asyncio.Future[Any]
    Task = asyncio.Task[Any]
else:
    Future = asyncio.Future
    Task = asyncio.Task


async def guard(
        coro: Coroutine[Any, Any, Any],
        name: str,
        *,
        finishable: bool = False,
        cancellable: bool = False,
        logger: Optional[typedefs.Logger] = None,
) -> None:
    """
    A guard for a presumably eternal (never-finishing) task.

    If an eternal task exits, this is a misbehaviour that is logged.
    Errors are always logged. Cancellations are also logged, except if
    the task is said to be cancellable (e.g. a watcher of a removed kind).

    It is used for background tasks that are started but never awaited,
    so that their errors are logged as soon as they happen,
    not when (and if) someone checks the task's result.
    """
    capname = name.capitalize()
    try:
        await coro
    except asyncio.CancelledError:
        if logger is not None and not cancellable:
            logger.debug(f"{capname} is cancelled.")
        raise
    except Exception as e:
        if logger is not None:
            logger.exception(f"{capname} has failed: {e}")
        raise
    else:
        if logger is not None and not finishable:
            logger.warning(f"{capname} has finished unexpectedly.")


def create_guarded_task(
        coro: Coroutine[Any, Any, Any],
        name: str,
        *,
        finishable: bool = False,
        cancellable: bool = False,
        logger: Optional[typedefs.Logger] = None,
) -> Task:
    """
    Create a guarded eternal task. See :func:`guard` for explanation.
    """
    return asyncio.create_task(
        name=name,
        coro=guard(
            name=name,
            coro=coro,
            finishable=finishable,
            cancellable=cancellable,
            logger=logger))


async def wait(
        tasks: Collection[Task],
        *,
        timeout: Optional[float] = None,
        return_when: Any = asyncio.ALL_COMPLETED,
) -> Tuple[Set[Task], Set[Task]]:
    """
    A safer version of :func:`asyncio.wait` -- does not fail on an empty list.
    """
    if not tasks:
        return set(), set()
    done, pending = await asyncio.wait(tasks, timeout=timeout, return_when=return_when)
    return done, pending


async def stop(
        tasks: Collection[Task],
        *,
        title: str,
        quiet: bool = False,
        logger: Optional[typedefs.Logger] = None,
) -> Tuple[Set[Task], Set[Task]]:
    """
    Cancel the tasks and wait for them to finish.

    The stopping itself has no timeouts. It ends either with the tasks
    exited, or with the stopping routine itself being cancelled;
    in the latter case, the remaining tasks are left as they are.
    """
    captitle = title.capitalize()
    if not tasks:
        if logger is not None and not quiet:
            logger.debug(f"{captitle} tasks stopping is skipped: no tasks given.")
        return set(), set()

    for task in tasks:
        task.cancel()

    try:
        done, pending = await wait(tasks)
    except asyncio.CancelledError:
        pending = {task for task in tasks if not task.done()}
        if logger is not None:
            logger.debug(f"{captitle} tasks are not stopped: double-cancelled; left: {pending!r}")
        raise
    else:
        if logger is not None and not quiet:
            logger.debug(f"{captitle} tasks are stopped: {len(done)} task(s).")
        return done, pending


async def reraise(
        tasks: Collection[Task],
) -> None:
    """
    Re-raise errors from tasks, if any. Do nothing if all tasks have succeeded.
    """
    for task in tasks:
        try:
            task.result()  # can raise the regular (non-cancellation) exceptions.
        except asyncio.CancelledError:
            pass  # re-raise anything except regular cancellations/exits
