"""
Watching and streaming of the watch-events from the store.

Only one watch request is done here; it ends when the server closes it
(usually by timeout), or when it is stopped from the client side.
The restarts, the resource version cursors, and the error handling
belong to the watchers of the reactor (see :mod:`declsync._core.reactor.watchers`).
"""
import asyncio
import logging
from typing import AsyncIterator, Dict, Optional

import aiohttp

from declsync._cogs.aiokits import aiotasks
from declsync._cogs.clients import api
from declsync._cogs.configs import configuration
from declsync._cogs.structs import bodies, references

logger = logging.getLogger(__name__)


async def watch_objs(
        *,
        settings: configuration.ReconcilerSettings,
        resource: references.Resource,
        namespace: Optional[str],
        since: Optional[str] = None,
        timeout: Optional[float] = None,
        stopper: Optional[aiotasks.Future] = None,
) -> AsyncIterator[bodies.RawInput]:
    """
    Watch objects of a specific resource type.

    The cluster-scoped call is used in two cases:

    * The resource itself is cluster-scoped, and namespacing makes not sense.
    * The reconciler serves all namespaces (i.e. it is the root reconciler).

    Otherwise, the namespace-scoped call is used.

    An empty or absent ``since`` starts the stream with the synthetic "ADDED"
    events for all the existing objects, and then continues with the changes.
    """
    params: Dict[str, str] = {}
    params['watch'] = 'true'
    params['allowWatchBookmarks'] = 'true'
    if since:
        params['resourceVersion'] = since
    if timeout is not None:
        params['timeoutSeconds'] = str(int(timeout))

    connect_timeout = (
        settings.watching.connect_timeout if settings.watching.connect_timeout is not None else
        settings.networking.connect_timeout if settings.networking.connect_timeout is not None else
        settings.networking.request_timeout
    )

    # Stream the parsed events from the response until it is closed server-side,
    # or until it is closed client-side by the stopper's callbacks.
    try:
        async for raw_input in api.stream(
            url=resource.get_url(namespace=namespace, params=params),
            logger=logger,
            settings=settings,
            stopper=stopper,
            timeout=aiohttp.ClientTimeout(
                total=settings.watching.client_timeout,
                sock_connect=connect_timeout,
            ),
        ):
            yield raw_input

    except (aiohttp.ClientPayloadError, asyncio.TimeoutError):
        pass
