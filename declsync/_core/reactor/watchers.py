"""
Watching of one resource kind, and filtering the objects worth reconciling.

A watcher streams the changes of all objects of its kind (in the scope's
namespace, or cluster-wide for the root scope), and puts the relevant ones
into the object queue. An object is relevant if it is declared, or if it was
managed by this scope before but is not declared anymore (so that it can be
pruned or unmanaged). Everything else is ignored.

The watch-streams end regularly (by timeout) or irregularly (on errors).
The watcher restarts them from the last seen resource version, so that
no changes are lost in between. If the version is too old ("410 Gone"),
the watch is restarted from scratch, which re-delivers all existing objects.

The timeout of every watch request is randomised, so that the watchers
of many kinds do not reconnect all at once. The failed restarts are retried
with an exponential backoff, and the same errors are logged only once
in a while, to not flood the logs while the store is unavailable.
"""
import asyncio
import logging
import random
import time
from typing import Dict, Optional

import aiohttp

from declsync._cogs.aiokits import aiotasks
from declsync._cogs.clients import errors, watching
from declsync._cogs.configs import configuration
from declsync._cogs.structs import bodies, ids, metadata, references, scopes
from declsync._core.intents import declared
from declsync._core.reactor import queueing

logger = logging.getLogger(__name__)

HTTP_GONE = 410


class WatchingError(Exception):
    """ Raised when an unexpected error event arrives in the watch-stream. """

    def __init__(self, message: str, *, code: Optional[int] = None, reason: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.reason = reason


class FilteredWatcher:

    def __init__(
            self,
            *,
            settings: configuration.ReconcilerSettings,
            resource: references.Resource,
            scope: scopes.Scope,
            resources: declared.DeclaredResources,
            queue: queueing.ObjectQueue,
    ) -> None:
        super().__init__()
        self._settings = settings
        self._resource = resource
        self._scope = scope
        self._resources = resources
        self._queue = queue
        self._resource_version = ''
        self._retries = 0
        self._stopped = False
        self._running = False
        self._stopper: Optional[aiotasks.Future] = None
        self._management_conflict = False
        self._logged_errors: Dict[str, float] = {}

    def __repr__(self) -> str:
        return f'<{self.__class__.__name__} {self.gvk}>'

    @property
    def gvk(self) -> ids.GroupVersionKind:
        return self._resource.gvk

    @property
    def resource_version(self) -> str:
        return self._resource_version

    @property
    def stopped(self) -> bool:
        return self._stopped

    @property
    def management_conflict(self) -> bool:
        return self._management_conflict

    def clear_management_conflict(self) -> None:
        self._management_conflict = False

    def stop(self) -> None:
        """
        Stop watching; close the current stream if any; never restart again.

        The stopper future closes the stream's response. If the watcher is
        reconnecting at the moment, the new stream is closed right after
        it is opened, and the watcher exits without restarting.
        """
        self._stopped = True
        if self._stopper is not None and not self._stopper.done():
            self._stopper.set_result(None)

    async def run(self) -> None:
        if self._running:
            raise RuntimeError(f"{self!r} is already running.")
        self._running = True
        self._stopper = asyncio.get_running_loop().create_future()
        if self._stopped:
            self._stopper.set_result(None)

        logger.info(f"Watch started for {self.gvk}.")
        try:
            while not self._stopped:
                try:
                    await self._watch_once()
                except (WatchingError, errors.APIError,
                        aiohttp.ClientError, asyncio.TimeoutError) as e:
                    if isinstance(e, errors.APIGoneError) or getattr(e, 'code', None) == HTTP_GONE:
                        logger.debug(f"Watch for {self.gvk} at resource version "
                                     f"{self._resource_version!r} has expired: {e}")
                        self._resource_version = ''
                    elif self._should_log(_error_id(e)):
                        logger.error(f"Watch for {self.gvk} at resource version "
                                     f"{self._resource_version!r} has failed: {e!r}")
                    self._retries += 1
                    await self._backoff()
        finally:
            self._running = False
            logger.info(f"Watch stopped for {self.gvk}.")

    async def _watch_once(self) -> None:
        min_timeout = self._settings.watching.min_timeout
        timeout = min_timeout * (random.random() + 1.0)
        namespace = self._scope.namespace if self._resource.namespaced else None
        logger.debug(f"(Re)starting the watch for {self.gvk} "
                     f"at resource version {self._resource_version!r}.")
        stream = watching.watch_objs(
            settings=self._settings,
            resource=self._resource,
            namespace=namespace,
            since=self._resource_version,
            timeout=timeout,
            stopper=self._stopper,
        )
        async for raw_input in stream:
            self._prune_logged_errors()
            self.handle(raw_input)
            self._retries = 0
        logger.debug(f"Ending the watch for {self.gvk} "
                     f"at resource version {self._resource_version!r}.")

    def handle(self, raw_input: bodies.RawInput) -> None:
        """
        Process one event of the watch-stream: filter and enqueue the object.

        Raises `WatchingError` on the error events, which end the stream.
        """
        raw_type = raw_input.get('type')
        raw_object = raw_input.get('object') or {}

        if raw_type == 'ERROR':
            message = raw_object.get('message', '')
            code = raw_object.get('code')
            reason = raw_object.get('reason')
            raise WatchingError(f"Error in the watch-stream: {message}", code=code, reason=reason)

        if raw_type == 'BOOKMARK':
            version = raw_object.get('metadata', {}).get('resourceVersion')
            if version:
                self._resource_version = version
            elif self._should_log('bookmark'):
                logger.error(f"Unable to get the resource version of a bookmark: {raw_input!r}")
            return

        if raw_type not in ['ADDED', 'MODIFIED', 'DELETED']:
            if self._should_log('unsupported'):
                logger.error(f"Ignoring an unsupported watch event: {raw_input!r}")
            return

        raw_body = dict(raw_object)
        raw_body.setdefault('apiVersion', self._resource.api_version)
        raw_body.setdefault('kind', self._resource.kind)
        try:
            body = bodies.Body(raw_body)
        except ValueError as e:
            logger.warning(f"Ignoring an unidentifiable object in the watch-stream: {e}")
            return

        if self.should_process(body):
            if raw_type == 'DELETED':
                logger.debug(f"Received a watch event for a deleted object: {body.identity}")
                body = body.as_tombstone()
            else:
                logger.debug(f"Received a watch event for an object: {body.identity}")
            self._queue.add(body)
        else:
            logger.debug(f"Ignoring a watch event for an object: {body.identity}")

        if body.resource_version:
            self._resource_version = body.resource_version

    def should_process(self, obj: bodies.Body) -> bool:
        """
        Check if the object is relevant for reconciliation in this scope.

        The objects of higher-authority scopes are never processed; if declared,
        they mark the watcher as having a management conflict. The declared objects are
        processed only in the declared version. The undeclared objects are
        processed only if they were managed by this very scope before.
        """
        decl = self._resources.get(obj.identity)
        if not scopes.can_manage(self._scope, obj):
            if decl is not None:
                logger.info(f"Found a management conflict for {obj.identity}.")
                self._management_conflict = True
            return False

        if decl is not None:
            return decl.identity.version == obj.identity.version

        if metadata.get_management(obj) is not metadata.Management.ENABLED:
            return False

        return scopes.is_manager(self._scope, obj)

    async def _backoff(self) -> None:
        exponent = min(self._retries, self._settings.watching.max_backoff_exponent)
        delay = 2 ** exponent / 1000
        if self._stopper is not None:
            await aiotasks.wait({self._stopper}, timeout=delay)
        else:
            await asyncio.sleep(delay)

    def _should_log(self, error_id: str) -> bool:
        """ Log the same error at most once per interval. """
        now = time.monotonic()
        last = self._logged_errors.get(error_id)
        if last is None or now - last >= self._settings.watching.error_log_interval:
            self._logged_errors[error_id] = now
            return True
        return False

    def _prune_logged_errors(self) -> None:
        now = time.monotonic()
        interval = self._settings.watching.error_log_interval
        for error_id, last in list(self._logged_errors.items()):
            if now - last >= interval:
                del self._logged_errors[error_id]


def _error_id(exc: BaseException) -> str:
    cls = type(exc).__name__
    if isinstance(exc, errors.APIError):
        name = exc.details.get('name') if exc.details else None
        return f"{cls}:{name or f'{exc.status}-{exc.reason}'}"
    if isinstance(exc, WatchingError):
        return f"{cls}:{exc.code}-{exc.reason}"
    return cls
