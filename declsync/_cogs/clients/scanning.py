"""
API discovery: which resource kinds the store serves, and at which URLs.

The declared objects only carry their API versions & kinds. To address them
in the API, the plural names & the namespaced-ness are needed. These are
scanned from the store's discovery endpoints, and cached in the mapper.
"""
import asyncio
from typing import Collection, Dict, Iterable, Mapping, Optional, Set

from declsync._cogs.clients import api, errors
from declsync._cogs.configs import configuration
from declsync._cogs.helpers import typedefs
from declsync._cogs.structs import ids, references


async def scan_resources(
        *,
        settings: configuration.ReconcilerSettings,
        logger: typedefs.Logger,
        groups: Optional[Collection[str]] = None,
) -> Collection[references.Resource]:
    coros = {
        _read_old_api(groups=groups, settings=settings, logger=logger),
        _read_new_apis(groups=groups, settings=settings, logger=logger),
    }
    resources: Set[references.Resource] = set()
    for coro in asyncio.as_completed(coros):
        resources.update(await coro)
    return resources


async def _read_old_api(
        *,
        settings: configuration.ReconcilerSettings,
        logger: typedefs.Logger,
        groups: Optional[Collection[str]],
) -> Collection[references.Resource]:
    resources: Set[references.Resource] = set()
    if groups is None or '' in groups:
        rsp = await api.get('/api', settings=settings, logger=logger)
        coros = {
            _read_version(
                url=f'/api/{version_name}',
                group='',
                version=version_name,
                settings=settings,
                logger=logger,
            )
            for version_name in rsp['versions']
        }
        for coro in asyncio.as_completed(coros):
            resources.update(await coro)
    return resources


async def _read_new_apis(
        *,
        settings: configuration.ReconcilerSettings,
        logger: typedefs.Logger,
        groups: Optional[Collection[str]],
) -> Collection[references.Resource]:
    resources: Set[references.Resource] = set()
    if groups is None or set(groups or {}) - {''}:
        rsp = await api.get('/apis', settings=settings, logger=logger)
        items = [d for d in rsp['groups'] if groups is None or d['name'] in groups]
        coros = {
            _read_version(
                url=f'/apis/{group_dat["name"]}/{version["version"]}',
                group=group_dat['name'],
                version=version['version'],
                settings=settings,
                logger=logger,
            )
            for group_dat in items
            for version in group_dat['versions']
        }
        for coro in asyncio.as_completed(coros):
            resources.update(await coro)
    return resources


async def _read_version(
        *,
        url: str,
        group: str,
        version: str,
        settings: configuration.ReconcilerSettings,
        logger: typedefs.Logger,
) -> Collection[references.Resource]:
    try:
        rsp = await api.get(url, settings=settings, logger=logger)
    except errors.APINotFoundError:
        # This happens when the last and the only resource of a group/version
        # has been deleted, the whole group/version is gone, and we rescan it.
        return set()
    else:
        return {
            references.Resource(
                group=group,
                version=version,
                kind=resource['kind'],
                plural=resource['name'],
                namespaced=resource['namespaced'],
                verbs=frozenset(resource.get('verbs') or []),
            )
            for resource in rsp.get('resources', [])
            if '/' not in resource['name']  # subresources are not addressable on their own
        }


class ResourceMapper:
    """
    A cache of the discovered resources, addressable by group-version-kind.

    Unknown kinds are re-scanned on every request, but only within their
    API group: the kinds can be added to the store at any time (e.g. when
    a custom resource definition is applied a moment before its objects).
    """

    def __init__(
            self,
            *,
            settings: configuration.ReconcilerSettings,
            resources: Iterable[references.Resource] = (),
    ) -> None:
        super().__init__()
        self._settings = settings
        self._resources: Dict[ids.GroupVersionKind, references.Resource] = {}
        self._lock = asyncio.Lock()
        for resource in resources:
            self.register(resource)

    @property
    def resources(self) -> Mapping[ids.GroupVersionKind, references.Resource]:
        return dict(self._resources)

    def register(self, resource: references.Resource) -> None:
        self._resources[resource.gvk] = resource

    async def resolve(
            self,
            gvk: ids.GroupVersionKind,
            *,
            logger: typedefs.Logger,
    ) -> Optional[references.Resource]:
        """ Find the resource of the kind, or ``None`` if the store does not serve it. """
        if gvk in self._resources:
            return self._resources[gvk]
        async with self._lock:
            if gvk not in self._resources:
                logger.debug(f"Scanning the API group {gvk.group!r} for {gvk}.")
                resources = await scan_resources(settings=self._settings, logger=logger,
                                                 groups={gvk.group})
                for resource in resources:
                    self.register(resource)
        return self._resources.get(gvk)
