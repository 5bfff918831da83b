from typing import Collection, List, Optional, Tuple

from declsync._cogs.clients import api, errors
from declsync._cogs.configs import configuration
from declsync._cogs.helpers import typedefs
from declsync._cogs.structs import bodies, references


async def read_obj(
        *,
        settings: configuration.ReconcilerSettings,
        resource: references.Resource,
        namespace: Optional[str],
        name: str,
        logger: typedefs.Logger,
) -> Optional[bodies.RawBody]:
    """
    Read one object by its name; return ``None`` if it does not exist.
    """
    try:
        obj: bodies.RawBody = await api.get(
            url=resource.get_url(namespace=namespace, name=name),
            settings=settings,
            logger=logger,
        )
    except errors.APINotFoundError:
        return None

    # Some servers omit these fields for the individual objects (but not in the lists).
    obj.setdefault('apiVersion', resource.api_version)
    obj.setdefault('kind', resource.kind)
    return obj


async def list_objs(
        *,
        settings: configuration.ReconcilerSettings,
        resource: references.Resource,
        namespace: Optional[str],
        label_selector: Optional[str] = None,
        logger: typedefs.Logger,
) -> Tuple[Collection[bodies.RawBody], str]:
    """
    List the objects of one resource kind, and the list's resource version.

    The resource version can be used to start a watch-stream exactly
    from the listed state, so that no changes are lost in between.
    """
    params = {'labelSelector': label_selector} if label_selector else None
    rsp = await api.get(
        url=resource.get_url(namespace=namespace, params=params),
        settings=settings,
        logger=logger,
    )

    items: List[bodies.RawBody] = []
    resource_version = rsp.get('metadata', {}).get('resourceVersion', '')
    for item in rsp.get('items', []):
        # The list items never have these fields, but the watch-events do.
        item.setdefault('apiVersion', resource.api_version)
        item.setdefault('kind', resource.kind)
        items.append(item)
    return items, resource_version
