from typing import Any, Dict, Optional

from declsync._cogs.clients import api, errors
from declsync._cogs.configs import configuration
from declsync._cogs.helpers import typedefs
from declsync._cogs.structs import references


async def delete_obj(
        *,
        settings: configuration.ReconcilerSettings,
        resource: references.Resource,
        namespace: Optional[str],
        name: str,
        resource_version: Optional[str] = None,
        logger: typedefs.Logger,
) -> bool:
    """
    Delete an object, optionally only if it is still of a specific version.

    With the resource version precondition, the deletion fails with
    `APIConflictError` if the object was modified since it was last seen.

    Returns ``False`` if the object was already absent, ``True`` otherwise.
    The children objects are deleted by the store in the background.
    """
    payload: Dict[str, Any] = {
        'apiVersion': 'v1',
        'kind': 'DeleteOptions',
        'propagationPolicy': 'Background',
    }
    if resource_version is not None:
        payload['preconditions'] = {'resourceVersion': resource_version}
    try:
        await api.delete(
            url=resource.get_url(namespace=namespace, name=name),
            payload=payload,
            settings=settings,
            logger=logger,
        )
    except errors.APINotFoundError:
        return False
    return True
