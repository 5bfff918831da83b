from declsync._cogs.clients import api
from declsync._cogs.configs import configuration
from declsync._cogs.helpers import typedefs
from declsync._cogs.structs import bodies, references


async def create_obj(
        *,
        settings: configuration.ReconcilerSettings,
        resource: references.Resource,
        body: bodies.RawBody,
        logger: typedefs.Logger,
) -> bodies.RawBody:
    """
    Create an object; fail with `APIConflictError` if it already exists.
    """
    namespace = body.get('metadata', {}).get('namespace')
    created_body: bodies.RawBody = await api.post(
        url=resource.get_url(namespace=namespace),
        payload=body,
        logger=logger,
        settings=settings,
    )
    return created_body
