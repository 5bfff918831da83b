from typing import Any, Mapping, Optional

from declsync._cogs.clients import api, errors
from declsync._cogs.configs import configuration
from declsync._cogs.helpers import typedefs
from declsync._cogs.structs import bodies, references


async def patch_obj(
        *,
        settings: configuration.ReconcilerSettings,
        resource: references.Resource,
        namespace: Optional[str],
        name: str,
        patch: Mapping[str, Any],
        logger: typedefs.Logger,
) -> Optional[bodies.RawBody]:
    """
    Patch an object with a JSON merge-patch.

    Returns the patched body as reported by the server,
    or ``None`` if the object is absent (as detected by HTTP 404).
    """
    try:
        patched_body: bodies.RawBody = await api.patch(
            url=resource.get_url(namespace=namespace, name=name),
            headers={'Content-Type': 'application/merge-patch+json'},
            payload=patch,
            settings=settings,
            logger=logger,
        )
    except errors.APINotFoundError:
        return None
    return patched_body


async def apply_obj(
        *,
        settings: configuration.ReconcilerSettings,
        resource: references.Resource,
        body: bodies.RawBody,
        force: bool = True,
        logger: typedefs.Logger,
) -> bodies.RawBody:
    """
    Apply the object's desired state with the server-side apply.

    The object is created if absent. If present, the three-way merge is done
    by the server: the fields owned by the field manager are set or removed,
    the fields of other managers are kept (and are taken over if forced).

    If the body contains the resource version, the store applies it only
    to that exact version of the object, and fails with `APIConflictError`
    if the object was modified since then (optimistic concurrency).
    """
    meta = body.get('metadata', {})
    applied_body: bodies.RawBody = await api.patch(
        url=resource.get_url(
            namespace=meta.get('namespace'),
            name=meta.get('name'),
            params={
                'fieldManager': settings.applying.field_manager,
                'force': 'true' if force else 'false',
            },
        ),
        # JSON is a subset of YAML, so the JSON-serialized body is a valid payload.
        headers={'Content-Type': 'application/apply-patch+yaml'},
        payload=body,
        settings=settings,
        logger=logger,
    )
    return applied_body
