"""
Applying the declared state of individual objects to the store.

All writes are done with the optimistic concurrency: the updates and deletions
are conditional on the resource version of the actual object, as it was seen
when the decision was made. If the object has changed since then, the store
rejects the write, and the object is re-fetched to try again (for updates),
or the whole decision is re-evaluated (for deletions, by the worker).
"""
import logging
from typing import Optional

from declsync._cogs.clients import creating, deleting, errors as api_errors, fetching, patching
from declsync._cogs.clients import scanning
from declsync._cogs.configs import configuration
from declsync._cogs.helpers import typedefs
from declsync._cogs.structs import bodies, ids, metadata, references, scopes
from declsync._core.actions import errors

logger = logging.getLogger(__name__)


class Applier:
    """
    The single-object writer, as used by the remediator and the bulk applier.

    All the written objects are stamped with the scope's bookkeeping metadata,
    so that the scopes can later recognise their own objects among others.
    """

    def __init__(
            self,
            *,
            settings: configuration.ReconcilerSettings,
            scope: scopes.Scope,
            mapper: scanning.ResourceMapper,
            inventory_id: Optional[str] = None,
    ) -> None:
        super().__init__()
        self._settings = settings
        self._scope = scope
        self._mapper = mapper
        self._inventory_id = inventory_id

    @property
    def scope(self) -> scopes.Scope:
        return self._scope

    async def resolve(
            self,
            identity: ids.ResourceIdentity,
            *,
            logger: typedefs.Logger = logger,
    ) -> references.Resource:
        resource = await self._mapper.resolve(identity.gvk, logger=logger)
        if resource is None:
            raise errors.UnknownTypeError(f"The kind {identity.gvk} is not served by the store.",
                                          identity=identity)
        return resource

    def stamp(self, declared: bodies.Body) -> bodies.RawBody:
        return metadata.stamp(declared, manager=self._scope.manager,
                              inventory_id=self._inventory_id)

    async def get(
            self,
            identity: ids.ResourceIdentity,
            *,
            logger: typedefs.Logger = logger,
    ) -> Optional[bodies.Body]:
        """ Fetch the current state of the object, or ``None`` if it does not exist. """
        resource = await self.resolve(identity, logger=logger)
        raw_body = await fetching.read_obj(
            settings=self._settings,
            resource=resource,
            namespace=identity.namespace or None,
            name=identity.name,
            logger=logger,
        )
        return None if raw_body is None else bodies.Body(raw_body)

    async def create(
            self,
            identity: ids.ResourceIdentity,
            declared: bodies.Body,
            *,
            logger: typedefs.Logger = logger,
    ) -> bodies.Body:
        """
        Create the object; fail with `ConflictError` if it exists already.

        The worker re-fetches the existing object in that case,
        and the object is then updated rather than created.
        """
        resource = await self.resolve(identity, logger=logger)
        try:
            raw_body = await creating.create_obj(
                settings=self._settings,
                resource=resource,
                body=self.stamp(declared),
                logger=logger,
            )
        except api_errors.APIConflictError as e:
            raise errors.ConflictError(f"Failed to create: {e}", identity=identity) from e
        except api_errors.APIError as e:
            raise errors.ApplyError(f"Failed to create: {e}", identity=identity) from e
        logger.info(f"Created the object {identity}.")
        return bodies.Body(raw_body)

    async def apply(
            self,
            identity: ids.ResourceIdentity,
            declared: bodies.Body,
            *,
            logger: typedefs.Logger = logger,
    ) -> bodies.Body:
        """
        Apply the declared state unconditionally: create the object or patch it.
        """
        resource = await self.resolve(identity, logger=logger)
        try:
            applied = await patching.apply_obj(
                settings=self._settings,
                resource=resource,
                body=self.stamp(declared),
                force=True,
                logger=logger,
            )
        except api_errors.APIError as e:
            raise errors.ApplyError(f"Failed to apply: {e}", identity=identity) from e
        logger.info(f"Applied the object {identity}.")
        return bodies.Body(applied)

    async def update(
            self,
            identity: ids.ResourceIdentity,
            declared: bodies.Body,
            actual: bodies.Body,
            *,
            logger: typedefs.Logger = logger,
    ) -> bodies.Body:
        """
        Apply the declared state onto the actual object with the server-side apply.

        The stale resource versions are retried with the freshly fetched
        objects, but only a limited number of times. If the object disappears
        meanwhile, it is created instead. If it is taken over by a higher
        authority meanwhile, `ManagementConflictError` is raised.
        """
        resource = await self.resolve(identity, logger=logger)
        attempts = max(1, self._settings.applying.conflict_retries)
        for attempt in range(attempts):
            raw_body = self.stamp(declared)
            if actual.resource_version:
                raw_body.setdefault('metadata', {})['resourceVersion'] = actual.resource_version
            try:
                applied = await patching.apply_obj(
                    settings=self._settings,
                    resource=resource,
                    body=raw_body,
                    force=True,
                    logger=logger,
                )
            except api_errors.APIConflictError:
                logger.debug(f"The object has changed since seen; re-fetching it "
                             f"(attempt {attempt + 1} of {attempts}).")
            except api_errors.APIError as e:
                raise errors.ApplyError(f"Failed to apply: {e}", identity=identity) from e
            else:
                logger.info(f"Updated the object {identity}.")
                return bodies.Body(applied)

            fresh = await self.get(identity, logger=logger)
            if fresh is None:
                logger.info(f"The object {identity} is gone while being updated; re-creating it.")
                return await self.create(identity, declared, logger=logger)
            if not scopes.can_manage(self._scope, fresh):
                manager = metadata.get_annotation(fresh, metadata.MANAGER_KEY)
                raise errors.ManagementConflictError(
                    f"The object is taken over by {manager!r} while being updated.",
                    identity=identity, manager=manager)
            actual = fresh

        raise errors.ConflictError(f"The object keeps changing: gave up after {attempts} attempts.",
                                   identity=identity)

    async def delete(
            self,
            identity: ids.ResourceIdentity,
            actual: bodies.Body,
            *,
            logger: typedefs.Logger = logger,
    ) -> bool:
        """
        Delete the object, but only if it is still the same as seen.

        Returns ``False`` if the object was already gone.
        """
        resource = await self.resolve(identity, logger=logger)
        try:
            deleted = await deleting.delete_obj(
                settings=self._settings,
                resource=resource,
                namespace=identity.namespace or None,
                name=identity.name,
                resource_version=actual.resource_version,
                logger=logger,
            )
        except api_errors.APIConflictError as e:
            raise errors.ConflictError(f"Failed to delete: {e}", identity=identity) from e
        except api_errors.APIError as e:
            raise errors.ApplyError(f"Failed to delete: {e}", identity=identity) from e
        if deleted:
            logger.info(f"Deleted the object {identity}.")
        return deleted

    async def remove_bookkeeping(
            self,
            identity: ids.ResourceIdentity,
            actual: bodies.Body,
            *,
            logger: typedefs.Logger = logger,
    ) -> Optional[bodies.Body]:
        """
        Strip our bookkeeping metadata, so that the object is not managed anymore.

        The object itself is left intact in the store. Returns the patched
        object, or ``None`` if it does not exist.
        """
        patch = metadata.build_unmanage_patch(actual)
        if not patch:
            return actual

        resource = await self.resolve(identity, logger=logger)
        try:
            raw_body = await patching.patch_obj(
                settings=self._settings,
                resource=resource,
                namespace=identity.namespace or None,
                name=identity.name,
                patch=patch,
                logger=logger,
            )
        except api_errors.APIError as e:
            raise errors.ApplyError(f"Failed to unmanage: {e}", identity=identity) from e
        if raw_body is None:
            return None
        logger.info(f"Unmanaged the object {identity}.")
        return bodies.Body(raw_body)
