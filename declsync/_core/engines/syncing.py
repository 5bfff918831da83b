"""
The bulk apply: one full pass of applying the whole declared state.

It is done on every re-read of the repository (and periodically, to resync),
as opposed to the remediation of individual objects on their changes.
The pass consists of:

* applying the declared objects in an order that respects the dependencies:
  the cluster-scoped objects (namespaces, custom resource definitions) first;
* unmanaging the objects declared as unmanaged (but not deleting them);
* pruning the objects applied previously but not declared anymore;
* remembering the applied objects in the inventory for the next pruning.

The failures of individual objects never stop the pass: all the objects
are tried, and all the errors are reported together at the end.
Only the kinds of the successfully resolved objects are reported back
as the kinds to be watched.
"""
import asyncio
import dataclasses
import logging
from typing import FrozenSet, Iterable, List, Optional, Set, Tuple

import aiohttp

from declsync._cogs.clients import errors as api_errors
from declsync._cogs.structs import bodies, ids, metadata, scopes
from declsync._core.actions import errors, loggers
from declsync._core.engines import applying, inventory as inventories

logger = logging.getLogger(__name__)

# All the errors that fail one object but not the whole pass.
OBJECT_ERRORS = (errors.ReconcilerError, api_errors.APIError, aiohttp.ClientError, asyncio.TimeoutError)


@dataclasses.dataclass
class ApplyStats:
    """ The outcomes of one pass, for logging. """
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    deleted: int = 0
    unmanaged: int = 0
    conflicts: int = 0
    failed: int = 0

    def __str__(self) -> str:
        fields = dataclasses.asdict(self)
        return ', '.join(f'{name}={value}' for name, value in fields.items())


def apply_order(identity: ids.ResourceIdentity) -> Tuple[bool, ids.ResourceIdentity]:
    """ The cluster-scoped objects go first, the namespaced ones later. """
    return (bool(identity.namespace), identity)


class BulkApplier:

    def __init__(
            self,
            *,
            scope: scopes.Scope,
            applier: applying.Applier,
            inventory: inventories.Inventory,
    ) -> None:
        super().__init__()
        self._scope = scope
        self._applier = applier
        self._inventory = inventory
        self.stats = ApplyStats()

    async def apply(
            self,
            declared: Iterable[bodies.Body],
    ) -> Tuple[FrozenSet[ids.GroupVersionKind], Optional[errors.MultiError]]:
        """
        Apply the declared state, prune the leftovers, and store the inventory.

        Returns the kinds of the declared objects which the store knows about,
        and the errors of all the failed objects (or ``None`` if none failed).
        """
        objs = sorted(declared, key=lambda obj: apply_order(obj.identity))
        self.stats = ApplyStats()
        errs: Optional[errors.MultiError] = None
        unknown_kinds: Set[ids.GroupVersionKind] = set()
        applied: Set[ids.ResourceIdentity] = set()
        kept: Set[ids.ResourceIdentity] = set()

        previous: Optional[FrozenSet[ids.ResourceIdentity]]
        try:
            previous = await self._inventory.load()
        except OBJECT_ERRORS as e:
            logger.error(f"Failed to load the inventory; nothing will be pruned: {e!r}")
            errs = errors.append(errs, e)
            previous = None

        for obj in objs:
            management = metadata.get_management(obj)
            try:
                if management is metadata.Management.ENABLED:
                    await self._apply_one(obj)
                    applied.add(obj.identity)
                elif management is metadata.Management.DISABLED:
                    await self._unmanage_one(obj)
                else:
                    value = metadata.get_annotation(obj, metadata.MANAGEMENT_KEY)
                    raise errors.IllegalManagementError(
                        f"Invalid value of the {metadata.MANAGEMENT_KEY} annotation: {value!r}",
                        identity=obj.identity)
            except OBJECT_ERRORS as e:
                self._count_failure(e)
                if isinstance(e, errors.UnknownTypeError):
                    unknown_kinds.add(obj.gvk)
                if previous is not None and obj.identity in previous and \
                        management is not metadata.Management.DISABLED:
                    kept.add(obj.identity)
                errs = errors.append(errs, e)

        if previous is not None:
            declared_keys = {obj.key for obj in objs}
            leftovers = [identity for identity in previous if identity.key not in declared_keys]
            for identity in sorted(leftovers, key=apply_order, reverse=True):
                try:
                    await self._prune_one(identity)
                except OBJECT_ERRORS as e:
                    self._count_failure(e)
                    kept.add(identity)
                    errs = errors.append(errs, e)

            try:
                await self._inventory.store(applied | kept)
            except OBJECT_ERRORS as e:
                logger.error(f"Failed to store the inventory: {e!r}")
                errs = errors.append(errs, e)

        logger.info(f"Applied {len(objs)} declared object(s): {self.stats}")
        kinds = frozenset(obj.gvk for obj in objs) - unknown_kinds
        return kinds, errs

    async def _apply_one(self, obj: bodies.Body) -> None:
        identity = obj.identity
        obj_logger = loggers.ObjectLogger(body=obj)
        actual = await self._applier.get(identity, logger=obj_logger)
        if actual is None:
            await self._applier.apply(identity, obj, logger=obj_logger)
            self.stats.created += 1
            return

        if not scopes.can_manage(self._scope, actual):
            manager = metadata.get_annotation(actual, metadata.MANAGER_KEY)
            raise errors.ManagementConflictError(
                f"Declared in {self._scope.manager!r}, but managed by {manager!r}.",
                identity=identity, manager=manager)
        if not self._scope.is_root and not self._inventory.owns(actual):
            owner = metadata.get_annotation(actual, metadata.OWNING_INVENTORY_KEY)
            raise errors.ManagementConflictError(
                f"Declared in {self._inventory.id!r}, but belongs to the inventory {owner!r}.",
                identity=identity, manager=metadata.get_annotation(actual, metadata.MANAGER_KEY))
        if metadata.ignores_mutation(obj) and metadata.ignores_mutation(actual):
            obj_logger.debug("Skipping the object which ignores the mutations.")
            self.stats.unchanged += 1
            return

        await self._applier.update(identity, obj, actual, logger=obj_logger)
        self.stats.updated += 1

    async def _unmanage_one(self, obj: bodies.Body) -> None:
        identity = obj.identity
        obj_logger = loggers.ObjectLogger(body=obj)
        actual = await self._applier.get(identity, logger=obj_logger)
        if actual is None or not metadata.has_bookkeeping(actual):
            self.stats.unchanged += 1
        elif not scopes.can_unmanage(self._scope, actual):
            self.stats.unchanged += 1
        else:
            await self._applier.remove_bookkeeping(identity, actual, logger=obj_logger)
            self.stats.unmanaged += 1

    async def _prune_one(self, identity: ids.ResourceIdentity) -> None:
        try:
            actual = await self._applier.get(identity)
        except errors.UnknownTypeError:
            logger.debug(f"Dropping {identity} from the inventory: its kind is gone.")
            return

        if actual is None:
            logger.debug(f"Dropping {identity} from the inventory: it is gone.")
            return

        obj_logger = loggers.ObjectLogger(body=actual)
        if metadata.get_management(actual) is not metadata.Management.ENABLED or \
                not scopes.is_manager(self._scope, actual) or \
                not self._inventory.owns(actual):
            obj_logger.info("Dropping the object from the inventory: it is not managed by us anymore.")
        elif metadata.prevents_deletion(actual):
            obj_logger.info("Unmanaging the object instead of pruning: its deletion is prevented.")
            await self._applier.remove_bookkeeping(identity, actual, logger=obj_logger)
            self.stats.unmanaged += 1
        elif metadata.is_protected(identity):
            obj_logger.warning("Unmanaging the protected object instead of pruning it.")
            await self._applier.remove_bookkeeping(identity, actual, logger=obj_logger)
            self.stats.unmanaged += 1
        else:
            await self._applier.delete(identity, actual, logger=obj_logger)
            self.stats.deleted += 1

    def _count_failure(self, exc: BaseException) -> None:
        if isinstance(exc, errors.ManagementConflictError):
            self.stats.conflicts += 1
        else:
            self.stats.failed += 1


def conflicts(multi: Optional[errors.MultiError]) -> List[errors.ManagementConflictError]:
    """ Pick the management conflicts from the errors of a pass. """
    return [e for e in (multi or []) if isinstance(e, errors.ManagementConflictError)]
