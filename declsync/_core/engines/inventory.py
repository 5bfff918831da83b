"""
The inventory: the persisted list of the objects applied by a scope.

Pruning is the deletion of the objects that were declared before but are not
declared anymore. To know which ones were declared before, the reconciler
remembers the identities of all the objects it has applied in one record
per scope, stored in the store itself, so that it survives the restarts.

The record is a config map in the scope's namespace (or in a dedicated
namespace for the root scope). The identities are stored as a JSON list
in one data key, and also stamped into the objects themselves as the owning
inventory id, so that the objects of other inventories are never pruned.
"""
import json
import logging
from typing import Any, Collection, Dict, FrozenSet, List

from declsync._cogs.clients import errors as api_errors, fetching, patching
from declsync._cogs.configs import configuration
from declsync._cogs.structs import bodies, ids, metadata, references, scopes

logger = logging.getLogger(__name__)

DATA_KEY = 'objects'


class InventoryError(Exception):
    """ The inventory record exists, but cannot be parsed. """


class Inventory:

    def __init__(
            self,
            *,
            settings: configuration.ReconcilerSettings,
            scope: scopes.Scope,
    ) -> None:
        super().__init__()
        self._settings = settings
        self._scope = scope

    @property
    def name(self) -> str:
        return self._settings.inventory.name

    @property
    def namespace(self) -> str:
        return self._scope.namespace or self._settings.inventory.namespace

    @property
    def id(self) -> str:
        """ The value of the owning-inventory annotation of the inventoried objects. """
        return f'{self.namespace}_{self.name}'

    def owns(self, obj: bodies.Body) -> bool:
        """ Check if the object belongs to this inventory, or to none at all. """
        owner = metadata.get_annotation(obj, metadata.OWNING_INVENTORY_KEY)
        return not owner or owner == self.id

    async def load(self) -> FrozenSet[ids.ResourceIdentity]:
        """
        Load the identities of the previously applied objects.

        A missing record means that nothing was applied yet.
        A malformed record means that nothing can be pruned safely,
        so it is treated as empty too (with a warning).
        """
        raw_body = await fetching.read_obj(
            settings=self._settings,
            resource=references.CONFIGMAPS,
            namespace=self.namespace,
            name=self.name,
            logger=logger,
        )
        if raw_body is None:
            return frozenset()

        data: Dict[str, str] = raw_body.get('data') or {}  # type: ignore[assignment]
        try:
            return decode(data.get(DATA_KEY, '[]'))
        except InventoryError as e:
            logger.warning(f"Ignoring the malformed inventory {self.namespace}/{self.name}: {e}")
            return frozenset()

    async def store(self, identities: Collection[ids.ResourceIdentity]) -> None:
        """
        Replace the remembered identities with the new ones.

        If the inventory's namespace does not exist yet (only possible for
        the root scope's dedicated namespace), it is created first.
        """
        encoded = encode(identities)
        if len(encoded) >= self._settings.inventory.size_warning_threshold:
            logger.warning(f"The inventory {self.namespace}/{self.name} is approaching "
                           f"the object size limit: {len(encoded)} bytes.")

        body: Dict[str, Any] = {
            'apiVersion': 'v1',
            'kind': 'ConfigMap',
            'metadata': {
                'name': self.name,
                'namespace': self.namespace,
                'labels': {metadata.MANAGED_BY_LABEL: metadata.MANAGED_BY_VALUE},
            },
            'data': {DATA_KEY: encoded},
        }
        try:
            await patching.apply_obj(
                settings=self._settings,
                resource=references.CONFIGMAPS,
                body=body,  # type: ignore[arg-type]
                logger=logger,
            )
        except api_errors.APINotFoundError:
            if self._scope.namespace is not None:
                raise
            logger.info(f"Creating the namespace {self.namespace!r} for the inventory.")
            await patching.apply_obj(
                settings=self._settings,
                resource=references.NAMESPACES,
                body={'apiVersion': 'v1', 'kind': 'Namespace',  # type: ignore[typeddict-item]
                      'metadata': {'name': self.namespace}},
                logger=logger,
            )
            await patching.apply_obj(
                settings=self._settings,
                resource=references.CONFIGMAPS,
                body=body,  # type: ignore[arg-type]
                logger=logger,
            )
        logger.debug(f"Stored {len(identities)} object(s) in the inventory "
                     f"{self.namespace}/{self.name}.")


def encode(identities: Collection[ids.ResourceIdentity]) -> str:
    items: List[Dict[str, str]] = [identity._asdict() for identity in sorted(set(identities))]
    return json.dumps(items, separators=(',', ':'))


def decode(encoded: str) -> FrozenSet[ids.ResourceIdentity]:
    try:
        items = json.loads(encoded)
    except ValueError as e:
        raise InventoryError(f"Not a JSON: {e}") from e
    if not isinstance(items, list):
        raise InventoryError(f"Not a list: {items!r}")
    try:
        return frozenset(
            ids.ResourceIdentity(
                group=item['group'],
                kind=item['kind'],
                namespace=item.get('namespace', ''),
                name=item['name'],
                version=item['version'],
            )
            for item in items
        )
    except (KeyError, TypeError) as e:
        raise InventoryError(f"Not an identity: {e!r}") from e
