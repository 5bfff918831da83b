"""
Bookkeeping metadata: the annotations & labels that the reconciler puts
on the managed objects to remember what is managed and by whom.

The management flag is the main marker. It is tri-state plus an error state:
``enabled``, ``disabled``, unset (no annotation), and anything else is invalid.
Empty strings are invalid too; they are never treated as "disabled" silently,
since an accidentally emptied annotation must not release an object.

The lifecycle directives are not bookkeeping: they belong to the users,
who put them into the declared manifests, and they are never removed.
"""
import enum
from typing import Any, Collection, Dict, Mapping, Optional

from declsync._cogs.structs import bodies, ids

MANAGEMENT_KEY = 'declsync.dev/managed'
MANAGER_KEY = 'declsync.dev/manager'
RESOURCE_ID_KEY = 'declsync.dev/resource-id'
OWNING_INVENTORY_KEY = 'config.k8s.io/owning-inventory'

MANAGED_BY_LABEL = 'app.kubernetes.io/managed-by'
MANAGED_BY_VALUE = 'declsync'

LIFECYCLE_DELETION_KEY = 'client.lifecycle.config.k8s.io/deletion'
PREVENT_DELETION_VALUE = 'detach'
LIFECYCLE_MUTATION_KEY = 'client.lifecycle.config.k8s.io/mutation'
IGNORE_MUTATION_VALUE = 'ignore'

BOOKKEEPING_ANNOTATIONS: Collection[str] = (
    MANAGEMENT_KEY,
    MANAGER_KEY,
    RESOURCE_ID_KEY,
    OWNING_INVENTORY_KEY,
)

# The system objects which must never be deleted, even if declared & then removed.
PROTECTED_OBJECTS: Mapping[ids.GroupVersionKind, Collection[str]] = {
    ids.GroupVersionKind('', 'v1', 'Namespace'): frozenset({
        'default',
        'kube-system',
        'kube-public',
        'kube-node-lease',
        'gatekeeper-system',
    }),
}


class Management(enum.Enum):
    ENABLED = 'enabled'
    DISABLED = 'disabled'
    UNSET = 'unset'
    INVALID = 'invalid'


def get_annotations(obj: Mapping[str, Any]) -> Mapping[str, str]:
    if isinstance(obj, bodies.Body):
        return obj.annotations
    return (obj.get('metadata') or {}).get('annotations') or {}


def get_labels(obj: Mapping[str, Any]) -> Mapping[str, str]:
    if isinstance(obj, bodies.Body):
        return obj.labels
    return (obj.get('metadata') or {}).get('labels') or {}


def get_annotation(obj: Mapping[str, Any], key: str) -> Optional[str]:
    return get_annotations(obj).get(key)


def get_management(obj: Mapping[str, Any]) -> Management:
    annotations = get_annotations(obj)
    if MANAGEMENT_KEY not in annotations:
        return Management.UNSET
    value = annotations[MANAGEMENT_KEY]
    if value == Management.ENABLED.value:
        return Management.ENABLED
    if value == Management.DISABLED.value:
        return Management.DISABLED
    return Management.INVALID


def has_bookkeeping(obj: Mapping[str, Any]) -> bool:
    annotations = get_annotations(obj)
    labels = get_labels(obj)
    return (
        any(key in annotations for key in BOOKKEEPING_ANNOTATIONS) or
        labels.get(MANAGED_BY_LABEL) == MANAGED_BY_VALUE
    )


def prevents_deletion(obj: Mapping[str, Any]) -> bool:
    return get_annotation(obj, LIFECYCLE_DELETION_KEY) == PREVENT_DELETION_VALUE


def ignores_mutation(obj: Mapping[str, Any]) -> bool:
    return get_annotation(obj, LIFECYCLE_MUTATION_KEY) == IGNORE_MUTATION_VALUE


def is_protected(identity: ids.ResourceIdentity) -> bool:
    names = PROTECTED_OBJECTS.get(identity.gvk, ())
    return identity.name in names


def format_resource_id(identity: ids.ResourceIdentity) -> str:
    key = identity.key
    return f'{key.group}_{key.kind}_{key.namespace}_{key.name}'.lower()


def stamp(
        raw: Mapping[str, Any],
        *,
        manager: str,
        inventory_id: Optional[str] = None,
) -> bodies.RawBody:
    """
    Produce a copy of the object with the bookkeeping metadata of a manager.

    An explicitly declared management flag is kept as is (incl. "disabled"
    or even invalid values, which are reported later by the differ).
    If not declared, the object is considered as managed ("enabled").
    The explicitly unmanaged objects are left without any bookkeeping.
    """
    stamped: Dict[str, Any] = bodies.Body(raw).as_dict()  # type: ignore[assignment]
    if get_management(stamped) is Management.DISABLED:
        return stamped  # type: ignore[return-value]
    identity = ids.identify(stamped)
    meta = stamped['metadata'] = dict(stamped.get('metadata') or {})
    annotations = meta['annotations'] = dict(meta.get('annotations') or {})
    labels = meta['labels'] = dict(meta.get('labels') or {})
    annotations.setdefault(MANAGEMENT_KEY, Management.ENABLED.value)
    annotations[MANAGER_KEY] = manager
    annotations[RESOURCE_ID_KEY] = format_resource_id(identity)
    if inventory_id is not None:
        annotations[OWNING_INVENTORY_KEY] = inventory_id
    labels[MANAGED_BY_LABEL] = MANAGED_BY_VALUE
    return stamped  # type: ignore[return-value]


def build_unmanage_patch(obj: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Build a JSON merge-patch to remove all the bookkeeping from the object.

    Only the keys that are actually present are removed, so that an object
    without any bookkeeping produces an empty (no-op) patch.
    """
    annotations = get_annotations(obj)
    labels = get_labels(obj)
    meta: Dict[str, Any] = {}
    removed_annotations = {key: None for key in BOOKKEEPING_ANNOTATIONS if key in annotations}
    if removed_annotations:
        meta['annotations'] = removed_annotations
    if labels.get(MANAGED_BY_LABEL) == MANAGED_BY_VALUE:
        meta['labels'] = {MANAGED_BY_LABEL: None}
    return {'metadata': meta} if meta else {}
