"""
All the structures coming from/to the resource store.

Everything marked "raw" is plain unwrapped data as JSON-decoded from the API
(or as YAML-decoded from the manifests). The raw data is never used directly
by the reconciler: it is wrapped into :class:`Body` first.

A :class:`Body` is an immutable snapshot: it keeps its own deep copy
of the source data, and returns copies of the nested fields on every access.
This makes it safe to share the same body between the declared-state cache,
the work queue, and any number of concurrent workers: nobody can change
the object under the feet of others, neither intentionally nor accidentally.

The body exposes the minimal capability set which is needed for
reconciliation of any kind of resources: the identity, the annotations
and labels, the owner references, the generation, and the version token.
Everything else is an opaque payload, which is only sent back to the store.
"""
import copy
from typing import Any, Iterator, List, Mapping, Optional, Union

from typing_extensions import Literal, TypedDict

from declsync._cogs.structs import ids

Labels = Mapping[str, str]
Annotations = Mapping[str, str]

RawInputType = Literal['ADDED', 'MODIFIED', 'DELETED', 'BOOKMARK', 'ERROR']
RawEventType = Literal['ADDED', 'MODIFIED', 'DELETED', 'BOOKMARK']


class RawOwnerReference(TypedDict, total=False):
    apiVersion: str
    kind: str
    name: str
    uid: str
    controller: bool
    blockOwnerDeletion: bool


class RawMeta(TypedDict, total=False):
    uid: str
    name: str
    namespace: str
    labels: Labels
    annotations: Annotations
    ownerReferences: List[RawOwnerReference]
    resourceVersion: str
    generation: int
    deletionTimestamp: str
    creationTimestamp: str


class RawBody(TypedDict, total=False):
    apiVersion: str
    kind: str
    metadata: RawMeta
    spec: Mapping[str, Any]
    status: Mapping[str, Any]
    data: Mapping[str, str]


# A special payload for type==ERROR (this is not a connection or client error).
class RawError(TypedDict, total=False):
    apiVersion: str     # usually: Literal['v1']
    kind: str           # usually: Literal['Status']
    metadata: Mapping[Any, Any]
    code: int
    reason: str
    status: str
    message: str


# As received from the stream before processing the errors and special cases.
class RawInput(TypedDict, total=True):
    type: RawInputType
    object: Union[RawBody, RawError]


class Body(Mapping[str, Any]):
    """
    A read-only snapshot of a resource, either declared or actual.

    A tombstone is a body of the last known state of a deleted object.
    It is used to tell "the object existed like this before it was deleted"
    from "the object exists like this now", which makes a difference
    for the decisions on what to do with it.
    """

    def __init__(self, __src: Mapping[str, Any], *, deleted: bool = False) -> None:
        super().__init__()
        raw = __src._src if isinstance(__src, Body) else __src
        self._src: RawBody = copy.deepcopy(dict(raw))  # type: ignore[assignment]
        self._identity = ids.identify(self._src)
        self._deleted = deleted

    def __repr__(self) -> str:
        tombstone = ' (deleted)' if self._deleted else ''
        return f'<{self.__class__.__name__} {self._identity}{tombstone}>'

    def __len__(self) -> int:
        return len(self._src)

    def __iter__(self) -> Iterator[str]:
        return iter(self._src)

    def __getitem__(self, item: str) -> Any:
        return copy.deepcopy(self._src[item])  # type: ignore[literal-required]

    @property
    def identity(self) -> ids.ResourceIdentity:
        return self._identity

    @property
    def key(self) -> ids.ObjectKey:
        return self._identity.key

    @property
    def gvk(self) -> ids.GroupVersionKind:
        return self._identity.gvk

    @property
    def deleted(self) -> bool:
        return self._deleted

    @property
    def annotations(self) -> Annotations:
        return dict(self._src.get('metadata', {}).get('annotations') or {})

    @property
    def labels(self) -> Labels:
        return dict(self._src.get('metadata', {}).get('labels') or {})

    @property
    def owner_references(self) -> List[RawOwnerReference]:
        return copy.deepcopy(list(self._src.get('metadata', {}).get('ownerReferences') or []))

    @property
    def generation(self) -> Optional[int]:
        return self._src.get('metadata', {}).get('generation')

    @property
    def resource_version(self) -> Optional[str]:
        return self._src.get('metadata', {}).get('resourceVersion')

    @property
    def uid(self) -> Optional[str]:
        return self._src.get('metadata', {}).get('uid')

    def as_dict(self) -> RawBody:
        """ A deep copy of the whole payload, free to be modified by the caller. """
        return copy.deepcopy(self._src)

    def as_tombstone(self) -> "Body":
        return Body(self._src, deleted=True)
