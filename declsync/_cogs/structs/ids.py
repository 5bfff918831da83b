"""
Identities of the resources, both declared and actual.

An identity is a plain immutable tuple, so it can be used as a dict key,
as a set member, and as a queue item without any wrapping.

Two kinds of keys are used:

* :class:`ResourceIdentity` is the full identity, including the API version.
  It addresses one specific representation of an object in the store.
* :class:`ObjectKey` is the same without the version. All representations
  of the same object in different API versions share the same object key.
  It is used to deduplicate the work and to look up the declared state.
"""
from typing import Any, Mapping, NamedTuple, Tuple


class GroupVersionKind(NamedTuple):
    group: str
    version: str
    kind: str

    @property
    def api_version(self) -> str:
        return f'{self.group}/{self.version}' if self.group else self.version

    def __str__(self) -> str:
        return f'{self.kind}.{self.version}.{self.group}'.rstrip('.')


class ObjectKey(NamedTuple):
    group: str
    kind: str
    namespace: str
    name: str

    def __str__(self) -> str:
        kind = f'{self.kind}.{self.group}' if self.group else self.kind
        return f'{kind}/{self.namespace}/{self.name}' if self.namespace else f'{kind}/{self.name}'


class ResourceIdentity(NamedTuple):
    group: str
    kind: str
    namespace: str  # empty for cluster-scoped resources
    name: str
    version: str

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(self.group, self.kind, self.namespace, self.name)

    @property
    def gvk(self) -> GroupVersionKind:
        return GroupVersionKind(self.group, self.version, self.kind)

    @property
    def api_version(self) -> str:
        return self.gvk.api_version

    def __str__(self) -> str:
        return f'{self.key}@{self.version}'


def parse_api_version(api_version: str) -> Tuple[str, str]:
    """
    Split the ``apiVersion`` field into the group and the version.

    The core API has no group: ``"v1"`` is parsed as ``("", "v1")``.
    """
    group, _, version = api_version.rpartition('/')
    if not version:
        raise ValueError(f"Malformed API version: {api_version!r}")
    return group, version


def identify(raw: Mapping[str, Any]) -> ResourceIdentity:
    """
    Extract the identity of a raw object, as received from anywhere.

    Raises ``ValueError`` if the object lacks the identifying fields.
    """
    api_version = raw.get('apiVersion')
    kind = raw.get('kind')
    metadata = raw.get('metadata') or {}
    name = metadata.get('name')
    namespace = metadata.get('namespace') or ''
    if not isinstance(api_version, str) or not api_version:
        raise ValueError(f"The object has no apiVersion: {raw!r}")
    if not isinstance(kind, str) or not kind:
        raise ValueError(f"The object has no kind: {raw!r}")
    if not isinstance(name, str) or not name:
        raise ValueError(f"The object has no name: {raw!r}")
    group, version = parse_api_version(api_version)
    return ResourceIdentity(group=group, kind=kind, namespace=namespace, name=name, version=version)
