"""
The declared state: all the objects as they should be, per the repository.

The declared state is replaced as a whole on every re-read of the repository.
It is read concurrently by the watchers (to filter the events), the workers
(to compute the diffs), and the bulk applier -- potentially from other
threads, e.g. if the manifests are parsed in a thread pool executor.

The cache is therefore an immutable snapshot behind a reference. The updates
build the new snapshot off to the side, and then swap the reference
under a lock. The readers take the same lock only to get the reference,
and then work with the snapshot outside of the lock. This way, the readers
never see a half-populated state, and never wait for the updates.
"""
import logging
import threading
import types
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional

from declsync._cogs.structs import bodies, ids

logger = logging.getLogger(__name__)


class DeclarationError(Exception):
    """ The declared object cannot be normalised, e.g. due to missing identity fields. """


class DeclaredResources:

    def __init__(self) -> None:
        super().__init__()
        self._lock = threading.Lock()
        self._objects: Mapping[ids.ObjectKey, bodies.Body] = types.MappingProxyType({})

    def __len__(self) -> int:
        return len(self._snapshot())

    def _snapshot(self) -> Mapping[ids.ObjectKey, bodies.Body]:
        with self._lock:
            return self._objects

    def update(self, objs: Iterable[Optional[Mapping[str, Any]]]) -> None:
        """
        Replace the whole declared state with the new objects.

        Empty entries are skipped with a warning. If any of the objects cannot
        be normalised, nothing is replaced, and `DeclarationError` is raised.
        If the same object is declared twice, the last declaration wins.
        """
        new_objects: Dict[ids.ObjectKey, bodies.Body] = {}
        for obj in objs:
            if obj is None or not isinstance(obj, Mapping):
                logger.warning(f"Skipping an empty or malformed declared object: {obj!r}")
                continue
            try:
                body = obj if isinstance(obj, bodies.Body) else bodies.Body(obj)
            except ValueError as e:
                raise DeclarationError(f"Cannot normalise a declared object: {e}") from e
            new_objects[body.key] = body

        snapshot = types.MappingProxyType(new_objects)
        with self._lock:
            self._objects = snapshot

    def get(self, identity: ids.ResourceIdentity) -> Optional[bodies.Body]:
        """
        Get the declared object of the same group, kind, namespace & name.

        The version is ignored in the lookup: the declared object of any
        version is returned. The callers check the version if it matters.
        """
        return self._snapshot().get(identity.key)

    def all(self) -> List[bodies.Body]:
        return list(self._snapshot().values())

    def kind_set(self) -> FrozenSet[ids.GroupVersionKind]:
        return frozenset(body.gvk for body in self._snapshot().values())
