"""
Scopes of reconcilers and the ownership rules between them.

Every reconciler instance runs in exactly one scope: either the unrestricted
root scope, or a restricted scope of one namespace. The scope is recorded
in the objects it manages (see :mod:`metadata`), so that other reconcilers
can see who claims what.

The root scope dominates: a namespace reconciler never takes over an object
managed by the root reconciler, while the root reconciler can take over
any object, including those of the namespace reconcilers.
"""
import dataclasses
from typing import Any, Mapping, Optional

from declsync._cogs.structs import metadata

ROOT_MANAGER = ':root'


@dataclasses.dataclass(frozen=True)
class Scope:
    """
    The authority boundary of a reconciler: root, or one specific namespace.
    """

    namespace: Optional[str] = None
    """
    The namespace of a restricted scope, or ``None`` for the root scope.
    """

    def __post_init__(self) -> None:
        if self.namespace is not None and not self.namespace:
            raise ValueError("A restricted scope requires a non-empty namespace.")
        if self.namespace is not None and self.namespace.startswith(':'):
            raise ValueError(f"Invalid namespace for a scope: {self.namespace!r}")

    def __str__(self) -> str:
        return self.manager

    @classmethod
    def root(cls) -> "Scope":
        return cls(None)

    @classmethod
    def parse(cls, manager: str) -> "Scope":
        """ Restore the scope from the value of the manager annotation. """
        return cls(None) if manager == ROOT_MANAGER else cls(manager)

    @property
    def is_root(self) -> bool:
        return self.namespace is None

    @property
    def manager(self) -> str:
        """ The value of the manager annotation for the objects in this scope. """
        return ROOT_MANAGER if self.namespace is None else self.namespace


ROOT = Scope.root()


def is_manager(scope: Scope, obj: Mapping[str, Any]) -> bool:
    """ Check if the object is recorded as managed by this very scope. """
    return metadata.get_annotation(obj, metadata.MANAGER_KEY) == scope.manager


def can_manage(scope: Scope, obj: Mapping[str, Any]) -> bool:
    """
    Check if the scope is allowed to manage (take over) the object.

    The root scope can manage everything. A restricted scope can manage
    the objects that are not actively managed by the root scope:
    with management disabled or unset, with no manager, or with another
    restricted scope as a manager (the namespaced objects never leak
    between the namespaces, so there is nothing to protect there).
    """
    if scope.is_root:
        return True
    if metadata.get_management(obj) is not metadata.Management.ENABLED:
        return True
    manager = metadata.get_annotation(obj, metadata.MANAGER_KEY)
    if not manager:
        return True
    return manager != ROOT_MANAGER


def can_unmanage(scope: Scope, obj: Mapping[str, Any]) -> bool:
    """
    Check if the scope may strip the bookkeeping of an object declared as unmanaged.

    Besides the management rules, the objects of other restricted scopes
    are left to those scopes: only the objects of the root scope, of this
    very scope, or of no scope at all are unmanaged.
    """
    if not can_manage(scope, obj):
        return False
    manager = metadata.get_annotation(obj, metadata.MANAGER_KEY)
    return not manager or manager in (ROOT_MANAGER, scope.manager)
