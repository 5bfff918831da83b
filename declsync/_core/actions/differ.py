"""
The state machine of reconciliation: what to do with a declared/actual pair.

The decision is purely computational: no i/o, no side effects (except for
a warning log on the unreachable states). It is therefore safe to call it
from any task or thread, as many times as needed, e.g. to double-check
the decision after the actual object has been re-fetched.

The precedence of the rules (top to bottom, the first match wins):

========  ========  ==============================================  ==================
declared  actual    condition                                       operation
========  ========  ==============================================  ==================
yes       no        declared management is enabled                  create
yes       no        declared management is disabled                 no-op
yes       no        declared management is invalid (or unset)       error
yes       yes       versions differ (not yet consistent)            no-op
yes       yes       declared is invalid (or unset)                  error
yes       yes       enabled, but cannot manage the actual           management conflict
yes       yes       enabled, both ignore the mutations              no-op
yes       yes       enabled                                         update
yes       yes       disabled, can manage, actual has bookkeeping,   unmanage
                    by root, by this scope, or by no scope
yes       yes       disabled, otherwise                             no-op
no        yes       actual has no bookkeeping                       no-op
no        yes       actual has owner references (generated)         no-op
no        yes       cannot manage the actual                        no-op
no        yes       actual management is not enabled                unmanage
no        yes       actual prevents its deletion                    unmanage
no        yes       actual is a protected system object             unmanage-protected
no        yes       otherwise                                       delete
no        no        (unreachable)                                   no-op
========  ========  ==============================================  ==================
"""
import enum
import logging
from typing import NamedTuple, Optional

from declsync._cogs.structs import bodies, metadata, scopes

logger = logging.getLogger(__name__)


class Operation(str, enum.Enum):
    NOOP = 'noop'
    CREATE = 'create'
    UPDATE = 'update'
    DELETE = 'delete'
    UNMANAGE = 'unmanage'
    UNMANAGE_PROTECTED = 'unmanage-protected'
    ERROR = 'error'
    MANAGEMENT_CONFLICT = 'management-conflict'


class Diff(NamedTuple):
    """
    A pair of the declared & actual states of the same object.

    Either of them can be absent, but not both (normally).
    The operation is derived from the pair, it is never stored.
    """
    declared: Optional[bodies.Body]
    actual: Optional[bodies.Body]

    def operation(self, scope: scopes.Scope) -> Operation:
        return operation(self.declared, self.actual, scope)


def operation(
        declared: Optional[bodies.Body],
        actual: Optional[bodies.Body],
        scope: scopes.Scope,
) -> Operation:
    if declared is not None and actual is None:
        return _declared_only(declared)
    elif declared is not None and actual is not None:
        return _both(declared, actual, scope)
    elif actual is not None:
        return _actual_only(actual, scope)
    else:
        logger.warning("Neither the declared nor the actual object is present; doing nothing.")
        return Operation.NOOP


def _declared_only(declared: bodies.Body) -> Operation:
    management = metadata.get_management(declared)
    if management is metadata.Management.ENABLED:
        return Operation.CREATE
    elif management is metadata.Management.DISABLED:
        return Operation.NOOP
    else:
        return Operation.ERROR


def _both(declared: bodies.Body, actual: bodies.Body, scope: scopes.Scope) -> Operation:

    # The watchers of other versions will deliver the object in the declared version soon.
    if declared.identity.version != actual.identity.version:
        return Operation.NOOP

    management = metadata.get_management(declared)
    if management is metadata.Management.ENABLED:
        if not scopes.can_manage(scope, actual):
            return Operation.MANAGEMENT_CONFLICT
        if metadata.ignores_mutation(declared) and metadata.ignores_mutation(actual):
            return Operation.NOOP
        return Operation.UPDATE
    elif management is metadata.Management.DISABLED:
        if scopes.can_unmanage(scope, actual) and metadata.has_bookkeeping(actual):
            return Operation.UNMANAGE
        return Operation.NOOP
    else:
        return Operation.ERROR


def _actual_only(actual: bodies.Body, scope: scopes.Scope) -> Operation:
    if not metadata.has_bookkeeping(actual):
        return Operation.NOOP
    if actual.owner_references:
        return Operation.NOOP
    if not scopes.can_manage(scope, actual):
        return Operation.NOOP
    if metadata.get_management(actual) is not metadata.Management.ENABLED:
        return Operation.UNMANAGE
    if metadata.prevents_deletion(actual):
        return Operation.UNMANAGE
    if metadata.is_protected(actual.identity):
        return Operation.UNMANAGE_PROTECTED
    return Operation.DELETE
