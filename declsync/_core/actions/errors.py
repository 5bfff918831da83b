"""
Errors of reconciliation, and their classification for retrying.

The classes of errors define what happens next with the failed object:

* Policy errors (e.g. invalid management annotations) are never retried:
  retrying cannot fix them, only a change of the declared state can.
* Management conflicts (another scope of higher authority manages the object)
  are never retried either: they need a human or declarative resolution.
* Transient errors (network, optimistic concurrency, unknown kinds) are
  retried with exponential backoff, indefinitely, but never block others.
* Internal errors are the unreachable states of the reconciler itself.
  They are logged loudly, and the object is left intact.

The store API errors (see :mod:`declsync._cogs.clients.errors`) and network
errors are not wrapped into these classes: they are considered transient.
"""
from typing import Iterable, Iterator, List, Optional, Union

from declsync._cogs.structs import ids


class ReconcilerError(Exception):
    """ A base class for all errors of reconciliation of specific objects. """

    def __init__(
            self,
            message: str,
            *,
            identity: Optional[ids.ResourceIdentity] = None,
    ) -> None:
        super().__init__(message)
        self.identity = identity

    def __str__(self) -> str:
        message = super().__str__()
        return f"{self.identity}: {message}" if self.identity is not None else message


class PolicyError(ReconcilerError):
    """ The declared or actual bookkeeping metadata contradicts the rules. """


class IllegalManagementError(PolicyError):
    """ The management annotation has an unrecognised (or empty) value. """


class ManagementConflictError(ReconcilerError):
    """ The object is managed by another scope, which has a higher authority. """

    def __init__(
            self,
            message: str,
            *,
            identity: Optional[ids.ResourceIdentity] = None,
            manager: Optional[str] = None,
    ) -> None:
        super().__init__(message, identity=identity)
        self.manager = manager


class TransientError(ReconcilerError):
    """ The operation can succeed if retried later. """


class UnknownTypeError(TransientError):
    """ The store does not serve the object's kind (yet): e.g. a CRD is not applied yet. """


class ConflictError(TransientError):
    """ The object has been modified meanwhile, and the retries are exhausted. """


class ApplyError(TransientError):
    """ The store has rejected the object, or the request has failed. """


class InternalError(ReconcilerError):
    """ The reconciler has reached a state which it considers impossible. """


def is_retriable(exc: BaseException) -> bool:
    return not isinstance(exc, (PolicyError, ManagementConflictError, InternalError))


class MultiError(Exception):
    """
    An aggregate of errors, e.g. of all objects of one bulk operation.

    The individual errors are kept as they are, in the order of appearance.
    The aggregate is never empty: see :func:`append`, which returns ``None``
    instead of an empty aggregate.
    """

    def __init__(self, errors: Iterable[BaseException]) -> None:
        self.errors: List[BaseException] = list(errors)
        super().__init__(self.errors)

    def __str__(self) -> str:
        noun = 'error' if len(self.errors) == 1 else 'errors'
        lines = [f"{len(self.errors)} {noun}:"] + [f"  {error}" for error in self.errors]
        return "\n".join(lines)

    def __iter__(self) -> Iterator[BaseException]:
        return iter(self.errors)

    def __len__(self) -> int:
        return len(self.errors)


def append(
        multi: Optional[MultiError],
        *errors: Union[None, BaseException],
) -> Optional[MultiError]:
    """
    Add the errors to an aggregate, creating it if needed.

    Nones are ignored. Nested aggregates are flattened.
    If there are no errors at all, ``None`` is returned.
    """
    collected: List[BaseException] = list(multi.errors) if multi is not None else []
    for error in errors:
        if isinstance(error, MultiError):
            collected.extend(error.errors)
        elif error is not None:
            collected.append(error)
    return MultiError(collected) if collected else None
