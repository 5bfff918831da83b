"""
The main declsync module for all the exported functions & classes.
"""
# isort: skip_file

# Unlike all other places, where we import other modules and refer
# the functions via the modules, this is the top-level interface,
# as it is seen by the users. So, we export the individual functions.

from declsync._cogs.configs.configuration import (
    ReconcilerSettings,
)
from declsync._cogs.helpers.loaders import (
    load_manifests,
)
from declsync._cogs.helpers.typedefs import (
    Logger,
)
from declsync._cogs.helpers.versions import (
    version as __version__,
)
from declsync._cogs.structs.bodies import (
    RawBody,
    Body,
)
from declsync._cogs.structs.ids import (
    GroupVersionKind,
    ObjectKey,
    ResourceIdentity,
)
from declsync._cogs.structs.metadata import (
    Management,
)
from declsync._cogs.structs.scopes import (
    ROOT,
    Scope,
    can_manage,
    is_manager,
)
from declsync._core.actions.differ import (
    Diff,
    Operation,
    operation,
)
from declsync._core.actions.errors import (
    ReconcilerError,
    PolicyError,
    IllegalManagementError,
    ManagementConflictError,
    TransientError,
    UnknownTypeError,
    ConflictError,
    ApplyError,
    InternalError,
    MultiError,
)
from declsync._core.actions.loggers import (
    configure as configure_logging,
    LogFormat,
    ObjectLogger,
)
from declsync._core.intents.declared import (
    DeclaredResources,
    DeclarationError,
)
from declsync._core.reactor.queueing import (
    ObjectQueue,
    QueueShutDown,
)
from declsync._core.reactor.running import (
    run,
    operator,
)

__all__ = [
    'ReconcilerSettings',
    'load_manifests',
    'Logger',
    'RawBody',
    'Body',
    'GroupVersionKind',
    'ObjectKey',
    'ResourceIdentity',
    'Management',
    'ROOT',
    'Scope',
    'can_manage',
    'is_manager',
    'Diff',
    'Operation',
    'operation',
    'ReconcilerError',
    'PolicyError',
    'IllegalManagementError',
    'ManagementConflictError',
    'TransientError',
    'UnknownTypeError',
    'ConflictError',
    'ApplyError',
    'InternalError',
    'MultiError',
    'configure_logging',
    'LogFormat',
    'ObjectLogger',
    'DeclaredResources',
    'DeclarationError',
    'ObjectQueue',
    'QueueShutDown',
    'run',
    'operator',
]
