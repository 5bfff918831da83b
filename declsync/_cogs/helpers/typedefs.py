"""
Type definitions shared across the package.

Some standard library classes are generic only in the type stubs,
but not at runtime (e.g. `logging.LoggerAdapter`); they are re-defined here
so that they can be subscripted in annotations and used at runtime alike.
"""
import logging
from typing import TYPE_CHECKING, Any, Union

if TYPE_CHECKING:
    LoggerAdapter = logging.LoggerAdapter[Any]
else:
    LoggerAdapter = logging.LoggerAdapter

# Either a module-level logger or a per-object adapter: both are accepted everywhere.
Logger = Union[logging.Logger, LoggerAdapter]
