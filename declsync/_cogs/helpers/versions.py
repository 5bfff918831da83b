"""
Detecting the package's own version, as installed.

The version is determined only once at startup when the code is loaded.
It is used for the CLI's ``--version`` and for the API client's User-Agent.
"""
import importlib.metadata
from typing import Optional

version: Optional[str] = None

try:
    name, *_ = __name__.split('.')  # usually "declsync", unless renamed/forked.
    version = importlib.metadata.version(name)
except importlib.metadata.PackageNotFoundError:
    pass  # running from a source tree that is not installed.
