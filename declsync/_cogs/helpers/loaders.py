"""
Loading of the declared objects from the manifest files.

The manifests are the usual multi-document YAML files, as used with kubectl.
The paths can be files or directories; the directories are scanned recursively
for the YAML files (``*.yaml`` and ``*.yml``), in alphabetical order.
If the same object is declared in several files, the last one wins.

Multiple paths can be specified. They are loaded in the order given.
"""
import os.path
from typing import Any, Dict, Iterable, Iterator, List

import yaml

YAML_EXTENSIONS = ('.yaml', '.yml')


class ManifestError(Exception):
    """ A manifest file cannot be read or parsed. """


def load_manifests(paths: Iterable[str]) -> List[Dict[str, Any]]:
    """
    Load all the objects from the manifest files and directories.

    Empty documents are skipped. ``kind: List`` documents are flattened
    into their items. Non-object documents (e.g. plain strings) are errors.
    """
    objs: List[Dict[str, Any]] = []
    for path in paths:
        for filename in _iter_files(path):
            objs.extend(load_manifest(filename))
    return objs


def load_manifest(filename: str) -> List[Dict[str, Any]]:
    try:
        with open(filename, 'rt', encoding='utf-8') as f:
            docs = list(yaml.safe_load_all(f))
    except (OSError, yaml.YAMLError) as e:
        raise ManifestError(f"Cannot load {filename}: {e}") from e

    objs: List[Dict[str, Any]] = []
    for doc in docs:
        objs.extend(_flatten(doc, filename=filename))
    return objs


def _flatten(doc: Any, *, filename: str) -> Iterator[Dict[str, Any]]:
    if doc is None:
        return
    if not isinstance(doc, dict):
        raise ManifestError(f"Not an object in {filename}: {doc!r}")
    if doc.get('kind') == 'List' and isinstance(doc.get('items'), list):
        for item in doc['items']:
            yield from _flatten(item, filename=filename)
    else:
        yield doc


def _iter_files(path: str) -> Iterator[str]:
    if os.path.isdir(path):
        for dirpath, dirnames, filenames in os.walk(path):
            dirnames[:] = sorted(name for name in dirnames if not name.startswith('.'))
            for filename in sorted(filenames):
                if filename.endswith(YAML_EXTENSIONS) and not filename.startswith('.'):
                    yield os.path.join(dirpath, filename)
    elif os.path.exists(path):
        yield path
    else:
        raise ManifestError(f"No such file or directory: {path}")
