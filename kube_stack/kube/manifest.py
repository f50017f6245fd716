"""Manifest loading utilities.

Reads stack manifests from the filesystem so the stack logic never touches
file layout. A stack path is either a single manifest file or a directory
tree of `.yaml`/`.yml`/`.json` files, read in sorted path order.
"""
from __future__ import annotations
import os
import json
from typing import Any, Dict, Iterable, List
import yaml
from .errors import InvalidResource, ManifestError
from .resource import Resource

MANIFEST_EXTENSIONS = ('.yaml', '.yml', '.json')


class ManifestLoader(yaml.SafeLoader):
    """SafeLoader that keeps unquoted timestamps as their source strings, like kubectl."""


ManifestLoader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag != 'tag:yaml.org,2002:timestamp']
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


def manifest_files(path: str) -> List[str]:
    if not os.path.exists(path):
        raise FileNotFoundError(f'Manifest path not found: {path}')
    if os.path.isfile(path):
        return [path]
    found = []
    for root, dirs, files in os.walk(path):
        dirs.sort()
        for name in files:
            if name.startswith('.'):
                continue
            if name.lower().endswith(MANIFEST_EXTENSIONS):
                found.append(os.path.join(root, name))
    return sorted(found)


def _read_documents(path: str) -> Iterable[Any]:
    with open(path, 'r', encoding='utf-8') as f:
        text = f.read()
    try:
        if path.lower().endswith('.json'):
            return [json.loads(text)] if text.strip() else []
        return list(yaml.load_all(text, Loader=ManifestLoader))
    except (ValueError, yaml.YAMLError) as e:
        raise ManifestError(path, f'failed to parse: {e}') from e


def _expand(path: str, doc: Dict[str, Any]) -> Iterable[Dict[str, Any]]:
    kind = doc.get('kind') or ''
    if not isinstance(kind, str):
        raise ManifestError(path, f'kind must be a string, got {type(kind).__name__}')
    if kind.endswith('List') and isinstance(doc.get('items'), list):
        for item in doc['items']:
            if not isinstance(item, dict):
                raise ManifestError(path, f'{kind} item must be a mapping, got {type(item).__name__}')
            yield from _expand(path, item)
    else:
        yield doc


def _validate(path: str, doc: Any) -> Resource:
    if not isinstance(doc, dict):
        raise ManifestError(path, f'expected a mapping, got {type(doc).__name__}')
    for key in ('apiVersion', 'kind'):
        if not doc.get(key):
            raise ManifestError(path, f'document is missing {key}')
    meta = doc.get('metadata')
    if not isinstance(meta, dict) or not meta.get('name'):
        raise ManifestError(path, f'{doc["kind"]} is missing metadata.name')
    try:
        return Resource(doc)
    except InvalidResource as e:
        raise ManifestError(path, str(e)) from e


def load_file(path: str) -> List[Resource]:
    resources = []
    for doc in _read_documents(path):
        if doc is None:
            continue
        if not isinstance(doc, dict):
            raise ManifestError(path, f'expected a mapping, got {type(doc).__name__}')
        for item in _expand(path, doc):
            resources.append(_validate(path, item))
    return resources


def load_resources(path: str) -> List[Resource]:
    """Load every resource under path, in apply order."""
    resources: List[Resource] = []
    for file_path in manifest_files(path):
        resources.extend(load_file(file_path))
    return resources
