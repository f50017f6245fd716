from __future__ import annotations
from typing import Any, Dict, NamedTuple, Optional, Union
from ..util.hash import canonical_json, canonical_copy
from .errors import InvalidResource


class ResourceIdentity(NamedTuple):
    """Identity of an API object. apiVersion is not part of it: the same kind can be served by several API groups."""
    kind: str
    namespace: Optional[str]
    name: str

    @property
    def key(self) -> str:
        return f'{self.kind}:{self.name}@{self.namespace or ""}'


def deep_merge(base: Any, overlay: Any) -> Any:
    """Overlay mappings onto mappings recursively; any other overlay value replaces the base."""
    if isinstance(base, dict) and isinstance(overlay, dict):
        merged = dict(base)
        for key, value in overlay.items():
            if key in merged:
                merged[key] = deep_merge(merged[key], value)
            else:
                merged[key] = canonical_copy(value)
        return merged
    return canonical_copy(overlay)


class Resource:
    """Immutable API object."""

    __slots__ = ('_data', '_json')

    def __init__(self, data: Dict[str, Any]):
        if not isinstance(data, dict):
            raise InvalidResource(f'Resource must be a mapping, got {type(data).__name__}')
        try:
            self._data = canonical_copy(data)
        except (TypeError, ValueError) as e:
            raise InvalidResource(f'Resource is not JSON serializable: {e}') from e
        self._json = canonical_json(self._data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Resource':
        return cls(data)

    def to_dict(self) -> Dict[str, Any]:
        return canonical_copy(self._data)

    @property
    def api_version(self) -> Optional[str]:
        return self._data.get('apiVersion')

    @property
    def kind(self) -> Optional[str]:
        return self._data.get('kind')

    @property
    def metadata(self) -> Dict[str, Any]:
        return canonical_copy(self._data.get('metadata') or {})

    @property
    def name(self) -> Optional[str]:
        return (self._data.get('metadata') or {}).get('name')

    @property
    def namespace(self) -> Optional[str]:
        return (self._data.get('metadata') or {}).get('namespace') or None

    @property
    def labels(self) -> Dict[str, str]:
        return dict((self._data.get('metadata') or {}).get('labels') or {})

    @property
    def annotations(self) -> Dict[str, str]:
        return dict((self._data.get('metadata') or {}).get('annotations') or {})

    def label(self, key: str) -> Optional[str]:
        return self.labels.get(key)

    def annotation(self, key: str) -> Optional[str]:
        return self.annotations.get(key)

    @property
    def identity(self) -> ResourceIdentity:
        if not self.kind:
            raise InvalidResource(f'Resource is missing kind: {self._json[:200]}')
        if not self.name:
            raise InvalidResource(f'{self.kind} is missing metadata.name')
        return ResourceIdentity(self.kind, self.namespace, self.name)

    def merge(self, overlay: Union['Resource', Dict[str, Any]]) -> 'Resource':
        if isinstance(overlay, Resource):
            overlay = overlay._data
        return Resource(deep_merge(self._data, overlay))

    def describe(self) -> str:
        desc = f'{self.api_version}:{self.kind}/{self.name}'
        if self.namespace:
            desc += f' in namespace {self.namespace}'
        return desc

    def __eq__(self, other):
        if not isinstance(other, Resource):
            return NotImplemented
        return self._json == other._json

    def __ne__(self, other):
        result = self.__eq__(other)
        return result if result is NotImplemented else not result

    def __hash__(self):
        return hash(self._json)

    def __repr__(self):
        return f'Resource({self.describe()})'
