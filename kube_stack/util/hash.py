from __future__ import annotations
import json
from typing import Any

def canonical_json(data: Any) -> str:
    return json.dumps(data, sort_keys=True, separators=(',', ':'))

def canonical_copy(data: Any) -> Any:
    """Deep copy via canonical JSON. Raises TypeError on values that are not plain JSON data."""
    return json.loads(canonical_json(data))
