"""
Name Resolver – canonical JSON keys for rows whose entity id could not be resolved.
"""

import json
from datetime import date, datetime
from typing import Any, Dict, Iterable


def _json_default(value: Any) -> Any:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json")
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def canonical_json(value: Any) -> str:
    """Sorted keys, compact separators: equal content always gives the same string."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=_json_default)


def natural_key(row: Dict[str, Any], fields: Iterable[str]) -> Dict[str, Any]:
    """Pick the natural-key fields of a row. Missing fields are kept as None so that
    a key with an absent field never collides with one that omits it."""
    return {f: row.get(f) for f in fields}


def build_synthetic_key(key: Dict[str, Any]) -> str:
    return canonical_json(key)
