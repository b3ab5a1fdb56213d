"""
Canonical serialization for projection hashing and snapshots.

Two projections are bit-identical exactly when their canonical bytes are.
"""

import json
from enum import Enum
from typing import Any


def canonicalize(obj: Any) -> Any:
    """
    Convert nested projection data to canonical JSON-ready form.

    Rules:
    - objects exposing to_dict() are converted first
    - dict keys are stringified and sorted
    - tuples become lists, sets become sorted lists
    - Enums collapse to their value
    """
    if hasattr(obj, "to_dict"):
        return canonicalize(obj.to_dict())
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, dict):
        return {str(k): canonicalize(v) for k, v in sorted(obj.items(), key=lambda kv: str(kv[0]))}
    if isinstance(obj, (list, tuple)):
        return [canonicalize(x) for x in obj]
    if isinstance(obj, (set, frozenset)):
        return sorted(canonicalize(x) for x in obj)
    return obj


def canonical_json_bytes(obj: Any) -> bytes:
    """
    Deterministic UTF-8 JSON bytes (sorted keys, no whitespace).
    """
    canon = canonicalize(obj)
    s = json.dumps(canon, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return s.encode("utf-8")


def canonical_json_str(obj: Any) -> str:
    return canonical_json_bytes(obj).decode("utf-8")
