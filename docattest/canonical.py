"""Canonical JSON bytes for digests, audit chaining and signed messages."""

from __future__ import annotations

import hashlib
import json
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict


def _coerce_json_types(obj: Any) -> Any:
    """Coerce Python objects into strict JSON types.

    - datetime/date objects become ISO strings (UTC, second precision).
    - Enums collapse to their value.
    - Floats are rejected to avoid non-JCS number edge cases.
    """
    if obj is None:
        return None
    if isinstance(obj, Enum):
        return _coerce_json_types(obj.value)
    if isinstance(obj, (str, bool, int)):
        return obj
    if isinstance(obj, float):
        raise ValueError("Floats are not allowed in JCS canonicalization. Use strings or integers.")
    if isinstance(obj, (datetime, date)):
        if isinstance(obj, datetime):
            if obj.tzinfo is None:
                obj = obj.replace(tzinfo=timezone.utc)
            return obj.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")
        return obj.isoformat()
    if isinstance(obj, (list, tuple)):
        return [_coerce_json_types(x) for x in obj]
    if isinstance(obj, dict):
        out: Dict[str, Any] = {}
        for k, v in obj.items():
            out[str(k)] = _coerce_json_types(v)
        return out
    return str(obj)


def jcs_canonicalize(obj: Any) -> bytes:
    """Canonicalize JSON using a JCS-like subset (RFC 8785 compatible for objects without floats)."""
    clean = _coerce_json_types(obj)
    return json.dumps(clean, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def canonical_digest(obj: Any) -> str:
    return hashlib.sha256(jcs_canonicalize(obj)).hexdigest()
