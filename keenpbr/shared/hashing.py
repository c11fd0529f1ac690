"""
keen-pbr canonical hashing.

The configuration document is versioned by the hash of its canonical JSON
form, so the structured and raw views can be checked for equivalence.
"""

import hashlib
import json
from typing import Any


def canonicalize(obj: Any) -> str:
    """
    Convert object to canonical JSON string.
    Deterministic: same input always produces same output.
    """
    def _clean(o: Any) -> Any:
        if isinstance(o, dict):
            return {k: _clean(v) for k, v in sorted(o.items()) if v is not None}
        elif isinstance(o, (list, tuple)):
            return [_clean(i) for i in o]
        return o

    return json.dumps(_clean(obj), sort_keys=True, separators=(',', ':'), ensure_ascii=True)


def canonicalize_and_hash(obj: Any) -> str:
    """
    Hash of the canonical form.
    Returns: "sha256:<64-char-hex>"
    """
    canonical = canonicalize(obj)
    digest = hashlib.sha256(canonical.encode('utf-8')).hexdigest()
    return f"sha256:{digest}"


def verify_hash(obj: Any, expected_hash: str) -> bool:
    """
    Verify object matches expected hash.
    """
    return canonicalize_and_hash(obj) == expected_hash
