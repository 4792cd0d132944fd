"""
Assertion key codec.

A key is the SHA-256 of the canonical JSON of ``[type, args]``.  Arrays are
positional, so ``("a", "bc")`` and ``("ab", "c")`` never collide; object keys
are sorted, so dict arguments do not depend on field insertion order.  The
result value never participates.
"""
from __future__ import annotations

import hashlib
import json
from typing import Any, Sequence


def canonical_json(value: Any) -> str:
    """Stable JSON text (sorted keys, no whitespace) used for keys and hashes."""
    return json.dumps(value, sort_keys=True, ensure_ascii=False, separators=(",", ":"))


def generate_key(type_: str, args: Sequence[Any]) -> str:
    """Compute the assertion key for ``(type, args)``."""
    canonical = canonical_json([type_, list(args)])
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def results_equal(a: Any, b: Any) -> bool:
    """Bit-identical comparison: ``1``, ``1.0`` and ``True`` all differ."""
    return canonical_json(a) == canonical_json(b)
