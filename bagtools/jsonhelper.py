"""Turn typed query results into JSON-ready structures."""

from __future__ import annotations

import json
import math
from typing import Any


def _finite(obj: Any) -> Any:
    if isinstance(obj, float) and not math.isfinite(obj):
        return None
    if isinstance(obj, list):
        return [_finite(item) for item in obj]
    if isinstance(obj, dict):
        return {key: _finite(value) for key, value in obj.items()}
    return obj


def pack_results_json(rows, fillnull=True):
    """Convert rows of typed values to a list of JSON objects.

    NULL values become empty strings when ``fillnull`` is set and are left
    out otherwise; blobs become lists of byte values. A row that ends up
    with no fields becomes ``None``.
    """
    packed = []
    for row in rows:
        obj = {}
        for name, value in row.items():
            if value is None:
                if fillnull:
                    obj[name] = ""
                continue
            if isinstance(value, (bytes, bytearray, memoryview)):
                value = list(bytes(value))
            obj[name] = value
        packed.append(obj or None)
    return packed


def pack_results_json_str(rows, fillnull=True):
    """Like pack_results_json, but return compact JSON text."""
    return json.dumps(
        _finite(pack_results_json(rows, fillnull)),
        separators=(",", ":"),
        sort_keys=True,
        ensure_ascii=False,
    )