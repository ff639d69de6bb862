from __future__ import annotations

import json
from typing import Any


def canonical_json_bytes(obj: Any) -> bytes:
    """Return canonical JSON bytes (UTF-8, sorted keys, compact separators, trailing LF).

    Object keys are sorted at every depth; arrays keep their order.
    NaN/Infinity are rejected so the encoding stays valid JSON.
    """

    text = json.dumps(obj, ensure_ascii=False, sort_keys=True, separators=(",", ":"), allow_nan=False) + "\n"
    return text.encode("utf-8", errors="strict")
