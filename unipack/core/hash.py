from __future__ import annotations

import hashlib
from pathlib import Path


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def sha256_file(path: Path) -> str:
    """Hash a whole file read into memory. OSError propagates to the caller."""

    return sha256_bytes(Path(path).read_bytes())


def is_hex_sha256(s: str) -> bool:
    """True for exactly 64 lowercase hex characters (the form sha256_bytes emits)."""

    if not isinstance(s, str) or len(s) != 64:
        return False
    for c in s:
        if c not in "0123456789abcdef":
            return False
    return True
