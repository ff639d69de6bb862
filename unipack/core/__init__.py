"""Lowest-level unipack utilities.

Dependency direction rules:
- unipack.core must not import unipack.protocol, unipack.gates or unipack.compose
"""

from unipack.core.hash import is_hex_sha256, sha256_bytes, sha256_file
from unipack.core.jail import normalize_member_name, safe_relpath
from unipack.core.json_canon import canonical_json_bytes
from unipack.core.schema import SchemaError, validate_schema

__all__ = [
    "SchemaError",
    "canonical_json_bytes",
    "is_hex_sha256",
    "normalize_member_name",
    "safe_relpath",
    "sha256_bytes",
    "sha256_file",
    "validate_schema",
]
