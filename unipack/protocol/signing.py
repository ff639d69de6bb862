"""Signed component manifests: build, sign (HMAC-SHA256) and verify.

Signing is opt-in. Without a key, build_manifest() returns None and
composition still works on hash checks alone. Keys are always passed in
explicitly; nothing here reads the process environment.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Any, Mapping, Sequence, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac

from unipack.core.hash import is_hex_sha256, sha256_bytes
from unipack.core.json_canon import canonical_json_bytes
from unipack.protocol.components import (
    CHECKSUMS_ENTRY,
    MANIFEST_ENTRY,
    MANIFEST_VERSION,
    RESERVED_ENTRIES,
    ComponentKind,
    parse_kind,
)
from unipack.protocol.manifest import ComponentManifest, file_hash_entries, validate_manifest


SIGNATURE_ALGORITHM = "HMAC-SHA256"

SigningKey = Union[str, bytes]
ManifestLike = Union[ComponentManifest, Mapping[str, Any]]


@dataclass(frozen=True)
class Violation:
    code: str  # "invalid-signature" | "missing-signature" | "missing-file" | "hash-mismatch" | ...
    message: str
    file: str | None = None


def _key_bytes(key: SigningKey) -> bytes:
    if isinstance(key, bytes):
        return key
    return str(key).encode("utf-8", errors="strict")


def _has_key(key: SigningKey | None) -> bool:
    return key is not None and len(key) > 0


def _as_dict(manifest: ManifestLike) -> dict[str, Any]:
    if isinstance(manifest, ComponentManifest):
        return manifest.to_dict()
    return dict(manifest)


def signature_payload(manifest: ManifestLike) -> bytes:
    """Canonical bytes of the manifest with the signature field removed."""

    unsigned = _as_dict(manifest)
    unsigned.pop("signature", None)
    return canonical_json_bytes(unsigned)


def sign_manifest(manifest: ManifestLike, signing_key: SigningKey) -> str:
    h = hmac.HMAC(_key_bytes(signing_key), hashes.SHA256())
    h.update(signature_payload(manifest))
    return h.finalize().hex()


def signature_matches(manifest: ManifestLike, signature: Any, signing_key: SigningKey) -> bool:
    if not is_hex_sha256(signature):
        return False
    h = hmac.HMAC(_key_bytes(signing_key), hashes.SHA256())
    h.update(signature_payload(manifest))
    try:
        h.verify(bytes.fromhex(signature))
    except InvalidSignature:
        return False
    return True


def _check_payload_names(files: Mapping[str, bytes]) -> None:
    reserved = sorted(name for name in files if name in RESERVED_ENTRIES)
    if reserved:
        raise ValueError(f"file set must not include reserved entries: {reserved}")


def build_unsigned_manifest(
    files: Mapping[str, bytes],
    component: ComponentKind | str,
    *,
    metrics: Mapping[str, Any] | None = None,
    build_info: Mapping[str, Any] | None = None,
    features_on: Sequence[str] | None = None,
) -> dict[str, Any]:
    kind = component if isinstance(component, ComponentKind) else parse_kind(str(component))
    _check_payload_names(files)

    file_hashes: dict[str, dict[str, Any]] = {}
    for name in sorted(files):
        data = bytes(files[name])
        file_hashes[name] = {"sha256": sha256_bytes(data), "size": len(data)}

    out: dict[str, Any] = {
        "component": kind.value,
        "buildInfo": dict(build_info or {}),
        "metrics": dict(metrics or {}),
        "fileHashes": file_hashes,
    }
    flags = sorted({str(f).strip() for f in (features_on or ()) if str(f).strip()})
    if flags:
        out["featuresOn"] = flags
    return out


def build_manifest(
    files: Mapping[str, bytes],
    component: ComponentKind | str,
    *,
    signing_key: SigningKey | None,
    metrics: Mapping[str, Any] | None = None,
    build_info: Mapping[str, Any] | None = None,
    features_on: Sequence[str] | None = None,
) -> ComponentManifest | None:
    """Build and sign a manifest for files; None when no signing key is configured."""

    if not _has_key(signing_key):
        return None

    unsigned = build_unsigned_manifest(
        files, component, metrics=metrics, build_info=build_info, features_on=features_on
    )
    signed = dict(unsigned)
    signed["signature"] = sign_manifest(unsigned, signing_key)  # type: ignore[arg-type]
    return ComponentManifest.from_dict(signed)


def render_checksums(manifest: ManifestLike) -> bytes:
    """sha256sum-style listing ("<hex>  <name>" per line) of the manifest's fileHashes."""

    entries = file_hash_entries(_as_dict(manifest)["fileHashes"])
    lines = [f"{fh.sha256}  {fh.name}\n" for fh in sorted(entries, key=lambda e: e.name)]
    return "".join(lines).encode("utf-8", errors="strict")


def seal_files(
    files: Mapping[str, bytes],
    component: ComponentKind | str,
    *,
    signing_key: SigningKey | None,
    metrics: Mapping[str, Any] | None = None,
    build_info: Mapping[str, Any] | None = None,
    features_on: Sequence[str] | None = None,
) -> dict[str, bytes]:
    """Return files plus manifest.json and checksums.sha256; signed when a key is given."""

    manifest: dict[str, Any]
    signed = build_manifest(
        files, component, signing_key=signing_key, metrics=metrics, build_info=build_info, features_on=features_on
    )
    if signed is not None:
        manifest = signed.to_dict()
    else:
        manifest = build_unsigned_manifest(
            files, component, metrics=metrics, build_info=build_info, features_on=features_on
        )

    out = {name: bytes(files[name]) for name in sorted(files)}
    out[CHECKSUMS_ENTRY] = render_checksums(manifest)
    out[MANIFEST_ENTRY] = canonical_json_bytes(manifest)
    return out


def add_manifest_to_bundle(
    files: Mapping[str, bytes],
    component: ComponentKind | str,
    *,
    signing_key: SigningKey | None,
    metrics: Mapping[str, Any] | None = None,
    build_info: Mapping[str, Any] | None = None,
) -> dict[str, bytes]:
    """Attach a signed manifest to a bundle; the bundle is returned unchanged when signing is disabled."""

    if not _has_key(signing_key):
        return dict(files)
    return seal_files(files, component, signing_key=signing_key, metrics=metrics, build_info=build_info)


def verify_manifest(
    manifest: ManifestLike,
    files: Mapping[str, bytes],
    signing_key: SigningKey | None = None,
) -> list[Violation]:
    """Verify signature and per-file hashes; an empty list is the only valid result.

    The signature is checked only when a key is given. manifest.json and the
    checksum listing are exempt from the unexpected-file check.
    """

    raw = _as_dict(manifest)
    schema_errors = validate_manifest(raw, signature_checked=_has_key(signing_key))
    if schema_errors:
        return [Violation(code="invalid-manifest", message=f"{e.path}: {e.message}") for e in schema_errors]

    violations: list[Violation] = []

    if _has_key(signing_key):
        declared = raw.get("signature")
        if declared is None:
            violations.append(Violation(code="missing-signature", message="Manifest is not signed"))
        elif not signature_matches(raw, declared, signing_key):  # type: ignore[arg-type]
            violations.append(Violation(code="invalid-signature", message="Invalid manifest signature"))

    entries = file_hash_entries(raw["fileHashes"])
    declared_names = {fh.name for fh in entries}

    for fh in entries:
        if fh.name not in files:
            violations.append(Violation(code="missing-file", message=f"Missing file: {fh.name}", file=fh.name))
            continue
        data = bytes(files[fh.name])
        actual_sha = sha256_bytes(data)
        if actual_sha != fh.sha256:
            violations.append(
                Violation(
                    code="hash-mismatch",
                    message=f"Hash mismatch for {fh.name}: expected {fh.sha256}, got {actual_sha}",
                    file=fh.name,
                )
            )
        if len(data) != fh.size:
            violations.append(
                Violation(
                    code="size-mismatch",
                    message=f"Size mismatch for {fh.name}: expected {fh.size} bytes, got {len(data)} bytes",
                    file=fh.name,
                )
            )

    for name in sorted(files):
        if name in RESERVED_ENTRIES or name in declared_names:
            continue
        violations.append(Violation(code="unexpected-file", message=f"Unexpected file: {name}", file=name))

    return violations


def signing_status(signing_key: SigningKey | None) -> dict[str, Any]:
    configured = _has_key(signing_key)
    return {
        "algorithm": SIGNATURE_ALGORITHM,
        "enabled": configured,
        "key_configured": configured,
        "manifest_version": MANIFEST_VERSION,
    }


def generate_signing_key() -> str:
    """Random 256-bit key as 64 hex chars, suitable for UNIPACK_SIGNING_KEY."""

    return secrets.token_hex(32)
