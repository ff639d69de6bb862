from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any

from unipack.core.jail import normalize_member_name
from unipack.core.schema import SchemaError, json_type_name, validate_schema
from unipack.protocol.components import (
    COMPONENT_SPECS,
    RESERVED_ENTRIES,
    THRESHOLDS,
    ComponentKind,
    known_kinds,
)


_SHA256_PATTERN = r"^[0-9a-f]{64}$"

_FILE_HASH_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["sha256", "size"],
    "properties": {
        "sha256": {"type": "string", "pattern": _SHA256_PATTERN},
        "size": {"type": "integer", "minimum": 0},
    },
}

_FILE_HASH_LIST_ITEM_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["file", "sha256", "size"],
    "properties": {
        "file": {"type": "string"},
        "sha256": {"type": "string", "pattern": _SHA256_PATTERN},
        "size": {"type": "integer", "minimum": 0},
    },
}

MANIFEST_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["component", "buildInfo", "metrics", "fileHashes"],
    "properties": {
        "component": {"type": "string"},
        "buildInfo": {"type": "object"},
        "metrics": {"type": "object"},
        "fileHashes": {"type": ["object", "array"]},
        "signature": {"type": "string", "pattern": _SHA256_PATTERN},
        "featuresOn": {"type": "array", "items": {"type": "string"}},
    },
}


@dataclass(frozen=True)
class FileHash:
    name: str
    sha256: str
    size: int

    def to_dict(self) -> dict[str, Any]:
        return {"sha256": self.sha256, "size": self.size}


@dataclass(frozen=True)
class ComponentManifest:
    """One component pack's manifest. Build with from_dict() after validate_manifest()."""

    kind: ComponentKind
    build_info: dict[str, Any]
    metrics: dict[str, Any]
    file_hashes: tuple[FileHash, ...]
    signature: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def file_count(self) -> int:
        return len(self.file_hashes)

    def to_dict(self, *, include_signature: bool = True) -> dict[str, Any]:
        out: dict[str, Any] = dict(self.extra)
        out.update(
            {
                "component": self.kind.value,
                "buildInfo": dict(self.build_info),
                "metrics": dict(self.metrics),
                "fileHashes": {fh.name: fh.to_dict() for fh in self.file_hashes},
            }
        )
        if include_signature and self.signature is not None:
            out["signature"] = self.signature
        return out

    @classmethod
    def from_dict(cls, obj: dict[str, Any]) -> "ComponentManifest":
        errors = validate_manifest(obj)
        if errors:
            first = errors[0]
            raise ValueError(f"invalid manifest ({len(errors)} violation(s)); first: {first.path}: {first.message}")

        known = {"component", "buildInfo", "metrics", "fileHashes", "signature"}
        return cls(
            kind=ComponentKind(obj["component"]),
            build_info=dict(obj["buildInfo"]),
            metrics=dict(obj["metrics"]),
            file_hashes=tuple(file_hash_entries(obj["fileHashes"])),
            signature=obj.get("signature"),
            extra={k: v for k, v in obj.items() if k not in known},
        )


def file_hash_entries(file_hashes: Any) -> list[FileHash]:
    """Normalize the mapping or list form of fileHashes into ordered FileHash entries.

    Assumes the structure already passed validate_manifest().
    """

    if isinstance(file_hashes, dict):
        return [
            FileHash(name=str(name), sha256=str(entry["sha256"]), size=int(entry["size"]))
            for name, entry in file_hashes.items()
        ]
    return [
        FileHash(name=str(entry["file"]), sha256=str(entry["sha256"]), size=int(entry["size"]))
        for entry in file_hashes
    ]


def _check_file_names(file_hashes: Any, errors: list[SchemaError]) -> None:
    if isinstance(file_hashes, dict):
        named = [(f"manifest.fileHashes[{k!r}]", k) for k in file_hashes.keys()]
    elif isinstance(file_hashes, list):
        named = [
            (f"manifest.fileHashes[{i}].file", entry.get("file"))
            for i, entry in enumerate(file_hashes)
            if isinstance(entry, dict) and isinstance(entry.get("file"), str)
        ]
    else:
        return

    seen: set[str] = set()
    for p, name in named:
        try:
            normalized = normalize_member_name(name)
        except ValueError as e:
            errors.append(SchemaError(path=p, message=f"invalid file name: {e}"))
            continue
        if normalized != name:
            errors.append(SchemaError(path=p, message=f"file name must be normalized as {normalized!r}"))
        if name in RESERVED_ENTRIES:
            errors.append(SchemaError(path=p, message=f"{name} must not be listed in fileHashes"))
        if name in seen:
            errors.append(SchemaError(path=p, message=f"duplicate file entry: {name}"))
        seen.add(name)


def validate_manifest(obj: Any, *, signature_checked: bool = False) -> list[SchemaError]:
    """Validate one component manifest and return every violation found.

    Invalid content is a reportable outcome, never an exception. Checks:
      1. component is a known kind
      2. buildInfo, metrics and fileHashes are present with the right shape
      3. every fileHashes entry has a 64-hex sha256 and a non-negative integer size
      4. the kind's required metrics are present, numeric and strictly positive
      5. threshold metrics appear only in the manifest of the kind that owns them
      6. numeric metrics are finite

    With signature_checked=True a malformed signature string is left to the
    signature check, which reports it as an invalid signature.
    """

    if not isinstance(obj, dict):
        return [SchemaError(path="manifest", message=f"expected type object, got {json_type_name(obj)}")]

    errors = validate_schema(obj, MANIFEST_SCHEMA, path="manifest")
    if signature_checked and isinstance(obj.get("signature"), str):
        errors = [e for e in errors if e.path != "manifest.signature"]

    kind: ComponentKind | None = None
    component = obj.get("component")
    if "component" in obj:
        if isinstance(component, str) and component in known_kinds():
            kind = ComponentKind(component)
        elif isinstance(component, str):
            errors.append(
                SchemaError(
                    path="manifest.component",
                    message=f"unknown component kind: {component!r} (expected one of {known_kinds()})",
                )
            )

    file_hashes = obj.get("fileHashes")
    if isinstance(file_hashes, dict):
        errors.extend(
            validate_schema(
                file_hashes,
                {"type": "object", "additionalProperties": _FILE_HASH_SCHEMA},
                path="manifest.fileHashes",
            )
        )
    elif isinstance(file_hashes, list):
        errors.extend(
            validate_schema(
                file_hashes,
                {"type": "array", "items": _FILE_HASH_LIST_ITEM_SCHEMA},
                path="manifest.fileHashes",
            )
        )
    _check_file_names(file_hashes, errors)

    metrics = obj.get("metrics")
    if kind is not None and isinstance(metrics, dict):
        for key in COMPONENT_SPECS[kind].required_metrics:
            p = f"manifest.metrics.{key}"
            if key not in metrics:
                errors.append(SchemaError(path=p, message=f"{kind.value} component requires metric '{key}'"))
                continue
            value = metrics[key]
            if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
                errors.append(SchemaError(path=p, message=f"metric must be numeric, got {json_type_name(value)}"))
            elif value <= 0:
                errors.append(SchemaError(path=p, message=f"metric must be > 0, got {value!r}"))

        for t in THRESHOLDS:
            if t.owner is not kind and t.metric in metrics:
                errors.append(
                    SchemaError(
                        path=f"manifest.metrics.{t.metric}",
                        message=f"metric '{t.metric}' is owned by the {t.owner.value} component",
                    )
                )

    if isinstance(metrics, dict):
        for key, value in metrics.items():
            if isinstance(value, float) and not math.isfinite(value):
                errors.append(
                    SchemaError(path=f"manifest.metrics.{key}", message=f"metric must be finite, got {value!r}")
                )

    errors.sort(key=lambda e: (e.path, e.message))
    return errors
