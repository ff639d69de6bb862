"""Compose the latest pack of each component into one unified, verifiable release.

Pipeline (single pass, synchronous):
  1. discover the newest pack per component kind (absent kinds are skipped)
  2. gate every pack: size budget, manifest schema, integrity
  3. aggregate totals and merged metrics, enforce the total size budget
  4. render every output in memory, then write them all or none

Any gate failure aborts with CompositionAborted carrying every failing result,
so one run reports all broken packs at once.
"""

from __future__ import annotations

import os
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from unipack.archive import build_archive_bytes
from unipack.config import DEFAULT_RELEASE_PREFIX, ComposeLimits
from unipack.core.hash import sha256_bytes
from unipack.core.jail import normalize_member_name
from unipack.core.json_canon import canonical_json_bytes
from unipack.core.schema import validate_schema
from unipack.core.time import parse_iso_date, utc_date, utc_timestamp_iso_z
from unipack.discovery import DiscoveredPack, discover_latest_pack
from unipack.gates.base import CheckResult
from unipack.gates.context import PackContext
from unipack.gates.registry import run_gates
from unipack.protocol.components import COMPONENT_SPECS, THRESHOLDS, ComponentKind, known_kinds, parse_kind
from unipack.protocol.manifest import ComponentManifest
from unipack.report import BadgeState, badge_state, render_badge_svg, render_compliance_markdown


UNIFIED_MANIFEST_NAME = "unified.manifest.json"
SUMMARY_NAME = "COMPLIANCE_SUMMARY.md"
BADGE_NAME = "STATUS_BADGE.svg"

_SHA256_PATTERN = r"^[0-9a-f]{64}$"

COMBINED_MANIFEST_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["generatedAt", "components", "mergedMetrics", "totals", "status"],
    "additionalProperties": False,
    "properties": {
        "generatedAt": {"type": "string", "pattern": r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}Z$"},
        "components": {
            "type": "array",
            "minItems": 1,
            "items": {
                "type": "object",
                "required": [
                    "component",
                    "buildInfo",
                    "fileCount",
                    "totalBytes",
                    "archiveDigest",
                    "archiveName",
                    "featuresOn",
                ],
                "additionalProperties": False,
                "properties": {
                    "component": {"type": "string", "enum": known_kinds()},
                    "buildInfo": {"type": "object"},
                    "fileCount": {"type": "integer", "minimum": 0},
                    "totalBytes": {"type": "integer", "minimum": 0},
                    "archiveDigest": {"type": "string", "pattern": _SHA256_PATTERN},
                    "archiveName": {"type": "string"},
                    "featuresOn": {"type": "array", "items": {"type": "string"}},
                },
            },
        },
        "mergedMetrics": {"type": "object", "required": [t.metric for t in THRESHOLDS]},
        "totals": {
            "type": "object",
            "required": ["fileCount", "totalBytes"],
            "additionalProperties": False,
            "properties": {
                "fileCount": {"type": "integer", "minimum": 0},
                "totalBytes": {"type": "integer", "minimum": 0},
            },
        },
        "status": {"type": "string", "enum": [s.value for s in BadgeState]},
    },
}


class CompositionAborted(RuntimeError):
    """Composition stopped before any output was written."""

    def __init__(self, message: str, results: list[CheckResult]) -> None:
        super().__init__(message)
        self.results = list(results)

    @property
    def failures(self) -> list[CheckResult]:
        return [r for r in self.results if r.failed]


@dataclass(frozen=True)
class ComponentSummary:
    component: str
    build_info: dict[str, Any]
    file_count: int
    total_bytes: int
    archive_digest: str
    archive_name: str
    features_on: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "component": self.component,
            "buildInfo": dict(self.build_info),
            "fileCount": self.file_count,
            "totalBytes": self.total_bytes,
            "archiveDigest": self.archive_digest,
            "archiveName": self.archive_name,
            "featuresOn": list(self.features_on),
        }


@dataclass(frozen=True)
class CombinedManifest:
    generated_at: str
    components: tuple[ComponentSummary, ...]
    merged_metrics: dict[str, Any]
    status: BadgeState

    @property
    def total_file_count(self) -> int:
        return sum(c.file_count for c in self.components)

    @property
    def total_bytes(self) -> int:
        return sum(c.total_bytes for c in self.components)

    def to_dict(self) -> dict[str, Any]:
        return {
            "generatedAt": self.generated_at,
            "components": [c.to_dict() for c in self.components],
            "mergedMetrics": dict(self.merged_metrics),
            "totals": {"fileCount": self.total_file_count, "totalBytes": self.total_bytes},
            "status": self.status.value,
        }


@dataclass(frozen=True)
class ComposeResult:
    manifest: CombinedManifest
    release_name: str
    out_dir: Path
    archive_path: Path
    manifest_path: Path
    summary_path: Path
    badge_path: Path
    packs: tuple[DiscoveredPack, ...]
    results: list[CheckResult] = field(default_factory=list)


def _abort(check_id: str, category: str, message: str, cause: str, remediation: str, pointers: list[str]) -> CompositionAborted:
    result = CheckResult(
        check_id=check_id,
        status="FAIL",
        category=category,
        message=message,
        pointers=pointers,
        likely_cause=cause,
        remediation_next_instruction=remediation,
    )
    return CompositionAborted(message, [result])


def discover_inputs(inputs: Mapping[Any, Path]) -> list[DiscoveredPack]:
    """Newest pack per kind, in input order. Kinds whose pack is absent are skipped."""

    packs: list[DiscoveredPack] = []
    for raw_kind, directory in inputs.items():
        kind = raw_kind if isinstance(raw_kind, ComponentKind) else parse_kind(str(raw_kind))
        spec = COMPONENT_SPECS[kind]
        found = discover_latest_pack(Path(directory), spec.pack_prefix, kind=kind.value)
        if found is not None:
            packs.append(found)
    return packs


def default_release_name(date: str | None, *, deterministic: bool) -> str:
    date_str = parse_iso_date(date) if date else utc_date(deterministic=deterministic)
    return f"{DEFAULT_RELEASE_PREFIX}_{date_str}_UTC"


def _check_release_name(name: str) -> str:
    normalized = normalize_member_name(name)
    if "/" in normalized:
        raise ValueError(f"release name must be a plain file stem, got {name!r}")
    return normalized


def merge_metrics(manifests: list[ComponentManifest]) -> dict[str, Any]:
    """Last writer wins; every threshold metric is present, None when no component supplied it."""

    merged: dict[str, Any] = {t.metric: None for t in THRESHOLDS}
    for m in manifests:
        merged.update(m.metrics)
    return merged


def _write_outputs(out_dir: Path, outputs: list[tuple[str, bytes]]) -> None:
    """Write every output or none; on failure, previously existing outputs are restored."""

    out_dir.mkdir(parents=True, exist_ok=True)
    staged: list[tuple[Path, Path, Path]] = []
    placed: list[tuple[Path, Path]] = []
    try:
        for name, data in outputs:
            final = out_dir / name
            tmp = out_dir / f".{name}.tmp"
            tmp.write_bytes(data)
            staged.append((tmp, final, out_dir / f".{name}.bak"))
        for tmp, final, backup in staged:
            if final.exists():
                os.replace(final, backup)
            placed.append((final, backup))
            os.replace(tmp, final)
    except OSError:
        for final, backup in reversed(placed):
            if final.exists():
                final.unlink()
            if backup.exists():
                os.replace(backup, final)
        raise
    finally:
        for tmp, _, backup in staged:
            if tmp.exists():
                tmp.unlink()
            if backup.exists():
                backup.unlink()


def compose(
    inputs: Mapping[Any, Path],
    out_dir: Path,
    limits: ComposeLimits | None = None,
    *,
    signing_key: str | None = None,
    release_name: str | None = None,
    date: str | None = None,
    deterministic: bool = False,
) -> ComposeResult:
    limits = limits or ComposeLimits()
    out_dir = Path(out_dir)

    name = _check_release_name(release_name) if release_name else default_release_name(date, deterministic=deterministic)

    packs = discover_inputs(inputs)
    if not packs:
        raise _abort(
            "C0",
            "FU-NO-PACKS",
            "No component packs found; nothing to compose",
            "Input directories are empty or hold no files named <prefix>_<YYYY-MM-DD>_UTC_<id>.zip.",
            "Do run the component producers (or fix --in KIND=DIR paths) then re-run compose.",
            [str(Path(d)) for d in inputs.values()],
        )

    contexts = [PackContext(pack=p, limits=limits, signing_key=signing_key) for p in packs]
    results: list[CheckResult] = []
    for ctx in contexts:
        results.extend(run_gates(ctx))

    failed = [r for r in results if r.failed]
    if failed:
        raise CompositionAborted(f"{len(failed)} pack gate(s) failed", results)

    manifests: list[ComponentManifest] = []
    summaries: list[ComponentSummary] = []
    archives: list[tuple[str, bytes]] = []
    for ctx in contexts:
        manifest = ComponentManifest.from_dict(ctx.manifest())
        data = ctx.pack.path.read_bytes()
        manifests.append(manifest)
        archives.append((ctx.pack_name, data))
        summaries.append(
            ComponentSummary(
                component=ctx.kind,
                build_info=dict(manifest.build_info),
                file_count=manifest.file_count,
                total_bytes=len(data),
                archive_digest=sha256_bytes(data),
                archive_name=ctx.pack_name,
                features_on=tuple(manifest.extra.get("featuresOn") or ()),
            )
        )

    merged = merge_metrics(manifests)
    combined = CombinedManifest(
        generated_at=utc_timestamp_iso_z(deterministic=deterministic),
        components=tuple(summaries),
        merged_metrics=merged,
        status=badge_state(merged),
    )

    if combined.total_bytes > limits.max_total_bytes:
        abort = _abort(
            "C1",
            "FU-TOTAL-SIZE-EXCEEDED",
            f"Combined packs exceed max_total_bytes ({combined.total_bytes} > {limits.max_total_bytes})",
            "Component packs are individually within budget but too large together.",
            "Do shrink the largest component packs (or raise --max-total-bytes deliberately) then re-run compose.",
            [s.archive_name for s in summaries],
        )
        abort.results = results + abort.results
        raise abort

    manifest_obj = combined.to_dict()
    schema_errors = validate_schema(manifest_obj, COMBINED_MANIFEST_SCHEMA, path="unified")
    if schema_errors:
        first = schema_errors[0]
        raise RuntimeError(f"internal error: combined manifest invalid: {first.path}: {first.message}")

    archive_name = f"{name}.zip"
    summary_md = render_compliance_markdown(
        merged,
        manifest_obj["components"],
        generated_at=combined.generated_at,
        release_name=name,
    )
    outputs = [
        (UNIFIED_MANIFEST_NAME, canonical_json_bytes(manifest_obj)),
        (archive_name, build_archive_bytes(archives, compression=zipfile.ZIP_STORED)),
        (SUMMARY_NAME, summary_md.encode("utf-8")),
        (BADGE_NAME, render_badge_svg(combined.status).encode("utf-8")),
    ]

    try:
        _write_outputs(out_dir, outputs)
    except OSError as e:
        abort = _abort(
            "C2",
            "FU-OUTPUT-WRITE",
            f"Cannot write outputs to {out_dir}",
            str(e),
            "Do check the output directory exists or can be created and is writable, then re-run compose.",
            [str(out_dir)],
        )
        abort.results = results + abort.results
        raise abort from e

    return ComposeResult(
        manifest=combined,
        release_name=name,
        out_dir=out_dir,
        archive_path=out_dir / archive_name,
        manifest_path=out_dir / UNIFIED_MANIFEST_NAME,
        summary_path=out_dir / SUMMARY_NAME,
        badge_path=out_dir / BADGE_NAME,
        packs=tuple(packs),
        results=results,
    )
