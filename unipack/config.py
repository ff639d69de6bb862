"""Configuration resolved at the CLI boundary and passed explicitly into library calls."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from unipack.protocol.components import ComponentKind, parse_kind


MIB = 1024 * 1024

DEFAULT_MAX_ARCHIVE_BYTES = 50 * MIB
DEFAULT_MAX_TOTAL_BYTES = 150 * MIB

DEFAULT_RELEASE_PREFIX = "Unified_Evidence"

ENV_SIGNING_KEY = "UNIPACK_SIGNING_KEY"
ENV_BUILD_VERSION = "UNIPACK_BUILD_VERSION"
ENV_BUILD_COMMIT = "UNIPACK_BUILD_COMMIT"


@dataclass(frozen=True)
class ComposeLimits:
    max_archive_bytes: int = DEFAULT_MAX_ARCHIVE_BYTES
    max_total_bytes: int = DEFAULT_MAX_TOTAL_BYTES

    def __post_init__(self) -> None:
        for label, value in (
            ("max_archive_bytes", self.max_archive_bytes),
            ("max_total_bytes", self.max_total_bytes),
        ):
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                raise ValueError(f"{label} must be a non-negative int, got {value!r}")


def resolve_signing_key(
    *,
    key_file: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> str | None:
    """Signing secret from --signing-key-file, else UNIPACK_SIGNING_KEY, else None (unsigned)."""

    if key_file is not None:
        text = Path(key_file).read_text(encoding="utf-8", errors="strict").strip()
        if not text:
            raise ValueError(f"signing key file is empty: {key_file}")
        return text

    env = os.environ if environ is None else environ
    value = str(env.get(ENV_SIGNING_KEY) or "").strip()
    return value or None


def collect_build_info(
    *,
    version: str | None = None,
    commit: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """buildInfo for a sealed pack: explicit values first, then environment, omitted if unknown."""

    env = os.environ if environ is None else environ
    info: dict[str, str] = {}

    resolved_version = version or str(env.get(ENV_BUILD_VERSION) or "").strip()
    if resolved_version:
        info["version"] = resolved_version

    resolved_commit = commit or str(env.get(ENV_BUILD_COMMIT) or env.get("GITHUB_SHA") or "").strip()
    if resolved_commit:
        info["commit"] = resolved_commit

    return info


def parse_input_spec(raw: str) -> tuple[ComponentKind, Path]:
    """Parse one --in value of the form KIND=DIR."""

    kind_raw, sep, dir_raw = str(raw).partition("=")
    if not sep or not kind_raw.strip() or not dir_raw.strip():
        raise ValueError(f"--in must be KIND=DIR, got {raw!r}")
    return parse_kind(kind_raw.strip()), Path(dir_raw.strip())


def parse_inputs(raw_values: list[str]) -> dict[ComponentKind, Path]:
    """Ordered kind -> directory mapping; input order is discovery order."""

    out: dict[ComponentKind, Path] = {}
    for raw in raw_values:
        kind, directory = parse_input_spec(raw)
        if kind in out:
            raise ValueError(f"component kind given more than once: {kind.value}")
        out[kind] = directory
    return out
