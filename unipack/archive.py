"""Zip archive access for component packs and the unified release archive.

Listings are always sorted by member name so repeated reads of the same
archive agree regardless of the physical entry order the writing tool chose.
Writes use fixed per-entry metadata so identical inputs produce identical bytes.
"""

from __future__ import annotations

import io
import json
import os
import zipfile
from pathlib import Path
from typing import Any, Iterable, Mapping

from unipack.core.jail import normalize_member_name
from unipack.protocol.components import MANIFEST_ENTRY


# Earliest timestamp the zip format can represent.
ZIP_FIXED_DATE_TIME = (1980, 1, 1, 0, 0, 0)
_ZIP_FILE_MODE = 0o100644


class ArchiveError(ValueError):
    """The archive cannot be processed (unreadable, corrupt, or missing its manifest)."""


def _open(archive_path: Path) -> zipfile.ZipFile:
    try:
        return zipfile.ZipFile(Path(archive_path), mode="r")
    except (OSError, zipfile.BadZipFile) as e:
        raise ArchiveError(f"cannot open archive {Path(archive_path).name}: {e}") from e


def _file_members(zf: zipfile.ZipFile) -> dict[str, zipfile.ZipInfo]:
    members: dict[str, zipfile.ZipInfo] = {}
    for info in zf.infolist():
        if info.is_dir():
            continue
        try:
            name = normalize_member_name(info.filename, allow_backslashes=True)
        except ValueError as e:
            raise ArchiveError(f"unsafe member name {info.filename!r}: {e}") from e
        if name in members:
            raise ArchiveError(f"duplicate member name: {name}")
        members[name] = info
    return members


def list_entries(archive_path: Path) -> list[str]:
    """File entries of the archive, directories excluded, lexically sorted."""

    with _open(archive_path) as zf:
        return sorted(_file_members(zf).keys())


def read_entry(archive_path: Path, name: str) -> bytes:
    with _open(archive_path) as zf:
        members = _file_members(zf)
        info = members.get(name)
        if info is None:
            raise ArchiveError(f"archive {Path(archive_path).name} has no entry {name!r}")
        try:
            return zf.read(info)
        except (OSError, zipfile.BadZipFile, RuntimeError) as e:
            raise ArchiveError(f"cannot read {name!r} from {Path(archive_path).name}: {e}") from e


def read_entries(archive_path: Path) -> dict[str, bytes]:
    """Every file entry keyed by normalized name, in sorted name order."""

    out: dict[str, bytes] = {}
    with _open(archive_path) as zf:
        members = _file_members(zf)
        for name in sorted(members):
            try:
                out[name] = zf.read(members[name])
            except (OSError, zipfile.BadZipFile, RuntimeError) as e:
                raise ArchiveError(f"cannot read {name!r} from {Path(archive_path).name}: {e}") from e
    return out


def _reject_constant(name: str) -> Any:
    raise ValueError(f"non-finite number {name} is not valid JSON")


def read_manifest(archive_path: Path) -> dict[str, Any]:
    """Decode the pack's manifest.json. Missing or malformed manifests raise ArchiveError."""

    raw = read_entry(archive_path, MANIFEST_ENTRY)
    try:
        obj = json.loads(raw.decode("utf-8", errors="strict"), parse_constant=_reject_constant)
    except ValueError as e:
        raise ArchiveError(f"{MANIFEST_ENTRY} in {Path(archive_path).name} is not valid UTF-8 JSON: {e}") from e
    if not isinstance(obj, dict):
        raise ArchiveError(f"{MANIFEST_ENTRY} in {Path(archive_path).name} must be a JSON object")
    return obj


def build_archive_bytes(
    entries: Iterable[tuple[str, bytes]],
    *,
    compression: int = zipfile.ZIP_STORED,
) -> bytes:
    """Serialize entries, in the given order, into a reproducible zip."""

    buf = io.BytesIO()
    seen: set[str] = set()
    with zipfile.ZipFile(buf, mode="w", compression=compression, allowZip64=True) as zf:
        for raw_name, data in entries:
            name = normalize_member_name(raw_name)
            if name in seen:
                raise ValueError(f"duplicate archive entry: {name}")
            seen.add(name)
            info = zipfile.ZipInfo(name, date_time=ZIP_FIXED_DATE_TIME)
            info.compress_type = compression
            info.external_attr = (_ZIP_FILE_MODE & 0xFFFF) << 16
            info.create_system = 3
            zf.writestr(info, bytes(data))
    return buf.getvalue()


def write_atomic(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.tmp")
    try:
        tmp.write_bytes(data)
        os.replace(tmp, path)
    finally:
        if tmp.exists():
            tmp.unlink()


def write_pack(path: Path, files: Mapping[str, bytes]) -> Path:
    """Write a component pack with entries in sorted name order."""

    path = Path(path)
    data = build_archive_bytes(
        ((name, files[name]) for name in sorted(files)),
        compression=zipfile.ZIP_DEFLATED,
    )
    write_atomic(path, data)
    return path
