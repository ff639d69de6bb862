"""Find the newest component pack in a directory.

Primary contract: filenames of the form <prefix>_<YYYY-MM-DD>_UTC_<shortId>.<ext>.
Newest date wins; same-day ties go to the lexically greatest shortId. That
tie-break is deterministic but arbitrary: a greater shortId is not evidence of
a later build.

Degraded mode: when no candidate carries a parseable date, fall back to file
modification time. mtime is not content-addressed and changes on copy, so
results from this path are flagged with degraded=True.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path


_DATED_NAME_RE = re.compile(
    r"^(?P<prefix>.+)_(?P<date>\d{4}-\d{2}-\d{2})_UTC_(?P<short_id>[0-9A-Za-z]+)\.(?P<ext>[0-9A-Za-z]+)$"
)


@dataclass(frozen=True)
class DiscoveredPack:
    kind: str
    path: Path
    parsed_date: date | None
    short_id: str | None
    mtime: float
    degraded: bool = False

    @property
    def name(self) -> str:
        return self.path.name


def parse_pack_name(filename: str, prefix: str, *, ext: str = ".zip") -> tuple[date, str] | None:
    """Return (date, shortId) for a conforming filename, else None."""

    m = _DATED_NAME_RE.match(filename)
    if m is None:
        return None
    if m.group("prefix") != prefix:
        return None
    if "." + m.group("ext") != ext:
        return None
    try:
        parsed = datetime.strptime(m.group("date"), "%Y-%m-%d").date()
    except ValueError:
        return None
    return parsed, m.group("short_id")


def _candidate_files(directory: Path, prefix: str, ext: str) -> list[Path]:
    if not directory.is_dir():
        return []
    out: list[Path] = []
    for p in directory.iterdir():
        if not p.name.startswith(prefix) or not p.name.endswith(ext):
            continue
        if p.is_symlink() or not p.is_file():
            continue
        out.append(p)
    out.sort(key=lambda p: p.name)
    return out


def discover_packs(directory: Path, prefix: str, *, kind: str = "", ext: str = ".zip") -> list[DiscoveredPack]:
    """All candidates, newest first. Empty when the directory is missing or has no candidates."""

    directory = Path(directory)
    files = _candidate_files(directory, prefix, ext)
    if not files:
        return []

    dated: list[DiscoveredPack] = []
    for p in files:
        parsed = parse_pack_name(p.name, prefix, ext=ext)
        if parsed is None:
            continue
        dated.append(
            DiscoveredPack(
                kind=kind,
                path=p,
                parsed_date=parsed[0],
                short_id=parsed[1],
                mtime=p.stat().st_mtime,
            )
        )

    if dated:
        dated.sort(key=lambda d: (d.parsed_date, d.short_id, d.name), reverse=True)
        return dated

    undated = [
        DiscoveredPack(
            kind=kind,
            path=p,
            parsed_date=None,
            short_id=None,
            mtime=p.stat().st_mtime,
            degraded=True,
        )
        for p in files
    ]
    undated.sort(key=lambda d: (d.mtime, d.name), reverse=True)
    return undated


def discover_latest_pack(directory: Path, prefix: str, *, kind: str = "", ext: str = ".zip") -> DiscoveredPack | None:
    packs = discover_packs(directory, prefix, kind=kind, ext=ext)
    return packs[0] if packs else None


def discover_latest(directory: Path, prefix: str, *, ext: str = ".zip") -> Path | None:
    """Path of the newest pack, or None when this component's pack is absent."""

    found = discover_latest_pack(directory, prefix, ext=ext)
    return found.path if found is not None else None
