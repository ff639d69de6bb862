from __future__ import annotations

from pathlib import Path


def normalize_member_name(name: str, *, allow_backslashes: bool = False) -> str:
    """Normalize an archive member name to a relative POSIX path and reject escapes.

    Archives written on Windows may carry backslash separators; those are only
    accepted when allow_backslashes is set.
    """

    if not isinstance(name, str) or not name:
        raise ValueError("member name missing/empty")
    if "\x00" in name:
        raise ValueError("member name contains NUL")

    s = str(name)
    if "\\" in s:
        if not allow_backslashes:
            raise ValueError(f"member name must use '/' separators: {name!r}")
        s = s.replace("\\", "/")

    if s.startswith("/"):
        raise ValueError(f"absolute member names are not allowed: {name!r}")
    if len(s) >= 2 and s[1] == ":":
        raise ValueError(f"drive-qualified member names are not allowed: {name!r}")

    parts = [p for p in s.split("/") if p]
    if not parts:
        raise ValueError("empty member name not allowed")
    if any(p in (".", "..") for p in parts):
        raise ValueError(f"member name must not contain '.' or '..' segments: {name!r}")
    return "/".join(parts)


def safe_relpath(root: Path, p: Path) -> str:
    """POSIX path of p relative to root; paths resolving outside root raise ValueError."""

    try:
        return p.resolve().relative_to(root.resolve()).as_posix()
    except ValueError:
        raise ValueError(f"path escapes root {root}: {p}") from None
