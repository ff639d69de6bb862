from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from unipack.archive import read_entries, read_manifest
from unipack.config import ComposeLimits
from unipack.discovery import DiscoveredPack


@dataclass(frozen=True)
class PackContext:
    pack: DiscoveredPack
    limits: ComposeLimits
    signing_key: str | None = None
    _cache: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @property
    def kind(self) -> str:
        return self.pack.kind

    @property
    def pack_name(self) -> str:
        return self.pack.name

    def archive_size(self) -> int:
        if "size" not in self._cache:
            self._cache["size"] = self.pack.path.stat().st_size
        return self._cache["size"]

    def manifest(self) -> dict[str, Any]:
        """Decoded manifest.json; raises ArchiveError on a missing or malformed manifest."""

        if "manifest" not in self._cache:
            self._cache["manifest"] = read_manifest(self.pack.path)
        return self._cache["manifest"]

    def entries(self) -> dict[str, bytes]:
        if "entries" not in self._cache:
            self._cache["entries"] = read_entries(self.pack.path)
        return self._cache["entries"]
