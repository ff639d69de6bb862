"""unipack: evidence pack sealing and unified release composition.

This package contains no producer-specific semantics; component packs are
opaque archives plus a manifest.
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version


def __getattr__(name: str):
    if name == "__version__":
        try:
            return version("unipack")
        except PackageNotFoundError:
            return "0.0.0"
    raise AttributeError(name)
