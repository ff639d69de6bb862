from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


MANIFEST_ENTRY = "manifest.json"
CHECKSUMS_ENTRY = "checksums.sha256"

# Files that describe a pack rather than belong to it; never listed in fileHashes.
RESERVED_ENTRIES = frozenset({MANIFEST_ENTRY, CHECKSUMS_ENTRY})

MANIFEST_VERSION = "1.0"


class ComponentKind(str, Enum):
    UI = "ui"
    ENGINE = "engine"
    ASSIST = "assist"


@dataclass(frozen=True)
class ComponentSpec:
    kind: ComponentKind
    label: str
    pack_prefix: str
    required_metrics: tuple[str, ...]


# Each kind owns a disjoint slice of the metric namespace.
COMPONENT_SPECS: dict[ComponentKind, ComponentSpec] = {
    ComponentKind.UI: ComponentSpec(
        kind=ComponentKind.UI,
        label="UI",
        pack_prefix="ui_pack",
        required_metrics=("ui_layout_p95_ms",),
    ),
    ComponentKind.ENGINE: ComponentSpec(
        kind=ComponentKind.ENGINE,
        label="Engine",
        pack_prefix="engine_pack",
        required_metrics=("engine_get_p95_ms",),
    ),
    ComponentKind.ASSIST: ComponentSpec(
        kind=ComponentKind.ASSIST,
        label="Assist",
        pack_prefix="assist_pack",
        required_metrics=("assist_ttff_ms", "assist_cancel_ms"),
    ),
}


@dataclass(frozen=True)
class Threshold:
    metric: str
    owner: ComponentKind
    description: str
    max_value: float
    unit: str = "ms"


# Stable row order for every report.
THRESHOLDS: tuple[Threshold, ...] = (
    Threshold("ui_layout_p95_ms", ComponentKind.UI, "layout p95 (20 nodes)", 150),
    Threshold("engine_get_p95_ms", ComponentKind.ENGINE, "GET p95", 600),
    Threshold("assist_ttff_ms", ComponentKind.ASSIST, "time to first token", 500),
    Threshold("assist_cancel_ms", ComponentKind.ASSIST, "cancel latency", 150),
)


def known_kinds() -> list[str]:
    return [k.value for k in ComponentKind]


def parse_kind(value: str) -> ComponentKind:
    try:
        return ComponentKind(value)
    except ValueError:
        raise ValueError(f"unknown component kind: {value!r} (expected one of {known_kinds()})") from None


def threshold_metric_names() -> list[str]:
    return [t.metric for t in THRESHOLDS]
