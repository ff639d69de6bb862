"""Human-readable views of a CombinedManifest: Markdown compliance table, SVG status badge, acceptance lines.

Every renderer is a pure function of its inputs; identical inputs give identical bytes.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Mapping, Sequence

from unipack.protocol.components import COMPONENT_SPECS, THRESHOLDS, Threshold


class BadgeState(str, Enum):
    COMPLIANT = "compliant"
    INCOMPLETE = "incomplete"
    FAILED = "failed"


BADGE_COLOURS: dict[BadgeState, tuple[str, str]] = {
    BadgeState.COMPLIANT: ("GREEN", "#22c55e"),
    BadgeState.INCOMPLETE: ("AMBER", "#f59e0b"),
    BadgeState.FAILED: ("RED", "#ef4444"),
}

_MARK_PASS = "✅ PASS"
_MARK_FAIL = "❌ FAIL"
_MARK_UNKNOWN = "⚠️ UNKNOWN"


def metric_outcome(threshold: Threshold, value: Any) -> str | None:
    """"pass" / "fail", or None when the metric was not supplied as a number."""

    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return "pass" if value <= threshold.max_value else "fail"


def badge_state(merged_metrics: Mapping[str, Any]) -> BadgeState:
    """Absence of any threshold metric outranks a threshold failure."""

    outcomes = [metric_outcome(t, merged_metrics.get(t.metric)) for t in THRESHOLDS]
    if any(o is None for o in outcomes):
        return BadgeState.INCOMPLETE
    if any(o == "fail" for o in outcomes):
        return BadgeState.FAILED
    return BadgeState.COMPLIANT


def _fmt_number(v: Any) -> str:
    if v is None:
        return "n/a"
    if isinstance(v, float) and v.is_integer():
        return str(int(v))
    return str(v)


def _mark(outcome: str | None) -> str:
    if outcome is None:
        return _MARK_UNKNOWN
    return _MARK_PASS if outcome == "pass" else _MARK_FAIL


def render_compliance_markdown(
    merged_metrics: Mapping[str, Any],
    components: Sequence[Mapping[str, Any]],
    *,
    generated_at: str,
    release_name: str,
) -> str:
    state = badge_state(merged_metrics)
    colour, _ = BADGE_COLOURS[state]

    lines: list[str] = [
        "# Compliance Summary",
        "",
        f"- Release: `{release_name}`",
        f"- Generated: `{generated_at}`",
        f"- Status: **{state.value.upper()}** ({colour})",
        "",
        "## Thresholds",
        "",
        "| Metric | Component | Target | Value | Result |",
        "|---|---|---|---|---|",
    ]
    for t in THRESHOLDS:
        value = merged_metrics.get(t.metric)
        owner = COMPONENT_SPECS[t.owner].label
        target = f"<= {_fmt_number(t.max_value)} {t.unit}"
        lines.append(
            f"| `{t.metric}` ({t.description}) | {owner} | {target} | {_fmt_number(value)} | {_mark(metric_outcome(t, value))} |"
        )

    lines.extend(["", "## Components", ""])
    if components:
        lines.append("| Component | Archive | Files | Bytes | SHA-256 |")
        lines.append("|---|---|---|---|---|")
        for c in components:
            lines.append(
                f"| {c['component']} | `{c['archiveName']}` | {c['fileCount']} | {c['totalBytes']} | `{c['archiveDigest']}` |"
            )
    else:
        lines.append("_No component packs._")

    return "\n".join(lines) + "\n"


def render_badge_svg(state: BadgeState) -> str:
    colour, fill = BADGE_COLOURS[state]
    return (
        '<svg xmlns="http://www.w3.org/2000/svg" width="180" height="32">'
        f'<rect rx="4" width="180" height="32" fill="{fill}"/>'
        '<text x="90" y="21" text-anchor="middle" font-family="Arial, Helvetica, sans-serif" '
        f'font-size="14" fill="#fff">{colour}</text>'
        "</svg>\n"
    )


def _features_line(components: Sequence[Mapping[str, Any]]) -> str:
    declared = [c for c in components if c.get("featuresOn")]
    if not declared:
        return "FLAGS: none declared"
    return "FLAGS: " + "; ".join(f"{c['component']}=[{', '.join(c['featuresOn'])}]" for c in declared)


def acceptance_lines(
    archive_path: str,
    merged_metrics: Mapping[str, Any],
    *,
    max_archive_bytes: int,
    max_total_bytes: int,
    components: Sequence[Mapping[str, Any]] = (),
) -> list[str]:
    metrics = ", ".join(f"{t.metric}={_fmt_number(merged_metrics.get(t.metric))}" for t in THRESHOLDS)
    slo = " / ".join(
        f"{t.metric}={_fmt_number(merged_metrics.get(t.metric))} {_mark(metric_outcome(t, merged_metrics.get(t.metric))).split(' ')[0]}"
        for t in THRESHOLDS
    )
    return [
        f"UNIFIED_PACK: {archive_path}",
        f"METRICS: {metrics}",
        "ACCEPTANCE:COMPOSER: Created unified zip + manifest + COMPLIANCE_SUMMARY.md",
        f"ACCEPTANCE:THRESHOLDS: {slo}",
        f"ACCEPTANCE:SIZE: per-archive <= {max_archive_bytes} bytes, total <= {max_total_bytes} bytes",
        "ACCEPTANCE:INTEGRITY: all component manifests verified",
        _features_line(components),
        "PRIVACY: informational only (see component packs)",
    ]
