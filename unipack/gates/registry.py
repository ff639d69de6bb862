from __future__ import annotations

from typing import Callable

from unipack.gates import p1_size_budget, p2_manifest_schema, p3_integrity
from unipack.gates.base import CheckResult
from unipack.gates.context import PackContext


CheckFn = Callable[[PackContext], list[CheckResult]]


def get_checks() -> list[CheckFn]:
    """Pack gates in evaluation order. A failing gate stops the remaining gates for that pack."""

    return [
        p1_size_budget.run,
        p2_manifest_schema.run,
        p3_integrity.run,
    ]


def run_gates(ctx: PackContext) -> list[CheckResult]:
    results: list[CheckResult] = []
    for check in get_checks():
        out = check(ctx)
        results.extend(out)
        if any(r.failed for r in out):
            break
    return results
