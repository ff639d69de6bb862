from __future__ import annotations

from unipack.gates.base import CheckResult, passed, unreadable_pack
from unipack.gates.context import PackContext


def run(ctx: PackContext) -> list[CheckResult]:
    limit = ctx.limits.max_archive_bytes
    try:
        size = ctx.archive_size()
    except OSError as e:
        return [unreadable_pack("P1", ctx.pack_name, e)]

    if size > limit:
        return [
            CheckResult(
                check_id="P1",
                status="FAIL",
                category="FU-SIZE-EXCEEDED",
                message=f"{ctx.kind} pack {ctx.pack_name} exceeds max_archive_bytes ({size} > {limit})",
                pointers=[ctx.pack_name],
                likely_cause="The producing component bundled more or larger artifacts than the per-archive budget allows.",
                remediation_next_instruction="Do trim the pack's payload in its producer (or raise --max-archive-bytes deliberately) then re-run compose.",
            )
        ]

    return [passed("P1", f"{ctx.pack_name}: {size} bytes within max_archive_bytes {limit}.", [ctx.pack_name])]
