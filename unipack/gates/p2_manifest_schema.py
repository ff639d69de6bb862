from __future__ import annotations

from unipack.archive import ArchiveError
from unipack.gates.base import CheckResult, passed, unreadable_pack
from unipack.gates.context import PackContext
from unipack.protocol.manifest import validate_manifest


def run(ctx: PackContext) -> list[CheckResult]:
    try:
        manifest = ctx.manifest()
    except ArchiveError as e:
        return [unreadable_pack("P2", ctx.pack_name, e)]

    # With a key configured, P3 reports a malformed signature as an invalid signature.
    errors = validate_manifest(manifest, signature_checked=bool(ctx.signing_key))
    violations = [f"{e.path}: {e.message}" for e in errors]

    declared = manifest.get("component")
    if isinstance(declared, str) and declared != ctx.kind:
        violations.append(f"manifest.component: pack discovered as {ctx.kind!r} declares {declared!r}")

    if violations:
        return [
            CheckResult(
                check_id="P2",
                status="FAIL",
                category="FU-SCHEMA-INVALID",
                message=f"{ctx.kind} pack {ctx.pack_name} manifest is invalid ({len(violations)} violation(s))",
                pointers=[ctx.pack_name],
                likely_cause="The producer wrote a manifest missing required fields or metrics, or with malformed values.",
                remediation_next_instruction="Do fix the producer's manifest output (component, buildInfo, metrics, fileHashes) and re-seal the pack.",
                details=violations,
            )
        ]

    return [passed("P2", f"{ctx.pack_name}: manifest valid for component {ctx.kind!r}.", [ctx.pack_name])]
