from __future__ import annotations

from unipack.archive import ArchiveError
from unipack.gates.base import CheckResult, passed, unreadable_pack
from unipack.gates.context import PackContext
from unipack.protocol.signing import verify_manifest


_CATEGORY_BY_CODE = {
    "invalid-manifest": "FU-SCHEMA-INVALID",
    "invalid-signature": "FU-SIGNATURE-INVALID",
    "missing-signature": "FU-SIGNATURE-MISSING",
    "missing-file": "FU-FILE-MISSING",
    "hash-mismatch": "FU-HASH-MISMATCH",
    "size-mismatch": "FU-SIZE-MISMATCH",
    "unexpected-file": "FU-UNEXPECTED-FILE",
}

_SIGNATURE_CAUSE = "The manifest was edited after signing, or the pack was sealed with a different signing key."
_SIGNATURE_REMEDIATION = "Do re-seal the pack with the configured signing key (unipack seal) and re-run compose."
_CONTENT_CAUSE = "Pack contents changed after the manifest was generated (files edited, added, or dropped on re-zip)."
_CONTENT_REMEDIATION = "Do regenerate the pack from a clean producer run so manifest and contents agree."


def run(ctx: PackContext) -> list[CheckResult]:
    try:
        manifest = ctx.manifest()
        entries = ctx.entries()
    except ArchiveError as e:
        return [unreadable_pack("P3", ctx.pack_name, e)]

    violations = verify_manifest(manifest, entries, ctx.signing_key)

    if violations:
        # First violation decides the category; signature problems are reported before content ones.
        code = violations[0].code
        signature_problem = code in ("invalid-signature", "missing-signature")
        return [
            CheckResult(
                check_id="P3",
                status="FAIL",
                category=_CATEGORY_BY_CODE.get(code, "FU-HASH-MISMATCH"),
                message=f"{ctx.kind} pack {ctx.pack_name} failed integrity verification ({len(violations)} violation(s))",
                pointers=[ctx.pack_name] + sorted({v.file for v in violations if v.file}),
                likely_cause=_SIGNATURE_CAUSE if signature_problem else _CONTENT_CAUSE,
                remediation_next_instruction=_SIGNATURE_REMEDIATION if signature_problem else _CONTENT_REMEDIATION,
                details=[v.message for v in violations],
            )
        ]

    if ctx.signing_key:
        note = "signature verified"
    elif manifest.get("signature") is not None:
        note = "signature present but not verified (no signing key configured)"
    else:
        note = "unsigned; hash checks only"
    return [passed("P3", f"{ctx.pack_name}: all declared files match ({note}).", [ctx.pack_name])]
