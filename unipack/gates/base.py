from __future__ import annotations

from dataclasses import dataclass, field


Status = str  # "PASS" | "FAIL"


@dataclass(frozen=True)
class CheckResult:
    check_id: str
    status: Status
    message: str
    pointers: list[str]
    category: str | None = None
    likely_cause: str | None = None
    remediation_next_instruction: str | None = None
    details: list[str] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return self.status == "FAIL"


def passed(check_id: str, message: str, pointers: list[str] | None = None) -> CheckResult:
    return CheckResult(check_id=check_id, status="PASS", message=message, pointers=list(pointers or []))


def unreadable_pack(check_id: str, pack_name: str, error: Exception) -> CheckResult:
    return CheckResult(
        check_id=check_id,
        status="FAIL",
        category="FU-PACK-UNREADABLE",
        message=f"Cannot process pack {pack_name}",
        pointers=[pack_name],
        likely_cause=str(error),
        remediation_next_instruction="Do regenerate the pack with its producer (valid zip containing manifest.json) then re-run compose.",
    )
