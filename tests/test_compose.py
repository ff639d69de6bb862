"""End-to-end composition tests.

These tests verify:
1. Three valid packs compose into one release with correct totals and threshold rows
2. Absent components yield a partial, incomplete release
3. Every gate failure across all packs is reported and nothing is written
4. Two deterministic runs over the same packs produce byte-identical outputs
"""
from __future__ import annotations

import io
import json
import os
import sys
import zipfile
from pathlib import Path
from typing import Any

import pytest


REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from unipack.archive import write_pack
from unipack.compose import (
    BADGE_NAME,
    SUMMARY_NAME,
    UNIFIED_MANIFEST_NAME,
    CompositionAborted,
    compose,
)
from unipack.config import ComposeLimits
from unipack.core.hash import sha256_bytes
from unipack.protocol.components import COMPONENT_SPECS, MANIFEST_ENTRY, ComponentKind
from unipack.protocol.signing import seal_files


KEY = "compose-key"

GOOD_METRICS = {
    "ui": {"ui_layout_p95_ms": 120},
    "engine": {"engine_get_p95_ms": 480},
    "assist": {"assist_ttff_ms": 350, "assist_cancel_ms": 90},
}


def _make_pack(
    root: Path,
    kind: str,
    *,
    metrics: dict[str, Any] | None = None,
    files: dict[str, bytes] | None = None,
    key: str | None = KEY,
    day: str = "2024-05-01",
    short_id: str = "abc123",
    tamper: dict[str, bytes] | None = None,
    features: list[str] | None = None,
) -> Path:
    directory = root / kind
    directory.mkdir(parents=True, exist_ok=True)
    payload = files if files is not None else {f"{kind}/report.txt": f"{kind} evidence\n".encode("utf-8"), "README.md": b"# pack\n"}
    sealed = seal_files(
        payload,
        kind,
        signing_key=key,
        metrics=GOOD_METRICS[kind] if metrics is None else metrics,
        build_info={"version": "1.0.0", "commit": f"{kind}-sha"},
        features_on=features,
    )
    sealed.update(tamper or {})
    prefix = COMPONENT_SPECS[ComponentKind(kind)].pack_prefix
    return write_pack(directory / f"{prefix}_{day}_UTC_{short_id}.zip", sealed)


def _inputs(root: Path, kinds: list[str]) -> dict[str, Path]:
    return {k: root / k for k in kinds}


def test_three_pack_composition(tmp_path: Path) -> None:
    packs_root = tmp_path / "packs"
    metrics = dict(GOOD_METRICS)
    metrics["engine"] = {"engine_get_p95_ms": 700}
    paths = {k: _make_pack(packs_root, k, metrics=metrics[k]) for k in ("ui", "engine", "assist")}

    out = tmp_path / "out"
    result = compose(_inputs(packs_root, ["ui", "engine", "assist"]), out, signing_key=KEY, date="2024-05-02")

    assert result.release_name == "Unified_Evidence_2024-05-02_UTC"
    assert result.archive_path == out / "Unified_Evidence_2024-05-02_UTC.zip"
    assert sorted(p.name for p in out.iterdir()) == sorted(
        [BADGE_NAME, SUMMARY_NAME, UNIFIED_MANIFEST_NAME, "Unified_Evidence_2024-05-02_UTC.zip"]
    )

    manifest = json.loads((out / UNIFIED_MANIFEST_NAME).read_text(encoding="utf-8"))
    assert [c["component"] for c in manifest["components"]] == ["ui", "engine", "assist"]
    for c in manifest["components"]:
        data = paths[c["component"]].read_bytes()
        assert c["totalBytes"] == len(data)
        assert c["archiveDigest"] == sha256_bytes(data)
        assert c["archiveName"] == paths[c["component"]].name
        assert c["fileCount"] == 2
        assert c["buildInfo"]["commit"] == f"{c['component']}-sha"
    assert manifest["totals"] == {
        "fileCount": 6,
        "totalBytes": sum(p.stat().st_size for p in paths.values()),
    }
    assert manifest["mergedMetrics"] == {
        "ui_layout_p95_ms": 120,
        "engine_get_p95_ms": 700,
        "assist_ttff_ms": 350,
        "assist_cancel_ms": 90,
    }
    assert manifest["status"] == "failed"

    summary = (out / SUMMARY_NAME).read_text(encoding="utf-8")
    assert "| `engine_get_p95_ms` (GET p95) | Engine | <= 600 ms | 700 | ❌ FAIL |" in summary
    assert "| `ui_layout_p95_ms` (layout p95 (20 nodes)) | UI | <= 150 ms | 120 | ✅ PASS |" in summary
    assert ">RED<" in (out / BADGE_NAME).read_text(encoding="utf-8")


def test_combined_archive_stores_component_archives_in_discovery_order(tmp_path: Path) -> None:
    packs_root = tmp_path / "packs"
    paths = {k: _make_pack(packs_root, k) for k in ("assist", "ui")}

    result = compose(_inputs(packs_root, ["assist", "ui"]), tmp_path / "out", signing_key=KEY)

    with zipfile.ZipFile(result.archive_path) as zf:
        assert zf.namelist() == [paths["assist"].name, paths["ui"].name]
        for info in zf.infolist():
            assert info.compress_type == zipfile.ZIP_STORED
            assert zf.read(info) == paths[info.filename.split("_pack_")[0]].read_bytes()


def test_all_thresholds_met_is_compliant(tmp_path: Path) -> None:
    packs_root = tmp_path / "packs"
    for k in ("ui", "engine", "assist"):
        _make_pack(packs_root, k)

    result = compose(_inputs(packs_root, ["ui", "engine", "assist"]), tmp_path / "out", signing_key=KEY)
    assert result.manifest.status.value == "compliant"
    assert ">GREEN<" in result.badge_path.read_text(encoding="utf-8")


def test_partial_composition_is_incomplete(tmp_path: Path) -> None:
    packs_root = tmp_path / "packs"
    _make_pack(packs_root, "ui")
    _make_pack(packs_root, "engine")
    (packs_root / "assist").mkdir()

    result = compose(_inputs(packs_root, ["ui", "engine", "assist"]), tmp_path / "out", signing_key=KEY)
    manifest = json.loads(result.manifest_path.read_text(encoding="utf-8"))
    assert [c["component"] for c in manifest["components"]] == ["ui", "engine"]
    assert manifest["mergedMetrics"]["assist_ttff_ms"] is None
    assert manifest["mergedMetrics"]["assist_cancel_ms"] is None
    assert manifest["status"] == "incomplete"
    assert "⚠️ UNKNOWN" in result.summary_path.read_text(encoding="utf-8")
    assert ">AMBER<" in result.badge_path.read_text(encoding="utf-8")


def test_absence_outranks_threshold_failure(tmp_path: Path) -> None:
    packs_root = tmp_path / "packs"
    _make_pack(packs_root, "ui", metrics={"ui_layout_p95_ms": 999})

    result = compose(_inputs(packs_root, ["ui"]), tmp_path / "out", signing_key=KEY)
    assert result.manifest.status.value == "incomplete"


def test_merged_metrics_last_writer_wins(tmp_path: Path) -> None:
    packs_root = tmp_path / "packs"
    _make_pack(packs_root, "ui", metrics={"ui_layout_p95_ms": 120, "shared_note": 1, "ui_only": 7})
    _make_pack(packs_root, "engine", metrics={"engine_get_p95_ms": 480, "shared_note": 2})

    result = compose(_inputs(packs_root, ["ui", "engine"]), tmp_path / "out", signing_key=KEY)
    assert result.manifest.merged_metrics["shared_note"] == 2
    assert result.manifest.merged_metrics["ui_only"] == 7
    assert result.manifest.merged_metrics["engine_get_p95_ms"] == 480


def test_threshold_metric_from_another_component_is_rejected(tmp_path: Path) -> None:
    packs_root = tmp_path / "packs"
    _make_pack(packs_root, "engine", metrics={"engine_get_p95_ms": 700})
    ui_pack = _make_pack(packs_root, "ui", metrics={"ui_layout_p95_ms": 100, "engine_get_p95_ms": 1})
    _make_pack(packs_root, "assist")

    out = tmp_path / "out"
    with pytest.raises(CompositionAborted) as exc:
        compose(_inputs(packs_root, ["engine", "ui", "assist"]), out, signing_key=KEY)

    failures = exc.value.failures
    assert [(r.check_id, r.category) for r in failures] == [("P2", "FU-SCHEMA-INVALID")]
    assert failures[0].pointers == [ui_pack.name]
    assert any("engine_get_p95_ms" in d and "owned by the engine component" in d for d in failures[0].details)
    assert not out.exists()


def test_lone_pack_cannot_supply_another_components_threshold(tmp_path: Path) -> None:
    packs_root = tmp_path / "packs"
    _make_pack(packs_root, "ui", metrics={"ui_layout_p95_ms": 100, "engine_get_p95_ms": 5})

    with pytest.raises(CompositionAborted) as exc:
        compose(_inputs(packs_root, ["ui"]), tmp_path / "out", signing_key=KEY)
    assert [r.category for r in exc.value.failures] == ["FU-SCHEMA-INVALID"]


def test_non_finite_manifest_number_fails_as_unreadable(tmp_path: Path) -> None:
    packs_root = tmp_path / "packs"
    payload = {"ui/report.txt": b"ui\n"}
    obj = json.loads(seal_files(payload, "ui", signing_key=None, metrics=GOOD_METRICS["ui"])[MANIFEST_ENTRY])
    obj["metrics"]["extra"] = float("nan")
    _make_pack(packs_root, "ui", key=None, files=payload, tamper={MANIFEST_ENTRY: json.dumps(obj).encode("utf-8")})

    out = tmp_path / "out"
    with pytest.raises(CompositionAborted) as exc:
        compose(_inputs(packs_root, ["ui"]), out)
    failures = exc.value.failures
    assert [(r.check_id, r.category) for r in failures] == [("P2", "FU-PACK-UNREADABLE")]
    assert "NaN" in failures[0].likely_cause
    assert not out.exists()


def test_feature_flags_are_carried_per_component(tmp_path: Path) -> None:
    packs_root = tmp_path / "packs"
    _make_pack(packs_root, "ui", features=["dark_mode", "beta_grid"])
    _make_pack(packs_root, "engine")

    result = compose(_inputs(packs_root, ["ui", "engine"]), tmp_path / "out", signing_key=KEY)
    manifest = json.loads(result.manifest_path.read_text(encoding="utf-8"))
    assert [c["featuresOn"] for c in manifest["components"]] == [["beta_grid", "dark_mode"], []]


def test_newest_pack_per_component_is_used(tmp_path: Path) -> None:
    packs_root = tmp_path / "packs"
    _make_pack(packs_root, "ui", day="2024-04-01", metrics={"ui_layout_p95_ms": 900})
    newest = _make_pack(packs_root, "ui", day="2024-05-01", metrics={"ui_layout_p95_ms": 100})

    result = compose(_inputs(packs_root, ["ui"]), tmp_path / "out", signing_key=KEY)
    assert result.manifest.components[0].archive_name == newest.name
    assert result.manifest.merged_metrics["ui_layout_p95_ms"] == 100


def test_no_packs_aborts_without_outputs(tmp_path: Path) -> None:
    out = tmp_path / "out"
    with pytest.raises(CompositionAborted) as exc:
        compose({"ui": tmp_path / "empty", "engine": tmp_path / "missing"}, out)
    assert [r.category for r in exc.value.failures] == ["FU-NO-PACKS"]
    assert not out.exists()


def test_per_archive_budget_boundary(tmp_path: Path) -> None:
    packs_root = tmp_path / "packs"
    pack = _make_pack(packs_root, "ui")
    size = pack.stat().st_size

    ok = compose(_inputs(packs_root, ["ui"]), tmp_path / "ok", ComposeLimits(max_archive_bytes=size), signing_key=KEY)
    assert ok.manifest.total_bytes == size

    with pytest.raises(CompositionAborted) as exc:
        compose(_inputs(packs_root, ["ui"]), tmp_path / "over", ComposeLimits(max_archive_bytes=size - 1), signing_key=KEY)
    assert [r.category for r in exc.value.failures] == ["FU-SIZE-EXCEEDED"]
    assert not (tmp_path / "over").exists()


def test_total_budget_aborts(tmp_path: Path) -> None:
    packs_root = tmp_path / "packs"
    sizes = [_make_pack(packs_root, k).stat().st_size for k in ("ui", "engine")]

    with pytest.raises(CompositionAborted) as exc:
        compose(
            _inputs(packs_root, ["ui", "engine"]),
            tmp_path / "out",
            ComposeLimits(max_total_bytes=sum(sizes) - 1),
            signing_key=KEY,
        )
    assert [r.category for r in exc.value.failures] == ["FU-TOTAL-SIZE-EXCEEDED"]
    assert not (tmp_path / "out").exists()


def _fail_replace_on_call(monkeypatch: pytest.MonkeyPatch, failing_call: int) -> None:
    real_replace = os.replace
    calls = {"n": 0}

    def flaky_replace(src: Any, dst: Any) -> None:
        calls["n"] += 1
        if calls["n"] == failing_call:
            raise OSError("disk full")
        real_replace(src, dst)

    monkeypatch.setattr(os, "replace", flaky_replace)


def test_failed_output_write_leaves_nothing_behind(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    packs_root = tmp_path / "packs"
    _make_pack(packs_root, "ui")
    out = tmp_path / "out"

    _fail_replace_on_call(monkeypatch, 2)
    with pytest.raises(CompositionAborted) as exc:
        compose(_inputs(packs_root, ["ui"]), out, signing_key=KEY)

    assert [r.category for r in exc.value.failures] == ["FU-OUTPUT-WRITE"]
    assert list(out.iterdir()) == []


def test_failed_output_write_restores_previous_release(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    packs_root = tmp_path / "packs"
    _make_pack(packs_root, "ui")
    out = tmp_path / "out"
    compose(_inputs(packs_root, ["ui"]), out, signing_key=KEY, deterministic=True)
    before = {p.name: p.read_bytes() for p in out.iterdir()}

    _make_pack(packs_root, "ui", day="2024-06-01", metrics={"ui_layout_p95_ms": 90})
    _fail_replace_on_call(monkeypatch, 4)
    with pytest.raises(CompositionAborted):
        compose(_inputs(packs_root, ["ui"]), out, signing_key=KEY, deterministic=True)

    assert {p.name: p.read_bytes() for p in out.iterdir()} == before


def test_every_failing_pack_is_reported(tmp_path: Path) -> None:
    packs_root = tmp_path / "packs"
    _make_pack(packs_root, "ui", tamper={"ui/report.txt": b"edited after sealing\n"})
    _make_pack(packs_root, "engine", metrics={}, key=None)
    _make_pack(packs_root, "assist")

    out = tmp_path / "out"
    with pytest.raises(CompositionAborted) as exc:
        compose(_inputs(packs_root, ["ui", "engine", "assist"]), out, signing_key=KEY)

    failures = exc.value.failures
    assert [(r.check_id, r.category) for r in failures] == [
        ("P3", "FU-HASH-MISMATCH"),
        ("P2", "FU-SCHEMA-INVALID"),
    ]
    for r in failures:
        assert r.message and r.likely_cause and r.remediation_next_instruction
    passed_ids = [r.check_id for r in exc.value.results if not r.failed]
    assert passed_ids.count("P3") == 1
    assert not out.exists()


def test_signature_policy(tmp_path: Path) -> None:
    packs_root = tmp_path / "packs"
    _make_pack(packs_root, "ui", key="other-key")
    _make_pack(packs_root, "engine", key=None)

    with pytest.raises(CompositionAborted) as exc:
        compose(_inputs(packs_root, ["ui", "engine"]), tmp_path / "out", signing_key=KEY)
    assert [r.category for r in exc.value.failures] == ["FU-SIGNATURE-INVALID", "FU-SIGNATURE-MISSING"]

    # without a configured key both packs pass on hash checks alone
    result = compose(_inputs(packs_root, ["ui", "engine"]), tmp_path / "out", signing_key=None)
    assert len(result.manifest.components) == 2


def test_malformed_signature_fails_as_invalid_signature(tmp_path: Path) -> None:
    packs_root = tmp_path / "packs"
    payload = {"ui/report.txt": b"ui\n"}
    obj = json.loads(seal_files(payload, "ui", signing_key=KEY, metrics=GOOD_METRICS["ui"])[MANIFEST_ENTRY])
    obj["signature"] = "invalid-signature"
    _make_pack(packs_root, "ui", files=payload, tamper={MANIFEST_ENTRY: json.dumps(obj).encode("utf-8")})

    with pytest.raises(CompositionAborted) as exc:
        compose(_inputs(packs_root, ["ui"]), tmp_path / "out", signing_key=KEY)
    failures = exc.value.failures
    assert [(r.check_id, r.category) for r in failures] == [("P3", "FU-SIGNATURE-INVALID")]
    assert failures[0].details == ["Invalid manifest signature"]


def test_deterministic_runs_are_byte_identical(tmp_path: Path) -> None:
    packs_root = tmp_path / "packs"
    for k in ("ui", "engine", "assist"):
        _make_pack(packs_root, k)

    inputs = _inputs(packs_root, ["ui", "engine", "assist"])
    first = compose(inputs, tmp_path / "a", signing_key=KEY, deterministic=True)
    second = compose(inputs, tmp_path / "b", signing_key=KEY, deterministic=True)

    assert first.release_name == "Unified_Evidence_1970-01-01_UTC"
    assert first.manifest.generated_at == "1970-01-01T00:00:00Z"
    for name in sorted(p.name for p in (tmp_path / "a").iterdir()):
        assert (tmp_path / "a" / name).read_bytes() == (tmp_path / "b" / name).read_bytes()


def test_unified_manifest_is_canonical(tmp_path: Path) -> None:
    packs_root = tmp_path / "packs"
    _make_pack(packs_root, "ui")
    result = compose(_inputs(packs_root, ["ui"]), tmp_path / "out", signing_key=KEY, deterministic=True)

    raw = result.manifest_path.read_bytes()
    obj = json.loads(raw.decode("utf-8"))
    assert raw == (json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False) + "\n").encode("utf-8")


def test_release_name_must_be_a_plain_stem(tmp_path: Path) -> None:
    packs_root = tmp_path / "packs"
    _make_pack(packs_root, "ui")
    with pytest.raises(ValueError):
        compose(_inputs(packs_root, ["ui"]), tmp_path / "out", release_name="../escape")
    with pytest.raises(ValueError):
        compose(_inputs(packs_root, ["ui"]), tmp_path / "out", release_name="nested/name")

    result = compose(_inputs(packs_root, ["ui"]), tmp_path / "out", signing_key=KEY, release_name="Release_42")
    assert result.archive_path.name == "Release_42.zip"
    with zipfile.ZipFile(io.BytesIO(result.archive_path.read_bytes())) as zf:
        assert len(zf.namelist()) == 1
