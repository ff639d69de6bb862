#!/usr/bin/env python3
"""unipack CLI: seal, verify, discover and compose component evidence packs.

This is the installable CLI entrypoint (console_scripts).

Subcommands:
- unipack seal            → Seal a directory into a component pack (manifest + checksums, signed if a key is configured)
- unipack verify          → Run the pack gates against one pack
- unipack discover        → Show which pack compose would pick for a component
- unipack compose         → Gate the latest packs and emit the unified release
- unipack keygen          → Print a fresh random signing key
- unipack signing-status  → Print signing configuration as JSON
- unipack about           → Print package identity info

Exit codes:
- 0: success
- 1: check failed (gate failed, pack absent, etc.)
- 3: usage/internal error
"""

from __future__ import annotations

import argparse
import math
import sys
from importlib.metadata import PackageNotFoundError, metadata, version
from pathlib import Path

from unipack.gates.base import CheckResult


def _emit_result(prefix: str, r: CheckResult) -> None:
    if not r.failed:
        print(f"{prefix} PASS {r.check_id}: {r.message}", file=sys.stderr)
        return
    category = f" [{r.category}]" if r.category else ""
    print(f"{prefix} FAIL {r.check_id}{category}", file=sys.stderr)
    print(f"{prefix}   Symptom: {r.message}", file=sys.stderr)
    for d in r.details:
        print(f"{prefix}     - {d}", file=sys.stderr)
    if r.likely_cause:
        print(f"{prefix}   Likely cause: {r.likely_cause}", file=sys.stderr)
    if r.remediation_next_instruction:
        print(f"{prefix}   Remediation: {r.remediation_next_instruction}", file=sys.stderr)


def _emit_results(prefix: str, results: list[CheckResult], *, verbose: bool) -> None:
    for r in results:
        if r.failed or verbose:
            _emit_result(prefix, r)


def _signing_key_from_args(args: argparse.Namespace) -> str | None:
    from unipack.config import resolve_signing_key

    key_file = getattr(args, "signing_key_file", None)
    return resolve_signing_key(key_file=Path(key_file) if key_file else None)


def _parse_metric(raw: str) -> tuple[str, int | float]:
    name, sep, value = str(raw).partition("=")
    if not sep or not name.strip():
        raise ValueError(f"--metric must be NAME=VALUE, got {raw!r}")
    value = value.strip()
    try:
        return name.strip(), int(value)
    except ValueError:
        pass
    try:
        number = float(value)
    except ValueError:
        raise ValueError(f"--metric {name.strip()} must be numeric, got {value!r}") from None
    if not math.isfinite(number):
        raise ValueError(f"--metric {name.strip()} must be finite, got {value!r}")
    return name.strip(), number


def _collect_dir_files(root: Path) -> dict[str, bytes]:
    from unipack.core.jail import safe_relpath

    if not root.is_dir():
        raise ValueError(f"--in is not a directory: {root}")
    files: dict[str, bytes] = {}
    for p in sorted(root.rglob("*")):
        if p.is_symlink():
            raise ValueError(f"symlinks are not allowed in a pack: {p}")
        if p.is_file():
            files[safe_relpath(root, p)] = p.read_bytes()
    return files


# ---------------------------------------------------------------------------
# about subcommand
# ---------------------------------------------------------------------------

def cmd_about(_: argparse.Namespace) -> int:
    """Print package identity info (human-readable)."""

    try:
        pkg_version = version("unipack")
    except PackageNotFoundError:
        pkg_version = "0.0.0"

    pkg_name = "unipack"
    pkg_summary = ""
    pkg_urls: list[str] = []
    try:
        meta = metadata("unipack")
        pkg_name = str(meta.get("Name") or pkg_name)
        pkg_summary = str(meta.get("Summary") or "")
        pkg_urls = [str(u) for u in (meta.get_all("Project-URL") or [])]
        if meta.get("Home-page"):
            pkg_urls.insert(0, f"Homepage, {meta.get('Home-page')}")
    except PackageNotFoundError:
        pass

    print(f"{pkg_name} {pkg_version}")
    if pkg_summary:
        print(pkg_summary)
    for entry in pkg_urls:
        label, _, url = entry.partition(", ")
        print(f"{label}: {url}" if url else entry)
    return 0


# ---------------------------------------------------------------------------
# signing subcommands
# ---------------------------------------------------------------------------

def cmd_keygen(_: argparse.Namespace) -> int:
    from unipack.config import ENV_SIGNING_KEY
    from unipack.protocol.signing import generate_signing_key

    print(generate_signing_key())
    print(f"[unipack keygen] store this value in {ENV_SIGNING_KEY} or a --signing-key-file", file=sys.stderr)
    return 0


def cmd_signing_status(args: argparse.Namespace) -> int:
    from unipack.core.json_canon import canonical_json_bytes
    from unipack.protocol.signing import signing_status

    try:
        key = _signing_key_from_args(args)
    except (OSError, ValueError) as e:
        print(f"[unipack signing-status] ERROR: {e}", file=sys.stderr)
        return 3

    sys.stdout.write(canonical_json_bytes(signing_status(key)).decode("utf-8"))
    return 0


# ---------------------------------------------------------------------------
# seal subcommand
# ---------------------------------------------------------------------------

def cmd_seal(args: argparse.Namespace) -> int:
    """Seal a directory into a component pack zip."""

    from unipack.archive import write_pack
    from unipack.config import collect_build_info
    from unipack.protocol.components import MANIFEST_ENTRY, parse_kind
    from unipack.protocol.manifest import validate_manifest
    from unipack.protocol.signing import build_unsigned_manifest, seal_files

    prefix = "[unipack seal]"
    try:
        kind = parse_kind(str(args.component))
        metrics = dict(_parse_metric(m) for m in (args.metric or []))
        key = _signing_key_from_args(args)
        build_info = collect_build_info(version=args.build_version, commit=args.build_commit)
        files = _collect_dir_files(Path(args.input))
        unsigned = build_unsigned_manifest(
            files, kind, metrics=metrics, build_info=build_info, features_on=args.feature
        )
    except (OSError, ValueError) as e:
        print(f"{prefix} ERROR: {e}", file=sys.stderr)
        print(f"{prefix} Remediation: Do fix the inputs above, then re-run seal.", file=sys.stderr)
        return 3

    errors = validate_manifest(unsigned)
    if errors:
        print(f"{prefix} FAIL: manifest would be invalid ({len(errors)} violation(s))", file=sys.stderr)
        for e in errors:
            print(f"{prefix}   - {e.path}: {e.message}", file=sys.stderr)
        print(f"{prefix} Remediation: Do pass every required metric with --metric NAME=VALUE, then re-run seal.", file=sys.stderr)
        return 1

    sealed = seal_files(
        files, kind, signing_key=key, metrics=metrics, build_info=build_info, features_on=args.feature
    )
    out_path = Path(args.out)
    try:
        write_pack(out_path, sealed)
    except OSError as e:
        print(f"{prefix} ERROR: cannot write {out_path}: {e}", file=sys.stderr)
        return 3

    signed = "signed" if key else "unsigned"
    print(f"{prefix} wrote: {out_path} ({len(files)} file(s), {signed})", file=sys.stderr)
    if args.print_manifest:
        sys.stdout.write(sealed[MANIFEST_ENTRY].decode("utf-8"))
    return 0


# ---------------------------------------------------------------------------
# verify subcommand
# ---------------------------------------------------------------------------

def cmd_verify(args: argparse.Namespace) -> int:
    """Run every pack gate against a single pack."""

    from unipack.archive import ArchiveError, read_manifest
    from unipack.config import ComposeLimits
    from unipack.discovery import DiscoveredPack
    from unipack.gates.context import PackContext
    from unipack.gates.registry import run_gates

    prefix = "[unipack verify]"
    pack_path = Path(args.pack)
    try:
        key = _signing_key_from_args(args)
        limits = ComposeLimits(max_archive_bytes=int(args.max_archive_bytes))
        mtime = pack_path.stat().st_mtime
    except (OSError, ValueError) as e:
        print(f"{prefix} ERROR: {e}", file=sys.stderr)
        return 3

    kind = ""
    try:
        declared = read_manifest(pack_path).get("component")
        if isinstance(declared, str):
            kind = declared
    except ArchiveError:
        pass  # reported by the schema gate

    pack = DiscoveredPack(kind=kind, path=pack_path, parsed_date=None, short_id=None, mtime=mtime)
    results = run_gates(PackContext(pack=pack, limits=limits, signing_key=key))
    _emit_results(prefix, results, verbose=bool(args.verbose))

    if any(r.failed for r in results):
        return 1
    print(f"{prefix} OK: {pack_path.name}", file=sys.stderr)
    return 0


# ---------------------------------------------------------------------------
# discover subcommand
# ---------------------------------------------------------------------------

def cmd_discover(args: argparse.Namespace) -> int:
    from unipack.discovery import discover_packs
    from unipack.protocol.components import COMPONENT_SPECS, parse_kind

    prefix = "[unipack discover]"
    try:
        kind = parse_kind(str(args.component))
    except ValueError as e:
        print(f"{prefix} ERROR: {e}", file=sys.stderr)
        return 3

    spec = COMPONENT_SPECS[kind]
    packs = discover_packs(Path(args.dir), spec.pack_prefix, kind=kind.value)
    if not packs:
        print(f"{prefix} no {kind.value} pack in {args.dir} (expected {spec.pack_prefix}_<YYYY-MM-DD>_UTC_<id>.zip)", file=sys.stderr)
        return 1

    latest = packs[0]
    if latest.degraded:
        print(f"{prefix} WARN: no dated pack names; picked newest by modification time", file=sys.stderr)
    print(str(latest.path))
    for other in packs[1:]:
        print(f"{prefix} older: {other.name}", file=sys.stderr)
    return 0


# ---------------------------------------------------------------------------
# compose subcommand
# ---------------------------------------------------------------------------

def cmd_compose(args: argparse.Namespace) -> int:
    """Gate the latest pack per component and write the unified release."""

    from unipack.compose import CompositionAborted, compose
    from unipack.config import ComposeLimits, parse_inputs
    from unipack.report import acceptance_lines

    prefix = "[unipack compose]"
    verbose = bool(args.verbose)
    try:
        inputs = parse_inputs(list(args.inputs or []))
        limits = ComposeLimits(
            max_archive_bytes=int(args.max_archive_bytes),
            max_total_bytes=int(args.max_total_bytes),
        )
        key = _signing_key_from_args(args)
    except (OSError, ValueError) as e:
        print(f"{prefix} ERROR: {e}", file=sys.stderr)
        print(f"{prefix} Remediation: Do pass --in KIND=DIR for each component and valid limits, then re-run compose.", file=sys.stderr)
        return 3

    if not inputs:
        print(f"{prefix} ERROR: at least one --in KIND=DIR is required", file=sys.stderr)
        return 3

    try:
        result = compose(
            inputs,
            Path(args.out),
            limits,
            signing_key=key,
            release_name=args.release_name,
            date=args.date,
            deterministic=bool(args.deterministic),
        )
    except CompositionAborted as e:
        _emit_results(prefix, e.results, verbose=verbose)
        print(f"{prefix} ABORTED: {e}; no outputs written", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"{prefix} ERROR: {e}", file=sys.stderr)
        return 3

    for pack in result.packs:
        if pack.degraded:
            print(f"{prefix} WARN: {pack.kind} pack {pack.name} picked by modification time (no dated name)", file=sys.stderr)
    _emit_results(prefix, result.results, verbose=verbose)

    for p in (result.manifest_path, result.archive_path, result.summary_path, result.badge_path):
        print(f"{prefix} wrote: {p}", file=sys.stderr)
    print(f"{prefix} status: {result.manifest.status.value}", file=sys.stderr)

    if args.print_acceptance:
        for line in acceptance_lines(
            str(result.archive_path),
            result.manifest.merged_metrics,
            components=result.manifest.to_dict()["components"],
            max_archive_bytes=limits.max_archive_bytes,
            max_total_bytes=limits.max_total_bytes,
        ):
            print(line)
    return 0


# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------

def _add_signing_key_arg(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--signing-key-file",
        default=None,
        help="File holding the HMAC signing key (default: UNIPACK_SIGNING_KEY env var; unset disables signing)",
    )


def main(argv: list[str] | None = None) -> int:
    from unipack.config import DEFAULT_MAX_ARCHIVE_BYTES, DEFAULT_MAX_TOTAL_BYTES
    from unipack.protocol.components import known_kinds

    parser = argparse.ArgumentParser(
        prog="unipack",
        description="unipack: component evidence pack sealing, verification and composition",
    )
    subparsers = parser.add_subparsers(dest="command", help="Subcommand")

    # about
    subparsers.add_parser("about", help="Print package identity info")

    # keygen / signing-status
    subparsers.add_parser("keygen", help="Print a random 64-hex signing key")
    p_status = subparsers.add_parser("signing-status", help="Print signing configuration as JSON")
    _add_signing_key_arg(p_status)

    # seal
    p_seal = subparsers.add_parser("seal", help="Seal a directory into a component pack")
    p_seal.add_argument("--in", dest="input", required=True, help="Directory holding the pack payload")
    p_seal.add_argument("--component", required=True, help=f"Component kind ({', '.join(known_kinds())})")
    p_seal.add_argument("--out", required=True, help="Output zip path")
    p_seal.add_argument("--metric", action="append", default=[], help="Metric NAME=VALUE (repeatable)")
    p_seal.add_argument("--feature", action="append", default=[], help="Feature flag enabled in this build (repeatable)")
    p_seal.add_argument("--build-version", default=None, help="buildInfo.version (default: UNIPACK_BUILD_VERSION)")
    p_seal.add_argument("--build-commit", default=None, help="buildInfo.commit (default: UNIPACK_BUILD_COMMIT or GITHUB_SHA)")
    p_seal.add_argument("--print-manifest", action="store_true", help="Print the sealed manifest JSON on stdout")
    _add_signing_key_arg(p_seal)

    # verify
    p_verify = subparsers.add_parser("verify", help="Run the pack gates against one pack")
    p_verify.add_argument("--pack", required=True, help="Component pack zip")
    p_verify.add_argument("--max-archive-bytes", type=int, default=DEFAULT_MAX_ARCHIVE_BYTES, help="Per-archive size budget")
    p_verify.add_argument("--verbose", action="store_true", help="Verbose output")
    _add_signing_key_arg(p_verify)

    # discover
    p_discover = subparsers.add_parser("discover", help="Show the pack compose would pick for a component")
    p_discover.add_argument("--dir", required=True, help="Directory to search")
    p_discover.add_argument("--component", required=True, help=f"Component kind ({', '.join(known_kinds())})")

    # compose
    p_compose = subparsers.add_parser("compose", help="Compose the unified evidence release")
    p_compose.add_argument(
        "--in",
        dest="inputs",
        action="append",
        default=[],
        metavar="KIND=DIR",
        help="Component kind and the directory holding its packs (repeatable; order is discovery order)",
    )
    p_compose.add_argument("--out", required=True, help="Output directory")
    p_compose.add_argument("--max-archive-bytes", type=int, default=DEFAULT_MAX_ARCHIVE_BYTES, help="Per-archive size budget (default: 50 MiB)")
    p_compose.add_argument("--max-total-bytes", type=int, default=DEFAULT_MAX_TOTAL_BYTES, help="Total size budget (default: 150 MiB)")
    p_compose.add_argument("--release-name", default=None, help="Release archive stem (default: Unified_Evidence_<date>_UTC)")
    p_compose.add_argument("--date", default=None, help="Release date YYYY-MM-DD (default: today UTC)")
    p_compose.add_argument("--deterministic", action="store_true", help="Use fixed timestamps for deterministic output")
    p_compose.add_argument("--print", dest="print_acceptance", action="store_true", help="Print acceptance lines on stdout")
    p_compose.add_argument("--verbose", action="store_true", help="Also report passing gates")
    _add_signing_key_arg(p_compose)

    args = parser.parse_args(argv)

    if args.command == "about":
        return cmd_about(args)
    elif args.command == "keygen":
        return cmd_keygen(args)
    elif args.command == "signing-status":
        return cmd_signing_status(args)
    elif args.command == "seal":
        return cmd_seal(args)
    elif args.command == "verify":
        return cmd_verify(args)
    elif args.command == "discover":
        return cmd_discover(args)
    elif args.command == "compose":
        return cmd_compose(args)
    else:
        parser.print_help()
        return 3


if __name__ == "__main__":
    sys.exit(main())
