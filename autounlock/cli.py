"""CLI entrypoint: ``tpm2-luks-autounlock [device]``."""

from __future__ import annotations

import argparse
import sys
import time
from typing import Any, Dict, List, Optional

from .config import load_config
from .errors import AutoUnlockError
from .executil import append_jsonl, fail, resolve_log_path, trace
from .luks import LuksTool
from .pipeline import RunContext, Stage, run_pipeline
from .stages import STAGES
from .tpm import TpmNvStore

RESULT_CODES: Dict[str, int] = {
    "OK": 0,
    "InsufficientPrivilege": 2,
    "ConfigError": 2,
    "NoVolumeFound": 3,
    "NotAnEncryptedVolume": 3,
    "MissingTool": 4,
    "TpmProvisionFailed": 5,
    "VerificationMismatch": 5,
    "EnrollmentFailed": 6,
    "ArtifactInstallFailed": 7,
    "ImageRebuildFailed": 8,
    "FAIL_UNHANDLED": 12,
}

CLI_START_MONO = time.perf_counter()


def _record_result(kind: str, extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"result": kind, "ts": int(time.time())}
    if extra:
        payload.update(extra)
    payload["timing_total_ms"] = int(max(0.0, (time.perf_counter() - CLI_START_MONO) * 1000))
    log_path = resolve_log_path()
    if log_path:
        payload["log_path"] = log_path
        append_jsonl(log_path, payload)
    return payload


def _report_failure(exc: AutoUnlockError) -> int:
    fail(str(exc))
    if exc.hint:
        print(f"       {exc.hint}", file=sys.stderr)
    if exc.completed:
        print(f"       completed stages: {', '.join(exc.completed)}", file=sys.stderr)
    else:
        print("       no stage completed; no changes were made", file=sys.stderr)
    _record_result(exc.kind, {"error": str(exc), "completed": exc.completed})
    return RESULT_CODES.get(exc.kind, 1)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tpm2-luks-autounlock",
        description="Store a random LUKS key in the TPM and unlock the volume from it at boot.",
    )
    parser.add_argument(
        "device",
        nargs="?",
        default=None,
        help="encrypted device, e.g. /dev/sda3 (default: first volume in /etc/crypttab)",
    )
    return parser


def _main_impl(argv: Optional[List[str]] = None, stages: Optional[List[Stage]] = None) -> int:
    args = build_parser().parse_args(argv)
    cmdline = [sys.argv[0]] + list(sys.argv[1:] if argv is None else argv)
    try:
        config = load_config()
    except AutoUnlockError as exc:
        return _report_failure(exc)
    trace("cli.args", device=args.device, keysize=config.keysize, root=config.root)

    ctx = RunContext(
        config=config,
        tpm=TpmNvStore(),
        luks=LuksTool(),
        device_arg=args.device,
        argv=cmdline,
    )
    try:
        results = run_pipeline(ctx, STAGES if stages is None else stages)
    except AutoUnlockError as exc:
        return _report_failure(exc)
    _record_result(
        "OK",
        {
            "device": ctx.target.device if ctx.target else None,
            "stages": [r.name for r in results],
            "warnings": ctx.warnings,
        },
    )
    return RESULT_CODES["OK"]


def main(argv: Optional[List[str]] = None) -> int:
    try:
        return _main_impl(argv)
    except (SystemExit, KeyboardInterrupt):
        raise
    except Exception as exc:  # noqa: BLE001
        completed = getattr(exc, "completed", None)
        fail(f"unexpected error: {exc}")
        if completed:
            print(f"       completed stages: {', '.join(completed)}", file=sys.stderr)
        _record_result("FAIL_UNHANDLED", {"error": str(exc), "completed": completed})
        return RESULT_CODES["FAIL_UNHANDLED"]


if __name__ == "__main__":
    sys.exit(main())
