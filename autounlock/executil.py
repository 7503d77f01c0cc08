from __future__ import annotations

"""Subprocess wrapper, JSONL trace log and operator console output."""

import datetime as _dt
import json
import os
import subprocess
import sys
import time
from typing import Sequence

from .paths import logs_dir

LOG_NAME = "tpm2-luks-autounlock.jsonl"
LOG_DIRS: list[str] | None = None
LOG_PATH: str | None = None

# Shell conventions for a command that timed out or could not be started.
RC_TIMEOUT = 124
RC_NOT_FOUND = 127


def _log_dirs() -> list[str]:
    if LOG_DIRS:
        return list(LOG_DIRS)
    return [
        logs_dir(),
        "/var/log/tpm2-luks-autounlock",
        "/tmp/tpm2-luks-autounlock-logs",
    ]


def _ensure_logger() -> str | None:
    global LOG_PATH
    if LOG_PATH:
        return LOG_PATH
    for d in _log_dirs():
        d_expanded = os.path.expanduser(d)
        try:
            os.makedirs(d_expanded, exist_ok=True)
        except OSError:
            continue
        LOG_PATH = os.path.join(d_expanded, LOG_NAME)
        return LOG_PATH
    LOG_PATH = None
    return None


def resolve_log_path() -> str | None:
    """Return the active log path, creating directories when possible."""

    return _ensure_logger()


class Result:
    def __init__(self, rc: int, out, err, duration: float):
        self.rc, self.out, self.err, self.duration = rc, out, err, duration


LEVELS = {"TRACE": 10, "INFO": 20, "WARN": 30, "ERROR": 40, "NONE": 100}
LOG_LEVEL = os.environ.get("TPM2_LUKS_LOG_LEVEL", "TRACE").upper()


def append_jsonl(path: str, obj: dict):
    try:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "a", encoding="utf-8") as f:
            f.write(json.dumps(obj, ensure_ascii=False) + "\n")
    except OSError:
        pass


def log(level: str, event: str, **fields):
    lvl = LEVELS.get(level.upper(), 100)
    cur = LEVELS.get(LOG_LEVEL, 100)
    if lvl < cur:
        return
    ts = _dt.datetime.now(_dt.timezone.utc).isoformat()
    rec = {"ts": ts, "level": level.upper(), "event": event}
    rec.update(fields)
    path = _ensure_logger()
    if path:
        append_jsonl(path, rec)


def trace(event: str, **fields):
    log("TRACE", event, **fields)


# --- operator console ---

def info(msg: str):
    print(f"[INFO] {msg}", flush=True)
    log("INFO", "console.info", msg=msg)


def warn(msg: str):
    print(f"[WARN] {msg}", file=sys.stderr, flush=True)
    log("WARN", "console.warn", msg=msg)


def fail(msg: str):
    print(f"[FAIL] {msg}", file=sys.stderr, flush=True)
    log("ERROR", "console.fail", msg=msg)


def run(
    cmd: Sequence[str],
    check: bool = True,
    timeout: float | None = 60.0,
    env: dict | None = None,
    *,
    interactive: bool = False,
    binary: bool = False,
    secret: bool = False,
) -> Result:
    """Run ``cmd`` and return a :class:`Result`.

    ``interactive`` leaves stdin/stdout/stderr attached to the terminal so the
    tool can prompt the operator; nothing is captured in that mode.
    ``binary`` captures stdout as bytes. ``secret`` keeps stdout out of the log.
    A timeout comes back as rc ``RC_TIMEOUT`` and a command that cannot be
    started as rc ``RC_NOT_FOUND``, so callers see every failure as a result.
    """

    trace("exec.start", cmd=list(cmd), interactive=interactive)
    started = time.time()
    env2 = (env or os.environ).copy()
    env2.setdefault("TPM2_LUKS_LOG_LEVEL", LOG_LEVEL)
    try:
        if interactive:
            proc = subprocess.run(list(cmd), timeout=timeout, env=env2)
            rc, out, err = proc.returncode, "", ""
        else:
            proc = subprocess.run(
                list(cmd),
                capture_output=True,
                text=not binary,
                timeout=timeout,
                env=env2,
            )
            rc, out, err = proc.returncode, proc.stdout, proc.stderr
    except subprocess.TimeoutExpired:
        rc, out, err = RC_TIMEOUT, (b"" if binary else ""), f"{cmd[0]} timed out after {timeout}s"
        log("ERROR", "exec.timeout", cmd=list(cmd), timeout=timeout)
    except OSError as exc:
        rc, out, err = RC_NOT_FOUND, (b"" if binary else ""), f"cannot execute {cmd[0]}: {exc.strerror or exc}"
        log("ERROR", "exec.spawn_failed", cmd=list(cmd), error=str(exc))
    if binary and isinstance(err, bytes):
        err = err.decode("utf-8", errors="replace")
    dur = time.time() - started
    logged_out = None
    if not secret and not binary:
        logged_out = out
    trace("exec.done", cmd=list(cmd), rc=rc, dur=dur, out=logged_out, err=err or None)
    if check and rc != 0:
        raise subprocess.CalledProcessError(rc, list(cmd), out, err)
    return Result(rc, out, err, dur)
