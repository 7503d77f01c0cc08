"""TPM2 NV index access through tpm2-tools."""

from __future__ import annotations

import shutil
from typing import Any, Dict

from .errors import MissingTool, TpmProvisionFailed
from .executil import run, trace, warn

TPM2_TOOLS = ("tpm2_nvundefine", "tpm2_nvdefine", "tpm2_nvwrite", "tpm2_nvread")
APT_TIMEOUT = 600

# tpm2-tools reports a missing index as a handle error (TPM_RC_HANDLE, 0x18b).
_ABSENT_MARKERS = ("0x18b", "not defined", "not found", "does not exist")


def fmt_index(index: int) -> str:
    return f"0x{index:x}"


def _tool_error(res) -> str:
    return (res.err or res.out or "").strip() or f"rc={res.rc}"


class TpmNvStore:
    """The four NV operations the provisioning run needs."""

    def undefine(self, index: int) -> bool:
        res = run(["tpm2_nvundefine", fmt_index(index)], check=False)
        if res.rc == 0:
            trace("tpm.undefine", index=fmt_index(index), removed=True)
            return True
        combined = f"{res.out or ''}\n{res.err or ''}".lower()
        if any(marker in combined for marker in _ABSENT_MARKERS):
            trace("tpm.undefine", index=fmt_index(index), removed=False)
            return False
        warn(f"tpm2_nvundefine {fmt_index(index)} failed: {_tool_error(res)}")
        return False

    def define(self, index: int, size: int) -> None:
        res = run(["tpm2_nvdefine", "-s", str(size), fmt_index(index)], check=False)
        if res.rc != 0:
            raise TpmProvisionFailed(
                f"tpm2_nvdefine {fmt_index(index)} ({size} bytes) failed: {_tool_error(res)}"
            )

    def write(self, index: int, path: str) -> None:
        res = run(["tpm2_nvwrite", "-i", path, fmt_index(index)], check=False)
        if res.rc != 0:
            raise TpmProvisionFailed(f"tpm2_nvwrite {fmt_index(index)} failed: {_tool_error(res)}")

    def read(self, index: int, size: int) -> bytes:
        res = run(
            ["tpm2_nvread", "-s", str(size), fmt_index(index)],
            check=False,
            binary=True,
            secret=True,
        )
        if res.rc != 0:
            # stdout may hold key material; report stderr only.
            detail = (res.err or "").strip() or f"rc={res.rc}"
            raise TpmProvisionFailed(f"tpm2_nvread {fmt_index(index)} failed: {detail}")
        return res.out or b""


def ensure_tpm2_tools() -> Dict[str, Any]:
    """Install the tpm2-tools package when its executables are not on PATH."""

    stats: Dict[str, Any] = {"package": "tpm2-tools", "present": True}
    if all(shutil.which(t) for t in TPM2_TOOLS):
        return stats
    check_res = run(["dpkg", "-s", "tpm2-tools"], check=False, timeout=APT_TIMEOUT)
    stats["check_rc"] = check_res.rc
    if check_res.rc != 0:
        stats["present"] = False
        install_res = run(["apt-get", "-y", "install", "tpm2-tools"], check=False, timeout=APT_TIMEOUT)
        stats["install_rc"] = install_res.rc
    missing = [t for t in TPM2_TOOLS if not shutil.which(t)]
    trace("tpm.ensure_tools", missing=missing, **stats)
    if missing:
        raise MissingTool(f"tpm2-tools not usable, missing: {', '.join(missing)}")
    return stats
