"""Back up, rebuild and inspect the initramfs of the running kernel."""

from __future__ import annotations

import os
import shutil
from typing import Any, Dict, Iterable

from .errors import ImageRebuildFailed
from .executil import run, trace, warn
from .paths import initrd_path, under_root

INITRAMFS_TIMEOUT = 360
REQUIRED_MEMBERS = ("tpm2_nvread", "libtss2-tcti-device.so.0")


def kernel_version() -> str:
    return os.uname().release


def backup_image(root: str, kver: str) -> Dict[str, Any]:
    image = under_root(root, initrd_path(kver))
    backup = image + ".orig"
    meta: Dict[str, Any] = {"image": image, "backup": backup, "created": False}
    if os.path.exists(backup):
        meta["kept_existing"] = True
        trace("initramfs.backup", **meta)
        return meta
    if not os.path.isfile(image):
        warn(f"{image} does not exist; nothing to back up")
        meta["missing"] = True
        return meta
    try:
        shutil.copy2(image, backup)
    except OSError as exc:
        raise ImageRebuildFailed(f"cannot back up {image}: {exc}") from exc
    meta["created"] = True
    trace("initramfs.backup", **meta)
    return meta


def rebuild(root: str, kver: str) -> Dict[str, Any]:
    image = under_root(root, initrd_path(kver))
    res = run(["mkinitramfs", "-o", image, kver], check=False, timeout=INITRAMFS_TIMEOUT)
    telemetry = {"kernel": kver, "image": image, "rc": res.rc, "duration_sec": getattr(res, "duration", None)}
    trace("initramfs.rebuild", **telemetry)
    if res.rc != 0:
        detail = (res.err or res.out or "").strip()
        raise ImageRebuildFailed(
            f"mkinitramfs failed for {kver} (rc={res.rc}){': ' + detail if detail else ''}",
            hint=f"The previous image is kept as {initrd_path(kver)}.orig",
        )
    return telemetry


def verify_image_contents(image: str, required: Iterable[str] = REQUIRED_MEMBERS) -> Dict[str, Any]:
    """List ``image`` and report which ``required`` basenames are absent.

    A listing that fails (``lsinitramfs`` missing, timed out or erroring) is
    reported under ``error`` with nothing marked missing; the image was
    already rebuilt, so the caller only warns.
    """

    res = run(["lsinitramfs", image], check=False, timeout=INITRAMFS_TIMEOUT)
    result: Dict[str, Any] = {"image": image, "rc": res.rc, "missing": []}
    if res.rc != 0:
        result["error"] = (res.err or res.out or "").strip() or f"lsinitramfs rc={res.rc}"
        trace("initramfs.verify", **result)
        return result
    names = {os.path.basename(line.strip()) for line in (res.out or "").splitlines() if line.strip()}
    result["missing"] = [m for m in required if m not in names]
    return result
