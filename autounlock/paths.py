from __future__ import annotations

import os
from pathlib import Path

_DEFAULT_BASE = "/var/lib/tpm2-luks-autounlock"

KEYSCRIPT_PATH = "/usr/local/sbin/tpm2-getkey"
HOOK_PATH = "/etc/initramfs-tools/hooks/tpm2-decryptkey"
CRYPTTAB_PATH = "/etc/crypttab"
BOOT_DIR = "/boot"
MARKER_DIR = "/run"
ASKPASS_PATH = "/lib/cryptsetup/askpass"
HOOK_FUNCTIONS = "/usr/share/initramfs-tools/hook-functions"


def _expand(path: str) -> str:
    candidate = Path(path).expanduser()
    try:
        return str(candidate.resolve())
    except FileNotFoundError:
        return str(candidate)


def base_path() -> str:
    """Return the base directory for logs and run records.

    Overridable via ``TPM2_LUKS_BASE_PATH``.
    """

    override = os.environ.get("TPM2_LUKS_BASE_PATH")
    if override:
        return _expand(override)
    return _expand(_DEFAULT_BASE)


def logs_dir() -> str:
    return str(Path(base_path()) / "logs")


def under_root(root: str, path: str) -> str:
    """Map an absolute target path below ``root`` (``/`` on a live system)."""

    return os.path.join(root, path.lstrip("/"))


def initrd_path(kver: str) -> str:
    return f"{BOOT_DIR}/initrd.img-{kver}"
