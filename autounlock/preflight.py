"""Read-only checks before anything on the system is touched."""

from __future__ import annotations

import os
import shlex
import shutil
import sys

from .crypttab import read_entries
from .errors import InsufficientPrivilege, MissingTool, NoVolumeFound, NotAnEncryptedVolume
from .executil import trace
from .model import TargetVolume
from .paths import CRYPTTAB_PATH, under_root

BASE_TOOLS = ("cryptsetup", "mkinitramfs")


def require_root(argv: list[str] | None = None) -> None:
    if os.geteuid() == 0:
        return
    args = sys.argv if argv is None else argv
    cmd = " ".join(shlex.quote(a) for a in args)
    raise InsufficientPrivilege(
        "This script must run with root privileges.",
        hint=f"sudo {cmd}",
    )


def missing_tools(tools=BASE_TOOLS) -> list[str]:
    return [t for t in tools if shutil.which(t) is None]


def require_tools(tools=BASE_TOOLS) -> None:
    missing = missing_tools(tools)
    if missing:
        raise MissingTool(f"missing tools: {', '.join(missing)}")


def first_crypttab_volume(root: str = "/") -> str:
    path = under_root(root, CRYPTTAB_PATH)
    try:
        entries = read_entries(path)
    except OSError as exc:
        raise NoVolumeFound(
            f"No device specified and {CRYPTTAB_PATH} could not be read ({exc}). "
            "Exiting with no changes made to the system."
        ) from exc
    if not entries:
        raise NoVolumeFound(
            f"No device specified at the command line, and couldn't find one in {CRYPTTAB_PATH}. "
            "Exiting with no changes made to the system."
        )
    return entries[0][1].name


def resolve_target(device: str | None, luks, root: str = "/") -> TargetVolume:
    if device:
        trace("preflight.target", device=device, source="argv")
        return TargetVolume(device=device)
    name = first_crypttab_volume(root)
    backing = luks.status_device(name)
    if not backing:
        raise NoVolumeFound(
            f"cryptsetup status {name} did not report a backing device.",
            hint="Pass the encrypted device on the command line, e.g. /dev/sda3",
        )
    trace("preflight.target", device=backing, name=name, source="crypttab")
    return TargetVolume(device=backing, name=name, from_crypttab=True)


def ensure_luks(device: str, luks) -> None:
    if not luks.is_luks(device):
        raise NotAnEncryptedVolume(
            f'Device "{device}" does not appear to be a valid LUKS encrypted device.',
            hint="Please specify a device on the command line, e.g. sudo tpm2-luks-autounlock /dev/sda3",
        )
