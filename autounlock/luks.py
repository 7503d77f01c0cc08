"""cryptsetup calls used by the run (LUKS detection, status, key enrollment)."""

from __future__ import annotations

import re

from .executil import run

_DEVICE_RE = re.compile(r"^\s*device:\s+(\S.*?)\s*$", re.MULTILINE)


def parse_status_device(text: str) -> str | None:
    match = _DEVICE_RE.search(text or "")
    if not match:
        return None
    return match.group(1)


class LuksTool:
    def is_luks(self, device: str) -> bool:
        res = run(["cryptsetup", "isLuks", device], check=False)
        return res.rc == 0

    def status_device(self, name: str) -> str | None:
        res = run(["cryptsetup", "status", name], check=False)
        if res.rc != 0:
            return None
        return parse_status_device(res.out)

    def add_key(self, device: str, keyfile: str) -> int:
        # Interactive: cryptsetup prompts for an existing passphrase on the tty.
        res = run(["cryptsetup", "luksAddKey", device, keyfile], check=False, timeout=None, interactive=True)
        return res.rc

    @staticmethod
    def remove_key_command(device: str) -> str:
        return f"sudo cryptsetup luksRemoveKey {device}"
