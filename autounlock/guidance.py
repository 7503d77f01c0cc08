from __future__ import annotations

from .luks import LuksTool
from .paths import CRYPTTAB_PATH, initrd_path
from .tpm import fmt_index


def backup_command(keysize: int, nv_index: int) -> str:
    return f"echo `sudo tpm2_nvread -s {keysize} {fmt_index(nv_index)}`"


def render_guidance(device: str, keysize: int, nv_index: int, kver: str) -> str:
    initrd_name = initrd_path(kver).rsplit("/", 1)[-1]
    lines = [
        "At this point you are ready to reboot and try it out!",
        "",
        "If the drive unlocks as expected, you may optionally remove the original password used to",
        "encrypt the drive and rely completely on the random new one stored in the TPM. If you do this,",
        "keep a copy of the key on a DIFFERENT system, or printed and stored in a secure location, so",
        "you can enter it manually at the prompt.",
        "To get a copy of your key for backup purposes, run this command:",
        f"  {backup_command(keysize, nv_index)}",
        "",
        "If you remove the original password and have no backup of the key in the TPM, a TPM,",
        "motherboard or other failure that prevents auto-unlock means you WILL LOSE ACCESS TO",
        "EVERYTHING ON THE DRIVE!",
        "If you are SURE you have a backup of the key in the TPM, this removes the original password:",
        f"  {LuksTool.remove_key_command(device)}",
        "",
        "If booting fails, press Esc at the beginning of the boot to get to the GRUB menu. Edit the",
        "boot entry and add .orig to the end of the initrd line to boot the original initramfs once,",
        f"e.g. initrd /{initrd_name}.orig",
        f"The unmodified crypttab is kept as {CRYPTTAB_PATH}.bak.",
    ]
    return "\n".join(lines) + "\n"
