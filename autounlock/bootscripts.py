"""Keyscript and initramfs hook: rendering and installation."""

from __future__ import annotations

import glob
import os
from pathlib import Path

from .errors import ArtifactInstallFailed
from .executil import trace
from .paths import ASKPASS_PATH, HOOK_FUNCTIONS, MARKER_DIR, under_root
from .tpm import fmt_index

KEYSCRIPT_MODE = 0o750
HOOK_MODE = 0o755
DEFAULT_LIB_DIR = "/usr/lib/x86_64-linux-gnu"
TCTI_LIBS = ("libtss2-tcti-device.so.0.0.0", "libtss2-tcti-device.so.0")
TCTI_GLOB = "/usr/lib/*-linux-gnu/libtss2-tcti-device.so.0"

# Invoked by cryptsetup in the initramfs with CRYPTTAB_NAME/CRYPTTAB_SOURCE set.
# The marker lives on the boot-scoped /run tmpfs; noclobber makes the
# check-and-create a single step.
KEYSCRIPT_TEMPLATE = """#!/bin/sh
MARKER="%(marker_dir)s/tpm2-getkey.${CRYPTTAB_NAME}.tmp"

mkdir -p "%(marker_dir)s" 2>/dev/null
if ! ( set -C; : > "${MARKER}" ) 2>/dev/null
then
  # The TPM was already tried for this volume during this boot and the
  # volume is asking again, so the TPM is missing, failed or holds the wrong key.
  %(askpass)s "Automatic disk unlock via TPM failed for (${CRYPTTAB_SOURCE}) Enter passphrase: "
  exit
fi

%(nvread)s -s %(keysize)d %(index)s
"""

HOOK_TEMPLATE = """#!/bin/sh
PREREQ=""
prereqs()
{
    echo "${PREREQ}"
}
case $1 in
prereqs)
    prereqs
    exit 0
    ;;
esac

. %(hook_functions)s

NVREAD="$(command -v tpm2_nvread)"
if [ -z "${NVREAD}" ]; then
    echo "tpm2-decryptkey: tpm2_nvread not found" >&2
    exit 1
fi
for lib in %(libs)s; do
    if [ ! -e "${lib}" ]; then
        echo "tpm2-decryptkey: ${lib} not found" >&2
        exit 1
    fi
done

copy_exec "${NVREAD}"
for lib in %(libs)s; do
    copy_exec "${lib}"
done
exit 0
"""


def render_keyscript(
    keysize: int,
    nv_index: int,
    *,
    marker_dir: str = MARKER_DIR,
    askpass: str = ASKPASS_PATH,
    nvread: str = "tpm2_nvread",
) -> str:
    return KEYSCRIPT_TEMPLATE % {
        "marker_dir": marker_dir.rstrip("/") or "/",
        "askpass": askpass,
        "nvread": nvread,
        "keysize": keysize,
        "index": fmt_index(nv_index),
    }


def render_hook(lib_dir: str = DEFAULT_LIB_DIR, *, hook_functions: str = HOOK_FUNCTIONS) -> str:
    libs = " ".join(os.path.join(lib_dir, name) for name in TCTI_LIBS)
    return HOOK_TEMPLATE % {"hook_functions": hook_functions, "libs": libs}


def find_tcti_lib_dir(pattern: str = TCTI_GLOB) -> str | None:
    matches = sorted(glob.glob(pattern))
    if not matches:
        return None
    return os.path.dirname(matches[0])


def _discard(path) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        trace("bootscripts.install.discard_failed", path=str(path), error=str(exc))


def install_script(root: str, target: str, content: str, mode: int) -> str:
    """Write ``content`` to ``target`` (below ``root``), root-owned with ``mode``."""

    path = Path(under_root(root, target))
    tmp_path = path.with_name(path.name + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o700)
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(content)
            fh.flush()
            os.fsync(fh.fileno())
        os.chown(tmp_path, 0, 0)
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
    except OSError as exc:
        _discard(tmp_path)
        raise ArtifactInstallFailed(f"cannot install {target}: {exc}") from exc
    trace("bootscripts.install", target=target, path=str(path), mode=f"0{mode:o}")
    return str(path)
