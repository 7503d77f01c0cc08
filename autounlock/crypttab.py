"""Read /etc/crypttab and hook the keyscript into its first entry."""

from __future__ import annotations

import os
import re
import shutil
from typing import Any, Dict

from .errors import ArtifactInstallFailed
from .executil import trace, warn
from .model import CrypttabEntry
from .paths import CRYPTTAB_PATH, under_root

_FIELD_RE = re.compile(r"\S+")


def _is_entry(line: str) -> bool:
    stripped = line.strip()
    return bool(stripped) and not stripped.startswith("#")


def parse_entry(line: str) -> CrypttabEntry:
    parts = line.split()
    options = parts[3].split(",") if len(parts) > 3 else []
    return CrypttabEntry(
        name=parts[0],
        locator=parts[1] if len(parts) > 1 else "",
        keyfile=parts[2] if len(parts) > 2 else "",
        options=[o for o in options if o],
    )


def read_entries(path: str) -> list[tuple[int, CrypttabEntry]]:
    """Return ``(line_index, entry)`` for every non-comment line of ``path``."""

    with open(path, "r", encoding="utf-8") as fh:
        lines = fh.read().splitlines()
    return [(idx, parse_entry(line)) for idx, line in enumerate(lines) if _is_entry(line)]


def add_keyscript_option(line: str, keyscript_path: str) -> str:
    """Return ``line`` with ``keyscript=<path>`` added to its options field.

    Whitespace between fields and the line ending are kept as they are.
    """

    body = line.rstrip("\r\n")
    ending = line[len(body):]
    wanted = f"keyscript={keyscript_path}"
    fields = list(_FIELD_RE.finditer(body))
    if len(fields) < 2:
        raise ValueError(f"crypttab entry has no source device: {body!r}")
    if len(fields) == 2:
        return f"{body[:fields[1].end()]} none {wanted}{body[fields[1].end():]}{ending}"
    if len(fields) == 3:
        return f"{body[:fields[2].end()]} {wanted}{body[fields[2].end():]}{ending}"

    opt = fields[3]
    options = opt.group(0).split(",")
    if wanted in options:
        return line
    kept = [o for o in options if o and not o.startswith("keyscript=")]
    if len(kept) != len([o for o in options if o]):
        warn(f"replacing existing keyscript option in crypttab entry {fields[0].group(0)}")
    new_opt = ",".join(kept + [wanted])
    return f"{body[:opt.start()]}{new_opt}{body[opt.end():]}{ending}"


def _discard(path) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        trace("crypttab.discard_failed", path=str(path), error=str(exc))


def patch_first_entry(root: str, keyscript_path: str) -> Dict[str, Any]:
    path = under_root(root, CRYPTTAB_PATH)
    backup = path + ".bak"
    try:
        with open(path, "r", encoding="utf-8") as fh:
            lines = fh.read().splitlines(keepends=True)
    except OSError as exc:
        raise ArtifactInstallFailed(f"cannot read {CRYPTTAB_PATH}: {exc}") from exc

    entry_idx = [i for i, line in enumerate(lines) if _is_entry(line)]
    if not entry_idx:
        raise ArtifactInstallFailed(f"{CRYPTTAB_PATH} has no entry to patch")

    report: Dict[str, Any] = {
        "path": path,
        "backup": backup,
        "backup_created": False,
        "line": entry_idx[0] + 1,
        "extra_entries": len(entry_idx) - 1,
        "changed": False,
    }
    if len(entry_idx) > 1:
        warn(
            f"Only the first entry of {CRYPTTAB_PATH} is updated. It seems there are "
            f"{len(entry_idx)} entries (comment and blank lines not counted), "
            "so please update the remaining lines manually."
        )

    first = entry_idx[0]
    try:
        patched = add_keyscript_option(lines[first], keyscript_path)
    except ValueError as exc:
        raise ArtifactInstallFailed(str(exc)) from exc
    if patched == lines[first]:
        trace("crypttab.patch", **report)
        return report

    tmp_path = path + ".tmp"
    try:
        if not os.path.exists(backup):
            shutil.copy2(path, backup)
            report["backup_created"] = True
        lines[first] = patched
        with open(tmp_path, "w", encoding="utf-8") as fh:
            fh.write("".join(lines))
            fh.flush()
            os.fsync(fh.fileno())
        shutil.copymode(path, tmp_path)
        os.replace(tmp_path, path)
    except OSError as exc:
        _discard(tmp_path)
        raise ArtifactInstallFailed(f"cannot update {CRYPTTAB_PATH}: {exc}") from exc

    report["changed"] = True
    trace("crypttab.patch", **report)
    return report
