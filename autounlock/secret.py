"""Random unlock secret and its short-lived key file."""

from __future__ import annotations

import os
import secrets
import stat
import string

from .errors import ConfigError
from .model import MIN_SAFE_KEYSIZE, SECRET_FILENAME

ALPHABET = string.ascii_letters + string.digits


def generate_secret(keysize: int) -> str:
    if keysize <= 0:
        raise ConfigError(f"key size must be positive, got {keysize}")
    return "".join(secrets.choice(ALPHABET) for _ in range(keysize))


def check_keysize(keysize: int) -> str | None:
    if keysize <= 0:
        raise ConfigError(f"key size must be positive, got {keysize}")
    if keysize < MIN_SAFE_KEYSIZE:
        return (
            f"key size {keysize} is below {MIN_SAFE_KEYSIZE} characters; "
            "the TPM-held key will be weaker than a stretched passphrase"
        )
    return None


def _ensure_dir_private(path: str) -> None:
    os.makedirs(path, exist_ok=True)
    os.chmod(path, 0o700)
    st = os.stat(path)
    if stat.S_IMODE(st.st_mode) != 0o700:
        raise PermissionError(f"directory {path} must have mode 0700")


def write_secret_file(directory: str, secret: str) -> str:
    _ensure_dir_private(directory)
    path = os.path.join(directory, SECRET_FILENAME)
    if os.path.exists(path):
        os.chmod(path, 0o600)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="ascii") as fh:
        fh.write(secret)
        fh.flush()
        os.fsync(fh.fileno())
    os.chmod(path, 0o400)
    return path


def remove_secret_file(path: str) -> bool:
    try:
        os.remove(path)
    except FileNotFoundError:
        return False
    return True
