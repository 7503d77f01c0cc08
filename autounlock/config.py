"""Run configuration from ``TPM2_LUKS_*`` environment variables."""

from __future__ import annotations

import os
from typing import Mapping

from .errors import ConfigError
from .model import DEFAULT_KEYSIZE, Config


def _int_setting(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip(), 0)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc
    return value


def load_config(environ: Mapping[str, str] | None = None) -> Config:
    env = os.environ if environ is None else environ
    keysize = _int_setting(env, "TPM2_LUKS_KEYSIZE", DEFAULT_KEYSIZE)
    if keysize <= 0:
        raise ConfigError(f"TPM2_LUKS_KEYSIZE must be positive, got {keysize}")
    cfg = Config(keysize=keysize)
    secret_dir = env.get("TPM2_LUKS_SECRET_DIR")
    if secret_dir:
        cfg.secret_dir = os.path.abspath(os.path.expanduser(secret_dir))
    root = env.get("TPM2_LUKS_ROOT")
    if root:
        cfg.root = os.path.abspath(root)
    return cfg
