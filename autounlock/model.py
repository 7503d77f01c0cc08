from dataclasses import dataclass, field
from typing import Optional

NV_INDEX = 0x1500016
DEFAULT_KEYSIZE = 64
MIN_SAFE_KEYSIZE = 32
SECRET_FILENAME = "root.key"


@dataclass
class Config:
    keysize: int = DEFAULT_KEYSIZE
    nv_index: int = NV_INDEX
    secret_dir: str = "/run/tpm2-luks-autounlock"
    root: str = "/"


@dataclass
class TargetVolume:
    device: str
    name: Optional[str] = None
    from_crypttab: bool = False


@dataclass
class CrypttabEntry:
    name: str
    locator: str = ""
    keyfile: str = ""
    options: list[str] = field(default_factory=list)
