#!/usr/bin/env python3
"""
tpm2_luks_autounlock.py - unlock a LUKS volume from the TPM at boot.

Usage:
  sudo ./tpm2_luks_autounlock.py            # first volume in /etc/crypttab
  sudo ./tpm2_luks_autounlock.py /dev/sda3  # explicit device

Creates a random key, adds it to LUKS, stores it in TPM2 NV index 0x1500016,
and rebuilds the initramfs so the key is read from the TPM on the next boot.
"""

import sys

from autounlock.cli import main

if __name__ == "__main__":
    sys.exit(main())
