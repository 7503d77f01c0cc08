import os
import subprocess
from types import SimpleNamespace

import pytest

from autounlock import executil, initramfs
from autounlock.errors import ImageRebuildFailed
from conftest import RunRecorder

KVER = "6.8.0-31-generic"


def _image(root, data=b"initrd"):
    boot = root / "boot"
    boot.mkdir(exist_ok=True)
    path = boot / f"initrd.img-{KVER}"
    path.write_bytes(data)
    return path


def test_kernel_version_matches_uname():
    assert initramfs.kernel_version() == os.uname().release


def test_backup_image_creates_orig_once(tmp_path):
    image = _image(tmp_path, b"first")
    meta = initramfs.backup_image(str(tmp_path), KVER)
    orig = tmp_path / "boot" / f"initrd.img-{KVER}.orig"
    assert meta["created"] is True
    assert orig.read_bytes() == b"first"

    image.write_bytes(b"rebuilt")
    meta = initramfs.backup_image(str(tmp_path), KVER)
    assert meta["created"] is False
    assert orig.read_bytes() == b"first"


def test_backup_image_missing_is_warning(tmp_path, capsys):
    meta = initramfs.backup_image(str(tmp_path), KVER)
    assert meta["missing"] is True
    assert "nothing to back up" in capsys.readouterr().err


def test_rebuild_invokes_mkinitramfs(tmp_path, monkeypatch):
    rec = RunRecorder()
    monkeypatch.setattr(initramfs, "run", rec)
    meta = initramfs.rebuild(str(tmp_path), KVER)
    image = str(tmp_path / "boot" / f"initrd.img-{KVER}")
    assert rec.commands == [["mkinitramfs", "-o", image, KVER]]
    assert meta["image"] == image


def test_rebuild_failure(tmp_path, monkeypatch):
    rec = RunRecorder({("mkinitramfs",): SimpleNamespace(rc=1, out="", err="hook failed")})
    monkeypatch.setattr(initramfs, "run", rec)
    with pytest.raises(ImageRebuildFailed, match="hook failed") as info:
        initramfs.rebuild(str(tmp_path), KVER)
    assert ".orig" in info.value.hint


def test_verify_image_contents(monkeypatch):
    listing = "usr/bin/tpm2_nvread\nusr/lib/x86_64-linux-gnu/libtss2-tcti-device.so.0\n"
    monkeypatch.setattr(initramfs, "run", RunRecorder({("lsinitramfs",): SimpleNamespace(rc=0, out=listing, err="")}))
    assert initramfs.verify_image_contents("/boot/initrd.img-x")["missing"] == []

    monkeypatch.setattr(initramfs, "run", RunRecorder({("lsinitramfs",): SimpleNamespace(rc=0, out="usr/bin/sh\n", err="")}))
    assert initramfs.verify_image_contents("/boot/initrd.img-x")["missing"] == list(initramfs.REQUIRED_MEMBERS)

    monkeypatch.setattr(initramfs, "run", RunRecorder({("lsinitramfs",): SimpleNamespace(rc=1, out="", err="bad")}))
    result = initramfs.verify_image_contents("/boot/initrd.img-x")
    assert result["error"] == "bad"
    assert result["missing"] == []


def test_verify_image_contents_when_lsinitramfs_absent(monkeypatch):
    def not_installed(cmd, **kwargs):
        raise FileNotFoundError(2, "No such file or directory", cmd[0])

    monkeypatch.setattr(executil.subprocess, "run", not_installed)
    monkeypatch.setattr(initramfs, "run", executil.run)
    result = initramfs.verify_image_contents("/boot/initrd.img-x")
    assert result["rc"] == executil.RC_NOT_FOUND
    assert "lsinitramfs" in result["error"]
    assert result["missing"] == []


def test_rebuild_timeout_is_image_rebuild_failed(tmp_path, monkeypatch):
    def slow(cmd, **kwargs):
        raise subprocess.TimeoutExpired(cmd, kwargs.get("timeout"))

    monkeypatch.setattr(executil.subprocess, "run", slow)
    monkeypatch.setattr(initramfs, "run", executil.run)
    with pytest.raises(ImageRebuildFailed) as info:
        initramfs.rebuild(str(tmp_path), "6.8.0-31-generic")
    assert "rc=124" in str(info.value)
    assert "timed out" in str(info.value)
