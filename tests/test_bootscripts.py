import os
import stat
import subprocess

import pytest

from autounlock import bootscripts
from autounlock.errors import ArtifactInstallFailed

INDEX = 0x1500016


def _exe(path, body):
    path.write_text("#!/bin/sh\n" + body, encoding="utf-8")
    path.chmod(0o755)
    return str(path)


@pytest.fixture
def keyscript_env(tmp_path):
    calls = tmp_path / "calls.log"
    nvread = _exe(tmp_path / "fake-nvread", f'echo "nvread $*" >> "{calls}"\nprintf SECRETFROMTPM\n')
    askpass = _exe(tmp_path / "fake-askpass", f'echo "askpass $1" >> "{calls}"\nprintf typed\n')
    marker_dir = tmp_path / "run"
    script = tmp_path / "tpm2-getkey"
    script.write_text(
        bootscripts.render_keyscript(64, INDEX, marker_dir=str(marker_dir), askpass=askpass, nvread=nvread),
        encoding="utf-8",
    )

    def invoke(name="sda3_crypt"):
        env = dict(os.environ, CRYPTTAB_NAME=name, CRYPTTAB_SOURCE="/dev/sdX3")
        return subprocess.run(["sh", str(script)], capture_output=True, text=True, env=env, check=True).stdout

    def log():
        return calls.read_text(encoding="utf-8").splitlines() if calls.exists() else []

    return invoke, log, marker_dir


def test_render_keyscript_defaults():
    text = bootscripts.render_keyscript(64, INDEX)
    assert text.startswith("#!/bin/sh\n")
    assert 'MARKER="/run/tpm2-getkey.${CRYPTTAB_NAME}.tmp"' in text
    assert "tpm2_nvread -s 64 0x1500016" in text
    assert "/lib/cryptsetup/askpass" in text


def test_first_attempt_reads_tpm_and_creates_marker(keyscript_env):
    invoke, log, marker_dir = keyscript_env
    assert invoke() == "SECRETFROMTPM"
    assert log() == ["nvread -s 64 0x1500016"]
    assert (marker_dir / "tpm2-getkey.sda3_crypt.tmp").exists()


def test_later_attempts_prompt_without_reading_tpm(keyscript_env):
    invoke, log, _ = keyscript_env
    invoke()
    assert invoke() == "typed"
    assert invoke() == "typed"
    entries = log()
    assert sum(1 for e in entries if e.startswith("nvread")) == 1
    assert entries[1] == "askpass Automatic disk unlock via TPM failed for (/dev/sdX3) Enter passphrase: "
    assert len(entries) == 3


def test_marker_is_per_volume(keyscript_env):
    invoke, log, _ = keyscript_env
    invoke("sda3_crypt")
    assert invoke("sdb1_crypt") == "SECRETFROMTPM"
    assert [e.split()[0] for e in log()] == ["nvread", "nvread"]


@pytest.fixture
def hook_env(tmp_path):
    copied = tmp_path / "copied.log"
    functions = tmp_path / "hook-functions"
    functions.write_text(f'copy_exec() {{ echo "$1" >> "{copied}"; }}\n', encoding="utf-8")
    bindir = tmp_path / "bin"
    bindir.mkdir()
    _exe(bindir / "tpm2_nvread", "exit 0\n")
    libdir = tmp_path / "lib"
    libdir.mkdir()
    hook = tmp_path / "tpm2-decryptkey"
    hook.write_text(bootscripts.render_hook(str(libdir), hook_functions=str(functions)), encoding="utf-8")

    def invoke(*args, path=None):
        env = dict(os.environ, PATH=f"{bindir}:{os.environ.get('PATH', '/usr/bin:/bin')}" if path is None else path)
        return subprocess.run(["sh", str(hook), *args], capture_output=True, text=True, env=env)

    return invoke, copied, libdir, bindir


def test_hook_prereqs_is_empty(hook_env):
    invoke, copied, _, _ = hook_env
    res = invoke("prereqs")
    assert res.returncode == 0
    assert res.stdout.strip() == ""
    assert not copied.exists()


def test_hook_copies_binary_and_libraries(hook_env):
    invoke, copied, libdir, bindir = hook_env
    for name in bootscripts.TCTI_LIBS:
        (libdir / name).write_bytes(b"\x7fELF")
    res = invoke()
    assert res.returncode == 0, res.stderr
    assert copied.read_text(encoding="utf-8").splitlines() == [
        str(bindir / "tpm2_nvread"),
        str(libdir / "libtss2-tcti-device.so.0.0.0"),
        str(libdir / "libtss2-tcti-device.so.0"),
    ]


def test_hook_fails_loudly_when_library_missing(hook_env):
    invoke, copied, libdir, _ = hook_env
    (libdir / "libtss2-tcti-device.so.0").write_bytes(b"\x7fELF")
    res = invoke()
    assert res.returncode == 1
    assert "libtss2-tcti-device.so.0.0.0 not found" in res.stderr
    assert not copied.exists()


def test_find_tcti_lib_dir(tmp_path):
    target = tmp_path / "aarch64-linux-gnu"
    target.mkdir()
    (target / "libtss2-tcti-device.so.0").write_bytes(b"")
    pattern = str(tmp_path / "*-linux-gnu" / "libtss2-tcti-device.so.0")
    assert bootscripts.find_tcti_lib_dir(pattern) == str(target)
    assert bootscripts.find_tcti_lib_dir(str(tmp_path / "none" / "*.so.0")) is None


def test_install_script(tmp_path, monkeypatch):
    owners = {}
    monkeypatch.setattr(bootscripts.os, "chown", lambda path, uid, gid: owners.update({str(path): (uid, gid)}))
    path = bootscripts.install_script(str(tmp_path), "/usr/local/sbin/tpm2-getkey", "#!/bin/sh\n", 0o750)
    assert path == str(tmp_path / "usr/local/sbin/tpm2-getkey")
    assert stat.S_IMODE(os.stat(path).st_mode) == 0o750
    assert open(path, encoding="utf-8").read() == "#!/bin/sh\n"
    assert list(owners.values()) == [(0, 0)]
    assert not os.path.exists(path + ".tmp")


def test_install_script_failure(tmp_path, monkeypatch):
    def deny(path, uid, gid):
        raise PermissionError("operation not permitted")

    monkeypatch.setattr(bootscripts.os, "chown", deny)
    with pytest.raises(ArtifactInstallFailed, match="tpm2-decryptkey"):
        bootscripts.install_script(str(tmp_path), "/etc/initramfs-tools/hooks/tpm2-decryptkey", "x", 0o755)


def test_install_script_failure_leaves_no_temp_file(tmp_path, monkeypatch):
    def deny(path, mode):
        raise PermissionError("operation not permitted")

    monkeypatch.setattr(bootscripts.os, "chown", lambda path, uid, gid: None)
    monkeypatch.setattr(bootscripts.os, "chmod", deny)
    with pytest.raises(ArtifactInstallFailed):
        bootscripts.install_script(str(tmp_path), "/usr/local/sbin/tpm2-getkey", "#!/bin/sh\n", 0o750)
    assert os.listdir(tmp_path / "usr/local/sbin") == []
