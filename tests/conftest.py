from __future__ import annotations

from types import SimpleNamespace

import pytest

from autounlock import executil


class RunRecorder:
    """Stand-in for ``executil.run`` that records commands and replays results."""

    def __init__(self, responses=None):
        self.responses = dict(responses or {})
        self.calls = []

    def __call__(self, cmd, **kwargs):
        self.calls.append((list(cmd), kwargs))
        for prefix, res in self.responses.items():
            if tuple(cmd[: len(prefix)]) == prefix:
                return res
        return SimpleNamespace(rc=0, out="", err="", duration=0.0)

    @property
    def commands(self):
        return [cmd for cmd, _ in self.calls]


class FakeTpm:
    def __init__(self, corrupt: bool = False):
        self.slots = {}
        self.calls = []
        self.corrupt = corrupt

    def undefine(self, index):
        self.calls.append(("undefine", index))
        return self.slots.pop(index, None) is not None

    def define(self, index, size):
        self.calls.append(("define", index, size))
        if index in self.slots:
            raise AssertionError("index already defined")
        self.slots[index] = {"size": size, "data": b""}

    def write(self, index, path):
        self.calls.append(("write", index, path))
        with open(path, "rb") as fh:
            self.slots[index]["data"] = fh.read()

    def read(self, index, size):
        self.calls.append(("read", index, size))
        data = self.slots[index]["data"][:size]
        if self.corrupt:
            return b"X" + data[1:]
        return data


class FakeLuks:
    def __init__(self, luks_devices=("/dev/sdX3",), add_rc=0, status=None):
        self.luks_devices = set(luks_devices)
        self.add_rc = add_rc
        self.status = dict(status or {})
        self.added = []

    def is_luks(self, device):
        return device in self.luks_devices

    def status_device(self, name):
        return self.status.get(name)

    def add_key(self, device, keyfile):
        with open(keyfile, "r", encoding="ascii") as fh:
            self.added.append((device, keyfile, fh.read()))
        return self.add_rc

    @staticmethod
    def remove_key_command(device):
        return f"sudo cryptsetup luksRemoveKey {device}"


@pytest.fixture(autouse=True)
def isolated_log(tmp_path, monkeypatch):
    log_dir = tmp_path / "logs"
    monkeypatch.setattr(executil, "LOG_DIRS", [str(log_dir)])
    monkeypatch.setattr(executil, "LOG_PATH", None)
    return log_dir / executil.LOG_NAME


@pytest.fixture
def recorder():
    return RunRecorder()


@pytest.fixture
def fake_tpm():
    return FakeTpm()


@pytest.fixture
def fake_luks():
    return FakeLuks()
