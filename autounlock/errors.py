"""Failure kinds for a provisioning run.

Every error is fatal to the run. Nothing is unwound: the operator finishes or
rolls back by hand using the printed guidance.
"""

from __future__ import annotations


class AutoUnlockError(RuntimeError):
    kind = "AutoUnlockError"

    def __init__(self, message: str, *, hint: str | None = None):
        super().__init__(message)
        self.hint = hint
        self.completed: list[str] = []


class InsufficientPrivilege(AutoUnlockError):
    kind = "InsufficientPrivilege"


class ConfigError(AutoUnlockError):
    kind = "ConfigError"


class NoVolumeFound(AutoUnlockError):
    kind = "NoVolumeFound"


class NotAnEncryptedVolume(AutoUnlockError):
    kind = "NotAnEncryptedVolume"


class MissingTool(AutoUnlockError):
    kind = "MissingTool"


class TpmProvisionFailed(AutoUnlockError):
    kind = "TpmProvisionFailed"


class VerificationMismatch(AutoUnlockError):
    kind = "VerificationMismatch"


class EnrollmentFailed(AutoUnlockError):
    kind = "EnrollmentFailed"


class ArtifactInstallFailed(AutoUnlockError):
    kind = "ArtifactInstallFailed"


class ImageRebuildFailed(AutoUnlockError):
    kind = "ImageRebuildFailed"
