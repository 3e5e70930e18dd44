"""Exception hierarchy for vaultknife."""

from __future__ import annotations


class VaultKnifeError(Exception):
    """Base class for every error raised by vaultknife."""


class ConfigError(VaultKnifeError, ValueError):
    """Raised when the configuration is missing a key or holds an invalid value."""

    def __init__(self, key: str, message: str) -> None:
        self.key = key
        super().__init__(f"{key}: {message}")


class VaultRootError(VaultKnifeError):
    """The vault root cannot be read.  Always fatal."""


class NoteReadError(VaultKnifeError):
    """A single note could not be read or decoded."""

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"{path}: {reason}")


class ReportWriteError(VaultKnifeError):
    """The output report could not be written.  Always fatal."""
