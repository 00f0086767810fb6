"""Custom exception hierarchy for settingsdb."""

from __future__ import annotations

from pathlib import Path


class SettingsDbError(Exception):
    """Base exception for all settingsdb errors."""


class SettingsDbConfigError(SettingsDbError):
    """Invalid or missing configuration."""


class BackendError(SettingsDbError):
    """Key-value backend failure (unreadable file, unserializable value, I/O)."""

    def __init__(
        self,
        message: str,
        *,
        key: str = "",
        path: Path | None = None,
    ) -> None:
        self.key = key
        self.path = path
        super().__init__(message)


class RecordTypeMismatchError(SettingsDbError):
    """A record was passed to a table of a different record type.

    Raised by ``add`` / ``delete`` before anything is written, so a
    mismatched batch leaves the table untouched.
    """

    def __init__(
        self,
        message: str,
        *,
        expected: str = "",
        actual: str = "",
    ) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(message)
