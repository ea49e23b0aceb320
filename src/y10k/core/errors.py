from __future__ import annotations

"""
Exception hierarchy for y10k.

Setup-phase errors (configuration, metadata, keyring) abort the sync of a
single repository. Verification and transport errors are per-package and are
captured on the download job instead of being raised out of a sync.
"""

from pathlib import Path


class Y10kError(Exception):
    """Base class for all y10k errors."""


class ConfigError(Y10kError):
    """Invalid configuration, optionally attributed to a file and line."""

    def __init__(
        self,
        message: str,
        source_file: str | None = None,
        source_line: int | None = None,
    ):
        self.source_file = source_file
        self.source_line = source_line
        if source_file and source_line:
            message = f"{message} (in {source_file}:{source_line})"
        elif source_file:
            message = f"{message} (in {source_file})"
        super().__init__(message)


class MetadataError(Y10kError):
    """Repository metadata could not be fetched or decoded."""


class KeyringError(Y10kError):
    """GPG keys could not be loaded."""


class TransportError(Y10kError):
    """A file transfer failed (network error, timeout, HTTP error)."""


class VerificationError(Y10kError):
    """Base class for integrity and authenticity failures."""


class ChecksumMismatchError(VerificationError):
    """File content does not match its declared checksum."""

    def __init__(self, path: Path | str, expected: str, actual: str):
        self.path = Path(path)
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Checksum mismatch for {self.path.name}: expected {expected}, got {actual}"
        )


class UnsupportedChecksumError(VerificationError):
    """Declared checksum algorithm is not known."""


class SignatureError(VerificationError):
    """Package signature is missing or does not verify against the keyring."""

    def __init__(self, path: Path | str, detail: str):
        self.path = Path(path)
        self.detail = detail
        super().__init__(f"Signature check failed for {self.path.name}: {detail}")


class SyncError(Y10kError):
    """Sync of one repository aborted during setup."""

    def __init__(self, repo_id: str, message: str):
        self.repo_id = repo_id
        super().__init__(f"Sync of repository '{repo_id}' failed: {message}")
