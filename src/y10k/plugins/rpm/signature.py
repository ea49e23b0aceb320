from __future__ import annotations

"""
RPM signature verification.

Keys are imported into a private, temporary RPM key database so that
checking a mirror never depends on (or alters) the keys trusted by the host.
Verification shells out to ``rpmkeys``; if it is not installed, every
check fails.
"""

import logging
import re
import shutil
import subprocess
import tempfile
from pathlib import Path
from urllib.parse import unquote, urlparse

import requests

from y10k.core.errors import KeyringError, SignatureError

logger = logging.getLogger(__name__)

RPMKEYS = "rpmkeys"
ARMOR_HEADER = "-----BEGIN PGP PUBLIC KEY BLOCK-----"
KEY_FETCH_TIMEOUT = 60
CHECK_TIMEOUT = 300

# "foo.rpm: digests signatures OK" (rpm >= 4.14)
SIGNATURES_OK = re.compile(r"\bsignatures OK\b")


class Keyring:
    """Temporary RPM key database holding the trusted keys of one repository."""

    def __init__(self, path: Path | None = None):
        self.path = Path(path) if path else Path(tempfile.mkdtemp(prefix="y10k-keyring-"))
        self.dbpath = self.path / "rpmdb"
        self.dbpath.mkdir(parents=True, exist_ok=True)
        self.keys: list[str] = []
        self.closed = False

    def import_key(self, key: bytes, label: str) -> None:
        """Import one ASCII-armored public key.

        Raises:
            KeyringError: If rpmkeys rejects the key or is not available
        """
        key_file = self.path / f"key-{len(self.keys)}.asc"
        key_file.write_bytes(key)
        try:
            result = subprocess.run(
                [RPMKEYS, "--dbpath", str(self.dbpath), "--import", str(key_file)],
                capture_output=True,
                text=True,
                timeout=CHECK_TIMEOUT,
            )
        except (OSError, subprocess.SubprocessError) as e:
            raise KeyringError(f"Failed to import GPG key {label}: {e}") from e

        if result.returncode != 0:
            detail = (result.stderr or result.stdout).strip()
            raise KeyringError(f"Failed to import GPG key {label}: {detail}")

        self.keys.append(label)
        logger.debug(f"Imported GPG key {label}")

    def close(self) -> None:
        """Remove the key database."""
        if not self.closed:
            shutil.rmtree(self.path, ignore_errors=True)
            self.closed = True

    def __enter__(self) -> "Keyring":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def split_key_references(reference: str) -> list[str]:
    """Split a gpgkey setting into individual key references.

    Inline armored keys are returned whole. Otherwise, as in yum's
    ``gpgkey=``, several references may be separated by whitespace or commas.
    """
    reference = reference.strip()
    if ARMOR_HEADER in reference:
        return [reference]
    return [ref for ref in re.split(r"[\s,]+", reference) if ref]


def _read_key(reference: str, session: requests.Session | None) -> bytes:
    if ARMOR_HEADER in reference:
        return reference.encode()

    parsed = urlparse(reference)
    if parsed.scheme in ("http", "https"):
        try:
            response = (session or requests).get(reference, timeout=KEY_FETCH_TIMEOUT)
            response.raise_for_status()
        except requests.RequestException as e:
            raise KeyringError(f"Failed to download GPG key {reference}: {e}") from e
        return response.content

    if parsed.scheme == "file":
        path = Path(unquote(parsed.path))
    elif parsed.scheme:
        raise KeyringError(f"Unsupported GPG key location: {reference}")
    else:
        path = Path(reference)

    try:
        return path.read_bytes()
    except OSError as e:
        raise KeyringError(f"Failed to read GPG key {path}: {e}") from e


def open_keyring(reference: str, session: requests.Session | None = None) -> Keyring:
    """Load the keys named by a gpgkey setting into a new keyring.

    Args:
        reference: Path, file:// or http(s):// URL (several may be given), or
            an inline ASCII-armored key
        session: Session used for http(s) keys (default: plain requests)

    Returns:
        Keyring holding every key; the caller must close it

    Raises:
        KeyringError: If any key cannot be loaded or imported
    """
    references = split_key_references(reference or "")
    if not references:
        raise KeyringError("No GPG key specified")

    try:
        keyring = Keyring()
    except OSError as e:
        raise KeyringError(f"Failed to create keyring: {e}") from e

    try:
        for ref in references:
            label = "<inline key>" if ARMOR_HEADER in ref else ref
            key = _read_key(ref, session)
            if ARMOR_HEADER.encode() not in key:
                raise KeyringError(f"GPG key {label} is not an ASCII-armored public key")
            keyring.import_key(key, label)
    except KeyringError:
        keyring.close()
        raise
    except OSError as e:
        keyring.close()
        raise KeyringError(f"Failed to load GPG keys: {e}") from e

    logger.info(f"Loaded {len(keyring.keys)} GPG key(s)")
    return keyring


def gpg_check(path: Path, keyring: Keyring) -> None:
    """Verify a package's signature against the keyring.

    The package must carry a signature made by one of the keyring's keys;
    an unsigned package whose digests are fine still fails.

    Raises:
        SignatureError: If the signature is missing or does not verify
    """
    if keyring.closed:
        raise SignatureError(path, "keyring is closed")

    try:
        result = subprocess.run(
            [RPMKEYS, "--dbpath", str(keyring.dbpath), "--checksig", str(path)],
            capture_output=True,
            text=True,
            timeout=CHECK_TIMEOUT,
        )
    except (OSError, subprocess.SubprocessError) as e:
        raise SignatureError(path, f"cannot run {RPMKEYS}: {e}") from e

    output = result.stdout.strip()
    if result.returncode != 0 or not SIGNATURES_OK.search(output):
        detail = output or result.stderr.strip() or f"{RPMKEYS} exited with {result.returncode}"
        raise SignatureError(path, detail)

    logger.debug(f"Signature OK: {path.name}")
