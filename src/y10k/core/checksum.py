"""File checksum validation."""

import hashlib
from pathlib import Path

from y10k.core.errors import ChecksumMismatchError, UnsupportedChecksumError

# Checksum type names as they appear in repository metadata
CHECKSUM_ALGORITHMS = {
    "md5": "md5",
    "sha": "sha1",
    "sha1": "sha1",
    "sha224": "sha224",
    "sha256": "sha256",
    "sha384": "sha384",
    "sha512": "sha512",
}


def file_digest(file_path: Path, checksum_type: str = "sha256") -> str:
    """Calculate the hex digest of a file.

    Args:
        file_path: Path to file
        checksum_type: Metadata checksum type (sha256, sha, sha1, sha512, ...)

    Returns:
        Hex-encoded digest

    Raises:
        UnsupportedChecksumError: If the algorithm is unknown
        OSError: If the file cannot be read
    """
    algorithm = CHECKSUM_ALGORITHMS.get((checksum_type or "").lower())
    if algorithm is None:
        raise UnsupportedChecksumError(f"Unsupported checksum type: {checksum_type}")

    digest = hashlib.new(algorithm)
    with open(file_path, "rb") as f:
        # Read in 64kb chunks for memory efficiency
        for chunk in iter(lambda: f.read(65536), b""):
            digest.update(chunk)

    return digest.hexdigest()


def validate_file_checksum(file_path: Path, checksum: str, checksum_type: str = "sha256") -> None:
    """Check a file against its declared checksum.

    Raises:
        ChecksumMismatchError: If the digest differs
        UnsupportedChecksumError: If the algorithm is unknown
        OSError: If the file cannot be read
    """
    actual = file_digest(file_path, checksum_type)
    if actual.lower() != checksum.strip().lower():
        raise ChecksumMismatchError(file_path, checksum, actual)
