"""
Data models for RPM repositories.

PackageEntry is the decoded form of one <package> in the primary database.
RepoMetadataFile describes one <data> entry of repomd.xml.
"""

from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Optional

SOURCE_ARCHES = ("src", "nosrc")


@dataclass(frozen=True)
class PackageEntry:
    """One upstream package, as declared in the primary database."""

    name: str
    version: str
    release: str
    arch: str
    checksum: str
    checksum_type: str
    size: int  # Package file size in bytes
    location: str  # Relative URL to package file
    epoch: Optional[str] = None
    location_base: Optional[str] = None  # xml:base override for the location
    build_time: Optional[int] = None  # Unix timestamp (when built)
    file_time: Optional[int] = None  # Unix timestamp (file modification)
    sourcerpm: Optional[str] = None

    @property
    def filename(self) -> str:
        """Basename of the package location."""
        return PurePosixPath(self.location).name

    @property
    def is_source(self) -> bool:
        """True for source packages (.src.rpm / .nosrc.rpm)."""
        return self.arch in SOURCE_ARCHES

    @property
    def is_noarch(self) -> bool:
        """True for architecture-independent packages."""
        return self.arch == "noarch"

    @property
    def nevra(self) -> str:
        """NEVRA string (Name-Epoch:Version-Release.Arch).

        The epoch is omitted when it is empty or zero, e.g. "nginx-1.20.1-1.el9.x86_64".
        """
        epoch_str = f"{self.epoch}:" if self.epoch and self.epoch != "0" else ""
        return f"{self.name}-{epoch_str}{self.version}-{self.release}.{self.arch}"

    def __str__(self) -> str:
        return self.nevra


@dataclass(frozen=True)
class RepoMetadataFile:
    """Information about a metadata file from repomd.xml."""

    file_type: str  # e.g., "primary", "primary_db", "filelists", "other"
    location: str  # Relative path (e.g., "repodata/abc123-primary.xml.gz")
    checksum: str
    checksum_type: str
    size: int = 0
    timestamp: Optional[int] = None
    open_checksum: Optional[str] = None  # Checksum of uncompressed file

    @property
    def filename(self) -> str:
        """Basename of the metadata file."""
        return PurePosixPath(self.location).name


@dataclass(frozen=True)
class RepoMd:
    """Parsed repomd.xml."""

    revision: Optional[str]
    files: tuple[RepoMetadataFile, ...]

    def get(self, file_type: str) -> Optional[RepoMetadataFile]:
        """Get the metadata file of the given type, if declared."""
        return next((f for f in self.files if f.file_type == file_type), None)

    @property
    def primary(self) -> Optional[RepoMetadataFile]:
        """The primary database: XML preferred, SQLite as fallback."""
        return self.get("primary") or self.get("primary_db")

    @property
    def marker(self) -> str:
        """Freshness marker combining the revision and the primary checksum."""
        primary = self.primary
        return f"{self.revision or ''}:{primary.checksum if primary else ''}"
