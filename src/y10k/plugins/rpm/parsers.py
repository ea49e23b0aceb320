from __future__ import annotations

"""
RPM repository metadata parsers.

This module decodes repomd.xml and the primary database, in either its XML
(primary.xml.*) or SQLite (primary.sqlite.*) flavour, into PackageEntry values.
"""

import bz2
import gzip
import logging
import lzma
import tempfile
import xml.etree.ElementTree as ET
import zlib
from pathlib import Path
from typing import Callable

import zstandard as zstd
from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError

from y10k.core.errors import MetadataError
from y10k.plugins.rpm.models import PackageEntry, RepoMd, RepoMetadataFile

logger = logging.getLogger(__name__)

REPO_NS = "{http://linux.duke.edu/metadata/repo}"
COMMON_NS = "{http://linux.duke.edu/metadata/common}"
RPM_NS = "{http://linux.duke.edu/metadata/rpm}"
XML_BASE = "{http://www.w3.org/XML/1998/namespace}base"


def _find(elem: ET.Element, tag: str, ns: str) -> ET.Element | None:
    """Find a child element with or without namespace."""
    found = elem.find(f"{ns}{tag}")
    if found is None:
        found = elem.find(tag)
    return found


def parse_repomd(content: bytes) -> RepoMd:
    """Parse repomd.xml.

    Args:
        content: Raw repomd.xml content

    Returns:
        Parsed RepoMd

    Raises:
        MetadataError: If the document cannot be parsed
    """
    try:
        root = ET.fromstring(content)
    except ET.ParseError as e:
        raise MetadataError(f"Failed to parse repomd.xml: {e}") from e

    revision_elem = _find(root, "revision", REPO_NS)
    revision = revision_elem.text.strip() if revision_elem is not None and revision_elem.text else None

    data_elems = root.findall(f"{REPO_NS}data") or root.findall("data")

    files = []
    for data_elem in data_elems:
        file_type = data_elem.get("type")
        location_elem = _find(data_elem, "location", REPO_NS)
        checksum_elem = _find(data_elem, "checksum", REPO_NS)
        if (
            not file_type
            or location_elem is None
            or not location_elem.get("href")
            or checksum_elem is None
            or not checksum_elem.text
        ):
            logger.warning(f"Skipping incomplete repomd entry: {file_type}")
            continue

        size_elem = _find(data_elem, "size", REPO_NS)
        timestamp_elem = _find(data_elem, "timestamp", REPO_NS)
        open_checksum_elem = _find(data_elem, "open-checksum", REPO_NS)

        try:
            size = int(size_elem.text) if size_elem is not None and size_elem.text else 0
            timestamp = (
                int(float(timestamp_elem.text))
                if timestamp_elem is not None and timestamp_elem.text
                else None
            )
        except (ValueError, OverflowError) as e:
            raise MetadataError(f"Malformed repomd entry for {file_type}: {e}") from e

        files.append(
            RepoMetadataFile(
                file_type=file_type,
                location=location_elem.get("href"),
                checksum=checksum_elem.text.strip(),
                checksum_type=checksum_elem.get("type") or "sha256",
                size=size,
                timestamp=timestamp,
                open_checksum=(
                    open_checksum_elem.text.strip()
                    if open_checksum_elem is not None and open_checksum_elem.text
                    else None
                ),
            )
        )

    return RepoMd(revision=revision, files=tuple(files))


def decompress_metadata(compressed_content: bytes, filename: str) -> bytes:
    """Decompress metadata file based on extension or magic bytes.

    Args:
        compressed_content: Compressed file content
        filename: Filename for extension detection

    Returns:
        Decompressed content

    Raises:
        MetadataError: If the content cannot be decompressed
    """
    try:
        # Try extension-based detection first
        if filename.endswith(".xz"):
            return lzma.decompress(compressed_content)
        elif filename.endswith(".gz"):
            return gzip.decompress(compressed_content)
        elif filename.endswith(".zst"):
            dctx = zstd.ZstdDecompressor()
            return dctx.decompressobj().decompress(compressed_content)
        elif filename.endswith(".bz2"):
            return bz2.decompress(compressed_content)

        # Fallback to magic byte detection
        if compressed_content[:2] == b"\x1f\x8b":
            return gzip.decompress(compressed_content)
        elif compressed_content[:6] == b"\xfd7zXZ\x00":
            return lzma.decompress(compressed_content)
        elif compressed_content[:4] == b"\x28\xb5\x2f\xfd":
            dctx = zstd.ZstdDecompressor()
            return dctx.decompressobj().decompress(compressed_content)
        elif compressed_content[:3] == b"BZh":
            return bz2.decompress(compressed_content)
    except (OSError, EOFError, ValueError, lzma.LZMAError, zlib.error, zstd.ZstdError) as e:
        raise MetadataError(f"Failed to decompress {filename}: {e}") from e

    # Uncompressed
    return compressed_content


def _int_or_none(value: str | int | None) -> int | None:
    if value is None or value == "":
        return None
    return int(value)


def parse_primary_xml(xml_content: bytes) -> list[PackageEntry]:
    """Parse primary.xml content and extract package metadata.

    Args:
        xml_content: Decompressed primary.xml content

    Returns:
        List of PackageEntry

    Raises:
        MetadataError: If the document cannot be parsed
    """
    try:
        root = ET.fromstring(xml_content)
    except ET.ParseError as e:
        raise MetadataError(f"Failed to parse primary.xml: {e}") from e

    package_elems = root.findall(f"{COMMON_NS}package") or root.findall("package")

    packages = []
    for pkg_elem in package_elems:
        name_elem = _find(pkg_elem, "name", COMMON_NS)
        arch_elem = _find(pkg_elem, "arch", COMMON_NS)
        version_elem = _find(pkg_elem, "version", COMMON_NS)
        checksum_elem = _find(pkg_elem, "checksum", COMMON_NS)
        location_elem = _find(pkg_elem, "location", COMMON_NS)

        # ElementTree elements can be falsy even if not None, so check explicitly
        if (
            name_elem is None
            or arch_elem is None
            or version_elem is None
            or checksum_elem is None
            or location_elem is None
            or not location_elem.get("href")
        ):
            logger.warning("Skipping incomplete package entry in primary.xml")
            continue

        size_elem = _find(pkg_elem, "size", COMMON_NS)
        time_elem = _find(pkg_elem, "time", COMMON_NS)
        format_elem = _find(pkg_elem, "format", COMMON_NS)

        sourcerpm = None
        if format_elem is not None:
            sourcerpm_elem = format_elem.find(f"{RPM_NS}sourcerpm")
            sourcerpm = sourcerpm_elem.text if sourcerpm_elem is not None else None

        try:
            packages.append(
                PackageEntry(
                    name=name_elem.text or "",
                    epoch=version_elem.get("epoch"),
                    version=version_elem.get("ver") or "",
                    release=version_elem.get("rel") or "",
                    arch=arch_elem.text or "",
                    checksum=(checksum_elem.text or "").strip(),
                    checksum_type=checksum_elem.get("type") or "sha256",
                    size=int(size_elem.get("package") or 0) if size_elem is not None else 0,
                    location=location_elem.get("href"),
                    location_base=location_elem.get(XML_BASE) or location_elem.get("base"),
                    build_time=_int_or_none(time_elem.get("build")) if time_elem is not None else None,
                    file_time=_int_or_none(time_elem.get("file")) if time_elem is not None else None,
                    sourcerpm=sourcerpm,
                )
            )
        except ValueError as e:
            raise MetadataError(f"Malformed package entry for {name_elem.text}: {e}") from e

    return packages


PRIMARY_DB_QUERY = text(
    "SELECT name, epoch, version, release, arch, pkgId, checksum_type, size_package, "
    "location_href, location_base, time_build, time_file, rpm_sourcerpm FROM packages"
)


def parse_primary_sqlite(db_path: Path) -> list[PackageEntry]:
    """Read packages from an uncompressed primary.sqlite database.

    Raises:
        MetadataError: If the database cannot be read
    """
    engine = create_engine(f"sqlite:///{db_path}")
    try:
        with engine.connect() as conn:
            rows = conn.execute(PRIMARY_DB_QUERY).mappings().all()
    except SQLAlchemyError as e:
        raise MetadataError(f"Failed to read primary database {db_path.name}: {e}") from e
    finally:
        engine.dispose()

    return [
        PackageEntry(
            name=row["name"],
            epoch=row["epoch"],
            version=row["version"] or "",
            release=row["release"] or "",
            arch=row["arch"],
            checksum=row["pkgId"],
            checksum_type=row["checksum_type"] or "sha256",
            size=int(row["size_package"] or 0),
            location=row["location_href"],
            location_base=row["location_base"],
            build_time=_int_or_none(row["time_build"]),
            file_time=_int_or_none(row["time_file"]),
            sourcerpm=row["rpm_sourcerpm"],
        )
        for row in rows
    ]


class PrimaryDatabase:
    """Lazily decoded primary database backed by a cached metadata file."""

    def __init__(
        self,
        path: Path,
        file_type: str = "primary",
        refetch: Callable[[], None] | None = None,
    ):
        """Initialize primary database.

        Args:
            path: Cached (possibly compressed) primary file
            file_type: "primary" (XML) or "primary_db" (SQLite)
            refetch: Called once to replace the file if it fails to decode
        """
        self.path = path
        self.file_type = file_type
        self.refetch = refetch
        self._packages: list[PackageEntry] | None = None

    def packages(self) -> list[PackageEntry]:
        """Decode (once) and return all packages.

        A file that fails to decode is re-fetched once through ``refetch``;
        a second failure is raised rather than returning partial data.

        Raises:
            MetadataError: If the file is missing or cannot be decoded
        """
        if self._packages is None:
            try:
                self._packages = self._decode()
            except MetadataError:
                if self.refetch is None:
                    raise
                self.refetch()
                self._packages = self._decode()
        return list(self._packages)

    def _decode(self) -> list[PackageEntry]:
        try:
            content = self.path.read_bytes()
        except OSError as e:
            raise MetadataError(f"Failed to read {self.path}: {e}") from e

        raw = decompress_metadata(content, self.path.name)

        if self.file_type == "primary_db":
            with tempfile.TemporaryDirectory() as tmpdir:
                db_path = Path(tmpdir) / "primary.sqlite"
                db_path.write_bytes(raw)
                return parse_primary_sqlite(db_path)

        return parse_primary_xml(raw)
