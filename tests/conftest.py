"""Shared fixtures: a fake HTTP session serving an in-memory upstream repository."""

import gzip
import hashlib
import tempfile
from pathlib import Path

import pytest
import requests

BASEURL = "https://mirror.example.com/repo/"


class FakeResponse:
    """Minimal stand-in for requests.Response."""

    def __init__(self, url: str, content: bytes, status_code: int = 200):
        self.url = url
        self.content = content
        self.status_code = status_code
        self.closed = False

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Client Error for url: {self.url}", response=self)

    def iter_content(self, chunk_size: int = 1):
        for i in range(0, len(self.content), chunk_size):
            yield self.content[i : i + chunk_size]

    def close(self) -> None:
        self.closed = True


class FakeSession:
    """Serves URLs from a dict; unknown URLs answer 404."""

    def __init__(self):
        self.files: dict[str, bytes] = {}
        self.failing: set[str] = set()
        self.timing_out: set[str] = set()
        self.requests: list[str] = []
        self.timeouts: dict[str, object] = {}

    def get(self, url, timeout=None, stream=False):
        self.requests.append(url)
        self.timeouts[url] = timeout
        if url in self.failing:
            raise requests.ConnectionError(f"Connection refused: {url}")
        if url in self.timing_out:
            raise requests.Timeout(f"Read timed out: {url}")
        if url not in self.files:
            return FakeResponse(url, b"", 404)
        return FakeResponse(url, self.files[url])

    def requested(self, suffix: str) -> int:
        """Count requests for URLs ending with suffix."""
        return sum(1 for url in self.requests if url.endswith(suffix))


class UpstreamRepo:
    """Builds repodata for a set of packages and serves it through a FakeSession."""

    def __init__(self, session: FakeSession, baseurl: str = BASEURL):
        self.session = session
        self.baseurl = baseurl
        self.packages: list[dict] = []

    def add_package(
        self,
        name: str,
        version: str,
        release: str = "1.el9",
        arch: str = "x86_64",
        epoch: str = "0",
        build_time: int = 1700000000,
        content: bytes | None = None,
    ) -> str:
        """Add a package and return its filename."""
        filename = f"{name}-{version}-{release}.{arch}.rpm"
        location = f"Packages/{filename}"
        content = content if content is not None else f"RPM {filename}\n".encode() * 64
        self.session.files[self.baseurl + location] = content
        self.packages.append(
            {
                "name": name,
                "epoch": epoch,
                "version": version,
                "release": release,
                "arch": arch,
                "checksum": hashlib.sha256(content).hexdigest(),
                "size": len(content),
                "location": location,
                "build_time": build_time,
            }
        )
        return filename

    def primary_xml(self) -> bytes:
        entries = []
        for pkg in self.packages:
            entries.append(
                f"""  <package type="rpm">
    <name>{pkg["name"]}</name>
    <arch>{pkg["arch"]}</arch>
    <version epoch="{pkg["epoch"]}" ver="{pkg["version"]}" rel="{pkg["release"]}"/>
    <checksum type="sha256" pkgid="YES">{pkg["checksum"]}</checksum>
    <size package="{pkg["size"]}" installed="0" archive="0"/>
    <time file="{pkg["build_time"]}" build="{pkg["build_time"]}"/>
    <location href="{pkg["location"]}"/>
    <format>
      <rpm:sourcerpm>{pkg["name"]}-{pkg["version"]}-{pkg["release"]}.src.rpm</rpm:sourcerpm>
    </format>
  </package>"""
            )
        body = "\n".join(entries)
        return f"""<?xml version="1.0" encoding="UTF-8"?>
<metadata xmlns="http://linux.duke.edu/metadata/common" xmlns:rpm="http://linux.duke.edu/metadata/rpm" packages="{len(self.packages)}">
{body}
</metadata>
""".encode()

    def publish(self, revision: str = "1") -> str:
        """Write repodata for the current package set; returns the primary location."""
        primary = gzip.compress(self.primary_xml(), mtime=0)
        checksum = hashlib.sha256(primary).hexdigest()
        location = f"repodata/{checksum}-primary.xml.gz"
        self.session.files[self.baseurl + location] = primary
        self.session.files[self.baseurl + "repodata/repomd.xml"] = f"""<?xml version="1.0" encoding="UTF-8"?>
<repomd xmlns="http://linux.duke.edu/metadata/repo" xmlns:rpm="http://linux.duke.edu/metadata/rpm">
  <revision>{revision}</revision>
  <data type="primary">
    <checksum type="sha256">{checksum}</checksum>
    <location href="{location}"/>
    <timestamp>1700000000</timestamp>
    <size>{len(primary)}</size>
  </data>
</repomd>
""".encode()
        return location


@pytest.fixture
def temp_dir():
    """Create temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def session():
    """Fake HTTP session."""
    return FakeSession()


@pytest.fixture
def upstream(session):
    """Empty upstream repository served by the fake session."""
    return UpstreamRepo(session)
