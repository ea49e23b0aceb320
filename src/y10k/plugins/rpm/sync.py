from __future__ import annotations

"""
RPM repository sync plugin.

This module mirrors one upstream RPM repository into a local directory:

1. Load the GPG keyring (if gpgcheck is enabled)
2. Refresh the metadata cache and load the primary package list
3. Filter the package list with the repository's rules
4. Diff against the package directory, validating files already present
5. Download whatever is missing, verifying every completed download
6. Optionally remove files that are no longer part of the upstream set

Failures before downloads start abort the sync with a SyncError. After that
point, failures are per package: they are recorded and reported, and the
remaining packages are still processed.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

import requests

from y10k.core.checksum import validate_file_checksum
from y10k.core.config import (
    DownloadConfig,
    ProxyConfig,
    RepositoryConfig,
    SSLConfig,
    StorageConfig,
)
from y10k.core.downloader import DownloadJob, DownloadManager, build_session
from y10k.core.errors import (
    KeyringError,
    MetadataError,
    SignatureError,
    SyncError,
    TransportError,
    VerificationError,
)
from y10k.core.output import SyncOutputter
from y10k.plugins.rpm.filters import filter_packages
from y10k.plugins.rpm.models import PackageEntry
from y10k.plugins.rpm.repocache import RepoCache, cache_local
from y10k.plugins.rpm.signature import Keyring, gpg_check, open_keyring

logger = logging.getLogger(__name__)

PACKAGE_DIR_MODE = 0o750

KeyringLoader = Callable[[str, requests.Session], Keyring]
SignatureChecker = Callable[[Path, Keyring], None]


@dataclass
class JobFailure:
    """A package that could not be mirrored in this run."""

    label: str
    kind: str  # transport, checksum, signature, io
    error: Exception

    def __str__(self) -> str:
        return f"{self.label}: {self.error}"


@dataclass
class SyncResult:
    """Result of a repository sync operation."""

    repo_id: str
    packages_total: int = 0  # After filtering
    packages_present: int = 0  # Already present with a valid checksum
    packages_scheduled: int = 0
    packages_downloaded: int = 0  # Downloaded and verified
    bytes_scheduled: int = 0
    packages_removed: int = 0
    failures: list[JobFailure] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        """True if at least one package failed."""
        return bool(self.failures)


@dataclass
class CheckUpdatesResult:
    """Result of a check-updates operation."""

    repo_id: str
    packages_total: int
    packages_present: int
    updates: list[DownloadJob]

    @property
    def total_size_bytes(self) -> int:
        return sum(job.size for job in self.updates)


class RpmSyncPlugin:
    """Plugin for syncing RPM repositories.

    Handles:
    - Refreshing the repository's metadata cache
    - Filtering the upstream package list
    - Downloading missing packages into the package directory
    - Checksum and signature verification of downloads
    """

    def __init__(
        self,
        config: RepositoryConfig,
        storage: StorageConfig | None = None,
        download_config: DownloadConfig | None = None,
        proxy_config: ProxyConfig | None = None,
        ssl_config: SSLConfig | None = None,
        output: SyncOutputter | None = None,
        keyring_loader: KeyringLoader = open_keyring,
        signature_checker: SignatureChecker = gpg_check,
        downloader: DownloadManager | None = None,
    ):
        """Initialize RPM sync plugin.

        Args:
            config: Repository configuration
            storage: Storage configuration (cache root, base path)
            download_config: Download configuration
            proxy_config: Optional global proxy configuration
            ssl_config: Optional global SSL/TLS configuration
            output: Output handler for progress and failures
            keyring_loader: Builds the keyring from the gpgkey setting
            signature_checker: Verifies one package against the keyring
            downloader: Download manager (default: built from the configs)
        """
        self.config = config
        self.storage = storage or StorageConfig()
        self.output = output or SyncOutputter()
        self.keyring_loader = keyring_loader
        self.signature_checker = signature_checker

        # Setup download manager with all authentication and SSL/TLS configuration
        self._owns_downloader = downloader is None
        self.downloader = downloader or DownloadManager(
            build_session(config, proxy_config, ssl_config), download_config
        )
        self.repo_cache: RepoCache | None = None

    def close(self) -> None:
        """Release the HTTP session if this plugin created it."""
        if self._owns_downloader:
            self.downloader.close()

    @property
    def local_path(self) -> Path:
        """Package directory of the repository."""
        return self.config.get_local_path(self.storage.base_path)

    def sync(self) -> SyncResult:
        """Sync repository from upstream.

        Returns:
            SyncResult with sync statistics and per-package failures

        Raises:
            SyncError: If the sync could not start (keyring, metadata or
                package directory)
        """
        repo = self.config
        self.output.header(
            repo.id,
            repo.baseurl or repo.mirrorlist,
            local_path=self.local_path,
            gpgcheck="enabled" if repo.gpgcheck else "disabled",
        )

        keyring = self._load_keyring()
        try:
            return self._sync(keyring)
        finally:
            if keyring is not None:
                keyring.close()

    def _sync(self, keyring: Keyring | None) -> SyncResult:
        result = SyncResult(repo_id=self.config.id)

        self.output.phase("Fetching package list", number=1)
        packages = self._load_packages()
        result.packages_total = len(packages)

        existing = self._list_package_dir(create=True)
        jobs, present = self._diff(packages, existing)
        result.packages_present = len(present)
        result.packages_scheduled = len(jobs)
        result.bytes_scheduled = sum(job.size for job in jobs)
        self.output.info(
            f"{len(present)} package(s) up to date, {len(jobs)} to download "
            f"({result.bytes_scheduled / 1024 / 1024:.2f} MB)"
        )

        if jobs:
            self.output.phase("Downloading packages", number=2)
            self._download(jobs, keyring, result)

        if self.config.delete_removed:
            self.output.phase("Removing packages no longer upstream", number=3)
            result.packages_removed = self._prune(packages, result)

        for failure in result.failures:
            logger.debug(f"{failure.kind} failure: {failure}")

        self.output.summary(
            packages_total=result.packages_total,
            packages_present=result.packages_present,
            packages_downloaded=result.packages_downloaded,
            packages_removed=result.packages_removed,
            failures=len(result.failures),
        )
        if result.degraded:
            self.output.warning(f"{len(result.failures)} package(s) could not be mirrored")
        else:
            self.output.success(f"Repository {self.config.id} is in sync")

        return result

    def check_updates(self) -> CheckUpdatesResult:
        """List the packages a sync would download, without downloading.

        Returns:
            CheckUpdatesResult with the would-be download jobs

        Raises:
            SyncError: If metadata or the package directory cannot be read
        """
        packages = self._load_packages()
        existing = self._list_package_dir(create=False)
        jobs, present = self._diff(packages, existing)
        return CheckUpdatesResult(
            repo_id=self.config.id,
            packages_total=len(packages),
            packages_present=len(present),
            updates=jobs,
        )

    def _load_keyring(self) -> Keyring | None:
        if not self.config.gpgcheck:
            return None

        self.output.verbose(f"Loading GPG key(s): {self.config.gpgkey}")
        try:
            return self.keyring_loader(self.config.gpgkey, self.downloader.session)
        except KeyringError as e:
            raise SyncError(self.config.id, str(e)) from e

    def _load_packages(self) -> list[PackageEntry]:
        """Refresh the metadata cache and return the filtered package list."""
        cache_root = self.storage.get_cache_path(self.config)
        try:
            self.repo_cache = cache_local(self.config, cache_root, self.downloader)
            packages = self.repo_cache.primary_db().packages()
        except MetadataError as e:
            raise SyncError(self.config.id, str(e)) from e

        self.output.info(f"Found {len(packages)} packages in repository")
        self.output.verbose(f"  → Mirror: {self.repo_cache.base_url}")

        filtered = filter_packages(self.config, packages)
        filtered_out = len(packages) - len(filtered)
        if filtered_out > 0:
            self.output.info(f"Filtered out {filtered_out} packages, {len(filtered)} remaining")
        return filtered

    def _list_package_dir(self, create: bool) -> dict[str, Path]:
        """Snapshot the package directory as a {filename: path} index."""
        path = self.local_path
        try:
            if create:
                path.mkdir(mode=PACKAGE_DIR_MODE, parents=True, exist_ok=True)
            elif not path.is_dir():
                return {}
            return {entry.name: entry for entry in path.iterdir() if entry.is_file()}
        except OSError as e:
            raise SyncError(self.config.id, f"Cannot use package directory {path}: {e}") from e

    def _diff(
        self, packages: list[PackageEntry], existing: dict[str, Path]
    ) -> tuple[list[DownloadJob], list[PackageEntry]]:
        """Split packages into download jobs and packages already present.

        A file that fails validation is scheduled again but left in place;
        the download replaces it atomically.
        """
        jobs = []
        present = []

        for pkg in packages:
            path = existing.get(pkg.filename)
            if path is not None:
                try:
                    validate_file_checksum(path, pkg.checksum, pkg.checksum_type)
                except (VerificationError, OSError) as e:
                    logger.warning(f"Existing file for {pkg.nevra} is invalid, re-downloading: {e}")
                    self.output.verbose(f"  → Invalid local copy: {pkg.nevra}")
                else:
                    present.append(pkg)
                    self.output.already_present(pkg.nevra)
                    continue

            jobs.append(
                DownloadJob(
                    label=pkg.nevra,
                    url=self.repo_cache.package_url(pkg.location, pkg.location_base),
                    dest=self.local_path / pkg.filename,
                    size=pkg.size,
                    checksum=pkg.checksum,
                    checksum_type=pkg.checksum_type,
                )
            )

        return jobs, present

    def _download(self, jobs: list[DownloadJob], keyring: Keyring | None, result: SyncResult) -> None:
        """Run the download jobs and verify each one as it completes."""
        self.output.start_download_progress(result.bytes_scheduled)
        try:
            for job in self.downloader.download(jobs):
                failures = self._check_job(job, keyring)
                if failures:
                    for failure in failures:
                        self.output.failure(failure.label, failure.error)
                    result.failures.extend(failures)
                    self.output.update_progress(job.size)
                    continue

                result.packages_downloaded += 1
                self.output.downloaded(job.label, job.size)
        finally:
            self.output.finish_progress()

    def _check_job(self, job: DownloadJob, keyring: Keyring | None) -> list[JobFailure]:
        """Verify a completed job, deleting its file if verification fails."""
        if job.error is not None:
            kind = "transport" if isinstance(job.error, TransportError) else "io"
            return [JobFailure(job.label, kind, job.error)]

        try:
            if job.checksum:
                validate_file_checksum(job.dest, job.checksum, job.checksum_type)
            if keyring is not None:
                self.signature_checker(job.dest, keyring)
        except VerificationError as e:
            kind = "signature" if isinstance(e, SignatureError) else "checksum"
            return [JobFailure(job.label, kind, e)] + self._discard(job)
        except OSError as e:
            return [JobFailure(job.label, "io", e)]

        return []

    def _discard(self, job: DownloadJob) -> list[JobFailure]:
        try:
            job.dest.unlink(missing_ok=True)
        except OSError as e:
            return [JobFailure(job.label, "io", e)]
        logger.info(f"Deleted {job.dest.name} after failed verification")
        return []

    def _prune(self, packages: list[PackageEntry], result: SyncResult) -> int:
        """Delete files in the package directory that are not upstream anymore."""
        wanted = {pkg.filename for pkg in packages}
        removed = 0

        try:
            entries = [entry for entry in self.local_path.iterdir() if entry.is_file()]
        except OSError as e:
            result.failures.append(JobFailure(str(self.local_path), "io", e))
            self.output.failure(str(self.local_path), e)
            return 0

        for entry in entries:
            if entry.name in wanted:
                continue
            try:
                entry.unlink()
            except OSError as e:
                result.failures.append(JobFailure(entry.name, "io", e))
                self.output.failure(entry.name, e)
                continue
            removed += 1
            self.output.verbose(f"  → Removed {entry.name}")

        logger.info(f"Removed {removed} file(s) from {self.local_path}")
        return removed
