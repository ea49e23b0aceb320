from __future__ import annotations

"""
Per-repository metadata cache.

A RepoCache keeps a copy of one repository's repomd.xml and primary database
under ``{cache_root}/{repo_id}``. On every update the upstream repomd.xml is
fetched (it is small) and compared with the cached copy; the primary
database is only downloaded again when upstream changed or the cached copy
no longer matches its declared checksum.
"""

import logging
from pathlib import Path
from urllib.parse import urljoin

from y10k.core.cache import MetadataCache
from y10k.core.checksum import validate_file_checksum
from y10k.core.config import RepositoryConfig
from y10k.core.downloader import DownloadManager
from y10k.core.errors import MetadataError, TransportError, VerificationError
from y10k.core.mirrorlist import parse_mirrorlist
from y10k.plugins.rpm.models import RepoMd, RepoMetadataFile
from y10k.plugins.rpm.parsers import PrimaryDatabase, parse_repomd

logger = logging.getLogger(__name__)

REPOMD_FILENAME = "repomd.xml"
MIRRORLIST_FILENAME = "mirrorlist.txt"


def _with_slash(url: str) -> str:
    return url if url.endswith("/") else url + "/"


class RepoCache:
    """Metadata cache of a single repository."""

    def __init__(self, repo: RepositoryConfig, cache: MetadataCache, downloader: DownloadManager):
        """Initialize repository cache.

        Args:
            repo: Repository configuration
            cache: Shared cache root
            downloader: Download manager used for metadata requests

        Raises:
            OSError: If the cache directory cannot be created
        """
        self.repo = repo
        self.path = cache.repo_dir(repo.id)
        self.cache = cache
        self.downloader = downloader
        self.base_url: str | None = None
        self.repomd: RepoMd | None = None
        self._primary_db: PrimaryDatabase | None = None

    @property
    def repomd_path(self) -> Path:
        return self.path / REPOMD_FILENAME

    @property
    def primary_path(self) -> Path | None:
        """Path of the cached primary database (after update)."""
        if self.repomd is None or self.repomd.primary is None:
            return None
        return self.path / self.repomd.primary.filename

    def base_urls(self) -> list[str]:
        """Candidate base URLs: the configured base URL, then mirrors.

        Raises:
            MetadataError: If no candidate could be determined
        """
        urls = []
        if self.repo.baseurl:
            urls.append(_with_slash(self.repo.baseurl))
        if self.repo.mirrorlist:
            for url in self._mirrors():
                if url not in urls:
                    urls.append(url)
        if not urls:
            raise MetadataError(f"No usable base URL or mirror for repository '{self.repo.id}'")
        return urls

    def _mirrors(self) -> list[str]:
        mirrorlist_path = self.path / MIRRORLIST_FILENAME
        try:
            content = self.downloader.fetch(self.repo.mirrorlist)
            self.cache.write_atomic(mirrorlist_path, content)
        except TransportError as e:
            if not mirrorlist_path.exists():
                if self.repo.baseurl:
                    logger.warning(f"Could not retrieve mirror list for {self.repo.id}: {e}")
                    return []
                raise MetadataError(f"Could not retrieve mirror list for {self.repo.id}: {e}") from e
            logger.warning(f"Could not retrieve mirror list for {self.repo.id}, using cached copy: {e}")
            content = mirrorlist_path.read_bytes()

        return parse_mirrorlist(content, self.repo.architecture)

    def _fetch_repomd(self) -> tuple[bytes, RepoMd, str]:
        """Fetch repomd.xml from the first base URL that serves a valid one."""
        errors = []
        for base_url in self.base_urls():
            url = urljoin(base_url, f"repodata/{REPOMD_FILENAME}")
            try:
                content = self.downloader.fetch(url, timeout=60)
                repomd = parse_repomd(content)
            except (TransportError, MetadataError) as e:
                logger.warning(f"Mirror {base_url} unusable: {e}")
                errors.append(str(e))
                continue
            if repomd.primary is None:
                errors.append(f"{url}: no primary database declared")
                continue
            return content, repomd, base_url

        raise MetadataError(
            f"Failed to fetch repomd.xml for repository '{self.repo.id}': " + "; ".join(errors)
        )

    def _load_cached_repomd(self) -> RepoMd | None:
        if not self.repomd_path.exists():
            return None
        try:
            return parse_repomd(self.repomd_path.read_bytes())
        except (OSError, MetadataError) as e:
            logger.warning(f"Discarding unreadable cached repomd.xml for {self.repo.id}: {e}")
            return None

    def _primary_is_valid(self, primary: RepoMetadataFile) -> bool:
        path = self.path / primary.filename
        if not path.exists():
            return False
        try:
            validate_file_checksum(path, primary.checksum, primary.checksum_type)
        except (VerificationError, OSError) as e:
            logger.warning(f"Cached {primary.filename} is invalid: {e}")
            return False
        return True

    def _download_primary(self) -> None:
        """Download and verify the primary database declared by self.repomd."""
        primary = self.repomd.primary
        path = self.path / primary.filename
        url = urljoin(self.base_url, primary.location)
        logger.info(f"Downloading {primary.file_type} from {url}")

        try:
            self.downloader.download_file(url, path)
            validate_file_checksum(path, primary.checksum, primary.checksum_type)
        except (TransportError, VerificationError, OSError) as e:
            path.unlink(missing_ok=True)
            raise MetadataError(f"Failed to cache {primary.file_type} for '{self.repo.id}': {e}") from e

    def _remove_stale_files(self) -> None:
        keep = {REPOMD_FILENAME, MIRRORLIST_FILENAME, self.repomd.primary.filename}
        for path in self.path.iterdir():
            if path.is_file() and path.name not in keep:
                logger.debug(f"Removing superseded metadata file {path.name}")
                path.unlink(missing_ok=True)

    def update(self) -> bool:
        """Refresh the cache from upstream.

        Returns:
            True if new metadata was downloaded, False if the cache was current

        Raises:
            MetadataError: If upstream metadata cannot be fetched or verified
        """
        content, upstream, base_url = self._fetch_repomd()
        self.base_url = base_url
        self.repomd = upstream
        self._primary_db = None

        cached = self._load_cached_repomd()
        if (
            cached is not None
            and cached.marker == upstream.marker
            and self._primary_is_valid(upstream.primary)
        ):
            logger.info(f"Metadata cache for {self.repo.id} is up to date")
            return False

        logger.info(f"Metadata for {self.repo.id} changed upstream, refreshing cache")
        self._download_primary()

        # repomd.xml is written last so an interrupted refresh is retried next time
        try:
            self.cache.write_atomic(self.repomd_path, content)
        except OSError as e:
            raise MetadataError(f"Failed to write metadata cache for '{self.repo.id}': {e}") from e
        self._remove_stale_files()
        return True

    def _refetch_primary(self) -> None:
        """Discard the cached primary database and download it again."""
        logger.warning(f"Cached primary database for {self.repo.id} is corrupt, re-fetching")
        self.primary_path.unlink(missing_ok=True)
        self._download_primary()

    def primary_db(self) -> PrimaryDatabase:
        """Get the (lazily decoded) primary database.

        Raises:
            MetadataError: If the cache has not been updated
        """
        if self.repomd is None or self.repomd.primary is None:
            raise MetadataError(f"Metadata cache for '{self.repo.id}' has not been updated")
        if self._primary_db is None:
            self._primary_db = PrimaryDatabase(
                self.primary_path,
                self.repomd.primary.file_type,
                refetch=self._refetch_primary,
            )
        return self._primary_db

    def package_url(self, location: str, location_base: str | None = None) -> str:
        """Resolve a package location against the repository base URL."""
        base = _with_slash(location_base) if location_base else self.base_url
        return urljoin(base, location)


def cache_local(
    repo: RepositoryConfig, cache_root: Path, downloader: DownloadManager
) -> RepoCache:
    """Cache a repository's metadata under cache_root, refreshing it if stale.

    Args:
        repo: Repository configuration
        cache_root: Metadata cache root directory
        downloader: Download manager for the repository

    Returns:
        Up to date RepoCache

    Raises:
        MetadataError: If the cache cannot be created or refreshed
    """
    logger.debug(f"Caching {repo.id} to {cache_root}")
    try:
        repo_cache = RepoCache(repo, MetadataCache(cache_root), downloader)
    except OSError as e:
        raise MetadataError(f"Failed to create metadata cache for '{repo.id}': {e}") from e

    repo_cache.update()
    return repo_cache
