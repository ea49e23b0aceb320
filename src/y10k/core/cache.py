from __future__ import annotations

"""
Metadata cache root for y10k.

The cache root holds one subdirectory per repository ID. Each repository's
directory is owned by its RepoCache (see y10k.plugins.rpm.repocache); this
module only manages the shared root: layout, atomic writes, statistics and
clearing.
"""

import logging
import os
import shutil
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass
class CacheStats:
    """Cache statistics."""

    total_repositories: int
    total_files: int
    total_size_bytes: int
    oldest_file_age_hours: float | None
    newest_file_age_hours: float | None


class MetadataCache:
    """Manages the metadata cache root.

    Cache structure: {cache_path}/{repo_id}/<metadata files>
    """

    def __init__(self, cache_path: Path):
        """Initialize metadata cache.

        Args:
            cache_path: Directory for cache storage
        """
        self.cache_path = Path(cache_path)

    def repo_dir(self, repo_id: str, create: bool = True) -> Path:
        """Get (and by default create) the cache directory for a repository.

        Raises:
            OSError: If the directory cannot be created
        """
        path = self.cache_path / repo_id
        if create and not path.is_dir():
            path.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created metadata cache for {repo_id}: {path}")
        return path

    def repo_ids(self) -> list[str]:
        """List repository IDs present in the cache."""
        if not self.cache_path.is_dir():
            return []
        return sorted(p.name for p in self.cache_path.iterdir() if p.is_dir())

    @staticmethod
    def write_atomic(path: Path, content: bytes) -> Path:
        """Write a cache file atomically (temp file + rename).

        Returns:
            Path to the written file
        """
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(content)
            os.replace(tmp_path, path)
        finally:
            tmp_path.unlink(missing_ok=True)
        logger.debug(f"Cached {path.name} ({len(content) / 1024 / 1024:.2f} MB)")
        return path

    def clear(self, repo_id: str | None = None) -> int:
        """Clear cache entries.

        Args:
            repo_id: Only clear this repository (None = all repositories)

        Returns:
            Number of files deleted
        """
        if repo_id is not None:
            targets = [self.cache_path / repo_id]
        else:
            targets = [self.cache_path / r for r in self.repo_ids()]

        files_deleted = 0
        for target in targets:
            if not target.is_dir():
                continue
            files_deleted += sum(1 for f in target.rglob("*") if f.is_file())
            shutil.rmtree(target)
            logger.debug(f"Deleted cache directory: {target}")

        logger.info(f"Cleared {files_deleted} cache file(s)")
        return files_deleted

    def stats(self) -> CacheStats:
        """Get cache statistics.

        Returns:
            CacheStats with cache information
        """
        repo_ids = self.repo_ids()
        total_files = 0
        total_size_bytes = 0
        oldest_mtime: float | None = None
        newest_mtime: float | None = None

        for repo_id in repo_ids:
            for cache_file in (self.cache_path / repo_id).rglob("*"):
                if not cache_file.is_file():
                    continue

                stat = cache_file.stat()
                total_files += 1
                total_size_bytes += stat.st_size
                mtime = stat.st_mtime

                if oldest_mtime is None or mtime < oldest_mtime:
                    oldest_mtime = mtime
                if newest_mtime is None or mtime > newest_mtime:
                    newest_mtime = mtime

        now = time.time()
        oldest_age = (now - oldest_mtime) / 3600 if oldest_mtime is not None else None
        newest_age = (now - newest_mtime) / 3600 if newest_mtime is not None else None

        return CacheStats(
            total_repositories=len(repo_ids),
            total_files=total_files,
            total_size_bytes=total_size_bytes,
            oldest_file_age_hours=oldest_age,
            newest_file_age_hours=newest_age,
        )
