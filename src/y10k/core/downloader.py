from __future__ import annotations

"""
Central download manager.

This module owns the HTTP session (authentication, SSL/TLS, proxies) and the
bounded worker pool that fetches package files. Jobs are reported back in
completion order, each carrying its own outcome, so that one failed transfer
never holds up or aborts its siblings.
"""

import logging
import os
import tempfile
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator

import requests

from y10k.core.config import (
    AuthConfig,
    DownloadConfig,
    ProxyConfig,
    RepositoryConfig,
    SSLConfig,
)
from y10k.core.errors import TransportError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 65536


@dataclass
class DownloadJob:
    """Single package download.

    ``error`` is the terminal annotation set by the scheduler: ``None`` means
    the file was transferred to ``dest``.
    """

    label: str
    url: str
    dest: Path
    size: int = 0
    checksum: str | None = None
    checksum_type: str | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        """True if the transfer succeeded."""
        return self.error is None


class RepositorySession(requests.Session):
    """requests session that removes the temporary files created for it on close."""

    def __init__(self):
        super().__init__()
        self.temp_files: list[Path] = []

    def close(self) -> None:
        super().close()
        for path in self.temp_files:
            path.unlink(missing_ok=True)
        self.temp_files.clear()


def build_session(
    config: RepositoryConfig | None = None,
    proxy_config: ProxyConfig | None = None,
    ssl_config: SSLConfig | None = None,
) -> RepositorySession:
    """Setup requests session with auth, SSL, and proxy configuration.

    Repository-level proxy/SSL settings override the global ones.

    The session owns any temporary files it needs (inline CA certificates);
    they are removed by session.close().

    Returns:
        Configured requests session
    """
    session = RepositorySession()

    if config is not None:
        proxy_config = config.proxy or proxy_config
        ssl_config = config.ssl or ssl_config

    # Setup proxy
    if proxy_config:
        proxies = {}
        if proxy_config.http_proxy:
            proxies["http"] = _proxy_url(proxy_config.http_proxy, proxy_config)
        if proxy_config.https_proxy:
            proxies["https"] = _proxy_url(proxy_config.https_proxy, proxy_config)
        if proxy_config.no_proxy:
            proxies["no_proxy"] = proxy_config.no_proxy
        session.proxies.update(proxies)

    # Setup SSL/TLS verification
    if ssl_config:
        if not ssl_config.verify:
            session.verify = False
        elif ssl_config.ca_cert:
            # Inline CA certificate - requests wants a file path
            ca_file = tempfile.NamedTemporaryFile(mode="w", suffix=".pem", delete=False)
            ca_file.write(ssl_config.ca_cert)
            ca_file.close()
            session.temp_files.append(Path(ca_file.name))
            session.verify = ca_file.name
        elif ssl_config.ca_bundle:
            session.verify = ssl_config.ca_bundle

        if ssl_config.client_cert:
            if ssl_config.client_key:
                session.cert = (ssl_config.client_cert, ssl_config.client_key)
            else:
                session.cert = ssl_config.client_cert

    if config is not None and config.auth:
        _setup_auth(session, config.auth)

    return session


def _proxy_url(url: str, proxy_config: ProxyConfig) -> str:
    """Embed proxy credentials into the proxy URL if configured."""
    if proxy_config.username and proxy_config.password and "://" in url:
        scheme, rest = url.split("://", 1)
        return f"{scheme}://{proxy_config.username}:{proxy_config.password}@{rest}"
    return url


def _setup_auth(session: requests.Session, auth: AuthConfig) -> None:
    """Setup repository authentication on session."""
    if auth.type == "client_cert":
        if auth.cert_file and auth.key_file:
            session.cert = (auth.cert_file, auth.key_file)
        elif auth.cert_file:
            session.cert = auth.cert_file
        logger.debug("Using client certificate authentication")

    elif auth.type == "basic":
        if auth.username and auth.password:
            session.auth = (auth.username, auth.password)
            logger.debug(f"Using HTTP Basic authentication (user: {auth.username})")

    elif auth.type == "bearer":
        if auth.token:
            session.headers.update({"Authorization": f"Bearer {auth.token}"})
            logger.debug("Using Bearer token authentication")

    elif auth.type == "custom":
        if auth.headers:
            session.headers.update(auth.headers)
            logger.debug("Using custom HTTP headers")


class DownloadManager:
    """Downloads files over a shared session with bounded concurrency."""

    def __init__(
        self,
        session: requests.Session,
        download_config: DownloadConfig | None = None,
    ):
        """Initialize download manager.

        Args:
            session: Configured requests session (see build_session)
            download_config: Download configuration (parallelism, timeout, retries)
        """
        self.session = session
        self.download_config = download_config or DownloadConfig()

    def close(self) -> None:
        """Close the session and release its connections."""
        self.session.close()

    def fetch(self, url: str, timeout: int | None = None) -> bytes:
        """Fetch a small resource into memory.

        Raises:
            TransportError: On network or HTTP errors
        """
        try:
            response = self.session.get(url, timeout=timeout or self.download_config.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise TransportError(f"Failed to fetch {url}: {e}") from e
        return response.content

    def download_file(self, url: str, dest: Path) -> Path:
        """Download a single file with retries.

        The file is streamed into a temporary file next to ``dest`` and moved
        over it once complete, so ``dest`` is either the previous file or the
        complete new one, never a partial transfer.

        Returns:
            Path to downloaded file

        Raises:
            TransportError: When every attempt failed
            OSError: When the destination cannot be written
        """
        dest.parent.mkdir(parents=True, exist_ok=True)
        attempts = self.download_config.retry_attempts + 1

        for attempt in range(1, attempts + 1):
            try:
                self._stream_to(url, dest)
                return dest
            except requests.RequestException as e:
                if attempt < attempts:
                    logger.warning(f"Download failed (attempt {attempt}/{attempts}): {url}: {e}")
                    continue
                raise TransportError(f"Failed to download {url}: {e}") from e

        raise TransportError(f"Failed to download {url}")

    def _stream_to(self, url: str, dest: Path) -> None:
        response = self.session.get(url, stream=True, timeout=self.download_config.timeout)
        try:
            response.raise_for_status()

            fd, tmp_name = tempfile.mkstemp(dir=dest.parent, prefix=f".{dest.name}.", suffix=".part")
            tmp_path = Path(tmp_name)
            try:
                with os.fdopen(fd, "wb") as tmp_file:
                    for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                        tmp_file.write(chunk)
                os.replace(tmp_path, dest)
            finally:
                tmp_path.unlink(missing_ok=True)
        finally:
            response.close()

    def _run_job(self, job: DownloadJob) -> DownloadJob:
        try:
            self.download_file(job.url, job.dest)
        except (TransportError, OSError) as e:
            job.error = e
        return job

    def download(self, jobs: Iterable[DownloadJob]) -> Iterator[DownloadJob]:
        """Download jobs concurrently, yielding each one as it completes.

        Jobs are yielded in completion order, not submission order. A failed
        job is yielded with ``error`` set. The iterator ends once every job
        has been reported.

        Args:
            jobs: Jobs to execute

        Yields:
            Completed jobs
        """
        jobs = list(jobs)
        if not jobs:
            return

        workers = self.download_config.parallel
        logger.debug(f"Downloading {len(jobs)} file(s) with {workers} worker(s)")

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="y10k-download") as executor:
            futures = [executor.submit(self._run_job, job) for job in jobs]
            for future in as_completed(futures):
                yield future.result()
