"""
Tests for RPM sync plugin.

These tests run complete syncs against an in-memory upstream repository
(see conftest.py) and inspect the resulting package directory.
"""

import hashlib
from pathlib import Path
from unittest.mock import Mock

import pytest

from conftest import BASEURL
from y10k.core.config import DownloadConfig, RepositoryConfig, SSLConfig, StorageConfig
from y10k.core.downloader import DownloadManager
from y10k.core.errors import KeyringError, SignatureError, SyncError
from y10k.core.output import OutputLevel, SyncOutputter
from y10k.plugins.rpm.sync import RpmSyncPlugin


def make_repo(**kwargs) -> RepositoryConfig:
    return RepositoryConfig(**{"id": "test-repo", "baseurl": BASEURL, **kwargs})


def make_plugin(repo, temp_dir, session, **kwargs) -> RpmSyncPlugin:
    storage = StorageConfig(cache_path=str(temp_dir / "cache"), base_path=str(temp_dir / "mirror"))
    downloader = DownloadManager(session, DownloadConfig(parallel=4, retry_attempts=0))
    return RpmSyncPlugin(
        config=repo,
        storage=storage,
        output=kwargs.pop("output", SyncOutputter(OutputLevel.QUIET)),
        downloader=downloader,
        **kwargs,
    )


def mirror_files(temp_dir: Path, repo_id: str = "test-repo") -> set[str]:
    path = temp_dir / "mirror" / repo_id
    return {p.name for p in path.iterdir() if p.is_file()}


@pytest.fixture
def abc_upstream(upstream):
    """Upstream with packages a-1.0, b-2.0 and c-3.0."""
    upstream.add_package("a", "1.0")
    upstream.add_package("b", "2.0")
    upstream.add_package("c", "3.0")
    upstream.publish()
    return upstream


class TestSync:
    """Tests for RpmSyncPlugin.sync()."""

    def test_initial_sync_downloads_everything(self, temp_dir, session, abc_upstream):
        """Test that a first sync mirrors every package."""
        result = make_plugin(make_repo(), temp_dir, session).sync()

        assert result.packages_total == 3
        assert result.packages_scheduled == 3
        assert result.packages_downloaded == 3
        assert not result.degraded
        assert mirror_files(temp_dir) == {
            "a-1.0-1.el9.x86_64.rpm",
            "b-2.0-1.el9.x86_64.rpm",
            "c-3.0-1.el9.x86_64.rpm",
        }

        # Downloaded files are complete copies of upstream
        for pkg in abc_upstream.packages:
            path = temp_dir / "mirror" / "test-repo" / Path(pkg["location"]).name
            assert hashlib.sha256(path.read_bytes()).hexdigest() == pkg["checksum"]

    def test_package_dir_created_with_mode(self, temp_dir, session, abc_upstream):
        """Test that the package directory is created owner/group only."""
        make_plugin(make_repo(), temp_dir, session).sync()

        mode = (temp_dir / "mirror" / "test-repo").stat().st_mode & 0o777
        assert mode & 0o007 == 0

    def test_second_sync_is_idempotent(self, temp_dir, session, abc_upstream):
        """Test that an unchanged upstream schedules no downloads."""
        make_plugin(make_repo(), temp_dir, session).sync()
        requests_before = session.requested(".rpm")

        result = make_plugin(make_repo(), temp_dir, session).sync()

        assert result.packages_scheduled == 0
        assert result.packages_present == 3
        assert session.requested(".rpm") == requests_before
        # Metadata is served from cache: the primary database is fetched once
        assert session.requested("-primary.xml.gz") == 1

    def test_only_missing_packages_scheduled(self, temp_dir, session, abc_upstream):
        """Test that a valid a-1.0 already present is left alone."""
        package_dir = temp_dir / "mirror" / "test-repo"
        package_dir.mkdir(parents=True)
        a_path = package_dir / "a-1.0-1.el9.x86_64.rpm"
        a_path.write_bytes(session.files[BASEURL + "Packages/a-1.0-1.el9.x86_64.rpm"])
        a_mtime = a_path.stat().st_mtime_ns

        result = make_plugin(make_repo(), temp_dir, session).sync()

        assert result.packages_present == 1
        assert result.packages_scheduled == 2
        assert session.requested("a-1.0-1.el9.x86_64.rpm") == 0
        assert session.requested("b-2.0-1.el9.x86_64.rpm") == 1
        assert session.requested("c-3.0-1.el9.x86_64.rpm") == 1
        assert a_path.stat().st_mtime_ns == a_mtime

    def test_corrupt_local_file_is_redownloaded(self, temp_dir, session, abc_upstream):
        """Test that an existing file with a wrong checksum is replaced."""
        package_dir = temp_dir / "mirror" / "test-repo"
        package_dir.mkdir(parents=True)
        b_path = package_dir / "b-2.0-1.el9.x86_64.rpm"
        b_path.write_bytes(b"truncated")

        result = make_plugin(make_repo(), temp_dir, session).sync()

        assert result.packages_scheduled == 3
        assert not result.degraded
        assert b_path.read_bytes() == session.files[BASEURL + "Packages/b-2.0-1.el9.x86_64.rpm"]

    def test_corrupt_local_file_kept_when_redownload_fails(self, temp_dir, session, abc_upstream):
        """Test that a failed re-download leaves the stale file for the next run."""
        package_dir = temp_dir / "mirror" / "test-repo"
        package_dir.mkdir(parents=True)
        b_path = package_dir / "b-2.0-1.el9.x86_64.rpm"
        b_path.write_bytes(b"truncated")
        session.failing.add(BASEURL + "Packages/b-2.0-1.el9.x86_64.rpm")

        result = make_plugin(make_repo(), temp_dir, session).sync()

        assert [f.kind for f in result.failures] == ["transport"]
        assert b_path.read_bytes() == b"truncated"

    def test_partial_failure_isolation(self, temp_dir, session, abc_upstream):
        """Test that one failing download does not affect the others."""
        del session.files[BASEURL + "Packages/b-2.0-1.el9.x86_64.rpm"]

        result = make_plugin(make_repo(), temp_dir, session).sync()

        assert result.packages_downloaded == 2
        assert len(result.failures) == 1
        assert result.failures[0].label == "b-2.0-1.el9.x86_64"
        assert result.failures[0].kind == "transport"
        assert result.degraded
        assert mirror_files(temp_dir) == {"a-1.0-1.el9.x86_64.rpm", "c-3.0-1.el9.x86_64.rpm"}

    def test_timed_out_download_is_transport_failure(self, temp_dir, session, abc_upstream):
        """Test that a transfer timeout fails only its own package."""
        session.timing_out.add(BASEURL + "Packages/b-2.0-1.el9.x86_64.rpm")

        result = make_plugin(make_repo(), temp_dir, session).sync()

        assert [(f.label, f.kind) for f in result.failures] == [("b-2.0-1.el9.x86_64", "transport")]
        assert mirror_files(temp_dir) == {"a-1.0-1.el9.x86_64.rpm", "c-3.0-1.el9.x86_64.rpm"}

    def test_checksum_mismatch_after_download_deletes_file(self, temp_dir, session, abc_upstream):
        """Test that a download not matching the metadata is removed."""
        session.files[BASEURL + "Packages/c-3.0-1.el9.x86_64.rpm"] = b"tampered"

        result = make_plugin(make_repo(), temp_dir, session).sync()

        assert [(f.label, f.kind) for f in result.failures] == [("c-3.0-1.el9.x86_64", "checksum")]
        assert "c-3.0-1.el9.x86_64.rpm" not in mirror_files(temp_dir)

    def test_failures_are_reported(self, temp_dir, session, abc_upstream):
        """Test that per-package failures go through the output handler."""
        del session.files[BASEURL + "Packages/a-1.0-1.el9.x86_64.rpm"]
        output = Mock(spec=SyncOutputter)

        make_plugin(make_repo(), temp_dir, session, output=output).sync()

        output.failure.assert_called_once()
        label, error = output.failure.call_args.args
        assert label == "a-1.0-1.el9.x86_64"
        assert "404" in str(error)

    def test_filters_applied(self, temp_dir, session, upstream):
        """Test that only filtered packages are mirrored."""
        upstream.add_package("a", "1.0")
        upstream.add_package("a", "1.0", arch="src")
        upstream.add_package("a", "1.0", arch="aarch64")
        upstream.add_package("common", "1.0", arch="noarch")
        upstream.publish()

        repo = make_repo(architecture="x86_64")
        result = make_plugin(repo, temp_dir, session).sync()

        assert result.packages_total == 2
        assert mirror_files(temp_dir) == {"a-1.0-1.el9.x86_64.rpm", "common-1.0-1.el9.noarch.rpm"}

    def test_newest_only(self, temp_dir, session, upstream):
        """Test that only the newest version of each package is mirrored."""
        upstream.add_package("kernel", "5.14.0", release="70.el9")
        upstream.add_package("kernel", "5.14.0", release="162.el9")
        upstream.add_package("kernel", "5.14.0", release="99.el9")
        upstream.publish()

        make_plugin(make_repo(newest_only=True), temp_dir, session).sync()

        assert mirror_files(temp_dir) == {"kernel-5.14.0-162.el9.x86_64.rpm"}

    def test_delete_removed(self, temp_dir, session, abc_upstream):
        """Test that files no longer upstream are removed when enabled."""
        package_dir = temp_dir / "mirror" / "test-repo"
        package_dir.mkdir(parents=True)
        (package_dir / "old-0.1-1.el9.x86_64.rpm").write_bytes(b"old")

        result = make_plugin(make_repo(delete_removed=True), temp_dir, session).sync()

        assert result.packages_removed == 1
        assert "old-0.1-1.el9.x86_64.rpm" not in mirror_files(temp_dir)
        assert len(mirror_files(temp_dir)) == 3

    def test_delete_removed_stays_inside_package_dir(self, temp_dir, session, abc_upstream):
        """Test that pruning never touches files outside the package directory."""
        (temp_dir / "mirror").mkdir()
        outside = temp_dir / "mirror" / "config.yaml"
        outside.write_text("repositories: []\n")
        precious = temp_dir / "precious.txt"
        precious.write_text("keep me")

        make_plugin(make_repo(delete_removed=True), temp_dir, session).sync()

        assert outside.exists()
        assert precious.exists()

    def test_removed_files_kept_by_default(self, temp_dir, session, abc_upstream):
        """Test that stray files survive without delete_removed."""
        package_dir = temp_dir / "mirror" / "test-repo"
        package_dir.mkdir(parents=True)
        (package_dir / "old-0.1-1.el9.x86_64.rpm").write_bytes(b"old")

        result = make_plugin(make_repo(), temp_dir, session).sync()

        assert result.packages_removed == 0
        assert "old-0.1-1.el9.x86_64.rpm" in mirror_files(temp_dir)

    def test_upstream_update_downloads_new_package(self, temp_dir, session, abc_upstream):
        """Test that a changed upstream is picked up on the next sync."""
        make_plugin(make_repo(), temp_dir, session).sync()

        abc_upstream.add_package("d", "4.0")
        abc_upstream.publish(revision="2")
        result = make_plugin(make_repo(), temp_dir, session).sync()

        assert result.packages_present == 3
        assert result.packages_scheduled == 1
        assert "d-4.0-1.el9.x86_64.rpm" in mirror_files(temp_dir)


class TestSyncSetupErrors:
    """Tests for errors that abort a sync before downloads start."""

    def test_unreachable_upstream_raises_sync_error(self, temp_dir, session):
        """Test that missing metadata aborts the sync."""
        with pytest.raises(SyncError, match="test-repo") as exc_info:
            make_plugin(make_repo(), temp_dir, session).sync()

        assert exc_info.value.repo_id == "test-repo"
        assert exc_info.value.__cause__ is not None

    def test_malformed_repomd_raises_sync_error(self, temp_dir, session, abc_upstream):
        """Test that malformed upstream metadata aborts only this repository."""
        repomd_url = BASEURL + "repodata/repomd.xml"
        session.files[repomd_url] = session.files[repomd_url].replace(b"<size>", b"<size>12 bytes")

        with pytest.raises(SyncError, match="test-repo") as exc_info:
            make_plugin(make_repo(), temp_dir, session).sync()

        assert "Malformed repomd entry" in str(exc_info.value)

    def test_keyring_error_raises_sync_error(self, temp_dir, session, abc_upstream):
        """Test that an unusable GPG key aborts the sync before metadata is fetched."""
        loader = Mock(side_effect=KeyringError("bad key"))
        repo = make_repo(gpgcheck=True, gpgkey="/nonexistent/RPM-GPG-KEY")

        with pytest.raises(SyncError, match="bad key"):
            make_plugin(repo, temp_dir, session, keyring_loader=loader).sync()

        assert session.requests == []

    def test_unusable_package_dir_raises_sync_error(self, temp_dir, session, abc_upstream):
        """Test that a package directory that cannot be created aborts the sync."""
        (temp_dir / "mirror").write_text("not a directory")

        with pytest.raises(SyncError, match="package directory"):
            make_plugin(make_repo(), temp_dir, session).sync()


class TestSignatureChecking:
    """Tests for gpgcheck handling during sync."""

    def test_signature_failure_deletes_package(self, temp_dir, session, abc_upstream):
        """Test that b-2.0 failing its signature check is absent afterwards."""
        keyring = Mock()

        def checker(path, kr):
            assert kr is keyring
            if path.name.startswith("b-"):
                raise SignatureError(path, "digests SIGNATURES NOT OK")

        repo = make_repo(gpgcheck=True, gpgkey="/etc/pki/rpm-gpg/RPM-GPG-KEY-test")
        result = make_plugin(
            repo,
            temp_dir,
            session,
            keyring_loader=Mock(return_value=keyring),
            signature_checker=checker,
        ).sync()

        assert [(f.label, f.kind) for f in result.failures] == [("b-2.0-1.el9.x86_64", "signature")]
        assert "b-2.0-1.el9.x86_64.rpm" not in mirror_files(temp_dir)
        assert mirror_files(temp_dir) == {"a-1.0-1.el9.x86_64.rpm", "c-3.0-1.el9.x86_64.rpm"}
        keyring.close.assert_called_once()

    def test_keyring_closed_on_setup_failure(self, temp_dir, session):
        """Test that the keyring is closed even if the sync aborts."""
        keyring = Mock()
        repo = make_repo(gpgcheck=True, gpgkey="/etc/pki/rpm-gpg/RPM-GPG-KEY-test")

        with pytest.raises(SyncError):
            make_plugin(repo, temp_dir, session, keyring_loader=Mock(return_value=keyring)).sync()

        keyring.close.assert_called_once()

    def test_no_signature_check_without_gpgcheck(self, temp_dir, session, abc_upstream):
        """Test that signatures are not checked when gpgcheck is off."""
        loader = Mock()
        checker = Mock()

        make_plugin(make_repo(), temp_dir, session, keyring_loader=loader, signature_checker=checker).sync()

        loader.assert_not_called()
        checker.assert_not_called()


def test_check_updates(temp_dir, session, abc_upstream):
    """Test that check_updates lists missing packages without downloading."""
    package_dir = temp_dir / "mirror" / "test-repo"
    package_dir.mkdir(parents=True)
    (package_dir / "a-1.0-1.el9.x86_64.rpm").write_bytes(
        session.files[BASEURL + "Packages/a-1.0-1.el9.x86_64.rpm"]
    )

    result = make_plugin(make_repo(), temp_dir, session).check_updates()

    assert result.packages_total == 3
    assert result.packages_present == 1
    assert [job.label for job in result.updates] == ["b-2.0-1.el9.x86_64", "c-3.0-1.el9.x86_64"]
    assert result.updates[0].url == BASEURL + "Packages/b-2.0-1.el9.x86_64.rpm"
    assert result.total_size_bytes == sum(job.size for job in result.updates)
    assert session.requested(".rpm") == 0


def test_check_updates_without_package_dir(temp_dir, session, abc_upstream):
    """Test that check_updates does not create the package directory."""
    result = make_plugin(make_repo(), temp_dir, session).check_updates()

    assert len(result.updates) == 3
    assert not (temp_dir / "mirror" / "test-repo").exists()


def test_close_releases_own_session_only():
    """Test that close() cleans up a session the plugin built, and leaves injected ones alone."""
    pem = "-----BEGIN CERTIFICATE-----\nMIIB\n-----END CERTIFICATE-----\n"
    plugin = RpmSyncPlugin(config=make_repo(), ssl_config=SSLConfig(ca_cert=pem))
    ca_path = Path(plugin.downloader.session.verify)
    assert ca_path.exists()

    plugin.close()
    assert not ca_path.exists()

    downloader = Mock()
    RpmSyncPlugin(config=make_repo(), downloader=downloader).close()
    downloader.close.assert_not_called()
