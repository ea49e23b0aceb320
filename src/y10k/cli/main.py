"""
Main CLI entry point for y10k.

This module provides the Click-based command-line interface for y10k.

Exit codes:
  0  every selected repository was synced (individual packages may have failed)
  1  at least one repository could not be synced
  2  usage or configuration error
"""

import fnmatch
import json
import logging
from pathlib import Path
from typing import Optional, Tuple

import click
from rich.console import Console
from rich.logging import RichHandler

from y10k import __version__
from y10k.cli.cache_commands import create_cache_group
from y10k.core.config import GlobalConfig, RepositoryConfig, load_config
from y10k.core.errors import ConfigError, SyncError
from y10k.core.output import OutputLevel, SyncOutputter
from y10k.plugins.rpm.sync import RpmSyncPlugin

logger = logging.getLogger(__name__)

# Click context settings to enable -h as alias for --help
CONTEXT_SETTINGS = dict(help_option_names=["-h", "--help"])

EXIT_SYNC_FAILED = 1
EXIT_USAGE = 2


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


@click.group(context_settings=CONTEXT_SETTINGS)
@click.version_option(version=__version__)
@click.option(
    "--config",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="Path to configuration file (default: /etc/y10k/config.yaml, or $Y10K_CONFIG)",
)
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.option("--quiet", "-q", is_flag=True, help="Only show errors")
@click.pass_context
def cli(ctx: click.Context, config: Optional[Path], verbose: bool, quiet: bool) -> None:
    """y10k - Verified mirrors of yum/dnf repositories."""
    _setup_logging(verbose)

    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    if quiet:
        ctx.obj["output_level"] = OutputLevel.QUIET
    elif verbose:
        ctx.obj["output_level"] = OutputLevel.VERBOSE
    else:
        ctx.obj["output_level"] = OutputLevel.NORMAL

    # Load configuration
    try:
        ctx.obj["config"] = load_config(config)
    except FileNotFoundError as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(EXIT_USAGE)
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(EXIT_USAGE)

    if verbose:
        click.echo(f"Loaded configuration: {len(ctx.obj['config'].repositories)} repositories")


def _get_repository(ctx: click.Context, repo_id: str) -> RepositoryConfig:
    config: GlobalConfig = ctx.obj["config"]
    repo_config = config.get_repository(repo_id)
    if repo_config is None:
        click.echo(f"Error: Repository '{repo_id}' not found in configuration", err=True)
        ctx.exit(EXIT_USAGE)
    return repo_config


def _make_plugin(config: GlobalConfig, repo_config: RepositoryConfig, output: SyncOutputter) -> RpmSyncPlugin:
    return RpmSyncPlugin(
        config=repo_config,
        storage=config.storage,
        download_config=config.download,
        proxy_config=config.proxy,
        ssl_config=config.ssl,
        output=output,
    )


@cli.command()
@click.option("--repo-id", "repo_ids", multiple=True, help="Repository ID to sync (repeatable)")
@click.option("--pattern", help="Sync repositories matching pattern (e.g., 'epel9-*', '*-updates')")
@click.pass_context
def sync(ctx: click.Context, repo_ids: Tuple[str, ...], pattern: Optional[str]) -> None:
    """Sync repositories from upstream.

    Without options, every enabled repository is synced. Repositories are
    synced one after another; a repository that fails does not stop the
    others.

    Examples:
      y10k sync
      y10k sync --repo-id epel9 --repo-id epel9-source
      y10k sync --pattern "rocky9-*"
    """
    config: GlobalConfig = ctx.obj["config"]

    if repo_ids and pattern:
        click.echo("Error: Cannot use --repo-id and --pattern together", err=True)
        ctx.exit(EXIT_USAGE)

    if repo_ids:
        repos_to_sync = [_get_repository(ctx, repo_id) for repo_id in repo_ids]
    elif pattern:
        repos_to_sync = [
            r for r in config.get_enabled_repositories() if fnmatch.fnmatch(r.id, pattern)
        ]
        if not repos_to_sync:
            click.echo(f"No enabled repositories found matching pattern '{pattern}'")
            return
    else:
        repos_to_sync = config.get_enabled_repositories()
        if not repos_to_sync:
            click.echo("No enabled repositories found")
            return

    output = SyncOutputter(ctx.obj["output_level"])
    failed = []
    for repo_config in repos_to_sync:
        plugin = _make_plugin(config, repo_config, output)
        try:
            plugin.sync()
        except SyncError as e:
            logger.debug("Sync aborted", exc_info=True)
            output.error(str(e))
            failed.append(repo_config.id)
        finally:
            plugin.close()

    if failed:
        output.error(f"{len(failed)} of {len(repos_to_sync)} repositories failed: {', '.join(failed)}")
        ctx.exit(EXIT_SYNC_FAILED)


@cli.command("check-updates")
@click.option("--repo-id", required=True, help="Repository ID to check")
@click.option("--format", "output_format", type=click.Choice(["table", "json"]),
              default="table", help="Output format")
@click.pass_context
def check_updates(ctx: click.Context, repo_id: str, output_format: str) -> None:
    """Show the packages a sync would download, without downloading them."""
    config: GlobalConfig = ctx.obj["config"]
    repo_config = _get_repository(ctx, repo_id)

    output = SyncOutputter(OutputLevel.QUIET)
    plugin = _make_plugin(config, repo_config, output)
    try:
        result = plugin.check_updates()
    except SyncError as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(EXIT_SYNC_FAILED)
    finally:
        plugin.close()

    if output_format == "json":
        click.echo(json.dumps({
            "repo_id": result.repo_id,
            "packages_total": result.packages_total,
            "packages_present": result.packages_present,
            "total_size_bytes": result.total_size_bytes,
            "updates": [
                {"package": job.label, "size_bytes": job.size, "url": job.url}
                for job in result.updates
            ],
        }, indent=2))
        return

    if not result.updates:
        click.echo(f"✓ {repo_id} is up to date ({result.packages_present} packages)")
        return

    click.echo(f"Updates available for {repo_id}: {len(result.updates)} package(s)")
    click.echo()
    for job in result.updates:
        click.echo(f"  {job.label:<60} {job.size / 1024 / 1024:>8.2f} MB")
    click.echo()
    click.echo(f"Total download size: {result.total_size_bytes / 1024 / 1024:.2f} MB")


@cli.group(context_settings=CONTEXT_SETTINGS)
def repo() -> None:
    """Repository configuration commands."""
    pass


@repo.command("list")
@click.option("--format", "output_format", type=click.Choice(["table", "json"]),
              default="table", help="Output format")
@click.pass_context
def repo_list(ctx: click.Context, output_format: str) -> None:
    """List configured repositories."""
    config: GlobalConfig = ctx.obj["config"]

    if output_format == "json":
        result = [
            {
                "repo_id": r.id,
                "name": r.display_name,
                "upstream": r.baseurl or r.mirrorlist,
                "enabled": r.enabled,
                "local_path": str(r.get_local_path(config.storage.base_path)),
            }
            for r in config.repositories
        ]
        click.echo(json.dumps(result, indent=2))
        return

    if not config.repositories:
        click.echo("No repositories configured")
        return

    click.echo(f"{'ID':<30} {'Enabled':<8} {'Upstream'}")
    click.echo("-" * 90)
    for r in config.repositories:
        enabled = "yes" if r.enabled else "no"
        click.echo(f"{r.id:<30} {enabled:<8} {r.baseurl or r.mirrorlist}")
    click.echo()
    click.echo(f"Total: {len(config.repositories)} repositories")


@repo.command("show")
@click.option("--repo-id", required=True, help="Repository ID")
@click.pass_context
def repo_show(ctx: click.Context, repo_id: str) -> None:
    """Show repository configuration."""
    config: GlobalConfig = ctx.obj["config"]
    r = _get_repository(ctx, repo_id)

    click.echo("=" * 70)
    click.echo(f"Repository: {r.id}")
    click.echo("=" * 70)
    click.echo(f"  Name:            {r.display_name}")
    click.echo(f"  Enabled:         {'Yes' if r.enabled else 'No'}")
    click.echo(f"  Base URL:        {r.baseurl or '-'}")
    click.echo(f"  Mirror list:     {r.mirrorlist or '-'}")
    click.echo(f"  Local path:      {r.get_local_path(config.storage.base_path)}")
    click.echo(f"  Cache path:      {config.storage.get_cache_path(r) / r.id}")
    click.echo(f"  GPG check:       {'Yes' if r.gpgcheck else 'No'}")
    click.echo(f"  Delete removed:  {'Yes' if r.delete_removed else 'No'}")
    click.echo()
    click.echo("Filters:")
    click.echo(f"  Architecture:    {r.architecture or 'any'}")
    click.echo(f"  Sources:         {'included' if r.include_sources else 'excluded'}")
    click.echo(f"  Newest only:     {'Yes' if r.newest_only else 'No'}")
    if r.min_date:
        click.echo(f"  Built after:     {r.min_date.isoformat()}")
    if r.max_date:
        click.echo(f"  Built before:    {r.max_date.isoformat()}")
    if r.include_packages:
        click.echo(f"  Include:         {', '.join(r.include_packages)}")
    if r.exclude_packages:
        click.echo(f"  Exclude:         {', '.join(r.exclude_packages)}")
    click.echo()
    click.echo(f"Declared at {r.source}")


create_cache_group(cli)


if __name__ == "__main__":
    cli()
