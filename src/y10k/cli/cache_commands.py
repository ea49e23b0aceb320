from __future__ import annotations

"""Cache management commands."""

import click

from y10k.core.cache import MetadataCache
from y10k.core.config import GlobalConfig

# Click context settings to enable -h as alias for --help
CONTEXT_SETTINGS = {"help_option_names": ["-h", "--help"]}


def _format_size(size_bytes: int) -> str:
    size_mb = size_bytes / (1024 * 1024)
    if size_mb >= 1024:
        return f"{size_mb / 1024:.2f} GB"
    return f"{size_mb:.2f} MB"


def create_cache_group(cli: click.Group) -> click.Group:
    """Create and return the cache command group.

    Args:
        cli: Parent CLI group to attach to

    Returns:
        The cache command group
    """

    @cli.group(context_settings=CONTEXT_SETTINGS)
    def cache() -> None:
        """Metadata cache management commands."""
        pass

    @cache.command("clear")
    @click.option("--repo-id", help="Only clear the cache of this repository")
    @click.option("--force", is_flag=True, help="Skip confirmation prompt")
    @click.pass_context
    def cache_clear(ctx: click.Context, repo_id: str | None, force: bool) -> None:
        """Clear metadata cache.

        By default, clears the cached metadata of every repository. The next
        sync downloads it again.
        """
        config: GlobalConfig = ctx.obj["config"]

        cache_path = config.storage.get_cache_path()
        if repo_id:
            repo_config = config.get_repository(repo_id)
            if repo_config is not None:
                cache_path = config.storage.get_cache_path(repo_config)

        if not cache_path.exists():
            click.echo(f"Cache directory does not exist: {cache_path}")
            return

        cache_manager = MetadataCache(cache_path)

        if repo_id and repo_id not in cache_manager.repo_ids():
            click.echo(f"No cached metadata for repository '{repo_id}'")
            return

        # Get stats before clearing
        stats = cache_manager.stats()

        if stats.total_files == 0:
            click.echo("Cache is already empty")
            return

        # Confirm action
        if not force:
            target = f"repository '{repo_id}'" if repo_id else f"{stats.total_repositories} repositories"
            click.echo(f"About to delete cached metadata of {target}")
            if not click.confirm("Continue?"):
                click.echo("Aborted")
                return

        files_deleted = cache_manager.clear(repo_id)

        click.echo()
        click.echo("✓ Cache cleared successfully!")
        click.echo(f"  Files deleted: {files_deleted}")

    @cache.command("stats")
    @click.pass_context
    def cache_stats(ctx: click.Context) -> None:
        """Show cache statistics."""
        config: GlobalConfig = ctx.obj["config"]
        cache_path = config.storage.get_cache_path()

        if not cache_path.exists():
            click.echo(f"Cache directory: {cache_path}")
            click.echo("Status: Not created yet (no files cached)")
            return

        stats = MetadataCache(cache_path).stats()

        click.echo(f"Cache directory: {cache_path}")
        click.echo()

        if stats.total_files == 0:
            click.echo("Cache is empty")
            return

        click.echo(f"Repositories: {stats.total_repositories}")
        click.echo(f"Total files: {stats.total_files}")
        click.echo(f"Total size: {_format_size(stats.total_size_bytes)}")

        if stats.oldest_file_age_hours is not None:
            click.echo(f"Oldest file: {stats.oldest_file_age_hours:.1f} hours ago")
        if stats.newest_file_age_hours is not None:
            click.echo(f"Newest file: {stats.newest_file_age_hours:.1f} hours ago")

    return cache
