from __future__ import annotations

"""Centralized output handling for sync operations."""

from enum import Enum
from typing import Any

from rich.console import Console
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TaskID,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)


class OutputLevel(Enum):
    """Output verbosity level."""

    QUIET = 0  # Only errors
    NORMAL = 1  # Standard with progress bar
    VERBOSE = 2  # All details


class SyncOutputter:
    """Centralized output handler for sync operations.

    Handles output formatting for quiet/normal/verbose modes with progress bars.
    One instance is handed to each sync; nothing here is process-global.
    """

    def __init__(
        self,
        level: OutputLevel = OutputLevel.NORMAL,
        console: Console | None = None,
        err_console: Console | None = None,
    ):
        """Initialize sync outputter.

        Args:
            level: Output verbosity level
            console: Console for regular output (default: stdout)
            err_console: Console for errors (default: stderr)
        """
        self.level = level
        self.console = console or Console()
        self.err_console = err_console or Console(stderr=True)
        self.progress: Progress | None = None
        self.task: TaskID | None = None

    def header(self, repo_id: str, upstream: str, **kwargs: Any) -> None:
        """Show repository header.

        Args:
            repo_id: Repository ID
            upstream: Base URL or mirror list URL
            **kwargs: Additional key-value pairs to display
        """
        if self.level == OutputLevel.QUIET:
            return

        self.console.print(f"Syncing repository: {repo_id}", style="bold")
        self.console.print(f"Upstream: {upstream}")

        for key, value in kwargs.items():
            display_key = key.replace("_", " ").title()
            self.console.print(f"{display_key}: {value}")

        self.console.print()

    def phase(self, name: str, number: int | None = None) -> None:
        """Show phase marker.

        Args:
            name: Phase name
            number: Optional phase number
        """
        if self.level == OutputLevel.QUIET:
            return

        if number is not None:
            self.console.print(f"\n=== Phase {number}: {name} ===", style="bold cyan")
        else:
            self.console.print(f"\n=== {name} ===", style="bold cyan")

    def start_download_progress(self, total_bytes: int, description: str = "Downloading") -> None:
        """Start download progress bar with transfer speed.

        Args:
            total_bytes: Total bytes to download
            description: Progress description
        """
        if self.level != OutputLevel.NORMAL:
            return

        self.progress = Progress(
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            DownloadColumn(),
            TransferSpeedColumn(),
            TimeRemainingColumn(),
            console=self.console,
        )
        self.progress.start()
        self.task = self.progress.add_task(description, total=total_bytes)

    def update_progress(self, advance: int = 1) -> None:
        """Update progress bar.

        Args:
            advance: Number of bytes to advance
        """
        if self.progress and self.task is not None:
            self.progress.update(self.task, advance=advance)

    def finish_progress(self) -> None:
        """Finish and cleanup progress bar."""
        if self.progress:
            self.progress.stop()
            self.progress = None
            self.task = None

    def info(self, message: str) -> None:
        """Show info message."""
        if self.level == OutputLevel.QUIET:
            return

        self.console.print(message)

    def verbose(self, message: str) -> None:
        """Show verbose message."""
        if self.level != OutputLevel.VERBOSE:
            return

        self.console.print(message)

    def success(self, message: str) -> None:
        """Show success message."""
        if self.level == OutputLevel.QUIET:
            return

        self.console.print(f"✓ {message}", style="green")

    def warning(self, message: str) -> None:
        """Show warning message."""
        if self.level == OutputLevel.QUIET:
            return

        self.console.print(f"⚠️  {message}", style="yellow")

    def error(self, message: str) -> None:
        """Show error message (always shown, even in quiet mode)."""
        self.err_console.print(f"✗ {message}", style="red")

    def failure(self, label: str, error: BaseException) -> None:
        """Report a per-package failure with its underlying cause.

        Args:
            label: Package label (NEVRA)
            error: Captured exception
        """
        self.error(f"{label}: {error}")

    def already_present(self, label: str) -> None:
        """Show that a package is already present and valid."""
        if self.level != OutputLevel.VERBOSE:
            return

        self.console.print(f"  → Already present: {label}")

    def downloaded(self, label: str, size_bytes: int) -> None:
        """Show download completion.

        In NORMAL mode: advances the progress bar
        In VERBOSE mode: prints a detailed line
        """
        self.update_progress(size_bytes)
        if self.level == OutputLevel.VERBOSE:
            self.console.print(f"  → Downloaded {label} ({size_bytes / 1024 / 1024:.1f} MB)")

    def summary(self, **stats: Any) -> None:
        """Show summary statistics."""
        if self.level == OutputLevel.QUIET:
            return

        self.console.print("\n=== Summary ===", style="bold")
        for key, value in stats.items():
            display_key = key.replace("_", " ").title()
            self.console.print(f"  {display_key}: {value}")
