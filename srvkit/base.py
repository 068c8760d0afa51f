"""Base orchestrator class for srvkit components."""

import logging
from typing import List, Optional, Sequence, Union

logger = logging.getLogger("srvkit")


class BaseOrchestrator:
    """
    Base class for srvkit components that mutate system state.

    Provides common functionality for dry-run mode, logging, and change tracking.
    All mutating classes (SSHDConfig, AuthorizedKeysManager, HostnameManager,
    Updater) inherit from this class so dry-run is handled one way everywhere.
    """

    def __init__(self, dry_run: bool = False, verbose: bool = False):
        """
        Initialize the orchestrator.

        Args:
            dry_run: If True, only log what would be done without making changes
            verbose: If True, log debug details at INFO level
        """
        self.dry_run = dry_run
        self.verbose = verbose
        self.changes: List[str] = []

    def log(self, msg: str, level: int = logging.INFO) -> None:
        """
        Log a message with optional dry-run prefix.

        Args:
            msg: Message to log
            level: Logging level
        """
        prefix = "[DRY-RUN] " if self.dry_run else ""
        logger.log(level, f"{prefix}{msg}")

    def log_verbose(self, msg: str) -> None:
        """
        Log a message at INFO if verbose mode is enabled, DEBUG otherwise.

        Args:
            msg: Message to log
        """
        self.log(msg, logging.INFO if self.verbose else logging.DEBUG)

    def warn(self, msg: str) -> None:
        self.log(msg, logging.WARNING)

    def log_file_write(self, path, content: Union[str, bytes]) -> None:
        """Log the write a dry run skipped."""
        self.log(f"Would write to file: {path} ({len(content)} bytes)")

    def log_command(self, cmd: Sequence[str]) -> None:
        """Log the command a dry run skipped."""
        self.log(f"Would execute: {' '.join(cmd)}")

    def log_operation(self, op: str, target: Optional[str] = None) -> None:
        """Log a generic operation a dry run skipped."""
        self.log(f"Would {op}: {target}" if target else f"Would {op}")

    def record_change(self, description: str) -> None:
        """
        Record a change that was made.

        Args:
            description: Description of the change
        """
        self.changes.append(description)

    def summarize(self, title: str = "Summary") -> None:
        """
        Log a summary of changes made.

        Args:
            title: Title for the summary section
        """
        self.log("=" * 60)
        self.log(title)
        if self.dry_run:
            self.log("Dry-run complete - no changes were made")
        elif self.changes:
            self.log(f"Changes made: {len(self.changes)}")
            for change in self.changes:
                self.log(f"  - {change}")
        else:
            self.log("No changes needed - system is up to date")
        self.log("=" * 60)
