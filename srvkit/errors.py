"""Exception types raised by srvkit operations."""

from typing import Optional


class ToolkitError(Exception):
    """Base class for all server-toolkit failures."""


class NotFoundError(ToolkitError):
    """A required file or account does not exist."""


class AccountNotFoundError(NotFoundError):
    """No passwd entry matches the requested account."""

    def __init__(self, username: str):
        super().__init__(f"user not found: {username}")
        self.username = username


class ValidationError(ToolkitError):
    """Input or a freshly written config file was rejected."""

    def __init__(self, message: str, output: str = ""):
        super().__init__(f"{message}: {output}" if output else message)
        self.output = output


class FileOperationError(ToolkitError):
    """A read, write, backup or rename failed.

    Carries the failing path and the stage it failed at so the operator can
    retry by hand.
    """

    def __init__(self, path, stage: str, reason: object = ""):
        message = f"{stage} failed for {path}"
        if reason:
            message += f": {reason}"
        super().__init__(message)
        self.path = str(path)
        self.stage = stage


class FetchError(ToolkitError):
    """A remote resource could not be fetched or decoded."""


class KeySourceError(FetchError):
    """A key source produced no usable public keys."""


class ChecksumMismatchError(ToolkitError):
    """A downloaded release failed integrity verification."""


class StagingError(ToolkitError):
    """A verified release could not be written to its staging file."""


class SwapError(ToolkitError):
    """The final executable rename failed.

    ``rollback_error`` is set when restoring the previous executable failed
    as well; the install path may then be empty.
    """

    def __init__(self, message: str, rollback_error: Optional[BaseException] = None):
        if rollback_error is not None:
            message += f" (rollback failed: {rollback_error})"
        super().__init__(message)
        self.rollback_error = rollback_error


class ConfigError(ToolkitError):
    """The tool's own configuration file is unreadable or invalid."""
