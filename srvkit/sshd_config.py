"""sshd_config editing with Match-block awareness and validated rollback."""

import logging
import os
import re
import shutil
import subprocess
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from .base import BaseOrchestrator
from .errors import FileOperationError, ValidationError
from .files import (
    atomic_write,
    backup_file,
    get_mode,
    read_file,
    read_lines,
    restore_from_backup,
    restore_selinux_context,
)
from .paths import SSHD_CONFIG
from .services import reload_ssh_service, restart_ssh_service

logger = logging.getLogger(__name__)

# A Match line opens a conditional block that runs to the end of the file.
MATCH_LINE = re.compile(r"^\s*match(\s|$)", re.IGNORECASE)

# Keys that are prepended first, in this order, so repeated runs write the
# same bytes regardless of dict ordering.
PRIORITY_KEYS = (
    "PubkeyAuthentication",
    "PasswordAuthentication",
    "KbdInteractiveAuthentication",
    "ChallengeResponseAuthentication",
)

DEFAULT_MODE = 0o644

PASSWORD_AUTH_DISABLED = {
    "PubkeyAuthentication": "yes",
    "PasswordAuthentication": "no",
    "KbdInteractiveAuthentication": "no",
    "ChallengeResponseAuthentication": "no",
}


def _check_unique_keys(options: Dict[str, str]) -> None:
    seen = {}
    for key in options:
        lower = key.lower()
        if lower in seen:
            raise ValueError(f"option given twice: {seen[lower]!r} and {key!r}")
        seen[lower] = key


def _prepend_order(keys: List[str]) -> List[str]:
    priority = {k.lower(): i for i, k in enumerate(PRIORITY_KEYS)}
    first = sorted((k for k in keys if k.lower() in priority), key=lambda k: priority[k.lower()])
    rest = sorted(k for k in keys if k.lower() not in priority)
    return first + rest


def apply_options(
    lines: List[str],
    options: Dict[str, str],
) -> Tuple[List[str], List[str], List[str]]:
    """
    Set global ``key value`` directives in a list of sshd_config lines.

    Only the region before the first Match line is edited. The first line
    whose keyword equals a requested key (case-insensitively) is rewritten
    with the requested casing; later duplicates are left alone. Keys that
    were not found are prepended at the top of the file.

    Returns:
        Tuple of (new_lines, replaced_keys, prepended_keys)
    """
    _check_unique_keys(options)
    by_lower = {k.lower(): k for k in options}
    found = set()
    replaced = []
    new_lines = []
    in_match = False

    for line in lines:
        if not in_match and MATCH_LINE.match(line):
            in_match = True
        if in_match:
            new_lines.append(line)
            continue

        fields = line.split()
        key = by_lower.get(fields[0].lower()) if fields else None
        if key is None or key.lower() in found:
            new_lines.append(line)
            continue

        found.add(key.lower())
        replaced.append(key)
        new_lines.append(f"{key} {options[key]}")

    missing = [k for k in options if k.lower() not in found]
    prepended = _prepend_order(missing)
    new_lines = [f"{k} {options[k]}" for k in prepended] + new_lines
    return new_lines, replaced, prepended


def render_lines(lines: List[str]) -> str:
    return "\n".join(lines) + "\n" if lines else ""


def find_option(lines: List[str], key: str) -> Optional[str]:
    """Return the value of the first global occurrence of ``key``."""
    for line in lines:
        if MATCH_LINE.match(line):
            break
        fields = line.split(None, 1)
        if fields and fields[0].lower() == key.lower():
            return fields[1].strip() if len(fields) > 1 else ""
    return None


def validate_sshd_config(path: Union[str, Path]) -> None:
    """
    Run ``sshd -t`` against a config file.

    Skipped when no sshd binary is installed: without it there is nothing
    to validate against.

    Raises:
        ValidationError: if sshd rejects the file
    """
    sshd = shutil.which("sshd")
    if not sshd:
        logger.debug("sshd not found, skipping config validation")
        return

    result = subprocess.run(
        [sshd, "-t", "-f", str(path)],
        capture_output=True,
        text=True,
    )
    if result.returncode != 0:
        output = (result.stdout + result.stderr).strip()
        raise ValidationError("sshd_config validation failed", output)


class SSHDConfig(BaseOrchestrator):
    """Edits the global section of an sshd_config file."""

    def __init__(self, path: Union[str, Path] = SSHD_CONFIG, dry_run: bool = False, verbose: bool = False):
        super().__init__(dry_run=dry_run, verbose=verbose)
        self.path = Path(path)

    def get_option(self, key: str) -> Optional[str]:
        return find_option(read_lines(self.path), key)

    def set_global_option(self, key: str, value: str) -> bool:
        return self.set_global_options({key: value})

    def set_global_options(self, options: Dict[str, str]) -> bool:
        """
        Set several global options in a single read-modify-write.

        The old file is backed up first and restored if ``sshd -t`` rejects
        the result, so a failed call leaves the file as it was.

        Returns:
            True if the file content changed

        Raises:
            ValidationError: sshd rejected the new file (already rolled back)
            FileOperationError: backup or write failed
        """
        if not options:
            return False

        exists = self.path.exists()
        if not exists:
            self.warn(f"{self.path} not found, creating it")
        lines = read_lines(self.path)
        new_lines, replaced, prepended = apply_options(lines, options)
        for key in replaced:
            self.log_verbose(f"Updated {key}: {options[key]}")
        for key in prepended:
            self.log_verbose(f"Added {key}: {options[key]}")

        content = render_lines(new_lines)
        if exists and read_file(self.path) == content:
            self.log(f"{self.path} already up to date")
            return False

        if self.dry_run:
            self.log_file_write(self.path, content)
            return True

        backup_path = backup_file(self.path)
        mode = get_mode(self.path, DEFAULT_MODE)
        atomic_write(self.path, content, mode=mode)
        restore_selinux_context(self.path)

        try:
            validate_sshd_config(self.path)
        except ValidationError:
            self._rollback(backup_path, mode)
            raise

        for key, value in options.items():
            self.log(f"Set sshd_config option: {key} = {value}")
        self.record_change(f"Updated {self.path}")
        return True

    def _rollback(self, backup_path: str, mode: int) -> None:
        self.log("ROLLING BACK SSH CONFIG...", logging.ERROR)
        try:
            if backup_path:
                restore_from_backup(self.path, backup_path, mode)
            else:
                # No previous config existed, just remove
                os.unlink(self.path)
                self.log(f"Removed {self.path}")
        except (FileOperationError, OSError) as e:
            raise ValidationError(
                "sshd_config validation failed and rollback failed",
                f"{e}; previous file kept at {backup_path or '(none)'}",
            ) from e

    def disable_password_auth(self) -> bool:
        """Turn off every password-style login method and keep keys on."""
        changed = self.set_global_options(dict(PASSWORD_AUTH_DISABLED))
        self.log("Disabled password authentication")
        return changed

    def reload_sshd(self) -> None:
        if self.dry_run:
            self.log_operation("reload service", "sshd/ssh")
            return
        reload_ssh_service()

    def restart_sshd(self) -> None:
        if self.dry_run:
            self.log_operation("restart service", "sshd/ssh")
            return
        restart_ssh_service()
