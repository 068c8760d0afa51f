"""Hosts file updates for the machine's own name."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple, Union

from .base import BaseOrchestrator
from .files import atomic_write, backup_file, get_mode, read_file, read_lines, restore_selinux_context
from .paths import HOSTS_FILE

logger = logging.getLogger(__name__)

# Debian convention: the machine's own name maps to 127.0.1.1, leaving
# 127.0.0.1 for localhost.
ALIAS_ADDRESS = "127.0.1.1"
LOOPBACK_ADDRESS = "127.0.0.1"
DEFAULT_MODE = 0o644


class HostsUpdateMode(Enum):
    REPLACE_CANONICAL = "replace-canonical"
    REPLACE_TOKEN = "replace-token"
    INSERT_AFTER = "insert-after"
    APPEND = "append"


@dataclass
class HostsEntry:
    address: str
    names: List[str] = field(default_factory=list)
    comment: str = ""

    @classmethod
    def parse(cls, line: str) -> Optional["HostsEntry"]:
        """Parse one hosts line; blank and comment-only lines return None."""
        data, sep, comment = line.partition("#")
        fields = data.split()
        if not fields:
            return None
        return cls(address=fields[0], names=fields[1:], comment=comment.strip() if sep else "")

    def render(self) -> str:
        line = " ".join([self.address] + self.names)
        if self.comment:
            line += f" # {self.comment}"
        return line

    def has_name(self, name: str) -> bool:
        return any(n.lower() == name.lower() for n in self.names)


def canonical_line(new_name: str, fqdn: str = "") -> str:
    """Build ``127.0.1.1 [fqdn] short``."""
    parts = [ALIAS_ADDRESS]
    if fqdn and fqdn.lower() != new_name.lower():
        parts.append(fqdn)
    parts.append(new_name)
    return " ".join(parts)


def _address(line: str) -> Optional[str]:
    entry = HostsEntry.parse(line)
    return entry.address if entry else None


def _replace_canonical(lines: List[str], new_line: str) -> Optional[List[str]]:
    result = []
    replaced = False
    for line in lines:
        if _address(line) != ALIAS_ADDRESS:
            result.append(line)
        elif not replaced:
            result.append(new_line)
            replaced = True
        # later duplicate canonical lines are dropped
    return result if replaced else None


def _replace_token(lines: List[str], old_name: str, new_name: str) -> Optional[List[str]]:
    result = []
    replaced = False
    for line in lines:
        entry = HostsEntry.parse(line)
        if entry is None or not entry.has_name(old_name):
            result.append(line)
            continue
        entry.names = [new_name if n.lower() == old_name.lower() else n for n in entry.names]
        result.append(entry.render())
        replaced = True
    return result if replaced else None


def _insert_after_loopback(lines: List[str], new_line: str) -> Optional[List[str]]:
    for i, line in enumerate(lines):
        if _address(line) == LOOPBACK_ADDRESS:
            return lines[: i + 1] + [new_line] + lines[i + 1 :]
    return None


def apply_hosts_update(
    lines: List[str],
    old_name: str,
    new_name: str,
    fqdn: str = "",
    mode: HostsUpdateMode = HostsUpdateMode.REPLACE_CANONICAL,
) -> Tuple[HostsUpdateMode, List[str]]:
    """
    Compute the new hosts document using the least invasive strategy.

    Strategies, first match wins:

    1. replace the first ``127.0.1.1`` line (dropping later ones);
    2. with mode REPLACE_TOKEN and a known ``old_name``, rename that name
       token wherever it appears, or leave the document alone when
       ``old_name`` is gone and ``new_name`` is already listed;
    3. insert after the first ``127.0.0.1`` line (not with mode APPEND);
    4. append.

    Strategy 1 always runs first so a second call finds and rewrites the
    line the first call wrote.

    Returns:
        Tuple of (mode applied, new lines)
    """
    new_line = canonical_line(new_name, fqdn)

    result = _replace_canonical(lines, new_line)
    if result is not None:
        return HostsUpdateMode.REPLACE_CANONICAL, result

    if mode is HostsUpdateMode.REPLACE_TOKEN and old_name:
        result = _replace_token(lines, old_name, new_name)
        if result is not None:
            return HostsUpdateMode.REPLACE_TOKEN, result
        # already renamed by an earlier run
        if any(e.has_name(new_name) for e in map(HostsEntry.parse, lines) if e):
            return HostsUpdateMode.REPLACE_TOKEN, list(lines)

    if mode is not HostsUpdateMode.APPEND:
        result = _insert_after_loopback(lines, new_line)
        if result is not None:
            return HostsUpdateMode.INSERT_AFTER, result

    return HostsUpdateMode.APPEND, lines + [new_line]


class HostsFile(BaseOrchestrator):
    """Reads and rewrites a hosts file."""

    def __init__(self, path: Union[str, Path] = HOSTS_FILE, dry_run: bool = False, verbose: bool = False):
        super().__init__(dry_run=dry_run, verbose=verbose)
        self.path = Path(path)

    def entries(self) -> List[HostsEntry]:
        return parse_hosts_entries(read_file(self.path))

    def find(self, hostname: str) -> Optional[HostsEntry]:
        for entry in self.entries():
            if entry.has_name(hostname):
                return entry
        return None

    def update(
        self,
        old_name: str,
        new_name: str,
        fqdn: str = "",
        mode: HostsUpdateMode = HostsUpdateMode.REPLACE_CANONICAL,
    ) -> HostsUpdateMode:
        """
        Point the canonical alias line at ``new_name``.

        A missing hosts file is treated as empty and created.

        Returns:
            The strategy that was applied
        """
        lines = read_lines(self.path)
        applied, new_lines = apply_hosts_update(lines, old_name, new_name, fqdn, mode)
        content = "\n".join(new_lines) + "\n"

        if self.dry_run:
            self.log_file_write(self.path, content)
            return applied

        if read_file(self.path) == content:
            self.log(f"{self.path} already up to date")
            return applied

        backup_file(self.path)
        atomic_write(self.path, content, mode=get_mode(self.path, DEFAULT_MODE))
        restore_selinux_context(self.path)
        self.log(f"Updated {self.path}: {applied.value}")
        self.record_change(f"Updated {self.path} ({applied.value})")
        return applied


def parse_hosts_entries(text: str) -> List[HostsEntry]:
    """Parse every non-blank, non-comment line of a hosts file."""
    entries = []
    for line in text.splitlines():
        entry = HostsEntry.parse(line)
        if entry is not None:
            entries.append(entry)
    return entries


def update_hosts(
    old_name: str,
    new_name: str,
    fqdn: str = "",
    mode: HostsUpdateMode = HostsUpdateMode.REPLACE_CANONICAL,
    path: Union[str, Path] = HOSTS_FILE,
    dry_run: bool = False,
) -> HostsUpdateMode:
    """Update the hosts alias line; see :meth:`HostsFile.update`."""
    return HostsFile(path, dry_run=dry_run).update(old_name, new_name, fqdn, mode)


def get_hosts_entries(path: Union[str, Path] = HOSTS_FILE) -> List[HostsEntry]:
    return HostsFile(path).entries()


def find_hostname_entry(hostname: str, path: Union[str, Path] = HOSTS_FILE) -> Optional[HostsEntry]:
    """Find the first hosts entry that lists ``hostname`` as a name."""
    return HostsFile(path).find(hostname)
