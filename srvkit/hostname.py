"""Hostname validation and management."""

import logging
import re
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

from . import cloudinit
from .base import BaseOrchestrator
from .errors import ToolkitError, ValidationError
from .files import atomic_write, backup_file, get_mode, read_file
from .hosts import HostsFile, HostsUpdateMode
from .paths import CLOUD_INIT_DIR, CLOUD_INIT_TEMPLATES_DIR, HOSTNAME_FILE, HOSTS_FILE, PRESERVE_HOSTNAME_CFG

logger = logging.getLogger(__name__)

MAX_HOSTNAME_LENGTH = 253
MAX_LABEL_LENGTH = 63
HOSTNAME_PATTERN = re.compile(r"^[a-z0-9]([a-z0-9-]*[a-z0-9])?(\.[a-z0-9]([a-z0-9-]*[a-z0-9])?)*$")


def normalize_hostname(name: str) -> str:
    return name.strip().lower()


def is_fqdn(name: str) -> bool:
    return "." in name


def short_hostname(fqdn: str) -> str:
    """Return the first label of ``fqdn``."""
    return fqdn.split(".", 1)[0]


def validate_hostname(name: str) -> None:
    """
    Check a hostname against RFC 1123.

    Labels are lowercase letters, digits and hyphens, may not start or end
    with a hyphen, and are at most 63 characters; the whole name is at most
    253 characters.

    Raises:
        ValidationError: with the reason the name was rejected
    """
    if not name:
        raise ValidationError("hostname cannot be empty")
    name = name.lower()
    if len(name) > MAX_HOSTNAME_LENGTH:
        raise ValidationError(f"hostname too long (max {MAX_HOSTNAME_LENGTH} characters)")
    if not HOSTNAME_PATTERN.match(name):
        raise ValidationError("invalid hostname format")
    for label in name.split("."):
        if len(label) > MAX_LABEL_LENGTH:
            raise ValidationError(f"hostname segment too long (max {MAX_LABEL_LENGTH} characters)")


def validate_fqdn(fqdn: str) -> None:
    try:
        validate_hostname(fqdn)
    except ValidationError as e:
        raise ValidationError(f"invalid FQDN: {e}") from e
    if not is_fqdn(fqdn):
        raise ValidationError("FQDN must contain at least one dot")


class HostnameManager(BaseOrchestrator):
    """Sets the kernel hostname and the static /etc/hostname."""

    def __init__(self, hostname_file: Union[str, Path] = HOSTNAME_FILE, dry_run: bool = False, verbose: bool = False):
        super().__init__(dry_run=dry_run, verbose=verbose)
        self.hostname_file = Path(hostname_file)

    def _hostname_command(self, name: str) -> List[str]:
        if shutil.which("hostnamectl"):
            return ["hostnamectl", "set-hostname", name]
        if shutil.which("hostname"):
            return ["hostname", name]
        raise ToolkitError("no hostname command found (tried hostnamectl, hostname)")

    def set_hostname(self, short: str, fqdn: str = "") -> None:
        """
        Set the running hostname and persist it to /etc/hostname.

        Args:
            short: Short hostname
            fqdn: Optional fully qualified name, only logged here
        """
        cmd = self._hostname_command(short)
        if self.dry_run:
            self.log_command(cmd)
        else:
            try:
                subprocess.run(cmd, check=True, capture_output=True, text=True)
            except subprocess.CalledProcessError as e:
                raise ToolkitError(f"{cmd[0]} failed: {e.stderr.strip() or e}") from e

        self._write_hostname_file(short)
        self.log(f"Hostname set to: {short}")
        if fqdn:
            self.log(f"FQDN set to: {fqdn}")

    def _write_hostname_file(self, name: str) -> None:
        content = f"{name}\n"
        if self.dry_run:
            self.log_file_write(self.hostname_file, content)
            return
        backup_file(self.hostname_file)
        atomic_write(self.hostname_file, content, mode=get_mode(self.hostname_file, 0o644))
        self.log(f"Written to {self.hostname_file}: {name}")
        self.record_change(f"Set hostname to {name}")

    def get_hostname(self) -> str:
        """Return the static hostname, asking hostnamectl first."""
        for cmd in (["hostnamectl", "--static"], ["hostname"]):
            if not shutil.which(cmd[0]):
                continue
            result = subprocess.run(cmd, capture_output=True, text=True)
            if result.returncode == 0:
                return result.stdout.strip()
        raise ToolkitError("no hostname command found (tried hostnamectl, hostname)")

    def read_hostname_file(self) -> str:
        return read_file(self.hostname_file).strip()


@dataclass
class HostnameChange:
    old_name: str
    new_name: str
    fqdn: str = ""
    hosts_mode: Optional[HostsUpdateMode] = None
    cloud_init: bool = False
    templates_patched: int = 0
    changes: List[str] = field(default_factory=list)


def change_hostname(
    new_name: str,
    fqdn: str = "",
    hosts_mode: HostsUpdateMode = HostsUpdateMode.REPLACE_CANONICAL,
    dry_run: bool = False,
    hostname_file: Union[str, Path] = HOSTNAME_FILE,
    hosts_file: Union[str, Path] = HOSTS_FILE,
    cloud_dir: Union[str, Path] = CLOUD_INIT_DIR,
    preserve_cfg: Union[str, Path] = PRESERVE_HOSTNAME_CFG,
    templates_dir: Union[str, Path] = CLOUD_INIT_TEMPLATES_DIR,
) -> HostnameChange:
    """
    Rename the machine everywhere the name is recorded.

    Validates the new name, sets it, repoints /etc/hosts and, when
    cloud-init is installed, stops it from reverting the change.

    Args:
        new_name: New hostname; an FQDN is split into its short name
        fqdn: Optional FQDN for the hosts alias line
        hosts_mode: Hosts update strategy to request
        dry_run: Only log what would change

    Returns:
        HostnameChange describing what was done
    """
    new_name = normalize_hostname(new_name)
    fqdn = normalize_hostname(fqdn)
    if is_fqdn(new_name) and not fqdn:
        fqdn = new_name
    validate_hostname(new_name)
    if fqdn:
        validate_fqdn(fqdn)
    short = short_hostname(new_name)

    manager = HostnameManager(hostname_file, dry_run=dry_run)
    try:
        old_name = manager.get_hostname()
    except ToolkitError:
        old_name = manager.read_hostname_file()

    manager.set_hostname(short, fqdn)

    hosts = HostsFile(hosts_file, dry_run=dry_run)
    applied = hosts.update(old_name, short, fqdn, hosts_mode)

    change = HostnameChange(old_name=old_name, new_name=short, fqdn=fqdn, hosts_mode=applied)
    if cloudinit.is_present(cloud_dir):
        change.cloud_init = True
        cloudinit.set_preserve_hostname(preserve_cfg, dry_run=dry_run)
        change.templates_patched = cloudinit.patch_hosts_templates(short, fqdn, templates_dir, dry_run=dry_run)
    else:
        logger.info("cloud-init not found, skipping")

    change.changes = manager.changes + hosts.changes
    return change
