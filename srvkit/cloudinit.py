"""cloud-init integration: keep the hostname across reboots."""

import logging
import shutil
from pathlib import Path
from typing import Union

from .errors import FileOperationError
from .files import atomic_write, backup_file, ensure_dir, ensure_file, get_mode, read_file, read_lines, render_template
from .hosts import ALIAS_ADDRESS, canonical_line
from .paths import CLOUD_INIT_DIR, CLOUD_INIT_TEMPLATES_DIR, PRESERVE_HOSTNAME_CFG, TEMPLATES_DIR

logger = logging.getLogger(__name__)

PRESERVE_TEMPLATE = TEMPLATES_DIR / "99-hostname-preserve.cfg.j2"
HOSTS_TEMPLATE_GLOB = "hosts.*.tmpl"


def is_present(cloud_dir: Union[str, Path] = CLOUD_INIT_DIR) -> bool:
    """cloud-init is installed: its config dir exists and the binary is on PATH."""
    return Path(cloud_dir).is_dir() and shutil.which("cloud-init") is not None


def preserve_hostname_set(path: Union[str, Path] = PRESERVE_HOSTNAME_CFG) -> bool:
    for line in read_lines(path):
        line = line.strip()
        if line.startswith("preserve_hostname:") and "true" in line:
            return True
    return False


def set_preserve_hostname(path: Union[str, Path] = PRESERVE_HOSTNAME_CFG, dry_run: bool = False) -> bool:
    """
    Write the drop-in that stops cloud-init resetting the hostname.

    Args:
        path: Drop-in file to write
        dry_run: Only log the write

    Returns:
        True if the file was (or would be) written
    """
    path = Path(path)
    if preserve_hostname_set(path):
        logger.info(f"preserve_hostname already set in {path}")
        return False

    content = render_template(PRESERVE_TEMPLATE, {"preserve": True})
    if dry_run:
        logger.info(f"[DRY-RUN] Would write to file: {path} ({len(content)} bytes)")
        return True

    ensure_dir(path.parent)
    ensure_file(path, content)
    logger.info(f"Written preserve_hostname: true to {path}")
    return True


def patch_hosts_template(template: Union[str, Path], new_line: str, dry_run: bool = False) -> bool:
    """
    Replace the first ``127.0.1.1`` line of one hosts template.

    Returns:
        True if the template contained such a line
    """
    template = Path(template)
    lines = read_file(template).splitlines()
    for i, line in enumerate(lines):
        if line.strip().startswith(ALIAS_ADDRESS):
            lines[i] = new_line
            break
    else:
        return False

    content = "\n".join(lines) + "\n"
    if dry_run:
        logger.info(f"[DRY-RUN] Would write to file: {template} ({len(content)} bytes)")
        return True

    backup_file(template)
    atomic_write(template, content, mode=get_mode(template, 0o644))
    logger.info(f"Patched cloud-init template {template}")
    return True


def patch_hosts_templates(
    short: str,
    fqdn: str = "",
    templates_dir: Union[str, Path] = CLOUD_INIT_TEMPLATES_DIR,
    dry_run: bool = False,
) -> int:
    """
    Point the ``127.0.1.1`` line of every cloud-init hosts template at the
    new name, so a regenerated /etc/hosts agrees with the hostname.

    A template that cannot be read or written is logged and skipped.

    Returns:
        Number of templates patched
    """
    templates_dir = Path(templates_dir)
    if not templates_dir.is_dir():
        logger.info(f"cloud-init templates directory not found: {templates_dir}")
        return 0

    new_line = canonical_line(short, fqdn)
    patched = 0
    for template in sorted(templates_dir.glob(HOSTS_TEMPLATE_GLOB)):
        try:
            if patch_hosts_template(template, new_line, dry_run=dry_run):
                patched += 1
        except FileOperationError as e:
            logger.warning(f"Skipping template {template}: {e}")

    if not patched:
        logger.info("No cloud-init hosts templates needed patching")
    return patched
