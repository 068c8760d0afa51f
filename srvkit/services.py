"""Systemd service management."""

import logging
import subprocess
from typing import Sequence

from .errors import ToolkitError

logger = logging.getLogger(__name__)

# Debian/Ubuntu ship the unit as ssh, RHEL/Fedora/Arch as sshd.
SSH_SERVICE_NAMES = ("sshd", "ssh")


def _systemctl(*args: str, check: bool = True) -> subprocess.CompletedProcess:
    """Run a systemctl command."""
    cmd = ["systemctl"] + list(args)
    return subprocess.run(cmd, capture_output=True, text=True, check=check)


def is_active(service: str) -> bool:
    """Check if a service is currently running."""
    try:
        result = _systemctl("is-active", service, check=False)
    except FileNotFoundError:
        return False
    return result.returncode == 0


def restart_service(service: str) -> None:
    """Restart a service."""
    logger.info(f"Restarting {service}")
    _systemctl("restart", service)


def reload_service(service: str) -> None:
    """Reload a service configuration without full restart."""
    logger.info(f"Reloading {service}")
    _systemctl("reload", service)


def _first_working(action: str, services: Sequence[str]) -> str:
    run = {"reload": reload_service, "restart": restart_service}[action]
    errors = []
    for service in services:
        try:
            run(service)
            return service
        except (subprocess.CalledProcessError, FileNotFoundError) as e:
            errors.append(f"{service}: {e}")
    raise ToolkitError(
        f"failed to {action} ssh service (tried {', '.join(services)}): {'; '.join(errors)}"
    )


def reload_ssh_service() -> str:
    """
    Reload the SSH daemon under whichever unit name this distro uses.

    Returns:
        The service name that accepted the reload
    """
    return _first_working("reload", SSH_SERVICE_NAMES)


def restart_ssh_service() -> str:
    """Restart the SSH daemon, trying each known unit name."""
    return _first_working("restart", SSH_SERVICE_NAMES)
