"""Centralized path constants for server-toolkit.

Every system file the toolkit touches is named here so callers and tests
can point operations somewhere else.
"""

from pathlib import Path

# Package paths
PACKAGE_ROOT = Path(__file__).parent.resolve()
TEMPLATES_DIR = PACKAGE_ROOT / "templates"

# Toolkit configuration
CONFIG_DIR = Path("/etc/server-toolkit")
CONFIG_FILE = CONFIG_DIR / "config.toml"
DEFAULT_LOG_PATH = Path("/var/log/server-toolkit.log")

# System paths - hostname
HOSTNAME_FILE = Path("/etc/hostname")
HOSTS_FILE = Path("/etc/hosts")

# System paths - ssh
SSHD_CONFIG = Path("/etc/ssh/sshd_config")
SSH_DIR_NAME = ".ssh"
AUTHORIZED_KEYS_NAME = "authorized_keys"

# System paths - cloud-init
CLOUD_INIT_DIR = Path("/etc/cloud")
CLOUD_INIT_CFG_DIR = CLOUD_INIT_DIR / "cloud.cfg.d"
CLOUD_INIT_TEMPLATES_DIR = CLOUD_INIT_DIR / "templates"
PRESERVE_HOSTNAME_CFG = CLOUD_INIT_CFG_DIR / "99-hostname-preserve.cfg"


def get_authorized_keys_path(home: str) -> Path:
    """
    Get the authorized_keys path for an account's home directory.

    Args:
        home: Home directory from the account's passwd entry

    Returns:
        Path to ``<home>/.ssh/authorized_keys``
    """
    return Path(home) / SSH_DIR_NAME / AUTHORIZED_KEYS_NAME
