"""srvkit - safe configuration mutation and self-update for Linux servers."""

__version__ = "0.1.0"

from .authkeys import AuthorizedKeysManager, MergeResult
from .files import atomic_write, backup_file, render_template, restore_from_backup, stage_file
from .hosts import HostsUpdateMode, apply_hosts_update, update_hosts
from .sshd_config import SSHDConfig, apply_options
from .status import UpdateStatus, UpdateStatusCoordinator
from .update import Updater, UpdateState

__all__ = [
    "__version__",
    "AuthorizedKeysManager",
    "MergeResult",
    "atomic_write",
    "backup_file",
    "render_template",
    "restore_from_backup",
    "stage_file",
    "HostsUpdateMode",
    "apply_hosts_update",
    "update_hosts",
    "SSHDConfig",
    "apply_options",
    "UpdateStatus",
    "UpdateStatusCoordinator",
    "Updater",
    "UpdateState",
]
