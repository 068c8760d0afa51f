#!/usr/bin/env python3
"""
server-toolkit - safe configuration changes and self-update for Linux servers.

Every file the toolkit edits is backed up first and replaced atomically;
sshd_config changes are validated with ``sshd -t`` and rolled back if
rejected.

Usage:
    ./server_toolkit.py hostname show                  # Show current hostname
    ./server_toolkit.py hostname set web01 --fqdn web01.example.com
    ./server_toolkit.py ssh install-keys --user deploy --github octocat
    ./server_toolkit.py ssh disable-password           # Key-only SSH logins
    ./server_toolkit.py ssh set-option Port 2222
    ./server_toolkit.py update check                   # Look for a new release
    ./server_toolkit.py update apply                   # Install it
    ./server_toolkit.py menu                           # Interactive menu
    ./server_toolkit.py --dry-run ...                  # Show what would change
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

# Add package dir to path
sys.path.insert(0, str(Path(__file__).parent))

from srvkit import __version__
from srvkit.authkeys import AuthorizedKeysManager
from srvkit.base import BaseOrchestrator
from srvkit.cloudinit import is_present as cloud_init_present
from srvkit.config import SETTINGS, Config, config_path, cycle_setting, load_config, save_config
from srvkit.errors import ConfigError, ToolkitError
from srvkit.hostname import HostnameManager, change_hostname
from srvkit.hosts import HostsUpdateMode, find_hostname_entry
from srvkit.keys import KeyRequest, KeySource, fetch_keys
from srvkit.logger import set_level, setup_logging
from srvkit.paths import SSHD_CONFIG
from srvkit.prompts import choose, confirm, pause, prompt, read_lines_until_blank
from srvkit.services import SSH_SERVICE_NAMES, is_active
from srvkit.sshd_config import SSHDConfig
from srvkit.status import UpdateStatusCoordinator, start_update_check
from srvkit.update import Updater
from srvkit.users import get_invoking_username, is_root

SETTING_LABELS = {
    "dry_run": "Dry run",
    "auto_update": "Check for updates",
    "log_level": "Log level",
}


class Toolkit(BaseOrchestrator):
    """Entry points behind each CLI command."""

    def __init__(self, config: Config, dry_run: bool = False, verbose: bool = False, assume_yes: bool = False):
        super().__init__(dry_run=dry_run, verbose=verbose)
        self.config = config
        self.assume_yes = assume_yes

    def confirm(self, message: str) -> bool:
        return confirm(message, assume_yes=self.assume_yes or self.dry_run)

    def updater(self) -> Updater:
        return Updater(
            __version__,
            repo=self.config.release_repo,
            timeout=self.config.http_timeout,
            dry_run=self.dry_run,
            verbose=self.verbose,
        )

    # -------------------------------------------------------------------------
    # Hostname
    # -------------------------------------------------------------------------

    def show_hostname(self) -> None:
        manager = HostnameManager()
        try:
            current = manager.get_hostname()
        except ToolkitError:
            current = "(unknown)"
        entry = find_hostname_entry(current) if current else None

        print(f"Hostname:        {current}")
        print(f"/etc/hostname:   {manager.read_hostname_file() or '(empty)'}")
        print(f"Hosts entry:     {entry.render() if entry else '(none)'}")
        print(f"cloud-init:      {'present' if cloud_init_present() else 'not found'}")

    def set_hostname(self, name: str, fqdn: str = "", hosts_mode: str = HostsUpdateMode.REPLACE_CANONICAL.value) -> None:
        mode = HostsUpdateMode(hosts_mode)
        if not self.confirm(f"Change hostname to {name}?"):
            self.log("Aborted")
            return

        change = change_hostname(name, fqdn, mode, dry_run=self.dry_run)
        for description in change.changes:
            self.record_change(description)
        self.log(f"/etc/hosts updated using {change.hosts_mode.value}")
        if change.cloud_init:
            self.log(f"cloud-init: preserve_hostname set, {change.templates_patched} template(s) patched")
        self.summarize("Hostname")

    # -------------------------------------------------------------------------
    # SSH
    # -------------------------------------------------------------------------

    def _key_request(self, args: argparse.Namespace):
        if args.github:
            return KeyRequest(KeySource.GITHUB, args.github)
        if args.url:
            return KeyRequest(KeySource.URL, args.url)
        if args.file:
            return KeyRequest(KeySource.FILE, args.file)
        return None

    def install_keys(self, args: argparse.Namespace) -> None:
        manager = AuthorizedKeysManager(args.user, dry_run=self.dry_run, verbose=self.verbose)

        request = self._key_request(args)
        if request:
            keys = fetch_keys(request, timeout=self.config.http_timeout)
        elif args.key:
            keys = args.key
        else:
            keys = read_lines_until_blank("Paste public keys, one per line; finish with an empty line:")

        if args.overwrite and not self.confirm(f"Replace all keys in {manager.path}?"):
            self.log("Aborted")
            return

        result = manager.merge(keys, overwrite=args.overwrite)
        print(f"Added {result.added} key(s) to {result.path}")
        if result.invalid:
            print(f"Skipped {len(result.invalid)} invalid line(s)")
        for change in manager.changes:
            self.record_change(change)

    def list_keys(self, user: str) -> None:
        manager = AuthorizedKeysManager(user)
        keys = manager.list_keys()
        print(f"{manager.path}: {len(keys)} key(s)")
        for key in keys:
            print(f"  {key}")

    def remove_key(self, user: str, key: str) -> None:
        manager = AuthorizedKeysManager(user, dry_run=self.dry_run, verbose=self.verbose)
        if not manager.remove_key(key):
            print("Key not found")

    def disable_password_auth(self, reload: bool = True) -> None:
        if not self.confirm("Disable SSH password login? Make sure a key login works first."):
            self.log("Aborted")
            return

        sshd = SSHDConfig(SSHD_CONFIG, dry_run=self.dry_run, verbose=self.verbose)
        if sshd.disable_password_auth() and reload:
            sshd.reload_sshd()
        for change in sshd.changes:
            self.record_change(change)
        self.summarize("SSH")

    def set_ssh_option(self, key: str, value: str, reload: bool = True) -> None:
        sshd = SSHDConfig(SSHD_CONFIG, dry_run=self.dry_run, verbose=self.verbose)
        if sshd.set_global_option(key, value) and reload:
            sshd.reload_sshd()

    # -------------------------------------------------------------------------
    # Updates
    # -------------------------------------------------------------------------

    def check_update(self) -> None:
        tag, available = self.updater().check()
        if available:
            print(f"Update available: {__version__} -> {tag}")
        else:
            print(f"Up to date ({__version__})")

    def apply_update(self) -> None:
        updater = self.updater()
        tag, available = updater.check()
        if not available:
            print(f"Up to date ({__version__})")
            return
        if not self.confirm(f"Update {__version__} -> {tag}?"):
            self.log("Aborted")
            return
        if updater.perform_update():
            print(f"Updated to {tag}; restart server-toolkit to use it")

    # -------------------------------------------------------------------------
    # Interactive menu
    # -------------------------------------------------------------------------

    def menu(self) -> None:
        coordinator = UpdateStatusCoordinator()
        if self.config.auto_update:
            start_update_check(coordinator, self.updater())

        actions = [
            ("Show hostname", self.show_hostname),
            ("Change hostname", self._menu_set_hostname),
            ("Install SSH keys", self._menu_install_keys),
            ("Disable SSH password login", self.disable_password_auth),
            ("Apply update", self.apply_update),
            ("Settings", lambda: self._menu_settings(coordinator)),
        ]

        try:
            while True:
                title = f"server-toolkit {__version__}  |  {self._status_line(coordinator, self.config.auto_update)}"
                choice = choose(title, [label for label, _ in actions])
                if choice is None:
                    break
                label, action = actions[choice]
                try:
                    action()
                except ToolkitError as e:
                    print(f"Error: {e}", file=sys.stderr)
                if label != "Settings":
                    pause()
        finally:
            coordinator.shutdown(wait=False)

    def _menu_settings(self, coordinator: UpdateStatusCoordinator) -> None:
        while True:
            options = [f"{SETTING_LABELS[name]}: {getattr(self.config, name)}" for name in SETTINGS]
            choice = choose(f"Settings (saved to {config_path()})", options)
            if choice is None:
                return
            try:
                self.change_setting(SETTINGS[choice], coordinator)
            except ConfigError as e:
                print(f"Settings not saved: {e}", file=sys.stderr)

    def change_setting(self, name: str, coordinator: Optional[UpdateStatusCoordinator] = None) -> Config:
        """
        Advance one setting, save the config, then apply it to this session.

        Nothing changes in memory when the save fails.

        Raises:
            ConfigError: the config file could not be written
        """
        updated = cycle_setting(self.config, name)
        save_config(updated)
        self.config = updated

        if name == "dry_run":
            self.dry_run = updated.dry_run
        elif name == "log_level":
            set_level(updated.log_level)
        elif name == "auto_update" and coordinator is not None:
            if updated.auto_update:
                start_update_check(coordinator, self.updater())
            else:
                coordinator.cancel()
        self.log(f"Setting {name} = {getattr(updated, name)}")
        return updated

    @staticmethod
    def _status_line(coordinator: UpdateStatusCoordinator, auto_update: bool) -> str:
        if not auto_update:
            return "update check off"
        status = coordinator.status()
        if status.check_failed:
            return "update check failed"
        if status.available:
            return f"update available: {status.latest}"
        if status.latest:
            return "up to date"
        return "checking for updates..."

    def _menu_set_hostname(self) -> None:
        name = prompt("New hostname")
        if not name:
            return
        fqdn = prompt("FQDN (optional)")
        self.set_hostname(name, fqdn)

    def _menu_install_keys(self) -> None:
        user = prompt("Account", get_invoking_username())
        source = prompt("Source (github/url/file/paste)", "github")
        value = "" if source == "paste" else prompt("GitHub user, URL or path")
        args = argparse.Namespace(
            user=user,
            github=value if source == "github" else None,
            url=value if source == "url" else None,
            file=value if source == "file" else None,
            key=None,
            overwrite=False,
        )
        self.install_keys(args)

    def info(self) -> None:
        print(f"server-toolkit: {__version__}")
        print(f"Config: {config_path()}")
        print(f"Log file: {self.config.log_path}")
        print(f"Release repo: {self.config.release_repo}")
        print(f"Auto update: {self.config.auto_update}")
        print(f"Running as root: {is_root()}")
        print(f"SSH service active: {any(is_active(s) for s in SSH_SERVICE_NAMES)}")
        print(f"Python: {sys.version}")


def build_parser() -> argparse.ArgumentParser:
    # Common flags shared by all subcommands
    common_parser = argparse.ArgumentParser(add_help=False)
    common_parser.add_argument(
        "-n", "--dry-run",
        action="store_true",
        default=argparse.SUPPRESS,
        help="Show what would be done without making changes",
    )
    common_parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        default=argparse.SUPPRESS,
        help="Enable verbose output",
    )
    common_parser.add_argument(
        "-y", "--yes",
        action="store_true",
        default=argparse.SUPPRESS,
        help="Answer yes to confirmation prompts",
    )

    parser = argparse.ArgumentParser(
        description="server-toolkit - safe configuration changes for Linux servers",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
        parents=[common_parser],
    )
    parser.add_argument("--version", action="version", version=f"server-toolkit {__version__}")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # hostname command
    hostname_parser = subparsers.add_parser("hostname", help="Show or change the hostname", parents=[common_parser])
    hostname_sub = hostname_parser.add_subparsers(dest="action")
    hostname_sub.add_parser("show", help="Show hostname details", parents=[common_parser])
    set_parser = hostname_sub.add_parser("set", help="Change the hostname", parents=[common_parser])
    set_parser.add_argument("name", help="New hostname (short name or FQDN)")
    set_parser.add_argument("--fqdn", default="", help="Fully qualified name for /etc/hosts")
    set_parser.add_argument(
        "--hosts-mode",
        choices=[m.value for m in HostsUpdateMode],
        default=HostsUpdateMode.REPLACE_CANONICAL.value,
        help="Preferred /etc/hosts update strategy",
    )

    # ssh command
    ssh_parser = subparsers.add_parser("ssh", help="Manage SSH keys and sshd_config", parents=[common_parser])
    ssh_sub = ssh_parser.add_subparsers(dest="action")

    install_parser = ssh_sub.add_parser("install-keys", help="Add public keys for an account", parents=[common_parser])
    install_parser.add_argument("--user", help="Target account (default: the invoking user)")
    source = install_parser.add_mutually_exclusive_group()
    source.add_argument("--github", help="GitHub username to fetch keys from")
    source.add_argument("--url", help="URL serving public keys")
    source.add_argument("--file", help="Local file of public keys")
    source.add_argument("--key", action="append", help="Public key line (repeatable)")
    install_parser.add_argument("--overwrite", action="store_true", help="Replace existing keys")

    list_parser = ssh_sub.add_parser("list-keys", help="List an account's keys", parents=[common_parser])
    list_parser.add_argument("--user", help="Target account (default: the invoking user)")

    remove_parser = ssh_sub.add_parser("remove-key", help="Remove a key", parents=[common_parser])
    remove_parser.add_argument("key", help="Key line (type and data; comment optional)")
    remove_parser.add_argument("--user", help="Target account (default: the invoking user)")

    disable_parser = ssh_sub.add_parser(
        "disable-password", help="Allow key logins only", parents=[common_parser]
    )
    disable_parser.add_argument("--no-reload", action="store_true", help="Do not reload sshd")

    option_parser = ssh_sub.add_parser("set-option", help="Set a global sshd_config option", parents=[common_parser])
    option_parser.add_argument("key", help="Option name, e.g. Port")
    option_parser.add_argument("value", help="Option value")
    option_parser.add_argument("--no-reload", action="store_true", help="Do not reload sshd")

    # update command
    update_parser = subparsers.add_parser("update", help="Check for or install updates", parents=[common_parser])
    update_sub = update_parser.add_subparsers(dest="action")
    update_sub.add_parser("check", help="Check for a newer release", parents=[common_parser])
    update_sub.add_parser("apply", help="Download and install the latest release", parents=[common_parser])

    # menu command
    subparsers.add_parser("menu", help="Interactive menu", parents=[common_parser])

    # info command
    subparsers.add_parser("info", help="Show tool information", parents=[common_parser])

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    dry_run_flag = getattr(args, "dry_run", False)
    verbose = getattr(args, "verbose", False)
    assume_yes = getattr(args, "yes", False)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        config = load_config()
        config_error = None
    except ConfigError as e:
        config, config_error = Config(), e

    setup_logging(config.log_level, config.log_path, console=True)
    if verbose:
        set_level(logging.DEBUG)
    if config_error:
        logging.getLogger(__name__).warning(f"Ignoring config: {config_error}")

    kit = Toolkit(config, dry_run=dry_run_flag or config.dry_run, verbose=verbose, assume_yes=assume_yes)
    action = getattr(args, "action", None)

    try:
        if hasattr(args, "user") and not args.user:
            args.user = get_invoking_username()

        if args.command == "hostname":
            if action == "set":
                kit.set_hostname(args.name, args.fqdn, args.hosts_mode)
            else:
                kit.show_hostname()

        elif args.command == "ssh":
            if action == "install-keys":
                kit.install_keys(args)
            elif action == "list-keys":
                kit.list_keys(args.user)
            elif action == "remove-key":
                kit.remove_key(args.user, args.key)
            elif action == "disable-password":
                kit.disable_password_auth(reload=not args.no_reload)
            elif action == "set-option":
                kit.set_ssh_option(args.key, args.value, reload=not args.no_reload)
            else:
                parser.parse_args(["ssh", "--help"])

        elif args.command == "update":
            if action == "apply":
                kit.apply_update()
            else:
                kit.check_update()

        elif args.command == "menu":
            kit.menu()

        elif args.command == "info":
            kit.info()

    except KeyboardInterrupt:
        print("\nAborted.")
        sys.exit(1)
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        if verbose:
            import traceback
            traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
