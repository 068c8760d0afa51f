"""Self-update from GitHub releases with checksum verification."""

import hashlib
import logging
import os
import platform
import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

from .base import BaseOrchestrator
from .errors import ChecksumMismatchError, FetchError, FileOperationError, StagingError, SwapError
from .files import stage_file
from .net import DEFAULT_TIMEOUT, fetch_bytes, fetch_json, fetch_text

logger = logging.getLogger(__name__)

DEFAULT_REPO = "Akuma-real/server-toolkit"
API_URL = "https://api.github.com/repos/{repo}/releases/latest"
DOWNLOAD_URL = "https://github.com/{repo}/releases/download/{tag}/{name}"
CHECKSUM_ASSETS = ("checksums.txt", "checksums.sha256")
ASSET_PREFIX = "server-toolkit"
EXECUTABLE_MODE = 0o755

ARCH_ALIASES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv7l": "arm",
    "i386": "386",
    "i686": "386",
}


class UpdateState(Enum):
    IDLE = "idle"
    CHECKING = "checking"
    UP_TO_DATE = "up-to-date"
    UPDATE_AVAILABLE = "update-available"
    DOWNLOADING = "downloading"
    VERIFYING = "verifying"
    STAGING = "staging"
    SWAPPING = "swapping"
    DONE = "done"
    ROLLED_BACK = "rolled-back"
    FAILED = "failed"


@dataclass
class Release:
    tag: str
    asset_name: str
    download_url: str
    checksum_url: str = ""


def normalize_version(version: str) -> str:
    """Drop a leading ``v`` so tag ``v1.2.0`` equals version ``1.2.0``."""
    version = version.strip()
    return version[1:] if version[:1] in ("v", "V") else version


def asset_name(system: Optional[str] = None, machine: Optional[str] = None) -> str:
    """Name of the release binary for this platform, e.g. ``server-toolkit-linux-amd64``."""
    system = (system or platform.system()).lower()
    machine = (machine or platform.machine()).lower()
    return f"{ASSET_PREFIX}-{system}-{ARCH_ALIASES.get(machine, machine)}"


def extract_checksum(content: str, filename: str) -> Optional[str]:
    """
    Find the hash for ``filename`` in a sha256sum style listing.

    Lines look like ``<hash>  <name>`` or ``<hash> *<name>``; blanks and
    ``#`` comments are skipped.
    """
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        fields = line.split()
        if len(fields) < 2:
            continue
        if fields[-1].lstrip("*") == filename:
            return fields[0]
    return None


def parse_release(data: Any, repo: str, name: str) -> Release:
    """
    Build a Release from the GitHub "latest release" JSON.

    Raises:
        FetchError: the payload is not an object or has no tag
    """
    if not isinstance(data, dict):
        raise FetchError("invalid release response: not an object")
    tag = data.get("tag_name") or ""
    if not tag:
        raise FetchError("invalid release response: empty tag_name")

    assets: Dict[str, str] = {}
    for asset in data.get("assets") or []:
        if isinstance(asset, dict) and asset.get("name"):
            assets[asset["name"]] = asset.get("browser_download_url") or ""

    download_url = assets.get(name) or DOWNLOAD_URL.format(repo=repo, tag=tag, name=name)
    checksum_url = ""
    for candidate in CHECKSUM_ASSETS:
        if candidate in assets:
            checksum_url = assets[candidate] or DOWNLOAD_URL.format(repo=repo, tag=tag, name=candidate)
            break
    return Release(tag=tag, asset_name=name, download_url=download_url, checksum_url=checksum_url)


class Updater(BaseOrchestrator):
    """
    Replaces the running executable with the latest GitHub release.

    The new binary is downloaded fully, verified against the release's
    checksum asset, staged next to the executable and swapped in with two
    renames. The previous binary stays at ``<exec>.bak``.

    ``executable`` defaults to the resolved ``sys.argv[0]``. Under a pip
    install that is the ``server-toolkit`` console-script wrapper, so the
    swap replaces the wrapper (and ``.bak`` holds the old wrapper). Pass
    ``executable=`` to target a stand-alone binary elsewhere.
    """

    def __init__(
        self,
        current_version: str,
        repo: str = DEFAULT_REPO,
        executable: Optional[Union[str, Path]] = None,
        timeout: float = DEFAULT_TIMEOUT,
        dry_run: bool = False,
        verbose: bool = False,
    ):
        super().__init__(dry_run=dry_run, verbose=verbose)
        self.current_version = current_version
        self.repo = repo
        self.executable = Path(executable) if executable else Path(sys.argv[0]).resolve()
        self.timeout = timeout
        self.state = UpdateState.IDLE
        self.asset_name = asset_name()

    def _set_state(self, state: UpdateState) -> None:
        logger.debug(f"Updater state: {self.state.value} -> {state.value}")
        self.state = state

    def fetch_latest_release(self) -> Release:
        data = fetch_json(API_URL.format(repo=self.repo), self.timeout)
        return parse_release(data, self.repo, self.asset_name)

    def check(self) -> Tuple[str, bool]:
        """
        Ask GitHub for the latest release.

        Returns:
            Tuple of (latest tag, whether it differs from the running version)

        Raises:
            FetchError: network failure or malformed release payload
        """
        release, available = self._check()
        return release.tag, available

    def _check(self) -> Tuple[Release, bool]:
        self._set_state(UpdateState.CHECKING)
        try:
            release = self.fetch_latest_release()
        except FetchError:
            self._set_state(UpdateState.FAILED)
            raise

        available = normalize_version(release.tag) != normalize_version(self.current_version)
        if available:
            self.log(f"Update available: {self.current_version} -> {release.tag}")
            self._set_state(UpdateState.UPDATE_AVAILABLE)
        else:
            self.log(f"Already up to date ({self.current_version})")
            self._set_state(UpdateState.UP_TO_DATE)
        return release, available

    def verify(self, data: bytes, release: Release) -> None:
        """
        Check ``data`` against the release checksum listing.

        Raises:
            ChecksumMismatchError: no checksum asset, no entry, or a mismatch
        """
        if not release.checksum_url:
            raise ChecksumMismatchError(f"checksum asset not found for release {release.tag}")
        try:
            listing = fetch_text(release.checksum_url, self.timeout)
        except FetchError as e:
            raise ChecksumMismatchError(f"failed to download checksum file: {e}") from e

        expected = extract_checksum(listing, release.asset_name)
        if not expected:
            raise ChecksumMismatchError(f"checksum for {release.asset_name} not found in checksum asset")
        actual = hashlib.sha256(data).hexdigest()
        if expected.lower() != actual:
            raise ChecksumMismatchError(f"checksum mismatch for {release.asset_name}")
        self.log(f"Checksum verified for {release.asset_name}")

    def stage(self, data: bytes) -> str:
        try:
            return stage_file(
                self.executable.parent,
                data,
                mode=EXECUTABLE_MODE,
                prefix=f".{self.executable.name}.new.",
            )
        except FileOperationError as e:
            raise StagingError(f"could not stage update in {self.executable.parent}: {e}") from e

    def swap(self, staged: str) -> None:
        """
        Move the staged binary into place, keeping the old one at ``.bak``.

        Raises:
            SwapError: either rename failed; the old executable is restored
                unless ``rollback_error`` is set
        """
        exec_path = str(self.executable)
        backup_path = exec_path + ".bak"

        try:
            os.replace(exec_path, backup_path)
        except OSError as e:
            self._discard(staged)
            self._set_state(UpdateState.FAILED)
            raise SwapError(f"could not move {exec_path} aside: {e}") from e

        try:
            os.replace(staged, exec_path)
        except OSError as e:
            self._discard(staged)
            try:
                os.replace(backup_path, exec_path)
            except OSError as rollback_error:
                self._set_state(UpdateState.FAILED)
                raise SwapError(f"could not install new executable: {e}", rollback_error) from e
            self._set_state(UpdateState.ROLLED_BACK)
            raise SwapError(f"could not install new executable: {e}") from e

        self.log(f"Installed new executable at {exec_path} (previous kept at {backup_path})")

    @staticmethod
    def _discard(staged: str) -> None:
        try:
            os.unlink(staged)
        except OSError:
            logger.warning(f"Could not remove staged file {staged}")

    def perform_update(self) -> bool:
        """
        Download, verify and install the latest release.

        Returns:
            False when already up to date, True after a successful swap

        Raises:
            FetchError, ChecksumMismatchError, StagingError: before the
                executable is touched
            SwapError: the rename step failed
        """
        release, available = self._check()
        if not available:
            return False

        try:
            if self.dry_run:
                self.log_operation("download", release.download_url)
                self.log_operation("replace executable", str(self.executable))
                self._set_state(UpdateState.DONE)
                return True

            self._set_state(UpdateState.DOWNLOADING)
            self.log(f"Downloading {release.download_url}")
            data = fetch_bytes(release.download_url, self.timeout)

            self._set_state(UpdateState.VERIFYING)
            self.verify(data, release)

            self._set_state(UpdateState.STAGING)
            staged = self.stage(data)
        except (FetchError, ChecksumMismatchError, StagingError):
            self._set_state(UpdateState.FAILED)
            raise

        self._set_state(UpdateState.SWAPPING)
        self.swap(staged)
        self._set_state(UpdateState.DONE)
        self.record_change(f"Updated {self.current_version} -> {release.tag}")
        return True
