"""authorized_keys management for local accounts."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List

from .base import BaseOrchestrator
from .errors import FileOperationError, ValidationError
from .files import atomic_write, backup_file, ensure_dir, get_mode, read_file
from .keys import is_ignorable, validate_key
from .paths import get_authorized_keys_path
from .users import UserInfo, get_user

logger = logging.getLogger(__name__)

SSH_DIR_MODE = 0o700
AUTHORIZED_KEYS_MODE = 0o600


@dataclass
class MergeResult:
    path: str
    added: int = 0
    invalid: List[str] = field(default_factory=list)


def _key_identity(line: str) -> str:
    """``type data`` of a key line, ignoring its comment."""
    return " ".join(line.split()[:2])


class AuthorizedKeysManager(BaseOrchestrator):
    """
    Adds and removes public keys in one account's authorized_keys.

    The account is resolved from the passwd database when the manager is
    created, so an unknown account fails before anything is touched.
    """

    def __init__(self, account: str, dry_run: bool = False, verbose: bool = False):
        super().__init__(dry_run=dry_run, verbose=verbose)
        self.user: UserInfo = get_user(account)

    @property
    def path(self) -> Path:
        return get_authorized_keys_path(self.user.home)

    def _validate(self, keys: Iterable[str]):
        valid: List[str] = []
        invalid: List[str] = []
        seen = set()
        for raw in keys:
            line = raw.strip()
            if is_ignorable(line):
                continue
            reason = validate_key(line)
            if reason:
                self.warn(f"Invalid key skipped ({reason}): {line[:60]}")
                invalid.append(line)
                continue
            if line not in seen:
                seen.add(line)
                valid.append(line)
        return valid, invalid

    def _ensure_ssh_dir(self) -> None:
        ssh_dir = self.path.parent
        if ensure_dir(ssh_dir, SSH_DIR_MODE, self.user.uid, self.user.gid):
            self.log_verbose(f"Prepared {ssh_dir}")

    def _write(self, content: str) -> None:
        atomic_write(self.path, content, mode=get_mode(self.path, AUTHORIZED_KEYS_MODE))
        try:
            os.chown(self.path, self.user.uid, self.user.gid)
        except OSError as e:
            raise FileOperationError(self.path, "chown", e) from e

    def merge(self, keys: Iterable[str], overwrite: bool = False) -> MergeResult:
        """
        Merge public keys into the account's authorized_keys.

        Existing lines are kept byte for byte, in order, and new keys are
        appended after them. Keys already present (compared on the stripped
        line) are skipped.

        Args:
            keys: Candidate key lines
            overwrite: Replace the whole file with the valid candidates

        Returns:
            MergeResult with the number of keys added and the rejected lines

        Raises:
            ValidationError: overwrite requested but no candidate is valid
            FileOperationError: backup, write or chown failed
        """
        valid, invalid = self._validate(keys)
        result = MergeResult(path=str(self.path), invalid=invalid)

        if overwrite and not valid:
            raise ValidationError("refusing to overwrite authorized_keys with no valid keys")

        original = read_file(self.path)
        if overwrite:
            new_keys = valid
            content = "\n".join(new_keys) + "\n"
        else:
            existing = {line.strip() for line in original.splitlines()}
            new_keys = [k for k in valid if k not in existing]
            content = original
            if content and not content.endswith("\n"):
                content += "\n"
            content += "".join(f"{k}\n" for k in new_keys)

        if not new_keys:
            self.log(f"No new keys for {self.user.username}, {self.path} unchanged")
            return result

        result.added = len(new_keys)
        if self.dry_run:
            self.log_file_write(self.path, content)
            return result

        self._ensure_ssh_dir()
        backup_file(self.path)
        self._write(content)

        action = "Replaced keys with" if overwrite else "Added"
        self.log(f"{action} {result.added} key(s) in {self.path}")
        self.record_change(f"{action} {result.added} key(s) for {self.user.username}")
        return result

    def list_keys(self) -> List[str]:
        """Return the key lines, skipping blanks and comments."""
        return [line.strip() for line in read_file(self.path).splitlines() if not is_ignorable(line)]

    def count(self) -> int:
        return len(self.list_keys())

    def remove_key(self, key: str) -> bool:
        """
        Remove every line holding ``key``.

        Lines match when their type and key data equal those of ``key``, so
        the comment does not need to be given.

        Returns:
            True if any line was removed
        """
        target = _key_identity(key.strip())
        if not target:
            raise ValidationError("no key given")

        lines = read_file(self.path).splitlines()
        kept = [line for line in lines if is_ignorable(line) or _key_identity(line) != target]
        removed = len(lines) - len(kept)
        if not removed:
            self.log(f"Key not found in {self.path}")
            return False

        content = "\n".join(kept) + "\n" if kept else ""
        if self.dry_run:
            self.log_file_write(self.path, content)
            return True

        backup_file(self.path)
        self._write(content)
        self.log(f"Removed {removed} line(s) from {self.path}")
        self.record_change(f"Removed key from {self.user.username}")
        return True


def install_keys(account: str, keys: Iterable[str], overwrite: bool = False, dry_run: bool = False) -> MergeResult:
    """Merge keys for ``account``; see :meth:`AuthorizedKeysManager.merge`."""
    return AuthorizedKeysManager(account, dry_run=dry_run).merge(keys, overwrite=overwrite)
