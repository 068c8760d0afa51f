"""Account lookups backed by the passwd database."""

import os
import pwd
from dataclasses import dataclass

from .errors import AccountNotFoundError


@dataclass(frozen=True)
class UserInfo:
    username: str
    uid: int
    gid: int
    home: str
    shell: str = ""

    @classmethod
    def from_passwd(cls, entry: pwd.struct_passwd) -> "UserInfo":
        return cls(
            username=entry.pw_name,
            uid=entry.pw_uid,
            gid=entry.pw_gid,
            home=entry.pw_dir,
            shell=entry.pw_shell,
        )


def get_user(username: str) -> UserInfo:
    """
    Look up an account by name.

    Raises:
        AccountNotFoundError: if no passwd entry matches
    """
    if not username:
        raise AccountNotFoundError(username)
    try:
        return UserInfo.from_passwd(pwd.getpwnam(username))
    except KeyError:
        raise AccountNotFoundError(username) from None


def current_user() -> UserInfo:
    """Return the account of the effective user."""
    return UserInfo.from_passwd(pwd.getpwuid(os.geteuid()))


def get_invoking_username() -> str:
    """
    Get the real operator's username (handles sudo).

    When running under sudo, returns the original user, not root.
    """
    return os.environ.get("SUDO_USER") or current_user().username


def is_root() -> bool:
    return os.geteuid() == 0
