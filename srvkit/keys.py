"""SSH public key sources and validation."""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional

from .errors import FetchError, KeySourceError
from .net import DEFAULT_TIMEOUT, fetch_text

logger = logging.getLogger(__name__)

GITHUB_KEYS_URL = "https://github.com/{user}.keys"

KEY_TYPES = frozenset(
    {
        "ssh-rsa",
        "ssh-dss",
        "ecdsa-sha2-nistp256",
        "ecdsa-sha2-nistp384",
        "ecdsa-sha2-nistp521",
        "ssh-ed25519",
        "sk-ssh-ed25519@openssh.com",
        "sk-ecdsa-sha2-nistp256@openssh.com",
        "sk-ssh-ed25519",
        "sk-ecdsa-sha2-nistp256",
    }
)

KEY_DATA = re.compile(r"^[A-Za-z0-9+/]+={0,3}$")


class KeySource(Enum):
    GITHUB = "github"
    URL = "url"
    FILE = "file"


@dataclass(frozen=True)
class KeyRequest:
    """Where to load keys from: a GitHub username, a URL or a local path."""

    source: KeySource
    value: str


def is_ignorable(line: str) -> bool:
    """Blank lines and ``#`` comments carry no key."""
    stripped = line.strip()
    return not stripped or stripped.startswith("#")


def validate_key(line: str) -> Optional[str]:
    """
    Check one authorized_keys style line.

    Only the plain ``type data [comment]`` form is accepted; lines with
    leading options are rejected.

    Returns:
        None if valid, otherwise the reason it was rejected
    """
    fields = line.split()
    if len(fields) < 2:
        return "expected '<type> <base64-data> [comment]'"
    key_type, data = fields[0], fields[1]
    if key_type not in KEY_TYPES:
        return f"unsupported key type {key_type!r}"
    if not KEY_DATA.match(data):
        return "key data is not base64"
    return None


def is_valid_key(line: str) -> bool:
    return validate_key(line) is None


def split_keys(text: str) -> List[str]:
    """Split a key document into stripped lines, dropping CRs and blanks."""
    return [line.strip() for line in text.replace("\r", "").split("\n") if line.strip()]


def filter_valid_keys(lines: List[str]) -> List[str]:
    """Keep valid keys in input order, dropping comments and duplicates."""
    seen = set()
    keys = []
    for line in lines:
        if is_ignorable(line):
            continue
        reason = validate_key(line)
        if reason:
            logger.warning(f"Skipping invalid key ({reason}): {line[:60]}")
            continue
        if line in seen:
            continue
        seen.add(line)
        keys.append(line)
    return keys


def _read_source(request: KeyRequest, timeout: float) -> str:
    if request.source is KeySource.GITHUB:
        logger.info(f"Fetching keys from GitHub: {request.value}")
        return fetch_text(GITHUB_KEYS_URL.format(user=request.value), timeout)
    if request.source is KeySource.URL:
        logger.info(f"Fetching keys from URL: {request.value}")
        return fetch_text(request.value, timeout)
    if request.source is KeySource.FILE:
        logger.info(f"Reading keys from file: {request.value}")
        try:
            return Path(request.value).read_text()
        except OSError as e:
            raise KeySourceError(f"failed to read {request.value}: {e}") from e
    raise KeySourceError(f"unknown key source: {request.source}")


def fetch_keys(request: KeyRequest, timeout: float = DEFAULT_TIMEOUT) -> List[str]:
    """
    Load public keys from a source and keep only the valid ones.

    Args:
        request: Which source to read and its GitHub user, URL or path
        timeout: Network timeout in seconds

    Returns:
        Valid, de-duplicated keys in source order

    Raises:
        KeySourceError: the source could not be read or held no valid key
    """
    if not request.value:
        raise KeySourceError(f"no {request.source.value} given")
    try:
        text = _read_source(request, timeout)
    except KeySourceError:
        raise
    except FetchError as e:
        raise KeySourceError(str(e)) from e

    keys = filter_valid_keys(split_keys(text))
    if not keys:
        raise KeySourceError(f"no valid public keys found from {request.source.value} {request.value}")
    logger.info(f"Found {len(keys)} valid key(s)")
    return keys
