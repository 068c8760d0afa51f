"""HTTP helpers."""

import json
import logging
from typing import Any, Dict, Optional
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from .errors import FetchError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30
USER_AGENT = "server-toolkit"


def fetch_bytes(url: str, timeout: float = DEFAULT_TIMEOUT, headers: Optional[Dict[str, str]] = None) -> bytes:
    """
    Download ``url`` fully into memory.

    Args:
        url: URL to fetch
        timeout: Socket timeout in seconds
        headers: Extra request headers

    Returns:
        The response body

    Raises:
        FetchError: on a non-200 status, a network error or a timeout
    """
    request = Request(url, headers={"User-Agent": USER_AGENT, **(headers or {})})
    logger.debug(f"GET {url}")
    try:
        with urlopen(request, timeout=timeout) as resp:
            if resp.status != 200:
                raise FetchError(f"GET {url} returned HTTP {resp.status}")
            return resp.read()
    except HTTPError as e:
        raise FetchError(f"GET {url} returned HTTP {e.code}") from e
    except (URLError, OSError) as e:
        raise FetchError(f"GET {url} failed: {e}") from e


def fetch_text(url: str, timeout: float = DEFAULT_TIMEOUT) -> str:
    return fetch_bytes(url, timeout).decode("utf-8", errors="replace")


def fetch_json(url: str, timeout: float = DEFAULT_TIMEOUT) -> Any:
    """Fetch and decode a JSON document; undecodable bodies raise FetchError."""
    body = fetch_bytes(url, timeout, headers={"Accept": "application/json"})
    try:
        return json.loads(body)
    except ValueError as e:
        raise FetchError(f"failed to decode response from {url}: {e}") from e
