"""Fetching and validating authorized public keys."""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional
from urllib.parse import urlparse

import requests

from rpw_setup.errors import FetchError

logger = logging.getLogger(__name__)

KEY_TYPE_RE = re.compile(r"^(?:ssh-[\w.@-]+|ecdsa-sha2-[\w.@-]+|sk-[\w.@-]+)$")


def is_key_line(line: str) -> bool:
    """
    True if the line looks like ``[options] <type> <key> [comment]``.

    Only the key type is checked strictly; the key blob just has to be present.
    """
    if line.startswith("#"):
        return False
    tokens = line.split()
    # the key type must be followed by the key blob
    return any(KEY_TYPE_RE.match(token) for token in tokens[:-1])


@dataclass
class AuthorizedKeySet:
    """Ordered public-key lines destined for an authorized_keys file."""

    lines: List[str] = field(default_factory=list)

    @classmethod
    def parse(cls, text: str, source: str = "<input>") -> "AuthorizedKeySet":
        """
        Parse fetched key material.

        Blank lines are dropped; everything else is kept in order.

        Raises:
            FetchError: If the text is empty or holds no recognisable key
        """
        lines = [line.strip() for line in text.splitlines() if line.strip()]
        if not lines:
            raise FetchError(f"Key material from {source} is empty")
        keys = [line for line in lines if is_key_line(line)]
        if not keys:
            raise FetchError(f"No valid SSH public key found in {source}")
        for line in lines:
            if not line.startswith("#") and not is_key_line(line):
                logger.warning(f"Unrecognised line in key material from {source}: {line[:40]}")
        return cls(lines=lines)

    @property
    def key_count(self) -> int:
        return sum(1 for line in self.lines if is_key_line(line))

    def render(self) -> str:
        return "\n".join(self.lines) + "\n"


def fetch_key_material(source: str, timeout: int = 30, session: Optional[Any] = None) -> str:
    """
    Read raw key material from a URL or a local path.

    Args:
        source: ``http(s)://`` URL, ``file://`` URL or filesystem path
        timeout: HTTP timeout in seconds
        session: Object with a requests-compatible ``get``; defaults to requests

    Returns:
        The decoded text

    Raises:
        FetchError: If the source cannot be read
    """
    parsed = urlparse(source)
    if parsed.scheme in ("http", "https"):
        http = session or requests
        logger.info(f"Downloading SSH public key from {source}")
        try:
            response = http.get(source, timeout=timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise FetchError(f"Failed to download SSH public key from {source}: {e}") from e
        try:
            return response.content.decode("utf-8")
        except UnicodeDecodeError as e:
            raise FetchError(f"Key material from {source} is not valid UTF-8") from e

    path = Path(parsed.path if parsed.scheme == "file" else source)
    logger.info(f"Reading SSH public key from {path}")
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise FetchError(f"Failed to read SSH public key from {path}: {e}") from e


def load_authorized_keys(
    source: str, timeout: int = 30, session: Optional[Any] = None
) -> AuthorizedKeySet:
    return AuthorizedKeySet.parse(fetch_key_material(source, timeout, session), source)
