"""Authorized-key loading and the public-key authorization gate.

The key set is loaded once at startup and never mutated afterwards, so
concurrent sessions read it without locking.

Semantics of the backing file:
  - missing file      → ``None`` (authentication disabled, not an error)
  - no keys in file   → KeyLoadError
  - unparseable line  → KeyLoadError, nothing partially loaded
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from pathlib import Path
from typing import TypeAlias

import asyncssh

from shellgate.logger import logger

# Leading authorized_keys options, e.g. ``no-pty,command="echo hi" ssh-ed25519 ...``.
# Quoted option values may contain spaces.
_OPTIONS_PREFIX = re.compile(r'^(?:[^\s"]|"(?:\\.|[^"\\])*")+\s+')


class KeyLoadError(Exception):
    """The authorized-keys store exists but could not be loaded."""


AuthorizedKeySet: TypeAlias = tuple[asyncssh.SSHKey, ...]


def _parse_line(line: str) -> asyncssh.SSHKey:
    try:
        return asyncssh.import_public_key(line)
    except (asyncssh.KeyImportError, ValueError):
        pass

    # Retry without the options field
    match = _OPTIONS_PREFIX.match(line)
    if match is None:
        raise KeyLoadError("invalid public key")
    try:
        return asyncssh.import_public_key(line[match.end() :])
    except (asyncssh.KeyImportError, ValueError) as exc:
        raise KeyLoadError(f"invalid public key: {exc}") from exc


def parse_authorized_keys(text: str, source: str = "<string>") -> AuthorizedKeySet:
    """Parse authorized_keys text into keys, in file order.

    Blank lines and ``#`` comments are skipped. Raises KeyLoadError if any
    line fails to parse or if no key is found.
    """
    keys: list[asyncssh.SSHKey] = []
    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        try:
            keys.append(_parse_line(line))
        except KeyLoadError as exc:
            raise KeyLoadError(f"{source}:{lineno}: {exc}") from exc.__cause__

    if not keys:
        raise KeyLoadError(f"{source} was empty")
    return tuple(keys)


def load_authorized_keys(path: Path) -> AuthorizedKeySet | None:
    """Load ``path`` as an immutable key set.

    Returns None if ``path`` doesn't exist, meaning authentication is disabled.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except (OSError, UnicodeDecodeError) as exc:
        raise KeyLoadError(f"failed to read {path}: {exc}") from exc

    keys = parse_authorized_keys(text, source=str(path))
    logger.info("Loaded authorized keys", path=str(path), count=len(keys))
    return keys


def keys_equal(a: asyncssh.SSHKey, b: asyncssh.SSHKey) -> bool:
    """Compare algorithm and key material, ignoring comments and wrapping."""
    return a.public_data == b.public_data


def authorize(
    key: asyncssh.SSHKey,
    trusted: Sequence[asyncssh.SSHKey],
    *,
    remote_address: str = "",
    user: str = "",
) -> bool:
    """Return True iff ``key`` matches an entry in ``trusted``.

    Only install this as a callback for a non-empty set: an absent set means
    authentication is disabled, not that nobody is authorized.
    """
    if any(keys_equal(key, k) for k in trusted):
        return True

    logger.warning("Access denied", remote_address=remote_address, user=user)
    return False
