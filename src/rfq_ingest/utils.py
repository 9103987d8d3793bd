"""Shared helpers — hashing, timestamps, file names."""

from __future__ import annotations

import hashlib
import re
from datetime import datetime, timezone

_ILLEGAL_FILE_CHARS_RE = re.compile(r'[<>:"/\\|?*]')


def sha256_bytes(data: bytes) -> str:
    """Return the hex SHA-256 digest of *data*."""
    return hashlib.sha256(data).hexdigest()


def utcnow_iso() -> str:
    """Return the current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def sanitize_file_name(name: str) -> str:
    """Replace characters Windows and macOS refuse in file names with ``_``."""
    return _ILLEGAL_FILE_CHARS_RE.sub("_", name)
