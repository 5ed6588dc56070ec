"""Entity tags for conditional GET on public, cacheable payloads."""

from __future__ import annotations

import hashlib
import json
from typing import Any


def compute_etag(payload: Any) -> str:
    """Return a quoted, strong ETag (MD5 of the canonical JSON form)."""

    raw = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return '"' + hashlib.md5(raw.encode("utf-8")).hexdigest() + '"'


def etag_matches(if_none_match: str | None, etag: str) -> bool:
    """Check an ``If-None-Match`` header value against an ETag.

    Handles ``*``, comma-separated lists and weak validators (``W/"..."``).

    Examples:
        >>> etag_matches('"abc", W/"def"', '"def"')
        True
        >>> etag_matches(None, '"abc"')
        False
    """

    if not if_none_match:
        return False
    for candidate in if_none_match.split(","):
        candidate = candidate.strip()
        if candidate == "*":
            return True
        if candidate.startswith("W/"):
            candidate = candidate[2:]
        if candidate == etag:
            return True
    return False
