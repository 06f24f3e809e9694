"""Helpers for logging values that arrive in webhook payloads."""

from __future__ import annotations

import re

_CONTROL_CHAR_RE = re.compile(r"[\r\n\x00-\x1f\x7f]")
_MAX_LOGGED_CHARS = 200


def sanitize_log(value: object, max_chars: int = _MAX_LOGGED_CHARS) -> str:
    """Make a user-supplied value safe for a single log line.

    Issue titles, repo names and delivery IDs come straight from GitHub
    payloads.  Control characters are stripped so they cannot forge log
    entries (CWE-117), and long values are truncated.
    """
    cleaned = _CONTROL_CHAR_RE.sub("", str(value))
    if len(cleaned) > max_chars:
        return cleaned[:max_chars] + "..."
    return cleaned
