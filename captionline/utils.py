"""
captionline.utils - Shared utility functions.
"""

from __future__ import annotations

import re

_UNSAFE_CHARS = re.compile(r"[^\w\s؀-ۿ-]", re.UNICODE)
_WHITESPACE = re.compile(r"\s+")

MAX_SLUG_LENGTH = 100


def sanitize_filename(name: str, max_length: int = MAX_SLUG_LENGTH) -> str:
    """Turn a title into a deterministic, filesystem-safe file stem.

    Punctuation is dropped, whitespace runs become underscores, and the
    result is truncated to ``max_length`` characters.
    """
    cleaned = _UNSAFE_CHARS.sub("", name.strip())
    cleaned = _WHITESPACE.sub("_", cleaned)
    return cleaned[:max_length]


def format_duration(seconds: float) -> str:
    """Format seconds as "1h 2m 5s", "2m 5s" or "45s"."""
    total = int(seconds)
    hours, rem = divmod(total, 3600)
    minutes, secs = divmod(rem, 60)
    if hours > 0:
        return f"{hours}h {minutes}m {secs}s"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def truncate(text: str, limit: int = 60) -> str:
    """Shorten text for log lines."""
    return text if len(text) <= limit else text[: limit - 3] + "..."
