"""
Helper functions for formatting data into human-readable strings.
"""

import time
from typing import Any, Optional


def format_duration(seconds: float) -> str:
    """
    Formats a duration in seconds into a human-readable string (e.g., '2m 4s').
    """
    s = int(seconds)
    hours, remainder = divmod(s, 3600)
    minutes, secs = divmod(remainder, 60)
    parts = []
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")
    if secs > 0 or not parts:
        parts.append(f"{secs}s")
    return " ".join(parts)


def format_age(timestamp: Optional[float], now: Optional[float] = None) -> str:
    """Formats a past epoch timestamp relative to now (e.g., '12s ago')."""
    if timestamp is None:
        return "never"
    now = time.time() if now is None else now
    return f"{format_duration(max(0.0, now - timestamp))} ago"


def get_track_title(metadata: dict[str, Any], fallback: str) -> str:
    """Builds 'Artist - Title (Mix)' from track metadata, when available."""
    title = metadata.get("title")
    if not title:
        return fallback
    if (mix := metadata.get("mix")) and mix.lower() not in title.lower():
        title = f"{title} ({mix})"
    if artist := metadata.get("artist"):
        title = f"{artist} - {title}"
    return title
