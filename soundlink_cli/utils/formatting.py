"""
Helper functions for formatting data into human-readable strings.
"""

import math

CALCULATING = "calculating..."


def format_eta(ms: float | None) -> str:
    """
    Formats a remaining duration in milliseconds into the progress channel's
    ETA string (e.g., '2m 5s remaining').
    """
    if ms is None or not math.isfinite(ms) or ms < 0:
        return CALCULATING
    seconds = int((ms / 1000) % 60)
    minutes = int((ms / 60000) % 60)
    hours = int(ms / 3600000)

    if hours > 0:
        return f"{hours}h {minutes}m remaining"
    if minutes > 0:
        return f"{minutes}m {seconds}s remaining"
    if seconds > 0:
        return f"{seconds}s remaining"
    return "less than a second remaining"


def format_duration(seconds: float) -> str:
    """
    Formats a duration in seconds into a human-readable string (e.g., '2h 34m 12s').
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


def excerpt(text: str, limit: int = 300) -> str:
    """Returns the tail of a tool's output, trimmed for status messages."""
    text = (text or "").strip()
    if len(text) <= limit:
        return text
    return "…" + text[-limit:]
