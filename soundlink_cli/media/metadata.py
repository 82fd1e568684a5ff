"""
Reads audio properties used when browsing the library.
"""

import logging
from pathlib import Path

import mutagen
from mutagen import MutagenError

log = logging.getLogger(__name__)


def read_duration_seconds(filepath: str | Path) -> float | None:
    """
    Returns the stream length mutagen reports for a file, or ``None`` when the
    file cannot be read or carries no length.
    """
    try:
        audio = mutagen.File(filepath)
    except (MutagenError, OSError) as e:
        log.debug(f"Could not read duration of '{filepath}': {e}")
        return None
    length = getattr(getattr(audio, "info", None), "length", None)
    return float(length) if length and length > 0 else None
