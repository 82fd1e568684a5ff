"""
Provides methods for checking the integrity of downloaded media files.
"""

import logging
from pathlib import Path

import mutagen
from mutagen import MutagenError

log = logging.getLogger(__name__)


class FileIntegrityChecker:
    """A collection of static methods for validating media file integrity."""

    @staticmethod
    def check_audio(filepath: str | Path) -> bool:
        """
        Performs a basic integrity check on any audio container mutagen knows.

        Checks if the file can be opened by mutagen and has valid stream info.

        Args:
            filepath: Path to the audio file.

        Returns:
            True if the file appears to be a valid audio file, False otherwise.
        """
        try:
            audio = mutagen.File(filepath)
        except MutagenError as e:
            log.warning(f"Integrity check failed for '{filepath}': {e}")
            return False

        if audio is None:
            # Unknown container; nothing to validate against
            log.debug(f"Integrity check skipped for '{filepath}': unrecognised format.")
            return True
        if audio.info and getattr(audio.info, "length", 0) > 0:
            return True
        log.warning(f"Integrity check failed for '{filepath}': No valid stream info.")
        return False
