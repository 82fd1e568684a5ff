"""
Utilities for handling file paths, output templates, and URL parsing.
"""

import re
from pathlib import Path
from typing import Optional, Tuple

from pathvalidate import sanitize_filename

from soundlink_cli.models.track import LinkKind

SUPPORTED_AUDIO_EXTENSIONS = (".m4a", ".mp3", ".wav", ".flac", ".ogg", ".webm")

# Suffixes yt-dlp leaves behind for unfinished downloads
PARTIAL_ARTIFACT_SUFFIXES = (".part", ".tmp", ".temp", ".ytdl")


def parse_spotify_url(url: str) -> Optional[Tuple[str, str]]:
    """
    Parses a Spotify URL to extract the content type and ID.
    Handles both regional (``/intl-xx/``) and plain URL formats.
    """
    pattern = re.compile(
        r"spotify\.com/(?:intl-[a-z]{2}/)?(?P<type>playlist|album|track)/(?P<id>[a-zA-Z0-9]+)",
        re.IGNORECASE,
    )
    match = pattern.search(url)
    if match:
        return match.group("type").lower(), match.group("id")
    return None


def classify_link(link: str) -> LinkKind:
    """Decides whether a link is expanded through the catalog or used as-is."""
    if "spotify.com" in link.lower():
        return LinkKind.CATALOG
    return LinkKind.DIRECT


def safe_name(name: str, fallback: str = "") -> str:
    """
    Produces a filesystem-safe file or folder name, collapsing whitespace.
    """
    cleaned = re.sub(r'[<>:"/\\|?*]', "_", name or "")
    cleaned = re.sub(r"\s+", " ", cleaned).strip()
    cleaned = sanitize_filename(cleaned, platform="auto").strip()
    return cleaned or fallback


def number_prefix(position_index: int) -> str:
    """Returns the 3-digit, 1-based numbering used for downloaded files."""
    return f"{position_index + 1:03d}"


def output_stem(position_index: int, display_name: str) -> str:
    """Returns the ``<NNN> - <name>`` stem shared by every file of a track."""
    return f"{number_prefix(position_index)} - {safe_name(display_name, 'Untitled')}"


def output_template(output_dir: Path, position_index: int, display_name: str) -> str:
    """Builds the yt-dlp ``--output`` template for a track."""
    return str(output_dir / f"{output_stem(position_index, display_name)}.%(ext)s")


def is_partial_artifact(file_name: str, stem: str) -> bool:
    """Checks whether a file is an unfinished download belonging to ``stem``."""
    lowered = file_name.lower()
    if not lowered.startswith(stem.lower() + "."):
        return False
    return lowered.endswith(PARTIAL_ARTIFACT_SUFFIXES) or ".part-frag" in lowered


def create_dir(directory_path: Path) -> None:
    """Creates a directory if it does not already exist."""
    directory_path.mkdir(parents=True, exist_ok=True)


def find_audio_files(root: Path) -> list[Path]:
    """Recursively lists supported audio files under ``root`` in stable order."""
    return sorted(
        p
        for p in root.rglob("*")
        if p.is_file() and p.suffix.lower() in SUPPORTED_AUDIO_EXTENSIONS
    )


def list_audio_files(folder: Path) -> list[Path]:
    """Lists the supported audio files directly inside ``folder``, by name."""
    return sorted(
        p
        for p in folder.iterdir()
        if p.is_file() and p.suffix.lower() in SUPPORTED_AUDIO_EXTENSIONS
    )
