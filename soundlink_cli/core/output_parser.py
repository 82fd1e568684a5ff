"""
Stateless grammar for the text streams of yt-dlp and ffmpeg.

Recognised yt-dlp lines::

    [download]  42.5% of 3.20MiB at 1.10MiB/s ETA 00:02
    [download] Destination: /music/Mix/001 - Song.webm
    [ExtractAudio] Destination: /music/Mix/001 - Song.m4a
    [Merger] Merging formats into "/music/Mix/001 - Song.mkv"
    [ExtractAudio] Not converting audio /music/Mix/001 - Song.m4a; file is already in target format m4a

Recognised ffmpeg ``silencedetect`` lines::

    [silencedetect @ 0x55d] silence_start: 181.2
    [silencedetect @ 0x55d] silence_end: 2.04 | silence_duration: 2.04

Any other line is ignored.
"""

import math
import re
from dataclasses import dataclass

ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;]*m")

PROGRESS_PATTERN = re.compile(r"\[download\]\s+([\d.]+)%", re.IGNORECASE)
ETA_PATTERN = re.compile(r"ETA\s+([0-9:]+)", re.IGNORECASE)

DESTINATION_PATTERNS = (
    re.compile(r"\[ExtractAudio\]\s+Destination:\s+(.*)", re.IGNORECASE),
    re.compile(r"\[download\]\s+Destination:\s+(.*)", re.IGNORECASE),
    re.compile(r"\[Merger\]\s+Merging formats into\s+\"?(.+?)\"?$", re.IGNORECASE),
    re.compile(
        r"\[ExtractAudio\]\s+Not converting audio\s+(.*?);\s+file is already in target format",
        re.IGNORECASE,
    ),
)

SILENCE_START_PATTERN = re.compile(r"silence_start:\s*([0-9.]+)", re.IGNORECASE)
SILENCE_END_PATTERN = re.compile(r"silence_end:\s*([0-9.]+)", re.IGNORECASE)


@dataclass(frozen=True)
class ProgressLine:
    """A parsed ``[download] NN%`` announcement."""

    percent: float
    eta_text: str | None
    eta_ms: int | None


@dataclass(frozen=True)
class SearchCandidate:
    """One ``<url>\\t<duration>`` line of a flat search."""

    url: str
    duration_ms: int | None


@dataclass(frozen=True)
class SilenceInterval:
    start: float
    end: float


def strip_ansi(line: str) -> str:
    return ANSI_ESCAPE.sub("", line or "").strip()


def parse_eta_ms(eta_text: str | None) -> int | None:
    """Converts ``H:MM:SS``, ``MM:SS`` or ``SS`` into milliseconds."""
    if not eta_text:
        return None
    try:
        parts = [int(part) for part in eta_text.strip().split(":")]
    except ValueError:
        return None

    if len(parts) == 3:
        hours, minutes, seconds = parts
    elif len(parts) == 2:
        hours, (minutes, seconds) = 0, parts
    elif len(parts) == 1:
        hours, minutes, seconds = 0, 0, parts[0]
    else:
        return None
    return ((hours * 3600) + (minutes * 60) + seconds) * 1000


def parse_progress_line(line: str) -> ProgressLine | None:
    """Extracts the percentage and optional ETA from a progress announcement."""
    line = strip_ansi(line)
    match = PROGRESS_PATTERN.search(line)
    if not match:
        return None
    try:
        percent = float(match.group(1))
    except ValueError:
        return None
    if not math.isfinite(percent):
        return None

    eta_match = ETA_PATTERN.search(line)
    eta_text = eta_match.group(1) if eta_match else None
    return ProgressLine(percent=percent, eta_text=eta_text, eta_ms=parse_eta_ms(eta_text))


def parse_destination_line(line: str) -> str | None:
    """Returns the file path announced by a destination-style line, if any."""
    line = strip_ansi(line)
    for pattern in DESTINATION_PATTERNS:
        if match := pattern.search(line):
            path = match.group(1).strip().strip('"')
            return path or None
    return None


def parse_duration_ms(duration_text: str | None) -> int | None:
    """Parses a duration given as seconds (``213.5``) or clock time (``3:33``)."""
    if not isinstance(duration_text, str):
        return None
    text = duration_text.strip()
    if not text:
        return None

    try:
        seconds = float(text)
    except ValueError:
        seconds = None
    if seconds is not None:
        return round(seconds * 1000) if math.isfinite(seconds) else None

    parts = text.split(":")
    if len(parts) < 2:
        return None
    try:
        values = [int(part) for part in parts]
    except ValueError:
        return None
    if any(value < 0 for value in values):
        return None
    total = 0
    for value in values:
        total = total * 60 + value
    return total * 1000


def parse_search_candidates(raw_output: str) -> list[SearchCandidate]:
    """Parses the tab-separated output of a flat search."""
    candidates = []
    for raw_line in raw_output.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        url, _, duration_text = line.partition("\t")
        url = url.strip()
        if url:
            candidates.append(
                SearchCandidate(url=url, duration_ms=parse_duration_ms(duration_text))
            )
    return candidates


def parse_silence_intervals(
    ffmpeg_output: str, total_duration_seconds: float
) -> list[SilenceInterval]:
    """
    Pairs ``silence_start``/``silence_end`` markers into intervals. An end
    without a start opens at 0; a start without an end closes at the clip end.
    """
    intervals = []
    current_start: float | None = None

    for raw_line in ffmpeg_output.splitlines():
        line = raw_line.strip()
        if start_match := SILENCE_START_PATTERN.search(line):
            try:
                current_start = float(start_match.group(1))
            except ValueError:
                pass
            continue

        if end_match := SILENCE_END_PATTERN.search(line):
            try:
                end = float(end_match.group(1))
            except ValueError:
                continue
            start = current_start if current_start is not None else 0.0
            intervals.append(SilenceInterval(start=max(0.0, start), end=max(0.0, end)))
            current_start = None

    if current_start is not None:
        intervals.append(
            SilenceInterval(start=max(0.0, current_start), end=total_duration_seconds)
        )
    return intervals
