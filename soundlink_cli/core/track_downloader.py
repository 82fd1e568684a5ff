"""
Downloads a single resolved item with yt-dlp and reports its progress.
"""

import asyncio
import logging
from collections.abc import Callable
from pathlib import Path

from soundlink_cli.core.output_parser import (
    parse_destination_line,
    parse_progress_line,
    strip_ansi,
)
from soundlink_cli.core.process_runner import YtDlp
from soundlink_cli.exceptions import (
    FileIntegrityError,
    OperationCancelled,
    ProcessFailedError,
)
from soundlink_cli.media.integrity import FileIntegrityChecker
from soundlink_cli.models.track import ResolvedItem
from soundlink_cli.utils.formatting import excerpt
from soundlink_cli.utils.path import (
    create_dir,
    is_partial_artifact,
    output_stem,
    output_template,
)

log = logging.getLogger(__name__)

ProgressCallback = Callable[[float, int | None], None]


class TrackDownloader:
    """
    Runs one yt-dlp extraction per item. On cancellation the item's unfinished
    files are removed so an aborted run leaves no partial downloads behind.
    """

    def __init__(
        self,
        ytdlp: YtDlp,
        audio_format: str = "m4a",
        normalize_volume: bool = False,
        ffmpeg_location: str = "",
        verify_downloads: bool = True,
    ):
        self.ytdlp = ytdlp
        self.audio_format = audio_format
        self.normalize_volume = normalize_volume
        self.ffmpeg_location = ffmpeg_location
        self.verify_downloads = verify_downloads

    def build_args(self, item: ResolvedItem) -> list[str]:
        """Builds the yt-dlp arguments for an item (without the common prefix)."""
        args = [
            "--extract-audio",
            "--audio-format",
            self.audio_format,
            "--audio-quality",
            "0",
            "--output",
            output_template(item.output_dir, item.position_index, item.display_name),
            "--progress",
            "--no-playlist",
        ]
        if self.ffmpeg_location:
            args += ["--ffmpeg-location", self.ffmpeg_location]
        if self.normalize_volume:
            args += ["--ppa", "ffmpeg:-af loudnorm"]
        args.append(item.media_link)
        return args

    async def download(
        self, item: ResolvedItem, on_progress: ProgressCallback | None = None
    ) -> Path:
        """
        Downloads an item and returns the path of the finished file.

        Raises:
            OperationCancelled: If the run was cancelled mid-download.
            ProcessFailedError: If yt-dlp failed or produced no file.
            FileIntegrityError: If the produced file is not readable audio.
        """
        create_dir(item.output_dir)
        stem = output_stem(item.position_index, item.display_name)
        destination: list[str] = []

        def on_line(raw_line: str) -> None:
            line = strip_ansi(raw_line.strip())
            if not line:
                return
            if (progress := parse_progress_line(line)) and on_progress:
                on_progress(progress.percent, progress.eta_ms)
            if parsed := parse_destination_line(line):
                destination.append(parsed)

        try:
            result = await self.ytdlp.run(self.build_args(item), on_line)
        except OperationCancelled:
            await asyncio.to_thread(
                self.cleanup_partial_artifacts,
                item.output_dir,
                stem,
                destination[-1] if destination else None,
            )
            raise

        if result.exit_code != 0:
            raise ProcessFailedError(
                f'Failed: "{item.display_name}" (yt-dlp exit code {result.exit_code}) '
                f"{excerpt(result.stderr)}",
                exit_code=result.exit_code,
                stderr=result.stderr,
            )

        final_path = Path(destination[-1]) if destination else None
        if final_path is None or not final_path.is_file():
            final_path = self.find_downloaded_file(item.output_dir, stem)
        if final_path is None:
            raise ProcessFailedError(
                f'yt-dlp finished but no file was found for "{item.display_name}".'
            )

        if self.verify_downloads:
            is_valid = await asyncio.to_thread(
                FileIntegrityChecker.check_audio, final_path
            )
            if not is_valid:
                raise FileIntegrityError(
                    f"Downloaded file failed integrity check: {final_path.name}"
                )
        return final_path

    def find_downloaded_file(self, output_dir: Path, stem: str) -> Path | None:
        """Locates the output by its numbered prefix when yt-dlp printed no path."""
        expected = output_dir / f"{stem}.{self.audio_format}"
        if expected.is_file():
            return expected
        try:
            for candidate in sorted(output_dir.iterdir()):
                if (
                    candidate.is_file()
                    and candidate.name.startswith(f"{stem}.")
                    and not is_partial_artifact(candidate.name, stem)
                ):
                    return candidate
        except OSError as e:
            log.debug(f"Could not scan '{output_dir}' for downloaded file: {e}")
        return None

    @staticmethod
    def cleanup_partial_artifacts(
        output_dir: Path, stem: str, final_path: str | None = None
    ) -> int:
        """Deletes the unfinished files of an interrupted download."""
        targets: set[Path] = set()
        if final_path:
            targets.add(Path(final_path))
        try:
            targets.update(
                p for p in output_dir.iterdir() if is_partial_artifact(p.name, stem)
            )
        except OSError as e:
            log.debug(f"Could not scan '{output_dir}' for partial artifacts: {e}")

        removed = 0
        for path in targets:
            try:
                if path.is_file():
                    path.unlink()
                    removed += 1
            except OSError as e:
                log.warning(f"Failed to clean partial artifact '{path.name}': {e}")
        if removed:
            log.debug(f"Removed {removed} partial artifact(s) for '{stem}'.")
        return removed
