"""
Removes leading and trailing silence from every track in a library folder,
keeping the originals in the undo trash so the whole batch can be reverted.
"""

import logging
import secrets
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

import aiofiles.os

from soundlink_cli.core.process_runner import ProcessRunner
from soundlink_cli.core.output_parser import SilenceInterval, parse_silence_intervals
from soundlink_cli.exceptions import (
    JobAlreadyRunningError,
    OperationCancelled,
    ProcessFailedError,
    RestoreConflictError,
)
from soundlink_cli.models.config import clamp_threshold_db
from soundlink_cli.models.track import TrimProgress
from soundlink_cli.storage.trash import (
    ManifestStore,
    TrashRecord,
    UndoAction,
    UndoTrash,
    UndoType,
    generate_id,
)
from soundlink_cli.utils.formatting import excerpt
from soundlink_cli.utils.path import find_audio_files

log = logging.getLogger(__name__)

EDGE_EPSILON_SECONDS = 0.05
MIN_KEPT_SECONDS = 0.4
MIN_SILENCE_SECONDS = 0.2

CODEC_ARGS = {
    ".m4a": ["-c:a", "aac", "-b:a", "192k"],
    ".mp3": ["-c:a", "libmp3lame", "-q:a", "2"],
    ".wav": ["-c:a", "pcm_s16le"],
    ".flac": ["-c:a", "flac"],
    ".ogg": ["-c:a", "libvorbis", "-q:a", "5"],
    ".webm": ["-c:a", "libopus", "-b:a", "160k"],
}


def codec_args_for(path: Path) -> list[str]:
    """Re-encoding arguments for a file's container; unknown ones are copied."""
    return list(CODEC_ARGS.get(path.suffix.lower(), ["-c:a", "copy"]))


def media_tool_path(tool_name: str, ffmpeg_location: str = "") -> str:
    """Prefers a tool next to the configured ffmpeg location, else uses PATH."""
    if ffmpeg_location:
        location = Path(ffmpeg_location)
        directory = location if location.is_dir() else location.parent
        for candidate in (directory / tool_name, directory / f"{tool_name}.exe"):
            if candidate.is_file():
                return str(candidate)
    return tool_name


@dataclass(frozen=True)
class TrimWindow:
    """The span of a track to keep."""

    duration: float
    start: float
    end: float
    has_trim: bool

    @property
    def kept_seconds(self) -> float:
        return self.end - self.start


def compute_trim_window(
    intervals: list[SilenceInterval], duration: float
) -> TrimWindow:
    """
    Finds the leading silence (starting at the very beginning) and trailing
    silence (running to the very end). Interior silence is never removed.
    """
    untouched = TrimWindow(duration, 0.0, duration, False)

    start = 0.0
    leading = next(
        (i for i in intervals if i.start <= EDGE_EPSILON_SECONDS and i.end > i.start),
        None,
    )
    if leading:
        start = min(duration, max(0.0, leading.end))

    end = duration
    trailing = next(
        (
            i
            for i in reversed(intervals)
            if i.end >= duration - EDGE_EPSILON_SECONDS and i.end > i.start
        ),
        None,
    )
    if trailing:
        end = min(duration, max(0.0, trailing.start))

    if end <= start:
        return untouched

    has_trim = start > EDGE_EPSILON_SECONDS or end < duration - EDGE_EPSILON_SECONDS
    return TrimWindow(duration, start, end, has_trim)


@dataclass
class SilenceTrimOutcome:
    modified: bool
    backup: TrashRecord | None = None


@dataclass
class TrimJobResult:
    """Summary of a finished trim job."""

    job_id: str
    threshold_db: int
    total_count: int = 0
    modified_count: int = 0
    failures: list[dict[str, str]] = field(default_factory=list)
    undo_action: UndoAction | None = None
    cancelled: bool = False

    @property
    def failed_count(self) -> int:
        return len(self.failures)


class SilenceTrimmer:
    """
    Runs silence-trim jobs over a library folder. Only one job may run at a
    time per trimmer.
    """

    def __init__(
        self,
        runner: ProcessRunner,
        trash: UndoTrash,
        manifests: ManifestStore,
        ffmpeg_location: str = "",
        on_progress: Callable[[TrimProgress], None] | None = None,
    ):
        self.runner = runner
        self.trash = trash
        self.manifests = manifests
        self.ffmpeg = media_tool_path("ffmpeg", ffmpeg_location)
        self.ffprobe = media_tool_path("ffprobe", ffmpeg_location)
        self.on_progress = on_progress
        self._active_job: str | None = None

    @property
    def running(self) -> bool:
        return self._active_job is not None

    def _emit(self, progress: TrimProgress) -> None:
        if self.on_progress:
            self.on_progress(progress)

    async def probe_duration(self, path: Path) -> float:
        """Returns a track's duration in seconds as reported by ffprobe."""
        result = await self.runner.run(
            self.ffprobe,
            [
                "-v",
                "error",
                "-show_entries",
                "format=duration",
                "-of",
                "default=noprint_wrappers=1:nokey=1",
                str(path),
            ],
        )
        if result.exit_code != 0:
            raise ProcessFailedError(
                f"ffprobe failed ({result.exit_code}): "
                f"{excerpt(result.stderr) or 'unknown error'}",
                exit_code=result.exit_code,
                stderr=result.stderr,
            )
        try:
            duration = float(result.stdout.strip())
        except ValueError:
            duration = 0.0
        if duration <= 0:
            raise ProcessFailedError("Unable to determine track duration.")
        return duration

    async def detect(self, path: Path, threshold_db: int) -> TrimWindow:
        """Scans a track for edge silence and returns the span to keep."""
        duration = await self.probe_duration(path)
        threshold = clamp_threshold_db(threshold_db)
        result = await self.runner.run(
            self.ffmpeg,
            [
                "-hide_banner",
                "-i",
                str(path),
                "-af",
                f"silencedetect=noise=-{threshold}dB:d={MIN_SILENCE_SECONDS}",
                "-f",
                "null",
                "-",
            ],
        )
        if result.exit_code != 0:
            raise ProcessFailedError(
                f"ffmpeg silence scan failed ({result.exit_code}).",
                exit_code=result.exit_code,
                stderr=result.stderr,
            )
        intervals = parse_silence_intervals(result.stderr, duration)
        return compute_trim_window(intervals, duration)

    def _temp_path(self, path: Path) -> Path:
        return path.with_name(
            f"{path.stem}.trim-{int(time.time() * 1000)}-{secrets.token_hex(3)}"
            f"{path.suffix}"
        )

    async def trim_track(self, path: Path, threshold_db: int) -> SilenceTrimOutcome:
        """
        Trims one track in place. The original goes to the trash and is put
        back if the trimmed file cannot take its place.
        """
        window = await self.detect(path, threshold_db)
        if not window.has_trim or window.kept_seconds <= MIN_KEPT_SECONDS:
            return SilenceTrimOutcome(modified=False)

        temp_path = self._temp_path(path)
        result = await self.runner.run(
            self.ffmpeg,
            [
                "-y",
                "-hide_banner",
                "-loglevel",
                "error",
                "-ss",
                f"{window.start}",
                "-to",
                f"{window.end}",
                "-i",
                str(path),
                "-vn",
                *codec_args_for(path),
                str(temp_path),
            ],
        )
        if result.exit_code != 0 or not await aiofiles.os.path.exists(temp_path):
            if await aiofiles.os.path.exists(temp_path):
                await aiofiles.os.unlink(temp_path)
            raise ProcessFailedError(
                f"ffmpeg trim failed ({result.exit_code}).",
                exit_code=result.exit_code,
                stderr=result.stderr,
            )

        backup = await self.trash.move_to_trash(path)
        try:
            await aiofiles.os.rename(temp_path, path)
        except OSError:
            if await aiofiles.os.path.exists(temp_path):
                await aiofiles.os.unlink(temp_path)
            await self.trash.restore_record(backup)
            raise

        log.debug(
            f"Trimmed '{path.name}' to {window.start:.2f}s-{window.end:.2f}s "
            f"of {window.duration:.2f}s."
        )
        return SilenceTrimOutcome(modified=True, backup=backup)

    async def run(self, root: Path, threshold_db: int) -> TrimJobResult:
        """
        Trims every supported track under ``root`` and returns the job summary,
        including a single undo action covering all modified tracks.

        Raises:
            JobAlreadyRunningError: If another job is in progress.
        """
        if self._active_job is not None:
            raise JobAlreadyRunningError("A silence trim task is already running.")
        job_id = generate_id()
        self._active_job = job_id
        threshold = clamp_threshold_db(threshold_db)
        job = TrimJobResult(job_id=job_id, threshold_db=threshold)

        try:
            tracks = find_audio_files(root)
            job.total_count = len(tracks)
            backups: list[TrashRecord] = []
            self._emit(TrimProgress(job_id, "started", total_count=job.total_count))

            for processed, track in enumerate(tracks, start=1):
                try:
                    outcome = await self.trim_track(track, threshold)
                    if outcome.modified and outcome.backup:
                        backups.append(outcome.backup)
                except OperationCancelled:
                    log.info("[yellow]Silence trim cancelled; keeping tracks trimmed so far.[/]")
                    job.cancelled = True
                    break
                except (ProcessFailedError, RestoreConflictError, OSError) as e:
                    log.warning(f"[yellow]Could not trim '{track.name}':[/] {e}")
                    job.failures.append({"path": str(track), "error": str(e)})

                if processed == 1 or processed % 10 == 0 or processed == job.total_count:
                    self._emit(
                        TrimProgress(
                            job_id,
                            "progress",
                            processed_count=processed,
                            total_count=job.total_count,
                            modified_count=len(backups),
                            failed_count=job.failed_count,
                        )
                    )

            job.modified_count = len(backups)
            if backups:
                manifest_id = await self.manifests.save(backups)
                job.undo_action = UndoAction(
                    type=UndoType.TRIM_SILENCE_BATCH,
                    payload={"manifest_id": manifest_id},
                )

            self._emit(
                TrimProgress(
                    job_id,
                    "completed",
                    processed_count=job.total_count,
                    total_count=job.total_count,
                    modified_count=job.modified_count,
                    failed_count=job.failed_count,
                    failures=list(job.failures),
                )
            )
            return job
        except Exception:
            self._emit(TrimProgress(job_id, "error", total_count=job.total_count))
            raise
        finally:
            self._active_job = None
