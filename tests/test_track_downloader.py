import asyncio

import pytest

from soundlink_cli.core.process_runner import ExitResult
from soundlink_cli.core.track_downloader import TrackDownloader
from soundlink_cli.exceptions import (
    FileIntegrityError,
    OperationCancelled,
    ProcessFailedError,
)
from soundlink_cli.media.integrity import FileIntegrityChecker
from soundlink_cli.models.track import ResolvedItem, SourceTag


class ScriptedYtDlp:
    """Emits scripted output lines and creates files as a real run would."""

    def __init__(self, lines=(), files=(), exit_code=0, cancel=False):
        self.lines = list(lines)
        self.files = list(files)
        self.exit_code = exit_code
        self.cancel = cancel
        self.args = None

    async def run(self, args, on_line=None):
        self.args = args
        for path in self.files:
            path.write_bytes(b"data")
        for line in self.lines:
            if on_line:
                on_line(line)
        if self.cancel:
            raise OperationCancelled("Operation cancelled")
        return ExitResult(self.exit_code, "", "ERROR: unavailable" if self.exit_code else "")


def _item(tmp_path, position_index=0, name="Song"):
    return ResolvedItem(
        media_link="https://media/1",
        display_name=name,
        position_index=position_index,
        source_tag=SourceTag.PROVIDER_A,
        output_dir=tmp_path / "Mix",
    )


def test_build_args(tmp_path):
    downloader = TrackDownloader(
        ScriptedYtDlp(), audio_format="mp3", normalize_volume=True, ffmpeg_location="/opt/ff"
    )
    args = downloader.build_args(_item(tmp_path, position_index=4, name="A/B"))

    assert args[:3] == ["--extract-audio", "--audio-format", "mp3"]
    assert args[args.index("--output") + 1] == str(tmp_path / "Mix" / "005 - A_B.%(ext)s")
    assert args[args.index("--ffmpeg-location") + 1] == "/opt/ff"
    assert "--ppa" in args
    assert args[-1] == "https://media/1"


def test_download_reports_progress_and_destination(tmp_path):
    target = tmp_path / "Mix" / "001 - Song.m4a"
    ytdlp = ScriptedYtDlp(
        lines=[
            "[download]   5.0% of 3MiB ETA 00:10",
            "[download]  60.0% of 3MiB ETA 00:04",
            f"[ExtractAudio] Destination: {target}",
        ],
        files=[],
    )
    (tmp_path / "Mix").mkdir()
    target.write_bytes(b"audio")
    progress = []

    downloader = TrackDownloader(ytdlp, verify_downloads=False)
    path = asyncio.run(
        downloader.download(_item(tmp_path), lambda pct, eta: progress.append((pct, eta)))
    )

    assert path == target
    assert progress == [(5.0, 10_000), (60.0, 4_000)]


def test_download_finds_file_by_prefix_without_destination_line(tmp_path):
    output_dir = tmp_path / "Mix"
    output_dir.mkdir()
    ytdlp = ScriptedYtDlp(
        files=[output_dir / "001 - Song.webm.part", output_dir / "001 - Song.opus"]
    )
    downloader = TrackDownloader(ytdlp, verify_downloads=False)

    path = asyncio.run(downloader.download(_item(tmp_path)))

    assert path == output_dir / "001 - Song.opus"


def test_non_zero_exit_raises(tmp_path):
    downloader = TrackDownloader(ScriptedYtDlp(exit_code=1), verify_downloads=False)
    with pytest.raises(ProcessFailedError) as excinfo:
        asyncio.run(downloader.download(_item(tmp_path)))
    assert excinfo.value.exit_code == 1


def test_missing_output_raises(tmp_path):
    downloader = TrackDownloader(ScriptedYtDlp(), verify_downloads=False)
    with pytest.raises(ProcessFailedError):
        asyncio.run(downloader.download(_item(tmp_path)))


def test_cancellation_removes_partial_artifacts(tmp_path):
    output_dir = tmp_path / "Mix"
    output_dir.mkdir()
    other = output_dir / "002 - Other.m4a"
    other.write_bytes(b"keep")
    partials = [
        output_dir / "001 - Song.webm.part",
        output_dir / "001 - Song.webm.ytdl",
        output_dir / "001 - Song.webm.part-Frag3",
    ]
    ytdlp = ScriptedYtDlp(files=partials, cancel=True)

    with pytest.raises(OperationCancelled):
        asyncio.run(TrackDownloader(ytdlp).download(_item(tmp_path)))

    assert sorted(p.name for p in output_dir.iterdir()) == ["002 - Other.m4a"]


def test_failed_integrity_check_raises(tmp_path, monkeypatch):
    output_dir = tmp_path / "Mix"
    output_dir.mkdir()
    ytdlp = ScriptedYtDlp(files=[output_dir / "001 - Song.m4a"])
    monkeypatch.setattr(FileIntegrityChecker, "check_audio", staticmethod(lambda p: False))

    with pytest.raises(FileIntegrityError):
        asyncio.run(TrackDownloader(ytdlp, verify_downloads=True).download(_item(tmp_path)))


def test_cleanup_keeps_other_tracks(tmp_path):
    (tmp_path / "001 - Song.m4a.tmp").write_bytes(b"")
    (tmp_path / "0011 - Song.m4a.part").write_bytes(b"")
    removed = TrackDownloader.cleanup_partial_artifacts(tmp_path, "001 - Song")
    assert removed == 1
    assert [p.name for p in tmp_path.iterdir()] == ["0011 - Song.m4a.part"]
