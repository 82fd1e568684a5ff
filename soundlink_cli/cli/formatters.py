"""
Functions for formatting and displaying data in the console using Rich.
"""

from pathlib import Path
from typing import Any

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from soundlink_cli.core.library import PlaylistInfo
from soundlink_cli.media.silence import TrimJobResult
from soundlink_cli.models.config import AUDIO_FORMATS, DownloadConfig
from soundlink_cli.models.stats import BatchResult, LifetimeStats, TimingPair
from soundlink_cli.storage.trash import UndoAction
from soundlink_cli.utils.formatting import format_duration

SECRET_KEYS = ("spotify_client_secret",)


def format_error_with_suggestions(
    error: Exception, context: dict | None = None
) -> Panel:
    """Formats an error with actionable suggestions into a Rich Panel."""
    error_type = type(error).__name__
    error_msg = str(error)

    suggestions_map = {
        "ConfigurationError": [
            "• Run `soundlink init` to create a configuration file.",
            "• Check the values with `soundlink --show-config`.",
            "• Run `soundlink validate` to see which setting is rejected.",
        ],
        "CatalogError": [
            "• Verify the Spotify client id and secret in the configuration file.",
            "• Private playlists cannot be read with app credentials.",
            "• Check that the link points to a track, album or playlist.",
        ],
        "ProcessFailedError": [
            "• Make sure yt-dlp and ffmpeg are installed and on your PATH.",
            "• Set `ytdlp_paths` or `ffmpeg_location` in the configuration file.",
            "• Update yt-dlp; extraction breaks when sites change.",
        ],
        "ResolutionError": [
            "• Increase the tolerance with `--tolerance`.",
            "• Paste a link manually when prompted (omit `--no-prompt`).",
        ],
        "ManifestError": [
            "• The undo data for this action is gone or damaged.",
            "• Run `soundlink undo --list` to see what can still be undone.",
        ],
        "RestoreConflictError": [
            "• Something now occupies the original location.",
            "• Move or rename it, then run `soundlink undo` again.",
        ],
        "JobAlreadyRunningError": [
            "• Wait for the running silence trim to finish.",
        ],
    }

    suggestions = suggestions_map.get(
        error_type, ["• Run the command with -vv for detailed logs."]
    )

    error_text = Text()
    error_text.append(f"{error_type}: ", style="bold red")
    error_text.append(error_msg)

    suggestion_text = Text("\n".join(suggestions))

    content = Table.grid(padding=(1, 0))
    content.add_row(error_text)
    content.add_row()
    content.add_row(Text("Suggestions", style="bold yellow"))
    content.add_row(suggestion_text)

    if context:
        content.add_row()
        content.add_row(Text(f"Context: {context}", style="dim"))

    return Panel(
        content,
        title="[bold red]An Error Occurred[/bold red]",
        border_style="red",
        expand=False,
    )


def print_config(config_path: Path, config_data: dict[str, Any]):
    """Displays the current configuration, hiding sensitive data."""
    console = Console()
    content = ""
    for key, value in config_data.items():
        if key in SECRET_KEYS and value:
            value = "[hidden]"
        elif isinstance(value, list):
            value = ", ".join(value)
        content += f"{key} = {escape(str(value))}\n"

    console.print(
        Panel(
            content.strip(),
            title=f"Configuration ([dim]{config_path}[/dim])",
            border_style="cyan",
        )
    )


def print_validation_table(config: DownloadConfig, executables: list[str]):
    """Displays a summary of the current settings."""
    console = Console()
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold cyan")
    table.add_column()

    format_info = AUDIO_FORMATS.get(config.audio_format, {})
    color = format_info.get("color", "white")

    table.add_row(
        "Spotify Credentials:",
        "[green]✓ Set[/green]"
        if config.has_catalog_credentials
        else "[yellow]✗ Missing (catalog links are skipped)[/yellow]",
    )
    table.add_row(
        "Audio Format:", f"[{color}]{format_info.get('name', config.audio_format)}[/]"
    )
    table.add_row("Download Threads:", str(config.download_threads))
    table.add_row(
        "yt-dlp Executables:",
        ", ".join(escape(e) for e in executables) if executables else "[red]none found[/red]",
    )
    table.add_row("Duration Tolerance:", f"±{config.duration_tolerance_seconds}s")
    table.add_row(
        "Manual Link Prompt:",
        "✗ Disabled" if config.skip_manual_link_prompt else "✓ Enabled",
    )
    table.add_row(
        "Volume Normalization:", "✓ Enabled" if config.normalize_volume else "✗ Disabled"
    )
    table.add_row(
        "Integrity Check:", "✓ Enabled" if config.verify_downloads else "✗ Disabled"
    )
    table.add_row("Silence Threshold:", f"-{config.silence_trim_threshold_db} dB")
    table.add_row("Downloads Path:", f"[dim]{escape(config.downloads_path)}[/dim]")
    if config.playlists_path:
        table.add_row("Playlists Path:", f"[dim]{escape(config.playlists_path)}[/dim]")

    console.print(
        Panel(
            table,
            title="[bold green]✓ Validated Settings[/bold green]",
            border_style="green",
        )
    )


def _timing_cell(pair: TimingPair) -> str:
    if not pair.has_samples:
        return "[dim]no samples[/dim]"
    return f"{format_duration(pair.average_ms / 1000)} [dim](n={pair.samples})[/dim]"


def _cache_cell(hits: int, misses: int) -> str:
    total = hits + misses
    if not total:
        return "[dim]no lookups[/dim]"
    return f"[green]{hits}[/green]/{total} hits ({hits / total * 100:.0f}%)"


def print_stats_table(stats: LifetimeStats):
    """Displays lifetime download statistics and the learned timing averages."""
    console = Console()

    table = Table(title="Lifetime Statistics", show_header=False)
    table.add_column(style="bold cyan")
    table.add_column(justify="right", style="green")
    table.add_row("Songs downloaded", str(stats.total_songs_downloaded))
    table.add_row("Songs failed", f"[red]{stats.songs_failed}[/red]")
    table.add_row("Download runs", str(stats.downloads_initiated))
    table.add_row("Tracks processed", str(stats.total_links_processed))
    table.add_row("Catalog links", str(stats.catalog_links_processed))
    table.add_row("Direct links", str(stats.direct_links_processed))
    table.add_row("Link cache", _cache_cell(stats.cache_hits, stats.cache_misses))
    console.print(table)

    timing = Table(title="Average Durations")
    timing.add_column("Phase", style="cyan")
    timing.add_column("Per Track", justify="right")
    timing.add_column("Per Queue", justify="right")
    timing.add_row(
        "Finding links",
        _timing_cell(stats.timing.resolve_item),
        _timing_cell(stats.timing.resolve_queue),
    )
    timing.add_row(
        "Downloading",
        _timing_cell(stats.timing.download_item),
        _timing_cell(stats.timing.download_queue),
    )
    console.print(timing)


def print_summary_panel(
    result: BatchResult, duration_s: float, progress_stats: dict | None = None
):
    """Displays the final summary of the download session."""
    console = Console()

    stats_table = Table(show_header=False, box=None, padding=(0, 2))
    stats_table.add_column(style="bold cyan", justify="right", width=20)
    stats_table.add_column(style="white", justify="left")

    stats_table.add_row(
        "✓ Downloaded:", f"[bold green]{result.tracks_downloaded}[/bold green]"
    )
    if result.tracks_failed > 0:
        stats_table.add_row("✗ Failed:", f"[bold red]{result.tracks_failed}[/bold red]")
    stats_table.add_row("Tracks:", str(result.tracks_total))

    link_sections = []
    if result.catalog_links:
        link_sections.append(f"{result.catalog_links} catalog")
    if result.direct_links:
        link_sections.append(f"{result.direct_links} direct")
    if link_sections:
        stats_table.add_row("Links:", " + ".join(link_sections))
    if result.cache_hits or result.cache_misses:
        stats_table.add_row("Link Cache:", _cache_cell(result.cache_hits, result.cache_misses))

    if progress_stats and progress_stats.get("manual_requests"):
        stats_table.add_row(
            "Manual Prompts:", f"[yellow]{progress_stats['manual_requests']}[/yellow]"
        )

    stats_table.add_row("", "")
    stats_table.add_row("Time Elapsed:", f"[blue]{format_duration(duration_s)}[/blue]")

    if result.tracks_downloaded > 0 and duration_s > 0:
        tracks_per_minute = (result.tracks_downloaded / duration_s) * 60
        stats_table.add_row(
            "Throughput:", f"[cyan]{tracks_per_minute:.1f} tracks/min[/cyan]"
        )

    if result.files:
        stats_table.add_row(
            "Saved To:", f"[dim]{escape(str(result.files[0].parent))}[/dim]"
        )

    if result.cancelled:
        title = "⚠️  [bold]Download Cancelled[/bold]"
        border_color = "yellow"
    elif result.tracks_failed and not result.tracks_downloaded:
        title = "✗ [bold]Download Failed[/bold]"
        border_color = "red"
    else:
        title = "🎵 [bold]Download Complete![/bold]"
        border_color = "green"

    console.print()
    console.print(
        Panel(
            stats_table,
            title=title,
            border_style=border_color,
            box=box.DOUBLE,
            expand=False,
            padding=(1, 2),
        )
    )
    console.print()


def print_trim_summary(job: TrimJobResult):
    """Displays the outcome of a silence-trim job."""
    console = Console()
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold cyan", justify="right")
    table.add_column()
    table.add_row("Tracks scanned:", str(job.total_count))
    table.add_row("Trimmed:", f"[green]{job.modified_count}[/green]")
    table.add_row("Threshold:", f"-{job.threshold_db} dB")
    if job.failed_count:
        table.add_row("Failed:", f"[red]{job.failed_count}[/red]")
    console.print(
        Panel(table, title="✂ [bold]Silence Trim[/bold]", border_style="cyan", expand=False)
    )

    if job.failures:
        failures = Table(title="Failures", box=box.SIMPLE)
        failures.add_column("Track", style="yellow")
        failures.add_column("Error", style="dim")
        for failure in job.failures:
            failures.add_row(
                escape(Path(failure["path"]).name), escape(failure["error"])
            )
        console.print(failures)


def print_undo_list(actions: list[UndoAction]):
    """Lists journaled actions, most recent first."""
    console = Console()
    if not actions:
        console.print("[dim]Nothing to undo.[/dim]")
        return
    table = Table(title="Undo History")
    table.add_column("#", style="dim", justify="right")
    table.add_column("Action", style="cyan")
    table.add_column("Recorded", style="dim")
    for i, action in enumerate(reversed(actions), 1):
        table.add_row(str(i), escape(action.describe()), action.created_at)
    console.print(table)


def _length_cell(seconds: float | None) -> str:
    return format_duration(seconds) if seconds else "[dim]?[/dim]"


def print_library_table(root: Path, playlists: list[PlaylistInfo]):
    """Lists the playlists under the library root with counts and lengths."""
    console = Console()
    if not playlists:
        console.print(f"[dim]No playlists found in {escape(str(root))}.[/dim]")
        return

    table = Table(title=f"Playlists in {escape(str(root))}")
    table.add_column("Playlist", style="cyan")
    table.add_column("Tracks", justify="right")
    table.add_column("Length", justify="right", style="green")
    for playlist in playlists:
        table.add_row(
            escape(playlist.name),
            str(playlist.track_count),
            _length_cell(playlist.total_seconds),
        )
    console.print(table)

    track_total = sum(p.track_count for p in playlists)
    console.print(
        f"[bold]{len(playlists)}[/bold] playlist(s), [bold]{track_total}[/bold] track(s), "
        f"{format_duration(sum(p.total_seconds for p in playlists))} in total."
    )


def print_playlist_tracks(playlist: PlaylistInfo):
    """Lists the tracks of one playlist with their durations."""
    console = Console()
    if not playlist.tracks:
        console.print(f"[dim]'{escape(playlist.name)}' has no tracks.[/dim]")
        return

    table = Table(title=escape(playlist.name))
    table.add_column("Track", style="cyan")
    table.add_column("Length", justify="right", style="green")
    for track in playlist.tracks:
        table.add_row(escape(track.name), _length_cell(track.duration_seconds))
    console.print(table)
    console.print(
        f"[bold]{playlist.track_count}[/bold] track(s), "
        f"{format_duration(playlist.total_seconds)} in total."
    )
