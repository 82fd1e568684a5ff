"""
Defines the command-line interface for the application using Typer.
"""

import asyncio
import logging
import os
import signal
import sys
import time
from collections.abc import Callable
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler

from soundlink_cli import __version__
from soundlink_cli.core.download_manager import DownloadManager
from soundlink_cli.core.library import ActionResult, Library, scan_library, scan_playlist
from soundlink_cli.core.process_runner import ExecutorPool, ProcessRunner
from soundlink_cli.exceptions import SoundLinkError
from soundlink_cli.media.silence import SilenceTrimmer
from soundlink_cli.storage.cache import LinkCache
from soundlink_cli.storage.config_manager import CONFIG_FILE_NAME, ConfigManager
from soundlink_cli.storage.stats_store import StatsStore

from .formatters import (
    print_config,
    print_library_table,
    print_playlist_tracks,
    print_stats_table,
    print_summary_panel,
    print_trim_summary,
    print_undo_list,
    print_validation_table,
)
from .progress_manager import ProgressManager

console = Console()

logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[
        RichHandler(
            console=console,
            rich_tracebacks=True,
            show_path=False,
            show_level=False,
            markup=True,
        )
    ],
)
log = logging.getLogger("soundlink_cli")

app = typer.Typer(
    name="soundlink",
    help=(
        "Turn Spotify and media links into organised audio playlists. Use"
        " 'soundlink <command> --help' for more info."
    ),
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
    add_completion=False,
)


def get_config_dir() -> Path:
    if os.name == "nt":
        base_dir = Path(os.getenv("APPDATA", "~\\AppData\\Roaming"))
    else:
        base_dir = Path(os.getenv("XDG_CONFIG_HOME", "~/.config"))
    return base_dir.expanduser() / "soundlink-cli"


CONFIG_DIR = get_config_dir()
CONFIG_FILE = CONFIG_DIR / CONFIG_FILE_NAME


def _install_interrupt_handler(on_interrupt: Callable[[], None]) -> bool:
    """Routes Ctrl+C to ``on_interrupt`` instead of aborting the event loop."""
    try:
        asyncio.get_running_loop().add_signal_handler(signal.SIGINT, on_interrupt)
        return True
    except (NotImplementedError, RuntimeError):
        log.debug("SIGINT handler unavailable; Ctrl+C will abort the run.")
        return False


def _remove_interrupt_handler(installed: bool) -> None:
    if installed:
        asyncio.get_running_loop().remove_signal_handler(signal.SIGINT)


def _load_config(cli_options: dict | None = None):
    try:
        return ConfigManager(CONFIG_FILE).load_config(cli_options)
    except SoundLinkError as e:
        console.print(f"[bold red]Error: {e}[/bold red]")
        raise typer.Exit(code=1) from e


def _report_action(result: ActionResult, success_message: str) -> None:
    if result.success:
        console.print(f"[green]✓ {success_message}[/green]")
        return
    console.print(f"[red]✗ {result.error}[/red]")
    raise typer.Exit(code=1)


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase logging verbosity (-vv for debug).",
    ),
    version: bool = typer.Option(
        False, "--version", help="Show version and exit.", is_eager=True
    ),
    show_config: bool = typer.Option(
        False, "--show-config", help="Display the current configuration."
    ),
    clear_cache: bool = typer.Option(
        False, "--clear-cache", help="Clear the link cache and exit."
    ),
):
    """SoundLink CLI"""
    if version:
        console.print(f"[bold]soundlink-cli[/bold] version [cyan]{__version__}[/cyan]")
        raise typer.Exit()

    log_level = "INFO"
    if verbose >= 2:
        log_level = "DEBUG"
    logging.getLogger("soundlink_cli").setLevel(log_level)

    if clear_cache:
        console.print("[cyan]Clearing link cache...[/cyan]")
        removed = LinkCache(CONFIG_DIR).clear()
        console.print(
            f"[green]✓ Cache cleared successfully ({removed} entries removed).[/green]"
        )
        raise typer.Exit()

    if show_config:
        if not CONFIG_FILE.is_file():
            console.print(
                "[red]✗ Config file not found.[/] Run [cyan]soundlink init[/cyan]"
                " first."
            )
            raise typer.Exit(code=1)
        config_manager = ConfigManager(CONFIG_FILE)
        config_manager.load_config()
        print_config(CONFIG_FILE, config_manager._get_config_as_dict())
        raise typer.Exit()

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@app.command()
def init(
    client_id: str = typer.Option(
        "", "--client-id", help="Spotify application client id."
    ),
    client_secret: str = typer.Option(
        "", "--client-secret", help="Spotify application client secret."
    ),
    downloads_path: str | None = typer.Option(
        None, "--downloads-path", "-o", help="Where playlists are downloaded to."
    ),
    force: bool = typer.Option(
        False, "--force", "-f", help="Overwrite an existing configuration without asking."
    ),
):
    """Create the configuration file."""
    if (
        CONFIG_FILE.exists()
        and not force
        and not typer.confirm("Configuration file already exists. Overwrite it?")
    ):
        raise typer.Abort()

    settings = {
        "spotify_client_id": client_id,
        "spotify_client_secret": client_secret,
    }
    if downloads_path:
        settings["downloads_path"] = str(Path(downloads_path).expanduser())

    ConfigManager(CONFIG_FILE).save_new_config(settings)
    if client_id and client_secret:
        console.print("[green]✓ Spotify credentials saved.[/green]")
    else:
        console.print(
            "[yellow]⚠️  No Spotify credentials given; only direct media links"
            " will download.[/yellow]"
        )
    console.print(f"\n[bold green]✓ Configuration saved to '{CONFIG_FILE}'[/bold green]")
    console.print("Ready to download! Try: [cyan]soundlink download <URL>[/cyan]")


def _read_urls_from_stdin() -> list[str]:
    """Reads URLs from stdin, one per line."""
    if sys.stdin.isatty():
        console.print(
            "[yellow]⚠️  No input detected on stdin. Please pipe URLs or redirect"
            " a file.[/yellow]"
        )
        console.print(
            "[dim]Examples:[/dim]\n"
            "  [cyan]cat urls.txt | soundlink download --stdin[/cyan]\n"
            "  [cyan]soundlink download --stdin < urls.txt[/cyan]"
        )
        raise typer.Exit(code=1)

    urls = []
    console.print("[dim]Reading URLs from stdin...[/dim]")
    for line in sys.stdin:
        line = line.strip()
        if line and not line.startswith("#"):
            urls.append(line)

    if not urls:
        console.print("[yellow]⚠️  No valid URLs found in stdin.[/yellow]")
        raise typer.Exit(code=1)

    console.print(f"[green]✓ Read {len(urls)} URLs from stdin.[/green]")
    return urls


@app.command(name="download")
def download_command(
    urls: list[str] | None = typer.Argument(  # noqa: B008
        None, help="One or more Spotify track/album/playlist links or media links."
    ),
    threads: int | None = typer.Option(
        None, "-w", "--threads", help="Number of parallel workers (1-10)."
    ),
    audio_format: str | None = typer.Option(
        None, "-f", "--format", help="Audio format to extract (m4a, mp3, opus, ...)."
    ),
    normalize: bool | None = typer.Option(
        None,
        "--normalize/--no-normalize",
        help="Apply loudness normalization while extracting audio.",
    ),
    no_prompt: bool | None = typer.Option(
        None,
        "--no-prompt/--prompt",
        help="Skip tracks without a match instead of asking for a link.",
    ),
    tolerance: int | None = typer.Option(
        None,
        "--tolerance",
        help="Accepted difference in seconds between catalog and search durations.",
    ),
    stdin: bool = typer.Option(
        False, "--stdin", help="Read URLs from standard input, one URL per line."
    ),
):
    """Download tracks and playlists."""
    if stdin and urls:
        console.print(
            "[yellow]⚠️  Both URLs and --stdin provided. Using --stdin only.[/yellow]"
        )
        urls = _read_urls_from_stdin()
    elif stdin:
        urls = _read_urls_from_stdin()
    elif not urls:
        console.print(
            "[red]✗ No URLs provided.[/red] "
            "Use: [cyan]soundlink download <URL>[/cyan] or [cyan]--stdin[/cyan]"
        )
        raise typer.Exit(code=1)

    cli_options = {
        key: value
        for key, value in {
            "source_urls": urls,
            "download_threads": threads,
            "audio_format": audio_format,
            "normalize_volume": normalize,
            "skip_manual_link_prompt": no_prompt,
            "duration_tolerance_seconds": tolerance,
        }.items()
        if value is not None
    }
    config = _load_config(cli_options)

    async def _download_async():
        async with ProgressManager(
            console=console, interactive=not config.skip_manual_link_prompt
        ) as progress_manager:
            manager = DownloadManager.from_config(config, progress_manager)
            progress_manager.attach_broker(manager.broker)
            console.print("[bold cyan]🎵 Starting download session...[/bold cyan]")

            installed = _install_interrupt_handler(manager.cancel)
            start_time = time.monotonic()
            try:
                result = await manager.execute_downloads()
            finally:
                _remove_interrupt_handler(installed)
            duration = time.monotonic() - start_time
            progress_stats = progress_manager.get_statistics()

        print_summary_panel(result, duration, progress_stats)
        if result.cancelled:
            raise typer.Exit(code=130)

    asyncio.run(_download_async())


@app.command(name="trim-silence")
def trim_silence(
    folder: Path | None = typer.Argument(  # noqa: B008
        None, help="Library folder to scan. Defaults to the configured playlists path."
    ),
    threshold: int | None = typer.Option(
        None,
        "--threshold",
        "-t",
        help="Silence threshold in dB below full scale (10-80).",
    ),
):
    """Remove leading and trailing silence from every track in a folder."""
    config = _load_config()
    root = folder or Path(config.playlists_path or config.downloads_path)
    if not root.is_dir():
        console.print(f"[red]✗ Folder not found: {root}[/red]")
        raise typer.Exit(code=1)
    threshold_db = threshold if threshold is not None else config.silence_trim_threshold_db

    async def _trim_async():
        library = Library.for_config_dir(CONFIG_DIR)
        runner = ProcessRunner()
        async with ProgressManager(console=console, interactive=False) as progress:
            trimmer = SilenceTrimmer(
                runner,
                library.trash,
                library.manifests,
                ffmpeg_location=config.ffmpeg_location,
                on_progress=progress.on_trim_progress,
            )
            installed = _install_interrupt_handler(runner.cancel)
            try:
                job = await trimmer.run(root, threshold_db)
            finally:
                _remove_interrupt_handler(installed)

        library.record(job.undo_action)
        print_trim_summary(job)
        if job.undo_action:
            console.print("[dim]Run [cyan]soundlink undo[/cyan] to restore the originals.[/dim]")

    asyncio.run(_trim_async())


@app.command()
def delete(
    path: Path = typer.Argument(..., help="Track file or playlist folder to delete."),  # noqa: B008
):
    """Move a track or playlist to the undo trash."""
    library = Library.for_config_dir(CONFIG_DIR)
    if path.is_dir():
        result = asyncio.run(library.delete_playlist(path))
    else:
        result = asyncio.run(library.delete_track(path))
    _report_action(result, f"Deleted '{path.name}'. Run 'soundlink undo' to restore it.")


@app.command()
def rename(
    path: Path = typer.Argument(..., help="Track file or playlist folder to rename."),  # noqa: B008
    new_name: str = typer.Argument(..., help="The new name, without extension."),
):
    """Rename a track or playlist."""
    library = Library.for_config_dir(CONFIG_DIR)
    if path.is_dir():
        result = asyncio.run(library.rename_playlist(path, new_name))
    else:
        result = asyncio.run(library.rename_track(path, new_name))
    new_path = result.new_path.name if result.new_path else new_name
    _report_action(result, f"Renamed '{path.name}' to '{new_path}'.")


@app.command()
def undo(
    list_actions: bool = typer.Option(
        False, "--list", "-l", help="Show the undo history instead of undoing."
    ),
):
    """Undo the most recent delete, rename, move or silence trim."""
    library = Library.for_config_dir(CONFIG_DIR)
    if list_actions:
        print_undo_list(library.journal.entries())
        return

    result = asyncio.run(library.undo_last())
    if result.retryable:
        if result.restored_count:
            console.print(
                f"[yellow]⚠️  Restored {result.restored_count} track(s); "
                f"some could not be restored:[/yellow] {result.error}"
            )
        else:
            console.print(f"[yellow]⚠️  Could not undo:[/yellow] {result.error}")
        console.print(
            "[dim]The action stays in the undo history. Fix the conflict and run"
            " undo again.[/dim]"
        )
        raise typer.Exit(code=1)

    description = result.undo_action.describe() if result.undo_action else ""
    if result.restored_count:
        description += f" ({result.restored_count} track(s) restored)"
    _report_action(result, f"Undone: {description}")


def _library_root() -> Path:
    config = _load_config()
    return Path(config.playlists_path or config.downloads_path)


def _playlist_dir(playlist: str) -> Path:
    """Accepts a playlist folder path or a playlist name under the library root."""
    candidate = Path(playlist).expanduser()
    if candidate.is_dir():
        return candidate
    return _library_root() / playlist


@app.command()
def move(
    path: Path = typer.Argument(..., help="Track file to move."),  # noqa: B008
    playlist: str = typer.Argument(
        ..., help="Destination playlist folder, or its name in the library."
    ),
):
    """Move a track into another playlist."""
    destination = _playlist_dir(playlist)
    library = Library.for_config_dir(CONFIG_DIR)
    result = asyncio.run(library.move_track(path, destination))
    _report_action(result, f"Moved '{path.name}' to '{destination.name}'.")


@app.command(name="list")
def list_library(
    playlist: str | None = typer.Argument(
        None, help="Show the tracks of this playlist (folder path or name)."
    ),
):
    """List library playlists, or the tracks of one playlist."""
    if playlist is not None:
        folder = _playlist_dir(playlist)
        if not folder.is_dir():
            console.print(f"[red]✗ Playlist not found: {folder}[/red]")
            raise typer.Exit(code=1)
        print_playlist_tracks(asyncio.run(scan_playlist(folder)))
        return

    root = _library_root()
    if not root.is_dir():
        console.print(f"[red]✗ Library folder not found: {root}[/red]")
        raise typer.Exit(code=1)
    print_library_table(root, asyncio.run(scan_library(root)))


@app.command()
def validate():
    """Validate the current configuration."""
    try:
        config = ConfigManager(CONFIG_FILE).load_config()
    except SoundLinkError as e:
        console.print(f"[red]✗ Configuration is invalid: {e}[/red]")
        raise typer.Exit(code=1) from e
    print_validation_table(config, ExecutorPool.discover(config.ytdlp_paths).executables)


@app.command()
def stats(
    reset: bool = typer.Option(
        False, "--reset", help="Reset lifetime statistics and timing averages."
    ),
):
    """Show lifetime download statistics."""
    store = StatsStore(CONFIG_DIR)
    if reset:
        if not typer.confirm("Reset all statistics and learned timings?"):
            raise typer.Abort()
        store.reset()
        console.print("[green]✓ Statistics reset.[/green]")
        return
    print_stats_table(store.stats)
