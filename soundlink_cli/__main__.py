"""
Console entry point: ``soundlink`` and ``python -m soundlink_cli`` both land
here. Errors that escape a command are rendered with recovery hints instead
of a traceback; ``--verbose`` runs still log the traceback at debug level.
"""

import asyncio
import logging
import os
import sys

import typer
from rich.console import Console

from soundlink_cli.cli.app import app
from soundlink_cli.cli.formatters import format_error_with_suggestions
from soundlink_cli.exceptions import SoundLinkError

log = logging.getLogger("soundlink_cli")


def _use_utf8_streams() -> None:
    """Windows consoles default to a legacy code page that cannot print emoji."""
    for stream in (sys.stdout, sys.stderr):
        reconfigure = getattr(stream, "reconfigure", None)
        if reconfigure is None:
            continue
        try:
            reconfigure(encoding="utf-8")
        except (TypeError, ValueError) as e:
            log.debug(f"Could not switch {stream!r} to UTF-8: {e}")


def _fail(console: Console, error: Exception, context: dict | None = None) -> None:
    console.print(f"\n{format_error_with_suggestions(error, context)}")
    sys.exit(1)


def main() -> None:
    if os.name == "nt":
        _use_utf8_streams()

    console = Console()
    try:
        app()
    except (typer.Exit, typer.Abort):
        return
    except (KeyboardInterrupt, asyncio.CancelledError):
        console.print("\n[yellow]⚠️  Interrupted. Tracks finished so far are kept.[/yellow]")
        sys.exit(0)
    except SoundLinkError as e:
        _fail(console, e)
    except Exception as e:
        log.debug("Unhandled error", exc_info=True)
        _fail(console, e, {"type": "Unexpected"})


if __name__ == "__main__":
    main()
