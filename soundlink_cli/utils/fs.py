"""
Crash-safe file writing helpers.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

log = logging.getLogger(__name__)


def atomic_write_text(path: Path, data: str) -> None:
    """
    Writes ``data`` to a temp file beside ``path`` and renames it into place,
    so readers only ever see the old or the complete new content.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_name = tempfile.mkstemp(
        prefix=f"{path.name}.", suffix=".tmp", dir=path.parent
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_name, path)
    except BaseException:
        try:
            os.unlink(temp_name)
        except OSError as e:
            log.debug(f"Failed to clean up temp file {temp_name}: {e}")
        raise


def atomic_write_json(path: Path, payload: Any) -> None:
    """Serializes ``payload`` as indented JSON and writes it atomically."""
    atomic_write_text(path, json.dumps(payload, indent=2, ensure_ascii=False))


def read_json(path: Path, default: Any = None) -> Any:
    """Reads a JSON file, returning ``default`` when it is missing or corrupt."""
    if not path.is_file():
        return default
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except (json.JSONDecodeError, OSError, UnicodeDecodeError) as e:
        log.warning(f"[yellow]Could not read {path.name}:[/] {e}")
        return default
