"""
A persistent, flat JSON table mapping search queries to resolved media links.
Lookups can be reported to a hit/miss callback for session and lifetime statistics.
"""

import logging
from collections.abc import Callable
from pathlib import Path

from soundlink_cli.utils.fs import atomic_write_json, read_json

log = logging.getLogger(__name__)


class LinkCache:
    """
    Read-through/write-through link cache. Entries never expire; the table is
    only emptied by an explicit ``clear()``.
    """

    FILE_NAME = "link_cache.json"

    def __init__(
        self,
        config_dir_path: Path,
        stats_callback: Callable[[bool], None] | None = None,
    ):
        """
        Initializes the cache and loads the table from disk.

        Args:
            config_dir_path: The directory where the cache file is stored.
            stats_callback: Optional callback to report cache hits (True) or
            misses (False).
        """
        self.cache_path = config_dir_path / self.FILE_NAME
        self.stats_callback = stats_callback
        self._entries: dict[str, str] = self._load()

    def _load(self) -> dict[str, str]:
        data = read_json(self.cache_path, default={})
        if not isinstance(data, dict):
            log.warning("[yellow]Link cache file has an unexpected shape; ignoring it.[/]")
            return {}
        return {k: v for k, v in data.items() if isinstance(k, str) and isinstance(v, str)}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, query: str) -> str | None:
        """Returns the cached link for an exact query string, if any."""
        link = self._entries.get(query)
        if self.stats_callback:
            self.stats_callback(link is not None)
        return link

    def put(self, query: str, link: str) -> None:
        """Stores a link and persists the full table immediately."""
        self._entries[query] = link
        self._save()

    def clear(self) -> int:
        """Removes every entry and returns how many were dropped."""
        count = len(self._entries)
        log.info("Clearing all link cache entries...")
        self._entries = {}
        self._save()
        return count

    def _save(self) -> None:
        try:
            atomic_write_json(self.cache_path, self._entries)
        except OSError as e:
            log.error(f"[red]Failed to save link cache:[/] {e}")
