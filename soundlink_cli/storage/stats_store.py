"""
Persists lifetime counters and timing statistics between sessions.
"""

import logging
from pathlib import Path

from pydantic import ValidationError

from soundlink_cli.models.stats import BatchResult, LifetimeStats
from soundlink_cli.utils.fs import atomic_write_json, read_json

log = logging.getLogger(__name__)


class StatsStore:
    """Loads and saves ``stats.json`` in the config directory."""

    FILE_NAME = "stats.json"

    def __init__(self, config_dir_path: Path):
        self.stats_path = config_dir_path / self.FILE_NAME
        self.stats = self._load()

    def _load(self) -> LifetimeStats:
        data = read_json(self.stats_path, default=None)
        if not isinstance(data, dict):
            return LifetimeStats()
        try:
            return LifetimeStats.model_validate(data)
        except ValidationError as e:
            log.warning(f"[yellow]Ignoring invalid statistics file:[/] {e}")
            return LifetimeStats()

    def record_batch(self, result: BatchResult) -> None:
        """Folds a finished, non-cancelled batch into the lifetime counters."""
        if result.cancelled:
            return
        self.stats.downloads_initiated += 1
        self.stats.total_songs_downloaded += result.tracks_downloaded
        self.stats.songs_failed += result.tracks_failed
        self.stats.total_links_processed += result.links_processed
        self.stats.catalog_links_processed += result.catalog_links
        self.stats.direct_links_processed += result.direct_links
        self.stats.cache_hits += result.cache_hits
        self.stats.cache_misses += result.cache_misses

    def save(self) -> bool:
        try:
            atomic_write_json(self.stats_path, self.stats.model_dump(mode="json"))
            return True
        except OSError as e:
            log.warning(f"[yellow]Could not save statistics:[/] {e}")
            return False

    def reset(self) -> None:
        self.stats = LifetimeStats()
        self.save()
