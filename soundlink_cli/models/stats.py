"""
Models for timing samples, lifetime counters and per-batch results.
"""

import math
from dataclasses import dataclass, field
from pathlib import Path

from pydantic import BaseModel, Field, field_validator


class TimingPair(BaseModel):
    """A running (sample count, cumulative mean) pair."""

    samples: int = 0
    average_ms: float = 0.0

    @field_validator("samples", mode="before")
    @classmethod
    def validate_samples(cls, v) -> int:
        """Coerces corrupt or negative counts to zero."""
        try:
            v = int(v)
        except (TypeError, ValueError):
            return 0
        return v if v > 0 else 0

    @field_validator("average_ms", mode="before")
    @classmethod
    def validate_average(cls, v) -> float:
        """Coerces non-finite or negative averages to zero."""
        try:
            v = float(v)
        except (TypeError, ValueError):
            return 0.0
        return v if math.isfinite(v) and v > 0 else 0.0

    @property
    def has_samples(self) -> bool:
        return self.samples > 0 and self.average_ms > 0

    def add(self, sample_ms: float) -> None:
        """Folds a new sample into the cumulative mean."""
        n = self.samples
        self.average_ms = (
            sample_ms if n == 0 else (self.average_ms * n + sample_ms) / (n + 1)
        )
        self.samples = n + 1


class TimingStats(BaseModel):
    """The four independent timing pairs used for ETA estimation."""

    resolve_item: TimingPair = Field(default_factory=TimingPair)
    resolve_queue: TimingPair = Field(default_factory=TimingPair)
    download_item: TimingPair = Field(default_factory=TimingPair)
    download_queue: TimingPair = Field(default_factory=TimingPair)


class LifetimeStats(BaseModel):
    """Counters accumulated across every successful batch run."""

    total_songs_downloaded: int = 0
    songs_failed: int = 0
    downloads_initiated: int = 0
    total_links_processed: int = 0
    catalog_links_processed: int = 0
    direct_links_processed: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    timing: TimingStats = Field(default_factory=TimingStats)


@dataclass
class BatchResult:
    """Outcome of a single ``DownloadManager.execute_downloads`` call."""

    tracks_total: int = 0
    tracks_downloaded: int = 0
    tracks_failed: int = 0
    catalog_links: int = 0
    direct_links: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    cancelled: bool = False
    files: list[Path] = field(default_factory=list)
    first_playlist_name: str | None = None

    @property
    def links_processed(self) -> int:
        return self.tracks_total
