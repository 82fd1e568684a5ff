"""
Data Models Layer.

This package contains the Pydantic models and dataclasses that define the core
data structures used throughout the application, such as configuration, track
descriptors and timing statistics.
"""

from .config import DownloadConfig
from .stats import BatchResult, LifetimeStats, TimingStats
from .track import ResolvedItem, SourceTag, TrackDescriptor, TrackKind

__all__ = [
    "BatchResult",
    "DownloadConfig",
    "LifetimeStats",
    "ResolvedItem",
    "SourceTag",
    "TimingStats",
    "TrackDescriptor",
    "TrackKind",
]
