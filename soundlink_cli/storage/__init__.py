"""
Storage Layer.

This package handles all data persistence, including configuration files,
the link cache, lifetime statistics and the undo trash with its manifests.
"""

from .cache import LinkCache
from .config_manager import ConfigManager
from .stats_store import StatsStore
from .trash import ManifestStore, UndoJournal, UndoTrash

__all__ = [
    "ConfigManager",
    "LinkCache",
    "ManifestStore",
    "StatsStore",
    "UndoJournal",
    "UndoTrash",
]
