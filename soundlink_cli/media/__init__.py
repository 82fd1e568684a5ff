"""
Media Processing Layer.

This package is responsible for operations on downloaded audio files,
including integrity validation, duration lookups and in-place silence trimming.
"""

from .integrity import FileIntegrityChecker
from .metadata import read_duration_seconds
from .silence import SilenceTrimmer

__all__ = ["FileIntegrityChecker", "SilenceTrimmer", "read_duration_seconds"]
