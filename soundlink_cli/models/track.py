"""
Data structures passed between the orchestrator, the resolver and the
download phase.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Protocol

log = logging.getLogger(__name__)


class LinkKind(Enum):
    """Classification of a raw input link."""

    CATALOG = "catalog"
    DIRECT = "direct"


class TrackKind(Enum):
    """How a queued track is turned into a media link."""

    SEARCH = "search"
    DIRECT = "direct"


class SourceTag(Enum):
    """Where a resolved media link came from."""

    PROVIDER_A = "youtube"
    PROVIDER_B = "soundcloud"
    MANUAL = "manual"
    CACHE = "cache"
    DIRECT = "direct"


class Phase(Enum):
    """The two phases of a batch run."""

    RESOLVE = "finding-links"
    DOWNLOAD = "downloading"


@dataclass(frozen=True)
class TrackDescriptor:
    """A single unit of work, immutable once enqueued."""

    query_or_link: str
    display_name: str
    position_index: int
    kind: TrackKind
    folder_name: str
    queue_position: int = 1
    artist: str = ""
    expected_duration_ms: int | None = None


@dataclass(frozen=True)
class ResolvedItem:
    """A track with a playable media link, ready for the download phase."""

    media_link: str
    display_name: str
    position_index: int
    source_tag: SourceTag
    output_dir: Path
    queue_position: int = 1


@dataclass
class ProgressUpdate:
    """Batch-level progress message sent to the progress channel."""

    progress: float
    eta_ms: float | None
    eta: str
    phase: Phase
    status_text: str
    total_tracks: int = 0
    track_progress: float | None = None


@dataclass
class ManualLinkRequest:
    """A request for a human-supplied link, correlated by ``request_id``."""

    request_id: int
    track_name: str
    query: str


@dataclass
class TrimProgress:
    """Progress message emitted by the silence-trim job."""

    job_id: str
    status: str
    processed_count: int = 0
    total_count: int = 0
    modified_count: int = 0
    failed_count: int = 0
    failures: list[dict[str, str]] = field(default_factory=list)


class ProgressListener(Protocol):
    """Receives every event a batch run or library job reports."""

    def on_status(self, message: str) -> None: ...

    def on_progress(self, update: ProgressUpdate) -> None: ...

    def on_manual_link_request(self, request: ManualLinkRequest) -> None: ...

    def on_trim_progress(self, progress: TrimProgress) -> None: ...


class LoggingProgressListener:
    """Routes status lines to the log and drops everything else."""

    def on_status(self, message: str) -> None:
        log.info(message)

    def on_progress(self, update: ProgressUpdate) -> None:
        pass

    def on_manual_link_request(self, request: ManualLinkRequest) -> None:
        log.debug(f"Manual link requested for '{request.track_name}'.")

    def on_trim_progress(self, progress: TrimProgress) -> None:
        log.debug(
            f"Trim {progress.status}: {progress.processed_count}/{progress.total_count}"
        )
