"""
Online ETA model fed by historical timing samples and in-flight estimates.
"""

import logging
import math
from collections.abc import Iterable, Sequence
from enum import Enum

from soundlink_cli.models.stats import TimingPair, TimingStats
from soundlink_cli.models.track import Phase

log = logging.getLogger(__name__)


class Scope(Enum):
    """Whether a sample measures one item or a whole phase queue."""

    ITEM = "item"
    QUEUE = "queue"


def _is_positive(value: float | None) -> bool:
    return value is not None and math.isfinite(value) and value > 0


def blend_estimates(*estimates: float | None) -> float | None:
    """Returns the mean of the usable estimates, or ``None`` if there are none."""
    usable = [e for e in estimates if e is not None and math.isfinite(e) and e >= 0]
    if not usable:
        return None
    return sum(usable) / len(usable)


def in_flight_estimate(elapsed_ms: float, progress: float) -> float | None:
    """Projects an item's total duration from its elapsed time and progress."""
    if progress <= 0 or not _is_positive(elapsed_ms):
        return None
    return elapsed_ms / (progress / 100)


class TimingEstimator:
    """
    Maintains the four timing pairs and turns them into remaining-time
    estimates for a phase.
    """

    def __init__(self, stats: TimingStats | None = None):
        self.stats = stats if stats is not None else TimingStats()

    def _pair(self, phase: Phase, scope: Scope) -> TimingPair:
        if phase is Phase.RESOLVE:
            return (
                self.stats.resolve_item
                if scope is Scope.ITEM
                else self.stats.resolve_queue
            )
        return (
            self.stats.download_item if scope is Scope.ITEM else self.stats.download_queue
        )

    def record_sample(self, phase: Phase, scope: Scope, duration_ms: float) -> bool:
        """
        Folds a duration into the matching running average. Non-finite or
        non-positive samples are ignored.
        """
        if not _is_positive(duration_ms):
            return False
        self._pair(phase, scope).add(duration_ms)
        return True

    def estimate_remaining(
        self,
        phase: Phase,
        progress: Sequence[float],
        in_flight: Iterable[float | None] = (),
    ) -> float | None:
        """
        Estimates the milliseconds left in a phase from per-item progress
        percentages and the in-flight per-item duration estimates.
        """
        total = len(progress)
        if total == 0:
            return 0.0

        completed_fraction = sum(progress) / (total * 100)
        remaining_units = sum(max(0.0, 100 - p) / 100 for p in progress)

        item_pair = self._pair(phase, Scope.ITEM)
        effective_item_ms = None
        if item_pair.has_samples:
            effective_item_ms = item_pair.average_ms
        else:
            live = [e for e in in_flight if _is_positive(e)]
            if live:
                effective_item_ms = sum(live) / len(live)

        item_based = (
            remaining_units * effective_item_ms if effective_item_ms is not None else None
        )

        queue_pair = self._pair(phase, Scope.QUEUE)
        queue_based = (
            queue_pair.average_ms * max(0.0, 1 - completed_fraction)
            if queue_pair.has_samples
            else None
        )
        return blend_estimates(item_based, queue_based)

    def estimate_full_phase(self, phase: Phase, item_count: int) -> float | None:
        """Projects the duration of a phase in which nothing has started yet."""
        if item_count <= 0:
            return 0.0
        item_pair = self._pair(phase, Scope.ITEM)
        queue_pair = self._pair(phase, Scope.QUEUE)
        item_based = item_count * item_pair.average_ms if item_pair.has_samples else None
        queue_based = queue_pair.average_ms if queue_pair.has_samples else None
        return blend_estimates(item_based, queue_based)

    def estimate_batch_remaining(
        self,
        phase: Phase,
        progress: Sequence[float],
        in_flight: Iterable[float | None] = (),
    ) -> float | None:
        """
        Remaining time for the whole batch: during resolution, the resolve
        estimate plus a projection of the full download phase.
        """
        current = self.estimate_remaining(phase, progress, in_flight)
        if phase is Phase.DOWNLOAD:
            return current
        projected = self.estimate_full_phase(Phase.DOWNLOAD, len(progress))
        usable = [e for e in (current, projected) if e is not None and e >= 0]
        total = sum(usable)
        return total if total > 0 else None
