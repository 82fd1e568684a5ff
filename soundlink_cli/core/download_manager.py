"""
The main orchestrator: expands links into tracks, resolves each track to a
media link, then downloads the resolved items, reporting progress throughout.
"""

import asyncio
import logging
import time
from collections import deque
from collections.abc import Callable
from pathlib import Path

from rich.markup import escape

from soundlink_cli.api.catalog import CatalogClient, SpotifyCatalog
from soundlink_cli.core.link_resolver import LinkResolver, ManualLinkBroker
from soundlink_cli.core.process_runner import (
    CancellationToken,
    ExecutorPool,
    ProcessRunner,
    YtDlp,
)
from soundlink_cli.core.timing import Scope, TimingEstimator, in_flight_estimate
from soundlink_cli.core.track_downloader import TrackDownloader
from soundlink_cli.exceptions import OperationCancelled, ProcessFailedError
from soundlink_cli.models.config import DownloadConfig
from soundlink_cli.models.stats import BatchResult
from soundlink_cli.models.track import (
    LinkKind,
    LoggingProgressListener,
    Phase,
    ProgressListener,
    ProgressUpdate,
    ResolvedItem,
    SourceTag,
    TrackDescriptor,
    TrackKind,
)
from soundlink_cli.storage.cache import LinkCache
from soundlink_cli.storage.stats_store import StatsStore
from soundlink_cli.utils.formatting import CALCULATING, format_eta
from soundlink_cli.utils.path import classify_link, create_dir, safe_name

log = logging.getLogger(__name__)

FINISHED_ETA = "less than a second remaining"

SOURCE_LABELS = {
    SourceTag.PROVIDER_A: "YouTube",
    SourceTag.PROVIDER_B: "SoundCloud",
    SourceTag.MANUAL: "manual",
    SourceTag.CACHE: "cached",
    SourceTag.DIRECT: "direct",
}


def compute_concurrency(configured_threads: int, executor_count: int) -> int:
    """Workers per phase: never more than there are yt-dlp executables."""
    return max(1, min(configured_threads, executor_count))


def _average(values: list[float]) -> float:
    return sum(values) / len(values) if values else 100.0


class DownloadManager:
    """Orchestrates the entire download process."""

    def __init__(
        self,
        config: DownloadConfig,
        resolver: LinkResolver,
        downloader: TrackDownloader,
        executor_pool: ExecutorPool,
        runner: ProcessRunner,
        catalog: CatalogClient | None = None,
        stats_store: StatsStore | None = None,
        broker: ManualLinkBroker | None = None,
        listener: ProgressListener | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.resolver = resolver
        self.downloader = downloader
        self.executor_pool = executor_pool
        self.runner = runner
        self.catalog = catalog
        self.stats_store = stats_store
        self.broker = broker
        self.listener = listener or LoggingProgressListener()
        self._clock = clock
        self.estimator = TimingEstimator()
        self._result: BatchResult | None = None

    @classmethod
    def from_config(
        cls, config: DownloadConfig, listener: ProgressListener | None = None
    ) -> "DownloadManager":
        """Wires the production collaborators from a validated configuration."""
        listener = listener or LoggingProgressListener()
        config_dir = Path(config.config_path)
        runner = ProcessRunner()
        pool = ExecutorPool.discover(config.ytdlp_paths)
        ytdlp = YtDlp(runner, pool)
        broker = ManualLinkBroker(on_request=listener.on_manual_link_request)
        cache = LinkCache(config_dir)
        resolver = LinkResolver(
            ytdlp,
            cache=cache,
            broker=broker,
            tolerance_ms=config.duration_tolerance_ms,
            skip_manual_prompt=config.skip_manual_link_prompt,
            on_status=listener.on_status,
        )
        downloader = TrackDownloader(
            ytdlp,
            audio_format=config.audio_format,
            normalize_volume=config.normalize_volume,
            ffmpeg_location=config.ffmpeg_location,
            verify_downloads=config.verify_downloads,
        )
        catalog = (
            SpotifyCatalog(config.spotify_client_id, config.spotify_client_secret)
            if config.has_catalog_credentials
            else None
        )
        manager = cls(
            config,
            resolver,
            downloader,
            pool,
            runner,
            catalog=catalog,
            stats_store=StatsStore(config_dir),
            broker=broker,
            listener=listener,
        )
        cache.stats_callback = manager.record_cache_lookup
        return manager

    @property
    def token(self) -> CancellationToken:
        return self.runner.token

    @property
    def concurrency(self) -> int:
        return compute_concurrency(self.config.download_threads, len(self.executor_pool))

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled

    def cancel(self) -> None:
        """Stops the run: no new work starts and live processes are terminated."""
        if self.token.cancelled:
            return
        self.runner.cancel()
        if self.broker is not None:
            self.broker.cancel_all()
        self.listener.on_status("Download cancelled by user.")

    def record_cache_lookup(self, hit: bool) -> None:
        """Counts a link cache hit or miss against the current run."""
        if self._result is None:
            return
        if hit:
            self._result.cache_hits += 1
        else:
            self._result.cache_misses += 1

    def _now_ms(self) -> float:
        return self._clock() * 1000

    async def execute_downloads(self, links: list[str] | None = None) -> BatchResult:
        """
        Runs a full batch over ``links`` (or the configured source URLs).

        Statistics are persisted only when the run was not cancelled.
        """
        links = list(dict.fromkeys(links if links is not None else self.config.source_urls))
        self.token.reset()
        result = BatchResult()
        self._result = result
        timing = (
            self.stats_store.stats.timing.model_copy(deep=True)
            if self.stats_store
            else None
        )
        self.estimator = TimingEstimator(timing)

        if not links:
            log.info("No source URLs provided. Nothing to do.")
            return result
        if len(self.executor_pool) == 0:
            raise ProcessFailedError(
                "No yt-dlp executable found. Install yt-dlp or set ytdlp_paths."
            )

        self.listener.on_status(f"Starting download queue with {len(links)} item(s)...")
        descriptors = await self._build_queue(links, result)
        if self.cancelled:
            return self._cancelled_result(result)

        result.tracks_total = len(descriptors)
        self.listener.on_status(
            f"Phase 1/2: Finding links for {len(descriptors)} track(s) across "
            f"{len(links)} queue item(s)..."
        )
        resolved = await self._resolve_phase(descriptors, result)
        if self.cancelled:
            return self._cancelled_result(result)

        if not resolved:
            self.listener.on_progress(
                ProgressUpdate(
                    progress=100,
                    eta_ms=0,
                    eta=FINISHED_ETA,
                    phase=Phase.RESOLVE,
                    status_text="No valid tracks found to download.",
                )
            )
            self.listener.on_status("No valid tracks found to download.")
            self._commit(result)
            return result

        self.listener.on_status(
            f"Phase 2/2: Downloading {len(resolved)} track(s) with "
            f"{self.concurrency} worker(s)..."
        )
        await self._download_phase(resolved, result)
        if self.cancelled:
            return self._cancelled_result(result)

        self.listener.on_progress(
            ProgressUpdate(
                progress=100,
                eta_ms=0,
                eta=FINISHED_ETA,
                phase=Phase.DOWNLOAD,
                status_text="Download queue finished.",
                total_tracks=len(resolved),
            )
        )
        self.listener.on_status("Task done.")
        self._commit(result)
        return result

    def _cancelled_result(self, result: BatchResult) -> BatchResult:
        result.cancelled = True
        log.debug("Batch cancelled; statistics were not persisted.")
        return result

    def _commit(self, result: BatchResult) -> None:
        if self.stats_store is None:
            return
        self.stats_store.stats.timing = self.estimator.stats
        self.stats_store.record_batch(result)
        self.stats_store.save()

    async def _build_queue(
        self, links: list[str], result: BatchResult
    ) -> list[TrackDescriptor]:
        """Expands raw links into track descriptors with contiguous indices."""
        descriptors: list[TrackDescriptor] = []
        total = len(links)
        for queue_index, link in enumerate(links):
            if self.cancelled:
                break
            queue_position = queue_index + 1
            self.listener.on_status(f"Queue {queue_position}/{total}: preparing link...")

            match classify_link(link):
                case LinkKind.CATALOG:
                    result.catalog_links += 1
                    descriptors.extend(
                        await self._expand_catalog_link(
                            link, queue_position, total, len(descriptors), result
                        )
                    )
                case LinkKind.DIRECT:
                    result.direct_links += 1
                    descriptors.append(
                        TrackDescriptor(
                            query_or_link=link,
                            display_name=link,
                            position_index=len(descriptors),
                            kind=TrackKind.DIRECT,
                            folder_name=f"Queue {queue_position}",
                            queue_position=queue_position,
                        )
                    )
        return descriptors

    async def _expand_catalog_link(
        self,
        link: str,
        queue_position: int,
        total: int,
        start_index: int,
        result: BatchResult,
    ) -> list[TrackDescriptor]:
        prefix = f"Queue {queue_position}/{total}"
        if self.catalog is None:
            self.listener.on_status(
                f"{prefix}: Spotify credentials are not set. Skipping {escape(link)}"
            )
            return []
        try:
            fetched = await self.catalog.fetch_tracks(link)
        except OperationCancelled:
            return []
        except Exception as e:
            self.listener.on_status(f"{prefix}: error processing Spotify link: {e}")
            log.debug(
                f"Catalog expansion failed for {link}",
                exc_info=log.getEffectiveLevel() == logging.DEBUG,
            )
            return []

        display_name = fetched.name or f"Playlist {queue_position}"
        folder_name = safe_name(display_name, f"Playlist {queue_position}")
        if fetched.name and result.first_playlist_name is None:
            result.first_playlist_name = fetched.name

        return [
            TrackDescriptor(
                query_or_link=track.query,
                display_name=track.name,
                position_index=start_index + offset,
                kind=TrackKind.SEARCH,
                folder_name=folder_name,
                queue_position=queue_position,
                artist=track.artist,
                expected_duration_ms=track.duration_ms,
            )
            for offset, track in enumerate(fetched.tracks)
        ]

    async def _resolve_one(self, descriptor: TrackDescriptor) -> ResolvedItem:
        if descriptor.kind is TrackKind.SEARCH:
            resolution = await self.resolver.resolve_query(
                descriptor.query_or_link,
                descriptor.display_name,
                descriptor.expected_duration_ms,
            )
            media_link, source_tag = resolution.link, resolution.source_tag
            display_name = descriptor.display_name
            folder_name = descriptor.folder_name
        else:
            media_link, source_tag = descriptor.query_or_link, SourceTag.DIRECT
            title = await self.resolver.fetch_title(descriptor.query_or_link)
            display_name = title or descriptor.display_name
            fallback = f"Queue {descriptor.queue_position}"
            folder_name = safe_name(title, fallback) if title else fallback

        output_dir = Path(self.config.downloads_path) / folder_name
        create_dir(output_dir)
        return ResolvedItem(
            media_link=media_link,
            display_name=display_name,
            position_index=descriptor.position_index,
            source_tag=source_tag,
            output_dir=output_dir,
            queue_position=descriptor.queue_position,
        )

    def _broadcast_resolve(
        self,
        progress: list[float],
        in_flight: list[float | None],
        active: TrackDescriptor | None = None,
    ) -> None:
        overall = min(100.0, _average(progress) * 0.5) if progress else 0.0
        eta_ms = self.estimator.estimate_batch_remaining(Phase.RESOLVE, progress, in_flight)
        has_eta = eta_ms is not None and eta_ms > 0
        self.listener.on_progress(
            ProgressUpdate(
                progress=overall,
                eta_ms=eta_ms if has_eta else None,
                eta=format_eta(eta_ms) if has_eta else CALCULATING,
                phase=Phase.RESOLVE,
                status_text=(
                    f"Finding links: {active.display_name}"
                    if active
                    else f"Finding links for {len(progress)} track(s)..."
                ),
                total_tracks=len(progress),
                track_progress=progress[active.position_index] if active else None,
            )
        )

    async def _resolve_phase(
        self, descriptors: list[TrackDescriptor], result: BatchResult
    ) -> list[ResolvedItem]:
        total = len(descriptors)
        queue = deque(descriptors)
        progress = [0.0] * total
        in_flight: list[float | None] = [None] * total
        resolved: list[ResolvedItem] = []
        phase_started = self._now_ms()

        self._broadcast_resolve(progress, in_flight)

        async def worker() -> None:
            while queue:
                if self.cancelled:
                    return
                descriptor = queue.popleft()
                started = self._now_ms()
                self._broadcast_resolve(progress, in_flight, descriptor)
                label = (
                    f"[Queue {descriptor.queue_position}] "
                    f"({descriptor.position_index + 1}/{total})"
                )
                try:
                    item = await self._resolve_one(descriptor)
                    resolved.append(item)
                    if item.source_tag is SourceTag.DIRECT:
                        self.listener.on_status(
                            f"🔗 {label} Found title: {item.display_name}"
                        )
                    else:
                        self.listener.on_status(
                            f"🔗 {label} Found {SOURCE_LABELS[item.source_tag]} "
                            f"link for: {item.display_name}"
                        )
                except OperationCancelled:
                    return
                except Exception as e:
                    if self.cancelled:
                        return
                    result.tracks_failed += 1
                    self.listener.on_status(
                        f"❌ {label} Failed to find link for "
                        f'"{descriptor.display_name}": {e}'
                    )
                    log.debug(
                        f"Resolution failed for '{descriptor.display_name}'",
                        exc_info=log.getEffectiveLevel() == logging.DEBUG,
                    )
                finally:
                    if not self.cancelled:
                        self.estimator.record_sample(
                            Phase.RESOLVE, Scope.ITEM, self._now_ms() - started
                        )
                        progress[descriptor.position_index] = 100.0
                        self._broadcast_resolve(progress, in_flight, descriptor)

        await self._gather_workers(worker)

        if not self.cancelled and total > 0:
            self.estimator.record_sample(
                Phase.RESOLVE, Scope.QUEUE, self._now_ms() - phase_started
            )
        return sorted(resolved, key=lambda item: item.position_index)

    def _broadcast_download(
        self,
        progress: list[float],
        in_flight: list[float | None],
        active: ResolvedItem | None = None,
        active_progress: float | None = None,
    ) -> None:
        overall = min(100.0, 50 + _average(progress) * 0.5)
        eta_ms = self.estimator.estimate_remaining(Phase.DOWNLOAD, progress, in_flight)
        self.listener.on_progress(
            ProgressUpdate(
                progress=overall,
                eta_ms=eta_ms,
                eta=format_eta(eta_ms) if eta_ms is not None else CALCULATING,
                phase=Phase.DOWNLOAD,
                status_text=(
                    f"Downloading: {active.display_name} {round(active_progress or 0)}%"
                    if active
                    else f"Downloading {len(progress)} track(s)..."
                ),
                total_tracks=len(progress),
                track_progress=active_progress,
            )
        )

    async def _download_phase(
        self, items: list[ResolvedItem], result: BatchResult
    ) -> None:
        total = len(items)
        queue = deque(enumerate(items))
        progress = [0.0] * total
        in_flight: list[float | None] = [None] * total
        finished: list[tuple[int, Path]] = []
        phase_started = self._now_ms()

        self._broadcast_download(progress, in_flight)

        async def worker() -> None:
            while queue:
                if self.cancelled:
                    return
                slot, item = queue.popleft()
                started = self._now_ms()
                label = f"[Queue {item.queue_position}] [{item.position_index + 1}]"

                def on_progress(percent: float, _eta_ms: int | None) -> None:
                    # Per-item progress never moves backwards
                    progress[slot] = max(progress[slot], min(100.0, percent))
                    in_flight[slot] = in_flight_estimate(
                        self._now_ms() - started, progress[slot]
                    )
                    self._broadcast_download(progress, in_flight, item, progress[slot])

                try:
                    path = await self.downloader.download(item, on_progress)
                    self.estimator.record_sample(
                        Phase.DOWNLOAD, Scope.ITEM, self._now_ms() - started
                    )
                    finished.append((item.position_index, path))
                    result.tracks_downloaded += 1
                    self.listener.on_status(
                        f'✅ {label} Finished: "{escape(item.display_name)}"'
                    )
                except OperationCancelled:
                    return
                except Exception as e:
                    if self.cancelled:
                        return
                    result.tracks_failed += 1
                    self.listener.on_status(
                        f'❌ {label} Failed: "{escape(item.display_name)}": {e}'
                    )
                    log.debug(
                        f"Download failed for '{item.display_name}'",
                        exc_info=log.getEffectiveLevel() == logging.DEBUG,
                    )
                finally:
                    in_flight[slot] = None
                    if not self.cancelled:
                        progress[slot] = 100.0
                        self._broadcast_download(progress, in_flight, item, 100.0)

        await self._gather_workers(worker)

        result.files = [path for _, path in sorted(finished)]
        if not self.cancelled and total > 0:
            self.estimator.record_sample(
                Phase.DOWNLOAD, Scope.QUEUE, self._now_ms() - phase_started
            )

    async def _gather_workers(self, worker: Callable) -> None:
        await asyncio.gather(*(worker() for _ in range(self.concurrency)))
