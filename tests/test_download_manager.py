import asyncio

import pytest

from soundlink_cli.api.catalog import CatalogResult, CatalogTrack
from soundlink_cli.core.download_manager import DownloadManager, compute_concurrency
from soundlink_cli.core.link_resolver import LinkResolver, Resolution
from soundlink_cli.core.process_runner import ExecutorPool, ExitResult, ProcessRunner
from soundlink_cli.exceptions import (
    OperationCancelled,
    ProcessFailedError,
    ResolutionError,
)
from soundlink_cli.models.config import DownloadConfig
from soundlink_cli.models.track import Phase, SourceTag
from soundlink_cli.storage.cache import LinkCache
from soundlink_cli.storage.stats_store import StatsStore
from soundlink_cli.utils.path import safe_name

PLAYLIST_URL = "https://open.spotify.com/playlist/abc123"


class RecordingListener:
    def __init__(self):
        self.statuses = []
        self.updates = []
        self.manual_requests = []

    def on_status(self, message):
        self.statuses.append(message)

    def on_progress(self, update):
        self.updates.append(update)

    def on_manual_link_request(self, request):
        self.manual_requests.append(request)

    def on_trim_progress(self, progress):
        pass


class FakeCatalog:
    def __init__(self, count=5, name="Road Trip"):
        self.result = CatalogResult(
            name=name,
            kind="playlist",
            tracks=[
                CatalogTrack(f"Song {i}", "Artist", 200_000, f"https://t/{i}")
                for i in range(count)
            ],
        )

    async def fetch_tracks(self, link):
        return self.result


class FakeResolver:
    def __init__(self, failing=(), title="Live Set"):
        self.failing = set(failing)
        self.title = title
        self.queries = []
        self.titles = []

    async def resolve_query(self, query, track_name, expected_ms=None):
        self.queries.append(query)
        await asyncio.sleep(0.001)
        if track_name in self.failing:
            raise ResolutionError("no match")
        return Resolution(f"https://media/{track_name}", SourceTag.PROVIDER_A)

    async def fetch_title(self, link):
        self.titles.append(link)
        return self.title


class FakeDownloader:
    def __init__(self, failing=(), on_call=None):
        self.failing = set(failing)
        self.on_call = on_call
        self.active = 0
        self.max_active = 0
        self.calls = 0

    async def download(self, item, on_progress=None):
        self.calls += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.on_call:
                self.on_call(self.calls)
            if on_progress:
                on_progress(30.0, 1000)
                await asyncio.sleep(0.005)
                on_progress(20.0, 1000)
                on_progress(80.0, 200)
            if item.display_name in self.failing:
                raise ProcessFailedError("yt-dlp exited with code 1")
            name = f"{item.position_index + 1:03d} - {safe_name(item.display_name)}.m4a"
            path = item.output_dir / name
            path.write_bytes(b"audio")
            return path
        finally:
            self.active -= 1


def _config(tmp_path, threads=3):
    return DownloadConfig(
        downloads_path=str(tmp_path / "downloads"),
        config_path=str(tmp_path),
        download_threads=threads,
    )


def _manager(tmp_path, resolver=None, downloader=None, catalog=None, executors=2, threads=3):
    listener = RecordingListener()
    manager = DownloadManager(
        _config(tmp_path, threads),
        resolver or FakeResolver(),
        downloader or FakeDownloader(),
        ExecutorPool([f"yt-dlp-{i}" for i in range(executors)]),
        ProcessRunner(),
        catalog=catalog,
        stats_store=StatsStore(tmp_path),
        listener=listener,
    )
    return manager, listener


@pytest.mark.parametrize(
    "threads, executors, expected", [(3, 1, 1), (1, 4, 1), (5, 3, 3), (0, 0, 1)]
)
def test_compute_concurrency(threads, executors, expected):
    assert compute_concurrency(threads, executors) == expected


def test_catalog_batch_downloads_every_track(tmp_path):
    downloader = FakeDownloader()
    manager, listener = _manager(tmp_path, downloader=downloader, catalog=FakeCatalog())

    result = asyncio.run(manager.execute_downloads([PLAYLIST_URL]))

    assert not result.cancelled
    assert result.tracks_total == 5
    assert result.tracks_downloaded == 5
    assert result.catalog_links == 1
    assert result.first_playlist_name == "Road Trip"
    assert [p.name for p in result.files] == [f"{i + 1:03d} - Song {i}.m4a" for i in range(5)]
    assert all(p.parent.name == "Road Trip" for p in result.files)
    assert downloader.max_active <= 2
    assert listener.statuses[-1] == "Task done."


def test_progress_stays_in_range_and_never_decreases(tmp_path):
    manager, listener = _manager(tmp_path, catalog=FakeCatalog(count=7))

    asyncio.run(manager.execute_downloads([PLAYLIST_URL]))

    values = [u.progress for u in listener.updates]
    assert values
    assert all(0 <= v <= 100 for v in values)
    assert all(b >= a for a, b in zip(values, values[1:]))
    assert values[-1] == 100


def test_concurrency_limited_by_configured_threads(tmp_path):
    downloader = FakeDownloader()
    manager, _ = _manager(
        tmp_path, downloader=downloader, catalog=FakeCatalog(count=6), executors=4, threads=1
    )
    asyncio.run(manager.execute_downloads([PLAYLIST_URL]))
    assert downloader.max_active == 1


def test_statistics_saved_after_successful_run(tmp_path):
    manager, _ = _manager(tmp_path, catalog=FakeCatalog(count=2))
    asyncio.run(manager.execute_downloads([PLAYLIST_URL]))

    stats = StatsStore(tmp_path).stats
    assert stats.downloads_initiated == 1
    assert stats.total_songs_downloaded == 2
    assert stats.timing.resolve_item.samples == 2
    assert stats.timing.download_item.samples == 2
    assert stats.timing.download_queue.samples == 1


def test_failures_are_counted_and_do_not_stop_the_batch(tmp_path):
    resolver = FakeResolver(failing={"Song 1"})
    downloader = FakeDownloader(failing={"Song 3"})
    manager, listener = _manager(
        tmp_path, resolver=resolver, downloader=downloader, catalog=FakeCatalog()
    )

    result = asyncio.run(manager.execute_downloads([PLAYLIST_URL]))

    assert result.tracks_downloaded == 3
    assert result.tracks_failed == 2
    assert any(s.startswith("❌") and "Failed to find link" in s for s in listener.statuses)


def test_direct_link_uses_title_for_folder(tmp_path):
    resolver = FakeResolver(title="Live: At/Home")
    manager, _ = _manager(tmp_path, resolver=resolver)

    result = asyncio.run(manager.execute_downloads(["https://media.example/v/1"]))

    assert resolver.queries == []
    assert resolver.titles == ["https://media.example/v/1"]
    assert result.direct_links == 1
    assert result.files[0].parent.name == "Live_ At_Home"


def test_direct_link_without_title_uses_queue_folder(tmp_path):
    manager, _ = _manager(tmp_path, resolver=FakeResolver(title=""))
    result = asyncio.run(
        manager.execute_downloads(["https://a.example/1", "https://b.example/2"])
    )
    assert sorted({p.parent.name for p in result.files}) == ["Queue 1", "Queue 2"]


def test_direct_links_never_touch_the_link_cache(tmp_path):
    class TitleOnlyYtDlp:
        async def run_checked(self, args, on_line=None):
            return ExitResult(0, "Title\n", "")

    cache = LinkCache(tmp_path)
    resolver = LinkResolver(TitleOnlyYtDlp(), cache=cache)
    manager, _ = _manager(tmp_path, resolver=resolver)

    asyncio.run(manager.execute_downloads(["https://media.example/v/1"]))

    assert len(LinkCache(tmp_path)) == 0


def test_duplicate_links_are_processed_once(tmp_path):
    resolver = FakeResolver()
    manager, _ = _manager(tmp_path, resolver=resolver)
    asyncio.run(manager.execute_downloads(["https://a.example/1", "https://a.example/1"]))
    assert resolver.titles == ["https://a.example/1"]


def test_catalog_link_without_credentials_is_skipped(tmp_path):
    manager, listener = _manager(tmp_path, catalog=None)

    result = asyncio.run(manager.execute_downloads([PLAYLIST_URL]))

    assert result.tracks_total == 0
    assert "No valid tracks found to download." in listener.statuses
    assert listener.updates[-1].progress == 100


def test_empty_executor_pool_is_an_error(tmp_path):
    manager, _ = _manager(tmp_path, executors=0)
    with pytest.raises(ProcessFailedError):
        asyncio.run(manager.execute_downloads(["https://a.example/1"]))


def test_cancel_marks_result_and_skips_statistics(tmp_path):
    def cancel_on_first_call(call_number):
        if call_number == 1:
            manager.cancel()
            manager.cancel()
            raise OperationCancelled("Operation cancelled")

    downloader = FakeDownloader(on_call=cancel_on_first_call)
    manager, listener = _manager(tmp_path, downloader=downloader, catalog=FakeCatalog())

    result = asyncio.run(manager.execute_downloads([PLAYLIST_URL]))

    assert result.cancelled
    assert listener.statuses.count("Download cancelled by user.") == 1
    assert "Task done." not in listener.statuses
    assert downloader.calls < 5
    assert not (tmp_path / StatsStore.FILE_NAME).exists()


def test_cancelled_run_does_not_change_stored_timing(tmp_path):
    store = StatsStore(tmp_path)
    store.stats.timing.download_item.add(1000)
    store.save()

    def cancel(call_number):
        manager.cancel()
        raise OperationCancelled("Operation cancelled")

    manager, _ = _manager(tmp_path, downloader=FakeDownloader(on_call=cancel), catalog=FakeCatalog())
    asyncio.run(manager.execute_downloads([PLAYLIST_URL]))

    assert manager.stats_store.stats.timing.resolve_item.samples == 0
    assert StatsStore(tmp_path).stats.timing.download_item.samples == 1


def test_a_new_run_resets_the_cancellation_flag(tmp_path):
    manager, _ = _manager(tmp_path, catalog=FakeCatalog(count=1))
    manager.cancel()
    result = asyncio.run(manager.execute_downloads([PLAYLIST_URL]))
    assert not result.cancelled
    assert result.tracks_downloaded == 1


def test_progress_phases_split_the_bar_in_half(tmp_path):
    manager, listener = _manager(tmp_path, catalog=FakeCatalog(count=6))

    asyncio.run(manager.execute_downloads([PLAYLIST_URL]))

    resolve = [u.progress for u in listener.updates if u.phase is Phase.RESOLVE]
    download = [u.progress for u in listener.updates if u.phase is Phase.DOWNLOAD]
    assert resolve and download
    assert all(0 <= v <= 50 for v in resolve)
    assert all(50 <= v <= 100 for v in download)
    first_download = next(
        i for i, u in enumerate(listener.updates) if u.phase is Phase.DOWNLOAD
    )
    assert all(u.phase is Phase.DOWNLOAD for u in listener.updates[first_download:])


class SearchYtDlp:
    def __init__(self):
        self.searches = []

    async def run_checked(self, args, on_line=None):
        self.searches.append(args[-1])
        return ExitResult(0, "https://youtu.be/found\t200\n", "")


def test_cache_lookups_are_counted_per_run_and_lifetime(tmp_path):
    cache = LinkCache(tmp_path)
    cache.put("Song 0 Artist", "https://youtu.be/0")
    cache.put("Song 1 Artist", "https://youtu.be/1")
    ytdlp = SearchYtDlp()
    manager, _ = _manager(
        tmp_path, resolver=LinkResolver(ytdlp, cache=cache), catalog=FakeCatalog(count=3)
    )
    cache.stats_callback = manager.record_cache_lookup

    result = asyncio.run(manager.execute_downloads([PLAYLIST_URL]))

    assert (result.cache_hits, result.cache_misses) == (2, 1)
    assert ytdlp.searches == ["ytsearch5:Song 2 Artist"]
    lifetime = StatsStore(tmp_path).stats
    assert (lifetime.cache_hits, lifetime.cache_misses) == (2, 1)


def test_cache_lookups_outside_a_run_are_ignored(tmp_path):
    manager, _ = _manager(tmp_path)
    manager.record_cache_lookup(True)
    result = asyncio.run(manager.execute_downloads([]))
    assert result.cache_hits == 0


def test_from_config_reports_cache_lookups_to_the_manager(tmp_path):
    manager = DownloadManager.from_config(_config(tmp_path))
    assert manager.resolver.cache.stats_callback == manager.record_cache_lookup
