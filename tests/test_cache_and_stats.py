import json

from soundlink_cli.models.stats import BatchResult, TimingPair
from soundlink_cli.storage.cache import LinkCache
from soundlink_cli.storage.stats_store import StatsStore
from soundlink_cli.utils.fs import atomic_write_json, read_json


def test_cache_put_persists_immediately(tmp_path):
    cache = LinkCache(tmp_path)
    cache.put("Song Artist", "https://youtu.be/a")

    on_disk = json.loads((tmp_path / LinkCache.FILE_NAME).read_text(encoding="utf-8"))
    assert on_disk == {"Song Artist": "https://youtu.be/a"}
    assert LinkCache(tmp_path).get("Song Artist") == "https://youtu.be/a"


def test_cache_keys_are_exact(tmp_path):
    cache = LinkCache(tmp_path)
    cache.put("Song Artist", "https://youtu.be/a")
    assert cache.get("song artist") is None
    assert cache.get("Song Artist") == "https://youtu.be/a"
    assert len(cache) == 1


def test_cache_reports_hits_and_misses(tmp_path):
    seen = []
    cache = LinkCache(tmp_path, stats_callback=seen.append)
    cache.put("q", "l")
    cache.get("q")
    cache.get("missing")
    assert seen == [True, False]


def test_corrupt_cache_loads_empty(tmp_path):
    (tmp_path / LinkCache.FILE_NAME).write_text("{not json", encoding="utf-8")
    cache = LinkCache(tmp_path)
    assert len(cache) == 0
    cache.put("q", "l")
    assert LinkCache(tmp_path).get("q") == "l"


def test_cache_with_wrong_shape_loads_empty(tmp_path):
    (tmp_path / LinkCache.FILE_NAME).write_text('["a", "b"]', encoding="utf-8")
    assert len(LinkCache(tmp_path)) == 0


def test_clear_empties_table(tmp_path):
    cache = LinkCache(tmp_path)
    cache.put("a", "1")
    cache.put("b", "2")
    assert cache.clear() == 2
    assert len(LinkCache(tmp_path)) == 0


def test_atomic_write_leaves_no_temp_files(tmp_path):
    target = tmp_path / "nested" / "data.json"
    atomic_write_json(target, {"x": 1})
    atomic_write_json(target, {"x": 2})
    assert read_json(target) == {"x": 2}
    assert [p.name for p in target.parent.iterdir()] == ["data.json"]


def test_read_json_default_for_missing_file(tmp_path):
    assert read_json(tmp_path / "missing.json", default=[]) == []


def test_timing_pair_cumulative_mean():
    pair = TimingPair()
    for sample in (100, 200, 300):
        pair.add(sample)
    assert pair.samples == 3
    assert pair.average_ms == 200


def test_timing_pair_coerces_corrupt_values():
    pair = TimingPair.model_validate({"samples": "x", "average_ms": float("nan")})
    assert pair.samples == 0
    assert pair.average_ms == 0.0
    assert not pair.has_samples


def test_stats_store_records_batches(tmp_path):
    store = StatsStore(tmp_path)
    store.record_batch(
        BatchResult(tracks_total=3, tracks_downloaded=2, tracks_failed=1, catalog_links=1)
    )
    store.stats.timing.download_item.add(1500)
    assert store.save()

    reloaded = StatsStore(tmp_path).stats
    assert reloaded.total_songs_downloaded == 2
    assert reloaded.songs_failed == 1
    assert reloaded.downloads_initiated == 1
    assert reloaded.total_links_processed == 3
    assert reloaded.catalog_links_processed == 1
    assert reloaded.timing.download_item.average_ms == 1500


def test_stats_store_ignores_cancelled_batches(tmp_path):
    store = StatsStore(tmp_path)
    store.record_batch(BatchResult(tracks_downloaded=5, cancelled=True))
    assert store.stats.total_songs_downloaded == 0
    assert store.stats.downloads_initiated == 0


def test_stats_store_reset(tmp_path):
    store = StatsStore(tmp_path)
    store.record_batch(BatchResult(tracks_downloaded=1))
    store.save()
    store.reset()
    assert StatsStore(tmp_path).stats.total_songs_downloaded == 0


def test_crash_before_rename_keeps_previous_table(tmp_path, monkeypatch):
    cache = LinkCache(tmp_path)
    cache.put("Song Artist", "https://youtu.be/a")

    def crash(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr("soundlink_cli.utils.fs.os.replace", crash)
    cache.put("Other Artist", "https://youtu.be/b")
    monkeypatch.undo()

    reloaded = LinkCache(tmp_path)
    assert len(reloaded) == 1
    assert reloaded.get("Song Artist") == "https://youtu.be/a"
    assert reloaded.get("Other Artist") is None
    assert [p.name for p in tmp_path.iterdir()] == [LinkCache.FILE_NAME]


def test_stats_store_accumulates_cache_lookups(tmp_path):
    store = StatsStore(tmp_path)
    store.record_batch(BatchResult(tracks_downloaded=1, cache_hits=2, cache_misses=1))
    store.record_batch(BatchResult(tracks_downloaded=1, cache_hits=1))
    store.save()

    reloaded = StatsStore(tmp_path).stats
    assert reloaded.cache_hits == 3
    assert reloaded.cache_misses == 1
