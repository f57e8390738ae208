"""
Unit tests for the historian buffer, cache and queries
Storage is mocked; SQLite behavior is covered by the integration tests
"""
import asyncio
import math
import time
import pytest
from unittest.mock import Mock

from scada.core.error_handling import HistorianStorageError, StorageError
from scada.services.historian import Historian
from scada.services.historian.aggregation import aggregate_samples, bucket_samples
from scada.services.historian.sample import Sample
from scada.services.tagbus import Quality, TagBus


def make_store(stored=None):
    """Mock sample store holding ``stored`` samples"""
    store = Mock()
    store.max_timestamps.return_value = {}
    store.append.side_effect = lambda batch: len(batch)
    store.query.return_value = list(stored or [])
    store.list_tags.return_value = []
    store.latest.return_value = None
    return store


@pytest.fixture
def historian():
    return Historian(sample_store=None, buffer_size=1000, cache_limit=100)


class TestStoreAndQuery:

    @pytest.mark.unit
    def test_query_oldest_first_inclusive(self, historian):
        for ts in [3.0, 1.0, 2.0, 4.0]:
            historian.store("T", ts * 10, timestamp=ts)

        samples = historian.query("T", 1.0, 3.0)

        assert [s.timestamp for s in samples] == [1.0, 2.0, 3.0]
        assert [s.value for s in samples] == [10.0, 20.0, 30.0]

    @pytest.mark.unit
    def test_empty_and_inverted_ranges(self, historian):
        historian.store("T", 1, timestamp=5.0)

        assert historian.query("T", 10.0, 20.0) == []
        assert historian.query("T", 6.0, 1.0) == []
        assert historian.query("Other", 0.0, 10.0) == []

    @pytest.mark.unit
    def test_query_limit(self, historian):
        for ts in range(10):
            historian.store("T", ts, timestamp=float(ts))

        assert [s.value for s in historian.query("T", 0, 100, limit=3)] == [0, 1, 2]

    @pytest.mark.unit
    def test_default_query_limit(self):
        historian = Historian(query_limit=5, buffer_size=1000)
        for ts in range(10):
            historian.store("T", ts, timestamp=float(ts))
        assert len(historian.query("T", 0, 100)) == 5

    @pytest.mark.unit
    def test_store_defaults(self, historian):
        sample = historian.store("T", 1)

        assert sample.quality == Quality.GOOD
        assert sample.timestamp > 0
        assert len(sample.sample_id) == 32

    @pytest.mark.unit
    def test_get_latest_is_last_stored(self, historian):
        historian.store("T", 1, timestamp=10.0)
        historian.store("T", 2, timestamp=5.0)

        assert historian.get_latest("T").value == 2
        assert historian.get_latest("Missing") is None

    @pytest.mark.unit
    def test_export_envelope(self, historian):
        historian.store("T", 1, timestamp=1.0)

        exported = historian.export("T", 0.0, 2.0)

        assert exported["tag"] == "T"
        assert exported["start_time"] == 0.0
        assert exported["samples"][0]["value"] == 1
        assert "export_time" in exported

    @pytest.mark.unit
    def test_list_tags_merges_store(self):
        store = make_store()
        store.list_tags.return_value = ["B", "A"]
        historian = Historian(sample_store=store)
        historian.store("C", 1)

        assert historian.list_tags() == ["A", "B", "C"]


class TestFlush:

    @pytest.mark.unit
    def test_flush_on_buffer_threshold(self):
        store = make_store()
        historian = Historian(sample_store=store, buffer_size=3)

        for value in range(3):
            historian.store("T", value, timestamp=float(value))

        store.append.assert_called_once()
        assert [s.value for s in store.append.call_args[0][0]] == [0, 1, 2]
        assert historian.get_statistics()["buffer_size"] == 0

    @pytest.mark.unit
    def test_failed_flush_requeues_in_order(self):
        store = make_store()
        historian = Historian(sample_store=store, buffer_size=1000)
        for value in range(3):
            historian.store("T", value, timestamp=float(value))

        store.append.side_effect = StorageError("disk full")
        assert historian.flush() == 0
        historian.store("T", 3, timestamp=3.0)

        stats = historian.get_statistics()
        assert stats["flush_failures"] == 1
        assert stats["buffer_size"] == 4

        store.append.side_effect = lambda batch: len(batch)
        assert historian.flush() == 4
        assert [s.value for s in store.append.call_args[0][0]] == [0, 1, 2, 3]

    @pytest.mark.unit
    def test_backoff_after_failures(self):
        store = make_store()
        store.append.side_effect = StorageError("down")
        historian = Historian(sample_store=store, flush_interval_ms=1000, max_backoff_ms=5000)

        assert historian.next_flush_delay() == 1.0
        for _ in range(5):
            historian.store("T", 1)
            historian.flush()

        assert historian.next_flush_delay() == 5.0

        store.append.side_effect = lambda batch: len(batch)
        historian.flush()
        assert historian.next_flush_delay() == 1.0

    @pytest.mark.unit
    def test_samples_visible_while_flush_fails(self):
        store = make_store()
        store.append.side_effect = StorageError("down")
        historian = Historian(sample_store=store, cache_limit=2, buffer_size=1000)
        for ts in range(5):
            historian.store("T", ts, timestamp=float(ts))
        historian.flush()

        # Evicted from cache but still buffered
        assert [s.value for s in historian.query("T", 0, 10)] == [0, 1, 2, 3, 4]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_auto_flush_and_final_flush(self):
        store = make_store()
        historian = Historian(sample_store=store, flush_interval_ms=20, buffer_size=1000)

        await historian.start()
        historian.store("T", 1)
        await asyncio.sleep(0.1)
        assert store.append.call_count == 1

        historian.store("T", 2)
        await historian.stop()
        assert store.append.call_count == 2
        assert historian.get_statistics()["total_written"] == 2


class TestCacheAndStorage:

    @pytest.mark.unit
    def test_recent_range_served_from_memory(self):
        store = make_store()
        historian = Historian(sample_store=store, cache_limit=3, buffer_size=1000)
        for ts in range(5):
            historian.store("T", ts, timestamp=float(ts))

        # Watermark is 1.0 (newest evicted sample)
        historian.query("T", 2.0, 10.0)
        store.query.assert_not_called()

        historian.query("T", 1.0, 10.0)
        store.query.assert_called_once()

    @pytest.mark.unit
    def test_startup_watermark_from_store(self):
        old = Sample("T", 5, 50.0)
        store = make_store([old])
        store.max_timestamps.return_value = {"T": 50.0}
        historian = Historian(sample_store=store)

        assert [s.value for s in historian.query("T", 0, 100)] == [5]
        store.query.reset_mock()
        historian.query("T", 51.0, 100)
        store.query.assert_not_called()

    @pytest.mark.unit
    def test_merge_deduplicates_by_sample_id(self):
        store = make_store()
        historian = Historian(sample_store=store, cache_limit=2, buffer_size=1000)
        samples = [historian.store("T", ts, timestamp=float(ts)) for ts in range(4)]
        historian.flush()
        store.query.return_value = samples

        result = historian.query("T", 0, 10)

        assert [s.value for s in result] == [0, 1, 2, 3]

    @pytest.mark.unit
    def test_storage_failure_raises_when_needed(self):
        store = make_store()
        store.max_timestamps.return_value = {"T": 100.0}
        store.query.side_effect = StorageError("locked")
        historian = Historian(sample_store=store)
        historian.store("T", 1, timestamp=200.0)

        with pytest.raises(HistorianStorageError):
            historian.query("T", 0, 300)
        # Range above the watermark does not need storage
        assert [s.value for s in historian.query("T", 150, 300)] == [1]

    @pytest.mark.unit
    def test_unknown_store_contents_force_storage_reads(self):
        store = make_store()
        store.max_timestamps.side_effect = StorageError("locked")
        historian = Historian(sample_store=store)

        historian.query("T", 0, 1)
        store.query.assert_called_once()

    @pytest.mark.unit
    def test_get_latest_falls_back_to_store(self):
        store = make_store()
        store.latest.return_value = Sample("T", 9, 1.0)
        historian = Historian(sample_store=store)

        assert historian.get_latest("T").value == 9

    @pytest.mark.unit
    def test_cleanup_uses_cutoff(self):
        store = make_store()
        store.delete_older_than.return_value = 4
        historian = Historian(sample_store=store)

        assert historian.cleanup(max_age=60) == 4
        cutoff = store.delete_older_than.call_args[0][0]
        assert cutoff == pytest.approx(time.time() - 60, abs=5)
        store.compact.assert_called_once()

    @pytest.mark.unit
    def test_cleanup_skips_compaction_when_nothing_deleted(self):
        store = make_store()
        store.delete_older_than.return_value = 0
        historian = Historian(sample_store=store)

        assert historian.cleanup(max_age=60) == 0
        store.compact.assert_not_called()


class TestAggregation:

    @pytest.mark.unit
    def test_aggregate_values(self, historian):
        for ts, value in enumerate([2, 4, 4, 4, 5, 5, 7, 9]):
            historian.store("T", value, timestamp=float(ts))

        result = historian.aggregate("T", 0, 100)

        assert result.count == 8
        assert result.min == 2
        assert result.max == 9
        assert result.avg == 5
        assert result.sum == 40
        assert result.first == 2
        assert result.last == 9
        assert result.range == 7
        assert result.stddev == pytest.approx(2.0)

    @pytest.mark.unit
    def test_aggregate_empty_is_none(self, historian):
        assert historian.aggregate("T", 0, 10) is None
        historian.store("T", "text", timestamp=1.0)
        assert historian.aggregate("T", 0, 10) is None

    @pytest.mark.unit
    def test_aggregate_and_chart_use_query_result(self):
        historian = Historian(sample_store=None, buffer_size=1000, query_limit=5)
        for ts in range(10):
            historian.store("T", float(ts), timestamp=float(ts))

        assert len(historian.query("T", 0, 100)) == 5
        result = historian.aggregate("T", 0, 100)
        assert result.count == 5
        assert result.max == 4.0

        points = historian.chart_data("T", 0.0, 10.0, buckets=1)
        assert points[0].count == 5

    @pytest.mark.unit
    def test_aggregate_ignores_non_numeric(self):
        samples = [Sample("T", 1.0, 0.0), Sample("T", "x", 1.0), Sample("T", math.nan, 2.0),
                   Sample("T", 3.0, 3.0)]

        result = aggregate_samples("T", samples, 0.0, 3.0)

        assert result.count == 2
        assert result.avg == 2.0

    @pytest.mark.unit
    def test_single_value_stddev_zero(self):
        result = aggregate_samples("T", [Sample("T", 0.1, 0.0)], 0.0, 1.0)
        assert result.stddev == 0.0
        assert result.min <= result.avg <= result.max

    @pytest.mark.unit
    def test_avg_within_bounds_for_identical_values(self):
        samples = [Sample("T", 0.1, float(i)) for i in range(1000)]
        result = aggregate_samples("T", samples, 0.0, 1000.0)
        assert result.min <= result.avg <= result.max


class TestChartData:

    @pytest.mark.unit
    def test_buckets_omit_empty_windows(self):
        samples = [Sample("T", v, ts) for ts, v in [(0.0, 1), (1.0, 3), (5.0, 10), (9.9, 20)]]

        points = bucket_samples(samples, 0.0, 10.0, buckets=5)

        assert [p.timestamp for p in points] == [1.0, 5.0, 9.0]
        assert [p.value for p in points] == [2.0, 10.0, 20.0]
        assert points[0].min == 1 and points[0].max == 3 and points[0].count == 2

    @pytest.mark.unit
    def test_end_is_exclusive(self):
        points = bucket_samples([Sample("T", 1, 10.0)], 0.0, 10.0, buckets=2)
        assert points == []

    @pytest.mark.unit
    def test_chart_data_from_historian(self, historian):
        for ts in range(10):
            historian.store("T", ts, timestamp=float(ts))

        points = historian.chart_data("T", 0.0, 10.0, buckets=2)

        assert [p.count for p in points] == [5, 5]
        assert [p.value for p in points] == [2.0, 7.0]


class TestTagBusIngest:

    @pytest.mark.unit
    def test_subscribe_to_tag_bus(self, historian):
        bus = TagBus()
        unsubscribe = historian.subscribe_to(bus, "Plant.*")

        bus.write("Plant/Temp", 42, Quality.UNCERTAIN)
        bus.write("Other/Temp", 1)
        unsubscribe()
        bus.write("Plant/Temp", 43)

        samples = historian.query("[default]Plant/Temp", 0, 1e12)
        assert [s.value for s in samples] == [42]
        assert samples[0].quality == Quality.UNCERTAIN
        assert historian.list_tags() == ["[default]Plant/Temp"]
