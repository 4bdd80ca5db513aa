"""Tests for the EWMA Performance Tracker."""

import threading

import pytest

from smart_router.core.performance_tracker import (
    ModelPerformance,
    PerformanceTracker,
    ewma,
)
from smart_router.core.state_store import InMemoryStore, JsonFileStore


class TestEwma:
    def test_first_sample_seeds(self):
        assert ewma(None, 200.0) == 200.0

    def test_blend(self):
        assert ewma(100.0, 200.0, alpha=0.3) == pytest.approx(130.0)


class TestRecord:
    def test_first_observation_seeds_averages(self):
        """The first sample is taken as-is, not blended with a default."""
        tracker = PerformanceTracker()
        perf = tracker.record("m1", "simple_query", True, 200, 0.002)
        assert perf.success_rate == 1.0
        assert perf.avg_latency_ms == 200
        assert perf.avg_cost_usd == 0.002
        assert perf.sample_count == 1

    def test_five_identical_successes(self):
        tracker = PerformanceTracker()
        for _ in range(5):
            tracker.record("m1", "code_generation", True, 200)
        perf = tracker.get("m1")
        assert perf.success_rate == pytest.approx(1.0)
        assert perf.avg_latency_ms == pytest.approx(200.0)
        assert perf.sample_count == 5
        assert perf.bucket("code_generation").sample_count == 5

    def test_failure_lowers_success_rate(self):
        tracker = PerformanceTracker(alpha=0.3)
        tracker.record("m1", "simple_query", True, 100)
        perf = tracker.record("m1", "simple_query", False, 100)
        assert perf.success_rate == pytest.approx(0.7)

    def test_task_buckets_are_separate(self):
        tracker = PerformanceTracker()
        tracker.record("m1", "code_generation", False, 4000)
        tracker.record("m1", "simple_query", True, 100)
        perf = tracker.get("m1")
        assert perf.bucket("code_generation").success_rate == 0.0
        assert perf.bucket("simple_query").success_rate == 1.0
        assert perf.bucket("data_analysis") is None

    def test_negative_latency_clamped(self):
        perf = PerformanceTracker().record("m1", "simple_query", True, -50)
        assert perf.avg_latency_ms == 0.0

    def test_invalid_alpha(self):
        with pytest.raises(ValueError):
            PerformanceTracker(alpha=0)

    def test_returned_copies_are_detached(self):
        tracker = PerformanceTracker()
        perf = tracker.record("m1", "simple_query", True, 100)
        perf.success_rate = 0.0
        snapshot = tracker.snapshot()
        snapshot["m1"].avg_latency_ms = 9999
        assert tracker.get("m1").success_rate == 1.0
        assert tracker.get("m1").avg_latency_ms == 100

    def test_concurrent_updates_do_not_lose_samples(self):
        tracker = PerformanceTracker()

        def worker():
            for _ in range(200):
                tracker.record("m1", "simple_query", True, 100)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert tracker.get("m1").sample_count == 1600

    def test_reset(self):
        tracker = PerformanceTracker()
        tracker.record("m1", "simple_query", True, 100)
        tracker.record("m2", "simple_query", True, 100)
        tracker.reset("m1")
        assert tracker.get("m1") is None
        tracker.reset()
        assert tracker.snapshot() == {}


class TestPersistence:
    def test_round_trip_in_memory(self):
        tracker = PerformanceTracker()
        tracker.record("m1", "code_generation", True, 250, 0.01)
        tracker.record("m2", "simple_query", False, 900)

        store = InMemoryStore()
        tracker.save(store)
        restored = PerformanceTracker()
        assert restored.load(store) == 2
        assert restored.to_dict() == tracker.to_dict()

    def test_round_trip_json_file(self, tmp_path):
        tracker = PerformanceTracker()
        tracker.record("m1", "data_analysis", True, 300)
        tracker.save(JsonFileStore(tmp_path / "performance.json"))

        restored = PerformanceTracker()
        restored.load(JsonFileStore(tmp_path / "performance.json"))
        assert restored.get("m1").bucket("data_analysis").avg_latency_ms == 300

    def test_save_after_reset_replaces_store(self, tmp_path):
        path = tmp_path / "performance.json"
        tracker = PerformanceTracker()
        tracker.record("old-model", "simple_query", True, 100)
        tracker.save(JsonFileStore(path))

        tracker.reset()
        tracker.record("new-model", "simple_query", True, 100)
        tracker.save(JsonFileStore(path))

        restored = PerformanceTracker()
        assert restored.load(JsonFileStore(path)) == 1
        assert list(restored.snapshot()) == ["new-model"]

    def test_corrupt_records_skipped(self):
        store = InMemoryStore()
        store.set("good", ModelPerformance(1.0, 100.0, 0.0, sample_count=1).to_dict())
        store.set("bad", {"success_rate": "oops"})
        tracker = PerformanceTracker()
        assert tracker.load(store) == 1
        assert tracker.get("good") is not None

    def test_loaded_values_are_clamped(self):
        tracker = PerformanceTracker.from_dict(
            {"m1": {"success_rate": 3.0, "avg_latency_ms": -10, "avg_cost_usd": -1}}
        )
        perf = tracker.get("m1")
        assert perf.success_rate == 1.0
        assert perf.avg_latency_ms == 0.0
        assert perf.avg_cost_usd == 0.0
