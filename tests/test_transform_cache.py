"""
Tests for the Time-Windowed Transform Cache

Tests the cache with a counting compute function:
- Window inflation and sub-range slicing
- Hit tolerance and partial overlap
- One-shot look-ahead and promotion
- Prefetch failure handling
- Expiry and eviction policies
- Administration and settings updates

Run with:
    python -m pytest tests/test_transform_cache.py -v
"""

import unittest

from pydantic import ValidationError

from orbit_transforms.exceptions import ComputationFailure
from orbit_transforms.models import CacheQuery
from orbit_transforms.orbit_service import sample_count
from orbit_transforms.transform_cache import (
    CacheStrategy,
    EvictionPolicy,
    PrefetchConfig,
    TransformCache,
)

PREFETCH = {"multiplier": 10, "max_transform_count": 10000, "min_duration": 1, "auto_threshold": 0.7}


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class CountingCompute:
    """Returns sample times for a window and records every call."""

    def __init__(self):
        self.calls = []

    def __call__(self, query):
        self.calls.append((query.start_time, query.duration))
        n = sample_count(query.duration, query.frequency)
        return [round((query.start_time + i / query.frequency) * 1000) / 1000 for i in range(n)]


class FlakyCompute(CountingCompute):
    """Fails the first time it is asked for a window starting at ``fail_at``."""

    def __init__(self, fail_at):
        super().__init__()
        self.fail_at = fail_at
        self.failed = False

    def __call__(self, query):
        if query.start_time == self.fail_at and not self.failed:
            self.failed = True
            raise RuntimeError("propagation failed")
        return super().__call__(query)


def query(start, duration, frequency=1.0, object_id="earth"):
    return CacheQuery(object_id=object_id, start_time=start, duration=duration, frequency=frequency)


class TestWindowing(unittest.TestCase):
    """Test inflation, slicing and hit detection."""

    def setUp(self):
        self.clock = FakeClock()
        self.compute = CountingCompute()
        self.cache = TransformCache(
            cache_strategy={"max_cache_size": 10, "cache_expiration_ms": 60000, "eviction_policy": "lru"},
            prefetch_config=PREFETCH,
            clock=self.clock,
        )

    def test_miss_inflates_window(self):
        """A miss computes duration * multiplier and returns only the request."""
        result = self.cache.get_transforms(query(0, 10), self.compute)

        self.assertEqual(result, [float(t) for t in range(10)])
        self.assertEqual(self.compute.calls, [(0, 100)])

        entry = self.cache.get_entry("earth", 1.0)
        self.assertEqual(len(entry.samples), 100)
        self.assertEqual(entry.window_end, 100)

    def test_sub_range_from_cache(self):
        """A contained request is sliced from the cached window."""
        self.cache.get_transforms(query(0, 10), self.compute)
        result = self.cache.get_transforms(query(5, 3), self.compute)

        self.assertEqual(result, [5.0, 6.0, 7.0])
        self.assertEqual(len(self.compute.calls), 1)

    def test_hit_tolerance(self):
        """Starting one interval before the window is still a hit."""
        self.cache.get_transforms(query(0, 10), self.compute)
        result = self.cache.get_transforms(query(-1, 4), self.compute)

        self.assertEqual(result, [0.0, 1.0, 2.0])
        self.assertEqual(len(self.compute.calls), 1)

    def test_partial_overlap_recomputes(self):
        """A request running past the window is a miss."""
        self.cache.get_transforms(query(0, 10), self.compute)
        result = self.cache.get_transforms(query(95, 10), self.compute)

        self.assertEqual(result, [float(t) for t in range(95, 105)])
        self.assertEqual(self.compute.calls, [(0, 100), (95, 100)])
        self.assertEqual(self.cache.get_entry("earth", 1.0).window_start, 95)

    def test_fractional_frequency_slice(self):
        """Indices are taken with ceil so boundary samples are not duplicated."""
        self.cache.get_transforms(query(0, 10, frequency=4.0), self.compute)
        result = self.cache.get_transforms(query(1.1, 0.5, frequency=4.0), self.compute)

        self.assertEqual(result, [1.25, 1.5])

    def test_frequencies_cached_separately(self):
        """The same object at two frequencies occupies two entries."""
        self.cache.get_transforms(query(0, 10, frequency=1.0), self.compute)
        self.cache.get_transforms(query(0, 10, frequency=2.0), self.compute)

        self.assertEqual(len(self.cache), 2)
        self.assertEqual(len(self.compute.calls), 2)
        self.assertIn(TransformCache.cache_key("earth", 2.0), self.cache)

    def test_empty_computation_raises(self):
        """Nothing is stored when the compute function returns nothing."""
        with self.assertRaises(ComputationFailure):
            self.cache.get_transforms(query(0, 10), lambda q: [])

        self.assertEqual(len(self.cache), 0)

    def test_short_request_not_inflated(self):
        """Requests below the minimum duration are computed as asked."""
        self.cache.get_transforms(query(0, 0.5), self.compute)

        self.assertEqual(self.compute.calls, [(0, 0.5)])

    def test_inflation_capped_by_sample_count(self):
        """The inflated window never exceeds the maximum sample count."""
        self.assertEqual(self.cache.prefetch_duration(200, 10.0), 1000)
        self.assertEqual(self.cache.prefetch_duration(20, 10.0), 200)

        self.cache.get_transforms(query(0, 200, frequency=10.0), self.compute)
        self.assertEqual(len(self.cache.get_entry("earth", 10.0).samples), 10000)

    def test_request_longer_than_cap(self):
        """A request past the sample cap is computed whole, never truncated."""
        cache = TransformCache(prefetch_config={**PREFETCH, "max_transform_count": 50}, clock=self.clock)
        result = cache.get_transforms(query(0, 80), self.compute)

        self.assertEqual(len(result), 80)
        self.assertEqual(result[-1], 79.0)
        self.assertEqual(self.compute.calls, [(0, 80)])
        self.assertEqual(cache.prefetch_duration(80, 1.0), 80)

    def test_multiplier_below_one_rejected(self):
        """A multiplier below one would shrink the computed window."""
        with self.assertRaises(ValidationError):
            PrefetchConfig(**{**PREFETCH, "multiplier": 0.5})
        with self.assertRaises(ValidationError):
            self.cache.update_prefetch_config(multiplier=0.5)

        self.cache.update_prefetch_config(multiplier=1)
        self.assertEqual(self.cache.prefetch_duration(10, 1.0), 10)

    def test_prefetch_disabled(self):
        """Without prefetch the window is exactly the request."""
        cache = TransformCache(prefetch_config={**PREFETCH, "enabled": False}, clock=self.clock)
        cache.get_transforms(query(0, 10), self.compute)
        cache.get_transforms(query(7, 3), self.compute)
        cache.get_transforms(query(70, 10), self.compute)

        self.assertEqual(self.compute.calls, [(0, 10), (70, 10)])
        self.assertIsNone(cache.get_pending("earth", 1.0))


class TestLookAhead(unittest.TestCase):
    """Test one-shot prefetch of the following window."""

    def setUp(self):
        self.clock = FakeClock()
        self.compute = CountingCompute()
        self.cache = TransformCache(prefetch_config=PREFETCH, clock=self.clock)
        self.cache.get_transforms(query(0, 10), self.compute)

    def test_prefetch_once(self):
        """Crossing the threshold computes the next window exactly once."""
        for _ in range(3):
            result = self.cache.get_transforms(query(70, 10), self.compute)
            self.assertEqual(result[0], 70.0)

        self.assertEqual(self.compute.calls, [(0, 100), (100, 100)])

        pending = self.cache.get_pending("earth", 1.0)
        self.assertEqual(pending.window_start, 100)
        self.assertEqual(pending.samples[0], 100.0)

    def test_below_threshold_no_prefetch(self):
        self.cache.get_transforms(query(50, 10), self.compute)

        self.assertIsNone(self.cache.get_pending("earth", 1.0))
        self.assertEqual(len(self.compute.calls), 1)

    def test_pending_not_counted(self):
        """The pending entry does not occupy an active slot."""
        self.cache.get_transforms(query(70, 10), self.compute)

        self.assertEqual(len(self.cache), 1)
        stats = self.cache.get_cache_stats()
        self.assertEqual(stats["size"], 1)
        self.assertEqual(stats["pending"], 1)
        self.assertTrue(stats["entries"][1]["key"].endswith(":next"))

    def test_promotion(self):
        """A request inside the pending window promotes it without computing."""
        self.cache.get_transforms(query(70, 10), self.compute)
        result = self.cache.get_transforms(query(100, 10), self.compute)

        self.assertEqual(result, [float(t) for t in range(100, 110)])
        self.assertEqual(len(self.compute.calls), 2)
        self.assertIsNone(self.cache.get_pending("earth", 1.0))
        self.assertEqual(self.cache.get_entry("earth", 1.0).window_start, 100)

        # The promoted window prefetches its own successor
        self.cache.get_transforms(query(170, 10), self.compute)
        self.assertEqual(self.compute.calls[-1], (200, 100))
        self.assertEqual(self.cache.get_pending("earth", 1.0).window_start, 200)

    def test_miss_discards_pending(self):
        """A recomputed active window drops the stale pending entry."""
        self.cache.get_transforms(query(70, 10), self.compute)
        self.cache.get_transforms(query(-500, 10), self.compute)

        self.assertIsNone(self.cache.get_pending("earth", 1.0))

    def test_short_request_no_prefetch(self):
        """Requests below the minimum duration never trigger look-ahead."""
        self.cache.get_transforms(query(80, 0.5), self.compute)

        self.assertIsNone(self.cache.get_pending("earth", 1.0))

    def test_failed_prefetch_retries(self):
        """A failed prefetch is dropped and retried by a later request."""
        compute = FlakyCompute(fail_at=100)
        cache = TransformCache(prefetch_config=PREFETCH, clock=self.clock)
        cache.get_transforms(query(0, 10), compute)

        result = cache.get_transforms(query(70, 10), compute)
        self.assertEqual(result[-1], 79.0)
        self.assertIsNone(cache.get_pending("earth", 1.0))
        self.assertEqual(cache.get_cache_stats()["active_prefetches"], 0)

        cache.get_transforms(query(71, 10), compute)
        self.assertEqual(cache.get_pending("earth", 1.0).window_start, 100)


class TestExpiryAndEviction(unittest.TestCase):
    """Test TTL expiry and eviction policies."""

    def setUp(self):
        self.clock = FakeClock()
        self.compute = CountingCompute()

    def make_cache(self, policy, size=2):
        return TransformCache(
            cache_strategy={"max_cache_size": size, "cache_expiration_ms": 60000, "eviction_policy": policy},
            prefetch_config={**PREFETCH, "enabled": False},
            clock=self.clock,
        )

    def keys(self, cache):
        return [obj for obj in ("a", "b", "c") if TransformCache.cache_key(obj, 1.0) in cache]

    def test_expiry(self):
        """Entries older than the TTL are recomputed."""
        cache = TransformCache(
            cache_strategy={"cache_expiration_ms": 1000},
            prefetch_config=PREFETCH,
            clock=self.clock,
        )
        cache.get_transforms(query(0, 10), self.compute)

        self.clock.advance(0.5)
        cache.get_transforms(query(0, 10), self.compute)
        self.assertEqual(len(self.compute.calls), 1)

        self.clock.advance(0.6)
        cache.get_transforms(query(0, 10), self.compute)
        self.assertEqual(len(self.compute.calls), 2)

    def test_fifo(self):
        cache = self.make_cache("fifo")
        for obj in ("a", "b"):
            cache.get_transforms(query(0, 10, object_id=obj), self.compute)
            self.clock.advance(1)
        cache.get_transforms(query(0, 5, object_id="a"), self.compute)
        cache.get_transforms(query(0, 10, object_id="c"), self.compute)

        self.assertEqual(self.keys(cache), ["b", "c"])

    def test_lru(self):
        cache = self.make_cache("lru")
        for obj in ("a", "b"):
            cache.get_transforms(query(0, 10, object_id=obj), self.compute)
            self.clock.advance(1)
        cache.get_transforms(query(0, 5, object_id="a"), self.compute)
        self.clock.advance(1)
        cache.get_transforms(query(0, 10, object_id="c"), self.compute)

        self.assertEqual(self.keys(cache), ["a", "c"])

    def test_lfu(self):
        cache = self.make_cache("lfu")
        cache.get_transforms(query(0, 10, object_id="a"), self.compute)
        cache.get_transforms(query(0, 5, object_id="a"), self.compute)
        cache.get_transforms(query(2, 5, object_id="a"), self.compute)
        cache.get_transforms(query(0, 10, object_id="b"), self.compute)
        cache.get_transforms(query(0, 10, object_id="c"), self.compute)

        self.assertEqual(self.keys(cache), ["a", "c"])
        self.assertEqual(cache.get_entry("a", 1.0).access_count, 3)

    def test_size_bound(self):
        cache = self.make_cache("lru", size=3)
        for i in range(10):
            cache.get_transforms(query(0, 10, object_id=f"body-{i}"), self.compute)

        self.assertEqual(len(cache), 3)


class TestAdministration(unittest.TestCase):
    """Test clearing, stats and settings updates."""

    def setUp(self):
        self.compute = CountingCompute()
        self.cache = TransformCache(prefetch_config=PREFETCH, clock=FakeClock())
        self.cache.get_transforms(query(0, 10, object_id="moon"), self.compute)
        self.cache.get_transforms(query(70, 10, object_id="moon"), self.compute)
        self.cache.get_transforms(query(0, 10, object_id="mars"), self.compute)

    def test_clear_cache_for_object(self):
        """Active and pending entries for the object are removed."""
        removed = self.cache.clear_cache_for_object("moon")

        self.assertEqual(removed, 2)
        self.assertEqual(len(self.cache), 1)
        self.assertIsNone(self.cache.get_pending("moon", 1.0))
        self.assertIsNotNone(self.cache.get_entry("mars", 1.0))

        # The prefetch marker went too, so look-ahead runs again
        self.cache.get_transforms(query(0, 10, object_id="moon"), self.compute)
        self.cache.get_transforms(query(70, 10, object_id="moon"), self.compute)
        self.assertIsNotNone(self.cache.get_pending("moon", 1.0))

    def test_clear_cache(self):
        self.cache.clear_cache()

        stats = self.cache.get_cache_stats()
        self.assertEqual(stats["size"], 0)
        self.assertEqual(stats["pending"], 0)
        self.assertEqual(stats["entries"], [])

    def test_stats(self):
        stats = self.cache.get_cache_stats()

        self.assertEqual(stats["size"], 2)
        self.assertEqual(stats["prefetch_multiplier"], 10)
        self.assertEqual(stats["max_sample_count"], 10000)
        moon = next(e for e in stats["entries"] if e["key"] == "moon:1.000000")
        self.assertEqual(moon["sample_count"], 100)
        self.assertEqual(moon["time_range"], "0.000-100.000s")
        self.assertEqual(moon["access_count"], 2)

    def test_update_prefetch_config(self):
        """Updates merge with the current settings."""
        self.cache.update_prefetch_config(multiplier=3)

        self.assertEqual(self.cache.prefetch_config.multiplier, 3)
        self.assertEqual(self.cache.prefetch_config.max_transform_count, 10000)
        self.assertEqual(self.cache.prefetch_duration(10, 1.0), 30)

    def test_invalid_update_rejected(self):
        """Invalid settings raise and leave the current ones in place."""
        with self.assertRaises(ValidationError):
            self.cache.update_prefetch_config(auto_threshold=1.5)
        with self.assertRaises(ValidationError):
            self.cache.update_cache_strategy(max_cache_size=0)
        with self.assertRaises(ValidationError):
            self.cache.update_cache_strategy(eviction_policy="random")

        self.assertEqual(self.cache.prefetch_config.auto_threshold, 0.7)

    def test_update_cache_strategy(self):
        self.cache.update_cache_strategy(eviction_policy="fifo", max_cache_size=1)

        self.assertIs(self.cache.cache_strategy.eviction_policy, EvictionPolicy.FIFO)
        self.cache.get_transforms(query(0, 10, object_id="venus"), self.compute)
        self.assertEqual(len(self.cache), 1)

    def test_settings_models(self):
        """Settings objects are accepted as-is."""
        strategy = CacheStrategy(max_cache_size=5, cache_expiration_ms=10, eviction_policy="lfu")
        prefetch = PrefetchConfig(**PREFETCH)
        cache = TransformCache(strategy, prefetch)

        self.assertIs(cache.cache_strategy, strategy)
        self.assertIs(cache.prefetch_config, prefetch)

        with self.assertRaises(ValidationError):
            strategy.max_cache_size = 6


class TestQueryValidation(unittest.TestCase):
    """Test rejection of malformed queries."""

    def test_invalid_queries(self):
        for bad in (
            {"object_id": "", "start_time": 0, "duration": 1, "frequency": 1},
            {"object_id": "a", "start_time": 0, "duration": -1, "frequency": 1},
            {"object_id": "a", "start_time": 0, "duration": 1, "frequency": 0},
        ):
            with self.assertRaises(ValidationError):
                CacheQuery(**bad)

    def test_negative_start_time(self):
        """Start times before the epoch are valid."""
        cache = TransformCache(prefetch_config=PREFETCH, clock=FakeClock())
        result = cache.get_transforms(query(-20, 3), CountingCompute())

        self.assertEqual(result, [-20.0, -19.0, -18.0])


if __name__ == "__main__":
    unittest.main()
