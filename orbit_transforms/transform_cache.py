"""
Time-Windowed Transform Cache

Caches contiguous, constant-stride sample windows per (object, frequency)
and answers sub-range queries by slicing them.

Features:
- Window inflation on a miss: the computed window is the requested duration
  times the prefetch multiplier, capped at a maximum sample count and
  never shorter than the request itself
- Hit tolerance of one sampling interval on either side of a cached window
- LRU / LFU / FIFO eviction of active entries once the cache is full
- Time-to-live expiry
- One-shot look-ahead: once a request has consumed a configurable fraction
  of the active window, the following window is computed and parked as the
  "next" entry; it replaces the active entry as soon as a request starts
  inside it

Everything runs on the caller's thread. A prefetch is computed inline on the
call that crossed the threshold, guarded by an in-flight marker so repeated
calls never compute the same window twice. A failed prefetch is logged and
dropped; its marker is cleared so a later call can retry.

The cache is generic over the sample type; it never inspects samples, only
their count and order.
"""

import math
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Generic, List, Optional, Sequence, Set, Tuple, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field

from config import BYTES_PER_TRANSFORM, config
from logging_config import Timer, get_logger, log_performance
from orbit_transforms.exceptions import ComputationFailure
from orbit_transforms.models import CacheQuery

logger = get_logger(__name__)

T = TypeVar("T")
Q = TypeVar("Q", bound=CacheQuery)

# Absorbs float noise in (t - start) * frequency before taking ceil
INDEX_EPSILON = 1e-9


class EvictionPolicy(str, Enum):
    LRU = "lru"
    LFU = "lfu"
    FIFO = "fifo"


class CacheStrategy(BaseModel):
    """Size, lifetime and eviction settings."""

    model_config = ConfigDict(frozen=True, validate_default=True)

    max_cache_size: int = Field(default_factory=lambda: config.MAX_CACHE_SIZE, gt=0)
    cache_expiration_ms: float = Field(default_factory=lambda: config.CACHE_EXPIRATION_MS, gt=0)
    eviction_policy: EvictionPolicy = Field(default_factory=lambda: config.EVICTION_POLICY)


class PrefetchConfig(BaseModel):
    """Window inflation and look-ahead settings."""

    model_config = ConfigDict(frozen=True, validate_default=True)

    enabled: bool = Field(default_factory=lambda: config.PREFETCH_ENABLED)
    multiplier: float = Field(default_factory=lambda: config.PREFETCH_MULTIPLIER, ge=1)
    max_transform_count: int = Field(default_factory=lambda: config.PREFETCH_MAX_TRANSFORMS, gt=0)
    min_duration: float = Field(default_factory=lambda: config.PREFETCH_MIN_DURATION_S, ge=0)
    auto_threshold: float = Field(default_factory=lambda: config.PREFETCH_AUTO_THRESHOLD, ge=0, le=1)


def _merge(model_cls, current, overrides):
    """Build a validated settings model from a base and partial overrides."""
    if overrides is None:
        return current if current is not None else model_cls()
    if isinstance(overrides, model_cls):
        return overrides
    base = current.model_dump() if current is not None else {}
    return model_cls.model_validate({**base, **dict(overrides)})


@dataclass
class CacheEntry(Generic[T]):
    """One computed window. Samples are never modified after creation."""

    query: CacheQuery
    samples: Tuple[T, ...]
    created_at: float
    last_accessed_at: float
    access_count: int = 0

    @property
    def window_start(self) -> float:
        return self.query.start_time

    @property
    def window_duration(self) -> float:
        return self.query.duration

    @property
    def window_end(self) -> float:
        return self.query.start_time + self.query.duration

    @property
    def sampling_interval(self) -> float:
        return 1.0 / self.query.frequency

    def age(self, now: float) -> float:
        return now - self.created_at

    def touch(self, now: float) -> None:
        self.access_count += 1
        self.last_accessed_at = now


class TransformCache(Generic[T]):
    """
    Window cache keyed by (object id, sampling frequency).

    Each key holds at most one active entry and at most one pending "next"
    entry produced by look-ahead.
    """

    def __init__(
        self,
        cache_strategy: Optional[Union[CacheStrategy, Dict[str, Any]]] = None,
        prefetch_config: Optional[Union[PrefetchConfig, Dict[str, Any]]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the cache.

        Args:
            cache_strategy: CacheStrategy, or a dict of fields overriding the defaults
            prefetch_config: PrefetchConfig, or a dict of fields overriding the defaults
            clock: Monotonic time source in seconds
        """
        self.cache_strategy = _merge(CacheStrategy, None, cache_strategy)
        self.prefetch_config = _merge(PrefetchConfig, None, prefetch_config)
        self._clock = clock

        self._entries: Dict[str, CacheEntry[T]] = {}
        self._pending: Dict[str, CacheEntry[T]] = {}
        self._active_prefetches: Set[str] = set()
        self._completed_prefetches: Set[str] = set()

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------
    @staticmethod
    def cache_key(object_id: str, frequency: float) -> str:
        return f"{object_id}:{frequency:.6f}"

    @staticmethod
    def pending_key(cache_key: str) -> str:
        return f"{cache_key}:next"

    @staticmethod
    def prefetch_key(object_id: str, frequency: float, window_end: float) -> str:
        return f"prefetch:{object_id}:{frequency:.6f}:{window_end:.6f}"

    @staticmethod
    def _marker_object_id(marker: str) -> str:
        # prefetch:<object_id>:<frequency>:<window_end>; object ids may contain ':'
        return marker[len("prefetch:"):].rsplit(":", 2)[0]

    # ------------------------------------------------------------------
    # Public contract
    # ------------------------------------------------------------------
    def get_transforms(self, query: Q, compute_fn: Callable[[Q], Sequence[T]]) -> List[T]:
        """
        Samples covering [query.start_time, query.end_time).

        Args:
            query: Requested window
            compute_fn: Computes the samples for a (possibly inflated) window

        Returns:
            Ordered samples from the cache, computing them on a miss

        Raises:
            ComputationFailure: compute_fn returned nothing for the window
        """
        key = self.cache_key(query.object_id, query.frequency)

        self._promote_pending(query, key)

        entry = self._find_matching(query, key)
        if entry is not None:
            subset = self._extract_subset(entry, query.start_time, query.duration)
            if subset:
                if self.prefetch_config.enabled:
                    self._check_and_prefetch(entry, query, compute_fn)
                return subset

        logger.debug("❌ Cache MISS, calculating...", object_id=query.object_id, key=key)

        window = query.model_copy(
            update={"duration": self.prefetch_duration(query.duration, query.frequency)}
        )

        timer = Timer()
        samples = tuple(compute_fn(window))
        calc_ms = timer.elapsed_ms()

        if not samples:
            raise ComputationFailure(
                f"Failed to calculate transforms for {query.object_id} "
                f"over {window.duration:.3f}s at {query.frequency}Hz"
            )

        memory_mb = len(samples) * BYTES_PER_TRANSFORM / 1024 / 1024
        log_performance(
            logger,
            f"💾 Computed {len(samples):,} transforms (~{memory_mb:.2f} MB)",
            calc_ms,
            object_id=query.object_id,
        )

        now = self._clock()
        entry = CacheEntry(
            query=window,
            samples=samples,
            created_at=now,
            last_accessed_at=now,
            access_count=1,
        )
        self._discard_pending(key, query.object_id, query.frequency)
        self._insert(key, entry)

        result = self._extract_subset(entry, query.start_time, query.duration)
        if not result:
            raise ComputationFailure(
                f"Computed window for {query.object_id} does not cover the request"
            )
        return result

    def prefetch_duration(self, requested_duration: float, frequency: float) -> float:
        """Duration actually computed for a request of ``requested_duration``."""
        cfg = self.prefetch_config
        if not cfg.enabled:
            return requested_duration

        if requested_duration < cfg.min_duration:
            logger.debug(
                "🔧 Request too short, no prefetch",
                requested_duration=requested_duration,
                min_duration=cfg.min_duration,
            )
            return requested_duration

        # Inflate only; a window shorter than the request would truncate the answer
        max_duration = cfg.max_transform_count / frequency
        return max(requested_duration, min(requested_duration * cfg.multiplier, max_duration))

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------
    def _find_matching(self, query: CacheQuery, key: str) -> Optional[CacheEntry[T]]:
        entry = self._entries.get(key)
        if entry is None:
            logger.debug("Cache MISS (no data)", object_id=query.object_id, key=key)
            return None

        now = self._clock()
        if entry.age(now) * 1000.0 >= self.cache_strategy.cache_expiration_ms:
            logger.debug("⏰ Cache EXPIRED", object_id=query.object_id, key=key)
            del self._entries[key]
            return None

        tolerance = entry.sampling_interval
        if (query.start_time >= entry.window_start - tolerance
                and query.end_time <= entry.window_end + tolerance):
            entry.touch(now)
            logger.debug(
                "✅ Cache HIT",
                object_id=query.object_id,
                cached=f"{entry.window_start:.3f}-{entry.window_end:.3f}s ({len(entry.samples)} transforms)",
                request=f"{query.start_time:.3f}-{query.end_time:.3f}s",
            )
            return entry

        logger.debug(
            "⚠️ Cache PARTIAL",
            object_id=query.object_id,
            cached=f"{entry.window_start:.3f}-{entry.window_end:.3f}s",
            request=f"{query.start_time:.3f}-{query.end_time:.3f}s",
        )
        return None

    def _extract_subset(self, entry: CacheEntry[T], start_time: float, duration: float) -> List[T]:
        # ceil for both ends: a sample exactly on the start is included,
        # one exactly on the end is not
        frequency = entry.query.frequency
        count = len(entry.samples)
        start_index = max(0, math.ceil((start_time - entry.window_start) * frequency - INDEX_EPSILON))
        end_index = min(count, math.ceil((start_time + duration - entry.window_start) * frequency - INDEX_EPSILON))

        subset = list(entry.samples[start_index:end_index])

        logger.debug(
            f"✂️ Extracted {len(subset)} transforms [{start_index}-{end_index}] from cache of {count}",
            start_index=start_index,
            end_index=end_index,
        )
        return subset

    # ------------------------------------------------------------------
    # Storage and eviction
    # ------------------------------------------------------------------
    def _insert(self, key: str, entry: CacheEntry[T]) -> None:
        if key in self._entries:
            del self._entries[key]
        else:
            self._evict_if_full()
        self._entries[key] = entry

    def _evict_if_full(self) -> None:
        # Loops so a lowered max_cache_size takes effect on the next insert
        policy = self.cache_strategy.eviction_policy
        while self._entries and len(self._entries) >= self.cache_strategy.max_cache_size:
            if policy is EvictionPolicy.LRU:
                victim = min(self._entries, key=lambda k: self._entries[k].last_accessed_at)
            elif policy is EvictionPolicy.LFU:
                victim = min(self._entries, key=lambda k: self._entries[k].access_count)
            else:
                victim = next(iter(self._entries))

            evicted = self._entries.pop(victim)
            self._discard_pending(victim, evicted.query.object_id, evicted.query.frequency)
            logger.debug("🗑️ Evicted cache entry", key=victim, policy=policy.value)

    def _discard_pending(self, key: str, object_id: str, frequency: float) -> None:
        pending = self._pending.pop(key, None)
        if pending is not None:
            self._completed_prefetches.discard(
                self.prefetch_key(object_id, frequency, pending.window_start)
            )

    # ------------------------------------------------------------------
    # Look-ahead
    # ------------------------------------------------------------------
    def _promote_pending(self, query: CacheQuery, key: str) -> None:
        pending = self._pending.get(key)
        if pending is None or query.start_time < pending.window_start:
            return

        logger.debug(
            f"🔄 Promoting prefetch: {pending.window_start:.0f}-{pending.window_end:.0f}s",
            object_id=query.object_id,
        )
        del self._pending[key]
        self._insert(key, pending)
        self._completed_prefetches.discard(
            self.prefetch_key(query.object_id, query.frequency, pending.window_start)
        )

    def _check_and_prefetch(self, entry: CacheEntry[T], query: Q,
                            compute_fn: Callable[[Q], Sequence[T]]) -> None:
        if entry.window_duration <= 0:
            return

        progress = (query.end_time - entry.window_start) / entry.window_duration
        if progress < self.prefetch_config.auto_threshold:
            return

        if query.duration < self.prefetch_config.min_duration:
            logger.debug(
                "🔧 Request too short, no prefetch",
                requested_duration=query.duration,
                min_duration=self.prefetch_config.min_duration,
            )
            return

        marker = self.prefetch_key(query.object_id, query.frequency, entry.window_end)
        if marker in self._active_prefetches or marker in self._completed_prefetches:
            return

        key = self.cache_key(query.object_id, query.frequency)
        if key in self._pending:
            return

        logger.debug(
            f"🔮 Prefetch at {progress * 100:.0f}% (T={query.start_time:.0f}s)",
            object_id=query.object_id,
            key=key,
        )

        self._active_prefetches.add(marker)
        try:
            next_query = query.model_copy(update={
                "start_time": entry.window_end,
                "duration": self.prefetch_duration(query.duration, query.frequency),
            })
            samples = tuple(compute_fn(next_query))

            if samples:
                now = self._clock()
                self._pending[key] = CacheEntry(
                    query=next_query,
                    samples=samples,
                    created_at=now,
                    last_accessed_at=now,
                    access_count=0,
                )
                self._completed_prefetches.add(marker)
                logger.debug(f"✅ Prefetch ready (temp): {len(samples):,} transforms", key=key)
            else:
                logger.warning("Prefetch produced no transforms", key=key)
        except Exception:
            logger.error("❌ Prefetch failed", key=key, object_id=query.object_id, exc_info=True)
        finally:
            self._active_prefetches.discard(marker)

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------
    def update_prefetch_config(self, **changes) -> None:
        self.prefetch_config = _merge(PrefetchConfig, self.prefetch_config, changes)
        logger.info("⚙️ Prefetch config updated", prefetch_config=self.prefetch_config.model_dump())

    def update_cache_strategy(self, **changes) -> None:
        self.cache_strategy = _merge(CacheStrategy, self.cache_strategy, changes)
        logger.info("⚙️ Cache strategy updated", cache_strategy=self.cache_strategy.model_dump(mode="json"))

    def clear_cache(self) -> None:
        self._entries.clear()
        self._pending.clear()
        self._completed_prefetches.clear()
        self._active_prefetches.clear()
        logger.info("🧹 Cache cleared")

    def clear_cache_for_object(self, object_id: str) -> int:
        """Drop every entry and prefetch marker for one object; returns entries removed."""
        removed = 0
        for store in (self._entries, self._pending):
            keys = [k for k, e in store.items() if e.query.object_id == object_id]
            for k in keys:
                del store[k]
            removed += len(keys)

        for markers in (self._completed_prefetches, self._active_prefetches):
            for marker in [m for m in markers if self._marker_object_id(m) == object_id]:
                markers.discard(marker)

        logger.info(f"🧹 Cleared {removed} cache entries for {object_id}", object_id=object_id)
        return removed

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def get_entry(self, object_id: str, frequency: float) -> Optional[CacheEntry[T]]:
        return self._entries.get(self.cache_key(object_id, frequency))

    def get_pending(self, object_id: str, frequency: float) -> Optional[CacheEntry[T]]:
        return self._pending.get(self.cache_key(object_id, frequency))

    def get_cache_stats(self) -> Dict[str, Any]:
        now = self._clock()

        def describe(key: str, entry: CacheEntry[T]) -> Dict[str, Any]:
            return {
                "key": key,
                "sample_count": len(entry.samples),
                "memory_mb": len(entry.samples) * BYTES_PER_TRANSFORM / 1024 / 1024,
                "time_range": f"{entry.window_start:.3f}-{entry.window_end:.3f}s",
                "age_ms": entry.age(now) * 1000.0,
                "access_count": entry.access_count,
                "last_accessed_at": entry.last_accessed_at,
            }

        entries = [describe(k, e) for k, e in self._entries.items()]
        entries += [describe(self.pending_key(k), e) for k, e in self._pending.items()]

        return {
            "size": len(self._entries),
            "pending": len(self._pending),
            "max_size": self.cache_strategy.max_cache_size,
            "prefetch_multiplier": self.prefetch_config.multiplier,
            "active_prefetches": len(self._active_prefetches),
            "max_sample_count": self.prefetch_config.max_transform_count,
            "entries": entries,
        }
