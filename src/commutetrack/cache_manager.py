"""TTL cache with in-flight request de-duplication and background refresh."""

import logging
import threading
import time
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional, TypeVar

from .config import CacheConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class _CacheEntry:
    payload: Any
    timestamp: float
    ttl: float
    category: str
    sequence: int
    access_count: int = 0


@dataclass
class _CategoryStats:
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    background_refreshes: int = 0
    response_times: Deque[float] = field(default_factory=deque)


class CacheManager:
    """
    Thread-safe cache keyed by ``(category, key)``.

    ``get`` returns a cached payload while it is valid, joins an in-flight
    fetch for the same key instead of starting a second one, and otherwise
    runs the fetcher once. Entries past ``refresh_threshold`` of their TTL are
    refreshed in the background while the current payload keeps being served.

    Validity is checked lazily against ``clock``; nothing expires on a timer.
    The lock is never held while a fetcher runs.
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        self.config = config or CacheConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[str, _CacheEntry] = {}
        self._pending: Dict[str, Future] = {}
        self._refreshing: Dict[str, Future] = {}
        self._stats: Dict[str, _CategoryStats] = {}
        self._failed_attempts: Deque[dict] = deque(maxlen=self.config.failed_attempt_history)
        self._sequence = 0
        self._total_requests = 0
        self._active_requests = 0
        self._duplicates_avoided = 0
        self._closed = False
        self._executor = executor or ThreadPoolExecutor(
            max_workers=self.config.refresh_workers, thread_name_prefix="cache-refresh"
        )

    def get(self, key: str, category: str, fetcher: Callable[[], T]) -> T:
        """
        Return the payload for ``key``, fetching it if needed.

        Fetcher exceptions propagate to the caller and to every caller waiting
        on the same fetch; they are recorded but never retried here.

        Args:
            key: Identifier within the category (e.g., a feed URL).
            category: Cache category; selects the TTL (e.g., GTFS, ALERTS).
            fetcher: Zero-argument callable producing the payload on a miss.

        Returns:
            The cached or freshly fetched payload.

        Raises:
            Whatever ``fetcher`` raised, for the owner and every joined waiter.
        """
        cache_key = f"{category}:{key}"
        future: Optional[Future] = None
        owner = False
        refresh_sequence = None

        with self._lock:
            self._total_requests += 1
            stats = self._category_stats(category)
            entry = self._entries.get(cache_key)

            if entry is not None and self._is_valid(entry):
                entry.access_count += 1
                stats.hits += 1
                payload = entry.payload
                age = self._clock() - entry.timestamp
                if (
                    age > self.config.refresh_threshold * entry.ttl
                    and cache_key not in self._refreshing
                    and cache_key not in self._pending
                    and not self._closed
                ):
                    refresh_sequence = self._next_sequence()
                    self._refreshing[cache_key] = Future()
                logger.debug(f"Cache hit: {cache_key}")
            elif cache_key in self._pending:
                self._duplicates_avoided += 1
                future = self._pending[cache_key]
                logger.debug(f"Joining in-flight fetch: {cache_key}")
            else:
                if entry is not None:
                    del self._entries[cache_key]
                    stats.evictions += 1
                stats.misses += 1
                future = Future()
                self._pending[cache_key] = future
                sequence = self._next_sequence()
                owner = True
                logger.debug(f"Cache miss: {cache_key}")

        if future is None:
            if refresh_sequence is not None:
                self._schedule_refresh(cache_key, category, fetcher, refresh_sequence)
            return payload

        if not owner:
            return future.result()

        try:
            payload = self._execute(cache_key, category, fetcher, sequence, pending=future)
        except BaseException as e:
            # Waiters must never block on a fetch that was interrupted
            future.set_exception(e)
            raise
        future.set_result(payload)
        return payload

    def invalidate(self, key: str, category: str) -> bool:
        """
        Drop one entry so the next ``get`` fetches again.

        Args:
            key: Identifier within the category.
            category: Cache category the entry was stored under.

        Returns:
            True if an entry was removed.
        """
        cache_key = f"{category}:{key}"
        with self._lock:
            return self._entries.pop(cache_key, None) is not None

    def cleanup(self) -> int:
        """Evict every entry that is no longer valid. Returns the number evicted."""
        with self._lock:
            stale = [k for k, entry in self._entries.items() if not self._is_valid(entry)]
            for cache_key in stale:
                entry = self._entries.pop(cache_key)
                self._category_stats(entry.category).evictions += 1
        if stale:
            logger.debug(f"Evicted {len(stale)} expired cache entries")
        return len(stale)

    def clear(self) -> None:
        """Drop all entries and statistics. In-flight fetches are left to finish."""
        with self._lock:
            self._entries.clear()
            self._stats.clear()
            self._failed_attempts.clear()
            self._total_requests = 0
            self._duplicates_avoided = 0
        logger.info("Cache cleared")

    def get_cache_stats(self) -> Dict[str, dict]:
        """Per-category counters and entry counts."""
        with self._lock:
            counts: Dict[str, int] = {}
            for entry in self._entries.values():
                counts[entry.category] = counts.get(entry.category, 0) + 1
            result = {}
            for category in sorted(set(self._stats) | set(counts)):
                stats = self._stats.get(category, _CategoryStats())
                lookups = stats.hits + stats.misses
                times = list(stats.response_times)
                result[category] = {
                    "entries": counts.get(category, 0),
                    "ttl": self.config.ttl_for(category),
                    "hits": stats.hits,
                    "misses": stats.misses,
                    "evictions": stats.evictions,
                    "background_refreshes": stats.background_refreshes,
                    "hit_rate": round(stats.hits / lookups * 100, 1) if lookups else 0.0,
                    "avg_response_ms": round(sum(times) / len(times), 2) if times else 0.0,
                }
            return result

    def get_performance_stats(self) -> dict:
        """Aggregate counters across categories plus recent failures."""
        with self._lock:
            hits = sum(s.hits for s in self._stats.values())
            misses = sum(s.misses for s in self._stats.values())
            lookups = hits + misses
            return {
                "hits": hits,
                "misses": misses,
                "evictions": sum(s.evictions for s in self._stats.values()),
                "background_refreshes": sum(s.background_refreshes for s in self._stats.values()),
                "hit_rate": round(hits / lookups * 100, 1) if lookups else 0.0,
                "total_requests": self._total_requests,
                "active_requests": self._active_requests,
                "duplicates_avoided": self._duplicates_avoided,
                "pending_requests": len(self._pending),
                "cache_size": len(self._entries),
                "response_times": {c: list(s.response_times) for c, s in self._stats.items()},
                "failed_attempts": [dict(attempt) for attempt in self._failed_attempts],
            }

    def wait_for_background_refreshes(self, timeout: Optional[float] = None) -> bool:
        """Block until in-flight background refreshes finish. Returns False on timeout."""
        with self._lock:
            futures = list(self._refreshing.values())
        if not futures:
            return True
        _, not_done = wait(futures, timeout=timeout)
        return not not_done

    def shutdown(self, wait_for_refreshes: bool = True) -> None:
        """
        Stop scheduling background refreshes and release the worker pool.

        Args:
            wait_for_refreshes: Block until running refreshes finish.
        """
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=wait_for_refreshes)

    def _is_valid(self, entry: _CacheEntry) -> bool:
        return self._clock() - entry.timestamp < entry.ttl

    def _next_sequence(self) -> int:
        self._sequence += 1
        return self._sequence

    def _category_stats(self, category: str) -> _CategoryStats:
        stats = self._stats.get(category)
        if stats is None:
            stats = _CategoryStats(response_times=deque(maxlen=self.config.response_time_history))
            self._stats[category] = stats
        return stats

    def _execute(
        self,
        cache_key: str,
        category: str,
        fetcher: Callable[[], T],
        sequence: int,
        pending: Optional[Future] = None,
    ) -> T:
        """Run ``fetcher`` outside the lock and store the result if it is the freshest."""
        with self._lock:
            self._active_requests += 1
        start = time.perf_counter()
        try:
            payload = fetcher()
        except BaseException as e:
            duration_ms = (time.perf_counter() - start) * 1000
            with self._lock:
                self._active_requests -= 1
                self._category_stats(category).response_times.append(duration_ms)
                self._failed_attempts.append(
                    {
                        "key": cache_key,
                        "category": category,
                        "error": str(e),
                        "duration_ms": round(duration_ms, 2),
                        "timestamp": time.time(),
                    }
                )
                if pending is not None and self._pending.get(cache_key) is pending:
                    del self._pending[cache_key]
            logger.warning(f"Fetch failed for {cache_key} ({category}) after {duration_ms:.0f}ms: {e}")
            raise

        duration_ms = (time.perf_counter() - start) * 1000
        with self._lock:
            self._active_requests -= 1
            self._category_stats(category).response_times.append(duration_ms)
            current = self._entries.get(cache_key)
            if current is None or current.sequence < sequence:
                self._entries[cache_key] = _CacheEntry(
                    payload=payload,
                    timestamp=self._clock(),
                    ttl=self.config.ttl_for(category),
                    category=category,
                    sequence=sequence,
                )
            else:
                logger.debug(f"Discarding older result for {cache_key} (seq {sequence} < {current.sequence})")
            if pending is not None and self._pending.get(cache_key) is pending:
                del self._pending[cache_key]
        logger.debug(f"Fetched {cache_key} in {duration_ms:.0f}ms")
        return payload

    def _schedule_refresh(self, cache_key: str, category: str, fetcher: Callable[[], T], sequence: int) -> None:
        with self._lock:
            done = self._refreshing.get(cache_key)
        try:
            self._executor.submit(self._refresh, cache_key, category, fetcher, sequence, done)
        except RuntimeError as e:
            # executor already shut down
            logger.debug(f"Background refresh not scheduled for {cache_key}: {e}")
            with self._lock:
                self._refreshing.pop(cache_key, None)
            done.set_result(None)

    def _refresh(self, cache_key: str, category: str, fetcher: Callable[[], T], sequence: int, done: Future) -> None:
        try:
            self._execute(cache_key, category, fetcher, sequence)
            with self._lock:
                self._category_stats(category).background_refreshes += 1
            logger.debug(f"Background refresh completed for {cache_key}")
        except Exception as e:
            logger.warning(f"Background refresh failed for {cache_key}: {e}")
        finally:
            with self._lock:
                self._refreshing.pop(cache_key, None)
            done.set_result(None)
