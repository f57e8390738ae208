"""
Historian
Buffers tag samples, flushes them to the durable sample store in batches and
serves range queries, aggregates and chart data from memory merged with
storage.

Features:
- Size-triggered and timed (asyncio) flushing
- Failed batches re-queued in order, with exponential flush backoff
- Per-tag read cache with an eviction watermark
- Queries de-duplicated across buffer, in-flight batch, cache and storage
"""
import asyncio
import logging
import math
import threading
import time
from collections import deque
from itertools import chain
from typing import Any, Callable, Deque, Dict, List, Optional

from scada.core.error_handling import HistorianStorageError, StorageError
from scada.services.historian.aggregation import aggregate_samples, bucket_samples
from scada.services.historian.sample import AggregateResult, ChartPoint, Sample
from scada.services.tagbus.records import Quality

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE = 7 * 24 * 60 * 60  # seconds


class Historian:
    """
    Time-series historian.

    Usage:
        historian = Historian(SQLiteSampleStore.open("data/historian.db"))
        await historian.start()
        historian.subscribe_to(tag_bus, "[default]Plant.*")
        samples = historian.query("[default]Plant/PLC1/IR100", t0, t1)
    """

    def __init__(
        self,
        sample_store=None,
        buffer_size: int = 100,
        flush_interval_ms: int = 5000,
        max_backoff_ms: int = 60000,
        cache_limit: int = 1000,
        query_limit: int = 10000
    ):
        """
        Initialize historian.

        Args:
            sample_store: Durable store (SQLiteSampleStore); None keeps
                samples in memory only
            buffer_size: Flush as soon as this many samples are buffered
            flush_interval_ms: Auto-flush interval
            max_backoff_ms: Upper bound of the auto-flush delay after failures
            cache_limit: Samples kept in memory per tag
            query_limit: Default maximum samples returned by query()
        """
        self.sample_store = sample_store
        self.buffer_size = buffer_size
        self.flush_interval_ms = flush_interval_ms
        self.max_backoff_ms = max_backoff_ms
        self.cache_limit = cache_limit
        self.query_limit = query_limit

        self._buffer: Deque[Sample] = deque()
        self._in_flight: List[Sample] = []
        self._cache: Dict[str, Deque[Sample]] = {}
        # Newest timestamp per tag that may exist outside the cache
        self._watermarks: Dict[str, float] = {}
        self._default_watermark = -math.inf

        self._lock = threading.Lock()
        self._flush_lock = threading.Lock()
        self._running = False
        self._flush_task: Optional[asyncio.Task] = None
        self._consecutive_failures = 0

        self.stats = {
            'total_received': 0,
            'total_written': 0,
            'flush_count': 0,
            'flush_failures': 0,
            'last_flush_time': None
        }

        self._load_watermarks()

    def _load_watermarks(self) -> None:
        if self.sample_store is None:
            return
        try:
            self._watermarks.update(self.sample_store.max_timestamps())
        except StorageError as e:
            # Unknown durable contents: every query consults storage
            self._default_watermark = math.inf
            logger.error(f"Could not read stored tag range, queries will use storage: {e.message}")

    def _watermark(self, tag: str) -> float:
        return self._watermarks.get(tag, self._default_watermark)

    # ── Ingest ───────────────────────────────────────────────

    def store(
        self,
        tag: str,
        value: Any,
        timestamp: Optional[float] = None,
        quality: Quality = Quality.GOOD
    ) -> Sample:
        """
        Record a sample.

        When this fills the buffer the flush runs here, on the caller's
        thread, and blocks it for the store write. That is the scan worker
        thread when fed through ``subscribe_to``. Coroutines should call
        this through ``asyncio.to_thread`` once ``buffer_size`` can be
        reached. The flush is skipped when another one is in progress.

        Args:
            tag: Tag name (full tag bus path when fed by a subscription)
            value: Sample value
            timestamp: Unix seconds (default now)
            quality: Data quality

        Returns:
            The stored sample
        """
        sample = Sample(
            tag=tag,
            value=value,
            timestamp=time.time() if timestamp is None else float(timestamp),
            quality=Quality(quality),
        )

        with self._lock:
            self._buffer.append(sample)
            cache = self._cache.setdefault(tag, deque())
            cache.append(sample)
            if len(cache) > self.cache_limit:
                evicted = cache.popleft()
                self._watermarks[tag] = max(self._watermark(tag), evicted.timestamp)
            self.stats['total_received'] += 1
            buffer_full = len(self._buffer) >= self.buffer_size

        if buffer_full:
            # A flush already in progress will be followed by the timed one
            self.flush(blocking=False)
        return sample

    def subscribe_to(self, tag_bus, pattern: str = "*") -> Callable[[], None]:
        """
        Historise every tag bus write matching ``pattern``.

        Returns:
            Unsubscribe function
        """
        def on_write(path: str, record) -> None:
            self.store(path, record.value, record.timestamp, record.quality)

        unsubscribe = tag_bus.subscribe(pattern, on_write)
        logger.info(f"Historian subscribed to tag bus pattern '{pattern}'")
        return unsubscribe

    # ── Flushing ─────────────────────────────────────────────

    def flush(self, blocking: bool = True) -> int:
        """
        Write the buffered samples to the sample store.

        On failure the batch goes back to the front of the buffer in its
        original order and is retried by the next flush.

        Args:
            blocking: Wait for a flush already in progress

        Returns:
            Number of samples flushed
        """
        if not self._flush_lock.acquire(blocking=blocking):
            return 0

        try:
            with self._lock:
                if not self._buffer:
                    return 0
                batch = list(self._buffer)
                self._buffer.clear()
                self._in_flight = batch

            try:
                if self.sample_store is not None:
                    self.sample_store.append(batch)
            except Exception as e:
                with self._lock:
                    self._buffer.extendleft(reversed(batch))
                    self._in_flight = []
                self._consecutive_failures += 1
                self.stats['flush_failures'] += 1
                logger.error(
                    f"Historian flush failed, {len(batch)} samples re-queued "
                    f"(attempt {self._consecutive_failures}): {e}"
                )
                return 0

            with self._lock:
                self._in_flight = []
            self._consecutive_failures = 0
            self.stats['total_written'] += len(batch)
            self.stats['flush_count'] += 1
            self.stats['last_flush_time'] = time.time()
            logger.debug(f"Flushed {len(batch)} samples to historian storage")
            return len(batch)
        finally:
            self._flush_lock.release()

    def next_flush_delay(self) -> float:
        """Seconds until the next timed flush, backing off after failures"""
        delay_ms = self.flush_interval_ms
        if self._consecutive_failures:
            delay_ms = min(
                self.flush_interval_ms * (2 ** self._consecutive_failures),
                self.max_backoff_ms
            )
        return delay_ms / 1000.0

    async def start(self) -> None:
        """Start the auto-flush loop"""
        if self._running:
            return
        self._running = True
        self._flush_task = asyncio.create_task(self._auto_flush_loop())
        logger.info(
            f"Historian started: buffer_size={self.buffer_size}, "
            f"flush_interval={self.flush_interval_ms}ms, cache_limit={self.cache_limit}"
        )

    async def stop(self) -> None:
        """Stop the auto-flush loop and flush remaining samples"""
        self._running = False
        if self._flush_task:
            self._flush_task.cancel()
            try:
                await self._flush_task
            except asyncio.CancelledError:
                pass
            self._flush_task = None

        await asyncio.to_thread(self.flush)
        remaining = len(self._buffer)
        if remaining:
            logger.warning(f"Historian stopped with {remaining} unflushed samples")
        else:
            logger.info("Historian stopped")

    async def _auto_flush_loop(self) -> None:
        """Background task to flush the buffer at intervals"""
        while self._running:
            try:
                await asyncio.sleep(self.next_flush_delay())
                await asyncio.to_thread(self.flush)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in historian auto-flush loop: {e}")

    # ── Queries ──────────────────────────────────────────────

    def _collect(self, tag: str, start: float, end: float, limit: Optional[int]) -> List[Sample]:
        if start > end:
            return []

        def in_range(sample: Sample) -> bool:
            return sample.tag == tag and start <= sample.timestamp <= end

        # Snapshot memory before reading storage: a sample flushed in
        # between is then seen in both places and de-duplicated
        with self._lock:
            memory = [
                s for s in chain(self._in_flight, self._buffer, self._cache.get(tag, ()))
                if in_range(s)
            ]
            needs_store = self.sample_store is not None and start <= self._watermark(tag)

        merged: Dict[str, Sample] = {}
        if needs_store:
            try:
                durable = self.sample_store.query(tag, start, end, limit)
            except StorageError as e:
                raise HistorianStorageError(
                    f"Query for '{tag}' needs storage, which is unavailable",
                    details={'tag': tag, 'start': start, 'end': end, 'cause': e.message}
                ) from e
            merged.update((s.sample_id, s) for s in durable)
        merged.update((s.sample_id, s) for s in memory)

        samples = sorted(merged.values(), key=lambda s: s.timestamp)
        return samples if limit is None else samples[:limit]

    def query(self, tag: str, start: float, end: float, limit: Optional[int] = None) -> List[Sample]:
        """
        Samples of a tag with ``start <= timestamp <= end``, oldest first.

        Args:
            limit: Maximum samples (default ``query_limit``)

        Raises:
            HistorianStorageError: If the range reaches into storage and
                storage cannot be read
        """
        return self._collect(tag, start, end, self.query_limit if limit is None else limit)

    def get_latest(self, tag: str) -> Optional[Sample]:
        """Most recently stored sample of a tag"""
        with self._lock:
            cache = self._cache.get(tag)
            if cache:
                return cache[-1]

        if self.sample_store is None:
            return None
        try:
            return self.sample_store.latest(tag)
        except StorageError as e:
            raise HistorianStorageError(
                f"Latest sample of '{tag}' unavailable", details={'tag': tag, 'cause': e.message}
            ) from e

    def aggregate(self, tag: str, start: float, end: float) -> Optional[AggregateResult]:
        """Statistics over the numeric samples ``query`` returns; None when there are none"""
        return aggregate_samples(tag, self.query(tag, start, end), start, end)

    def chart_data(self, tag: str, start: float, end: float, buckets: int = 100) -> List[ChartPoint]:
        """One averaged point per non-empty window of ``[start, end)`` over ``query``"""
        return bucket_samples(self.query(tag, start, end), start, end, buckets)

    def export(self, tag: str, start: float, end: float) -> Dict[str, Any]:
        samples = self.query(tag, start, end)
        return {
            "tag": tag,
            "start_time": start,
            "end_time": end,
            "export_time": time.time(),
            "samples": [s.to_dict() for s in samples],
        }

    def list_tags(self) -> List[str]:
        """Sorted tags known to storage or the cache"""
        with self._lock:
            tags = set(self._cache)
        if self.sample_store is not None:
            try:
                tags.update(self.sample_store.list_tags())
            except StorageError as e:
                logger.error(f"Listing stored tags failed, returning cached tags only: {e.message}")
        return sorted(tags)

    # ── Maintenance ──────────────────────────────────────────

    def cleanup(self, max_age: float = DEFAULT_MAX_AGE) -> int:
        """
        Delete stored samples older than ``max_age`` seconds and compact
        the store when anything was removed.

        The in-memory cache is not affected.

        Returns:
            Number of samples deleted
        """
        if self.sample_store is None:
            return 0
        cutoff = time.time() - max_age
        deleted = self.sample_store.delete_older_than(cutoff)
        if deleted:
            self.sample_store.compact()
        return deleted

    def get_statistics(self) -> Dict[str, Any]:
        """Get historian statistics"""
        with self._lock:
            buffered = len(self._buffer)
            in_flight = len(self._in_flight)
            cached_tags = len(self._cache)
            cached_samples = sum(len(c) for c in self._cache.values())

        return {
            'running': self._running,
            'buffer_size': buffered,
            'buffer_threshold': self.buffer_size,
            'in_flight': in_flight,
            'cached_tags': cached_tags,
            'cached_samples': cached_samples,
            'consecutive_failures': self._consecutive_failures,
            'next_flush_in_seconds': self.next_flush_delay(),
            **self.stats,
        }
