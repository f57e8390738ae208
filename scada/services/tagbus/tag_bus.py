"""
Tag Bus
Hierarchical, path-addressed store of quality-stamped values with
subscriptions and a bounded per-path change history.

Paths use the ``[provider]Folder/Sub/Tag`` form; the provider may be
omitted and then defaults to the bus provider.
"""
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, Iterable, List, Mapping, Set, Tuple

from scada.services.tagbus.records import (
    DEFAULT_PROVIDER,
    HistoryEntry,
    Quality,
    TagRecord,
    empty_record,
    normalize_path,
)

logger = logging.getLogger(__name__)

TagCallback = Callable[[str, TagRecord], None]

GLOBAL_PATTERN = "*"
WILDCARD_SUFFIX = ".*"


@dataclass(eq=False)
class Subscription:
    """A registered (pattern, callback) pair"""
    pattern: str
    key: str
    callback: TagCallback


class TagBus:
    """
    Thread-safe tag database shared by every producer and consumer.

    Features:
    - Implicit tag creation on first write
    - Exact, global (``*``) and prefix (``prefix.*``) subscriptions
    - Bounded FIFO history ring per path
    - Synchronous notification with per-callback error isolation

    Notification order for a write is: exact-path subscribers, global
    subscribers, then prefix subscribers from the longest matching prefix
    to the shortest. Writes to the same path notify in write order; a write
    made while that path is already notifying (from a callback or another
    thread) is queued and delivered by the thread that is notifying.
    """

    def __init__(
        self,
        provider: str = DEFAULT_PROVIDER,
        history_capacity: int = 1000,
        slow_callback_ms: float = 50.0
    ):
        """
        Initialize tag bus.

        Args:
            provider: Provider used for paths written without ``[provider]``
            history_capacity: Entries kept per path before the oldest is evicted
            slow_callback_ms: Callbacks slower than this are logged as warnings
        """
        if history_capacity < 1:
            raise ValueError("history_capacity must be >= 1")

        self.provider = provider
        self.history_capacity = history_capacity
        self.slow_callback_ms = slow_callback_ms

        self._lock = threading.Lock()
        self._tags: Dict[str, TagRecord] = {}
        self._history: Dict[str, Deque[HistoryEntry]] = {}
        # Per-path notification queues and the paths currently being delivered
        self._pending: Dict[str, Deque[Tuple[TagRecord, List[Subscription]]]] = {}
        self._dispatching: Set[str] = set()

        self._exact: Dict[str, List[Subscription]] = {}
        self._global: List[Subscription] = []
        self._prefix: Dict[str, List[Subscription]] = {}

        self.stats = {
            'reads': 0,
            'writes': 0,
            'notifications': 0,
            'callback_errors': 0,
            'slow_callbacks': 0
        }

    def full_path(self, path: str) -> str:
        """Canonical ``[provider]path`` form of a path"""
        return normalize_path(path, self.provider)

    def _prefix_key(self, prefix: str) -> str:
        """Full-path prefix; empty matches every provider"""
        return self.full_path(prefix) if prefix else ""

    # ── Reads ────────────────────────────────────────────────

    def read(self, path: str) -> TagRecord:
        """
        Read the latest record of a tag.

        Returns:
            A copy of the record, or a BAD-quality zero record if the
            tag was never written
        """
        key = self.full_path(path)
        with self._lock:
            self.stats['reads'] += 1
            record = self._tags.get(key)
            return record.copy() if record else empty_record()

    def read_many(self, paths: Iterable[str]) -> List[TagRecord]:
        """Read several tags, preserving the order of ``paths``"""
        return [self.read(path) for path in paths]

    def browse(self, prefix: str = "") -> List[str]:
        """
        List known tags under a prefix.

        An empty prefix lists every provider; ``[edge]`` lists one.

        Returns:
            Lexicographically sorted full paths
        """
        base = self._prefix_key(prefix)
        with self._lock:
            return sorted(key for key in self._tags if key.startswith(base))

    def history(self, path: str, limit: int = 100) -> List[HistoryEntry]:
        """
        Most recent history entries for a path, newest last.

        Args:
            path: Tag path
            limit: Maximum number of entries returned
        """
        if limit <= 0:
            return []
        key = self.full_path(path)
        with self._lock:
            ring = self._history.get(key)
            if not ring:
                return []
            entries = list(ring)
        return entries[-limit:]

    # ── Writes ───────────────────────────────────────────────

    def write(self, path: str, value: Any, quality: Quality = Quality.GOOD) -> TagRecord:
        """
        Write a value to a tag and notify subscribers.

        Args:
            path: Tag path (created on first write)
            value: New value
            quality: Quality stamp (GOOD unless the producer knows better)

        Returns:
            Copy of the stored record
        """
        key = self.full_path(path)

        with self._lock:
            previous = self._tags.get(key)
            record = TagRecord(value=value, quality=Quality(quality), timestamp=time.time())
            self._tags[key] = record

            ring = self._history.get(key)
            if ring is None:
                ring = deque(maxlen=self.history_capacity)
                self._history[key] = ring
            ring.append(HistoryEntry(
                path=key,
                old_value=previous.value if previous else None,
                new_value=value,
                timestamp=record.timestamp
            ))

            self.stats['writes'] += 1
            snapshot = record.copy()
            self._pending.setdefault(key, deque()).append(
                (record.copy(), self._matching_subscriptions(key))
            )
            # Another thread (or an outer frame of this one) already
            # delivers this path's notifications in order
            deliver = key not in self._dispatching
            if deliver:
                self._dispatching.add(key)

        if deliver:
            self._dispatch(key)

        return snapshot

    def write_many(self, paths: List[str], values: List[Any]) -> int:
        """
        Write ``values[i]`` to ``paths[i]``.

        Returns:
            Number of writes applied
        """
        if len(paths) != len(values):
            raise ValueError("paths and values must have the same length")
        for path, value in zip(paths, values):
            self.write(path, value)
        return len(paths)

    def batch(self, updates: Mapping[str, Any]) -> int:
        """
        Apply several writes in the mapping's iteration order.

        Each write notifies and records history on its own; a batch is
        not a transaction and is never rolled back.

        Returns:
            Number of writes applied
        """
        count = 0
        for path, value in updates.items():
            self.write(path, value)
            count += 1
        return count

    # ── Subscriptions ────────────────────────────────────────

    def subscribe(self, pattern: str, callback: TagCallback) -> Callable[[], None]:
        """
        Subscribe to tag writes.

        Args:
            pattern: Exact path, ``*`` for every write, or ``prefix.*`` for
                     every write whose path starts with ``prefix``
            callback: Called as ``callback(full_path, record)``

        Returns:
            Function that removes this subscription (safe to call twice)
        """
        if pattern == GLOBAL_PATTERN:
            subscription = Subscription(pattern, GLOBAL_PATTERN, callback)
            with self._lock:
                self._global.append(subscription)
        elif pattern.endswith(WILDCARD_SUFFIX):
            key = self._prefix_key(pattern[:-len(WILDCARD_SUFFIX)])
            subscription = Subscription(pattern, key, callback)
            with self._lock:
                self._prefix.setdefault(key, []).append(subscription)
        else:
            key = self.full_path(pattern)
            subscription = Subscription(pattern, key, callback)
            with self._lock:
                self._exact.setdefault(key, []).append(subscription)

        logger.debug(f"Subscribed to '{pattern}'")

        def unsubscribe() -> None:
            self._remove(subscription)

        return unsubscribe

    def subscriber_count(self) -> int:
        with self._lock:
            return (
                len(self._global)
                + sum(len(subs) for subs in self._exact.values())
                + sum(len(subs) for subs in self._prefix.values())
            )

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription.pattern == GLOBAL_PATTERN:
                bucket = self._global
            elif subscription.pattern.endswith(WILDCARD_SUFFIX):
                bucket = self._prefix.get(subscription.key, [])
            else:
                bucket = self._exact.get(subscription.key, [])

            if subscription in bucket:
                bucket.remove(subscription)

    def _matching_subscriptions(self, key: str) -> List[Subscription]:
        """Subscribers for a write, in notification order (caller holds lock)"""
        ordered = list(self._exact.get(key, ()))
        ordered.extend(self._global)

        prefixes = sorted(
            (prefix for prefix in self._prefix if key.startswith(prefix)),
            key=len,
            reverse=True
        )
        for prefix in prefixes:
            ordered.extend(self._prefix[prefix])
        return ordered

    def _notify(self, key: str, record: TagRecord, subscribers: List[Subscription]) -> None:
        for subscription in subscribers:
            started = time.monotonic()
            failed = False
            try:
                subscription.callback(key, record.copy())
            except Exception:
                failed = True
                logger.exception(
                    f"Tag subscription error for '{subscription.pattern}' on {key}"
                )
            finally:
                elapsed_ms = (time.monotonic() - started) * 1000.0
                slow = elapsed_ms > self.slow_callback_ms
                with self._lock:
                    self.stats['notifications'] += 1
                    self.stats['callback_errors'] += int(failed)
                    self.stats['slow_callbacks'] += int(slow)
                if slow:
                    logger.warning(
                        f"Slow tag subscriber '{subscription.pattern}' on {key}: "
                        f"{elapsed_ms:.1f} ms"
                    )

    def _dispatch(self, key: str) -> None:
        """
        Deliver the queued notifications of a path until its queue is empty.

        Only one thread dispatches a path at a time and no lock is held
        while callbacks run, so callbacks may write any path.
        """
        try:
            while True:
                with self._lock:
                    queue = self._pending.get(key)
                    if not queue:
                        self._pending.pop(key, None)
                        self._dispatching.discard(key)
                        return
                    record, subscribers = queue.popleft()
                self._notify(key, record, subscribers)
        except BaseException:
            # Leave the rest of the queue to the next writer of this path
            with self._lock:
                self._dispatching.discard(key)
            raise

    # ── Snapshot ─────────────────────────────────────────────

    def export(self) -> Dict[str, dict]:
        """Snapshot of every current tag value keyed by full path"""
        with self._lock:
            return {key: record.to_dict() for key, record in self._tags.items()}

    def import_tags(self, data: Mapping[str, dict]) -> int:
        """
        Restore current values from an ``export()`` snapshot.

        Imported values do not notify subscribers or touch history.
        """
        with self._lock:
            for path, record in data.items():
                self._tags[self.full_path(path)] = TagRecord.from_dict(record)
        logger.info(f"Imported {len(data)} tags")
        return len(data)

    def get_statistics(self) -> Dict[str, Any]:
        with self._lock:
            tag_count = len(self._tags)
        return {
            'tag_count': tag_count,
            'subscriber_count': self.subscriber_count(),
            **self.stats
        }
