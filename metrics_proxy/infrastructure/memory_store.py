from __future__ import annotations

import logging
import threading
import time
from dataclasses import replace
from typing import Any, Callable, Optional, Union

from metrics_proxy.domain.cache_item import CacheItem
from metrics_proxy.domain.eviction import EvictionPolicy, EvictionStrategy, resolve_strategy

from .locks import ReadWriteLock
from .stats import StatsCollector, StatsSnapshot

logger = logging.getLogger(__name__)

DEFAULT_TTL = 60.0
DEFAULT_MAX_ITEMS = 1000
DEFAULT_CLEANUP_INTERVAL = 300.0
STOP_JOIN_TIMEOUT = 5.0

EvictionCallback = Callable[[str, Any], None]


class CacheStore:
    """Thread-safe in-memory TTL cache with size-bounded eviction.

    Entries live in a plain dict guarded by a single reader-writer lock.
    Expired entries are dropped lazily on read and by a background sweep
    thread. When ``max_items`` is reached, setting a new key evicts under
    ``policy`` first; an unsupported policy makes that ``set`` raise
    ``UnsupportedEvictionPolicyError`` and leaves the store untouched.

    ``on_evict(key, value)`` runs after the lock is released, once for every
    entry removed by eviction, expiry, ``delete`` or ``flush``.
    """

    def __init__(
        self,
        default_ttl: Optional[float] = None,
        max_items: Optional[int] = None,
        cleanup_interval: Optional[float] = None,
        policy: Union[EvictionPolicy, str] = EvictionPolicy.LRU,
        on_evict: Optional[EvictionCallback] = None,
        stats_enabled: bool = True,
        clock: Optional[Callable[[], float]] = None,
        start_cleaner: bool = True,
    ):
        resolved_max_items = DEFAULT_MAX_ITEMS if max_items is None else max_items
        if resolved_max_items < 0:
            raise ValueError(f"max_items must be >= 0, got {resolved_max_items}")

        resolved_cleanup_interval = (
            DEFAULT_CLEANUP_INTERVAL if cleanup_interval is None else cleanup_interval
        )

        self.default_ttl = DEFAULT_TTL if default_ttl is None else default_ttl
        self.max_items = resolved_max_items
        self.cleanup_interval = resolved_cleanup_interval
        self.policy = EvictionPolicy.parse(policy)

        self._entries: dict[str, CacheItem] = {}
        self._lock = ReadWriteLock()
        self._stats = StatsCollector(enabled=stats_enabled)
        self._on_evict = on_evict
        self._clock = clock or time.monotonic

        self._stop_event = threading.Event()
        self.cleaner_thread: Optional[threading.Thread] = None
        if start_cleaner and self.cleanup_interval > 0:
            self.cleaner_thread = threading.Thread(
                target=self._background_cleanup, name="cache-sweeper", daemon=True
            )
            self.cleaner_thread.start()

    # writes

    def set(self, key: str, value: Any) -> None:
        self.set_with_expiration(key, value, self.default_ttl)

    def set_with_expiration(self, key: str, value: Any, ttl: Optional[float]) -> None:
        """Store ``value``; a ttl of None, zero or below never expires."""
        with self._lock.write():
            removed: list[tuple[str, Any]] = []
            if key in self._entries:
                # re-insert so dict order keeps tracking (re)creation order
                del self._entries[key]
            else:
                removed = self._make_room_locked()
            self._entries[key] = CacheItem.create(value, self._clock(), ttl)
        self._notify(removed)

    def delete(self, key: str) -> bool:
        with self._lock.write():
            item = self._entries.pop(key, None)
        if item is None:
            return False
        self._notify([(key, item.value)])
        return True

    def flush(self) -> int:
        with self._lock.write():
            removed = [(key, item.value) for key, item in self._entries.items()]
            self._entries.clear()
        self._notify(removed)
        return len(removed)

    def delete_expired(self) -> int:
        """Remove every expired entry and return how many were dropped."""
        with self._lock.write():
            now = self._clock()
            expired_keys = [key for key, item in self._entries.items() if item.is_expired(now)]
            removed = [(key, self._entries.pop(key).value) for key in expired_keys]
        self._stats.record_expired(len(removed))
        self._notify(removed)
        return len(removed)

    def update_ttl(self, ttl: float) -> None:
        with self._lock.write():
            self.default_ttl = ttl

    def update_max_items(self, max_items: int) -> None:
        if max_items < 0:
            raise ValueError(f"max_items must be >= 0, got {max_items}")
        with self._lock.write():
            removed: list[tuple[str, Any]] = []
            overflow = len(self._entries) - max_items
            if max_items > 0 and overflow > 0:
                removed = self._evict_locked(resolve_strategy(self.policy), overflow)
            self.max_items = max_items
        self._notify(removed)

    # reads

    def get(self, key: str) -> tuple[Any, bool]:
        item = self._lookup(key)
        if item is None:
            return None, False
        return item.value, True

    def get_item(self, key: str) -> tuple[Optional[CacheItem], bool]:
        item = self._lookup(key)
        return item, item is not None

    def has(self, key: str) -> bool:
        with self._lock.read():
            item = self._entries.get(key)
            return item is not None and not item.is_expired(self._clock())

    def ttl(self, key: str) -> tuple[float, bool]:
        with self._lock.read():
            item = self._entries.get(key)
            now = self._clock()
            if item is None or item.is_expired(now):
                return 0.0, False
            return item.remaining(now), True

    def count(self) -> int:
        with self._lock.read():
            return len(self._entries)

    def get_all_keys(self) -> list[str]:
        with self._lock.read():
            now = self._clock()
            return [key for key, item in self._entries.items() if not item.is_expired(now)]

    def items(self) -> dict[str, Any]:
        with self._lock.read():
            now = self._clock()
            return {
                key: item.value
                for key, item in self._entries.items()
                if not item.is_expired(now)
            }

    # stats

    @property
    def stats_enabled(self) -> bool:
        return self._stats.enabled

    def enable_stats(self) -> None:
        self._stats.enable()

    def disable_stats(self) -> None:
        self._stats.disable()

    def reset_stats(self) -> None:
        self._stats.reset()

    def stats_snapshot(self) -> StatsSnapshot:
        return self._stats.snapshot()

    def stats(self) -> dict[str, Any]:
        payload = self._stats.snapshot().as_dict()
        payload.update(
            {
                "size": self.count(),
                "max_items": self.max_items,
                "policy": getattr(self.policy, "value", self.policy),
                "stats_enabled": self._stats.enabled,
            }
        )
        return payload

    # lifecycle

    def stop(self) -> None:
        """Stop the sweep thread. Safe to call repeatedly or without a sweeper."""
        if self._stop_event.is_set():
            return
        self._stop_event.set()
        thread = self.cleaner_thread
        if thread is not None and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=STOP_JOIN_TIMEOUT)

    close = stop

    # internals

    def _lookup(self, key: str) -> Optional[CacheItem]:
        with self._lock.read():
            item = self._entries.get(key)
            expired = item is not None and item.is_expired(self._clock())

        if item is None:
            self._stats.record_miss()
            logger.debug("cache miss key=%r", key)
            return None

        if expired:
            self._stats.record_miss()
            logger.debug("cache miss key=%r (expired)", key)
            self._expire(key)
            return None

        self._stats.record_hit()
        with self._lock.write():
            # a concurrent delete or overwrite turns the restamp into a no-op
            if self._entries.get(key) is item:
                item.touch(self._clock())
            snapshot = replace(item)
        logger.debug("cache hit key=%r", key)
        return snapshot

    def _expire(self, key: str) -> None:
        with self._lock.write():
            item = self._entries.get(key)
            if item is None or not item.is_expired(self._clock()):
                return
            del self._entries[key]
        self._stats.record_expired()
        self._notify([(key, item.value)])

    def _make_room_locked(self) -> list[tuple[str, Any]]:
        if self.max_items <= 0:
            return []
        overflow = len(self._entries) + 1 - self.max_items
        if overflow <= 0:
            return []
        return self._evict_locked(resolve_strategy(self.policy), overflow)

    def _evict_locked(self, strategy: EvictionStrategy, count: int) -> list[tuple[str, Any]]:
        victims = strategy.select_victims(self._entries, count)
        removed = [(key, self._entries.pop(key).value) for key in victims]
        self._stats.record_evictions(len(removed))
        if removed:
            logger.debug(
                "evicted %d entr%s under %s: %s",
                len(removed),
                "y" if len(removed) == 1 else "ies",
                strategy.name,
                [key for key, _ in removed],
            )
        return removed

    def _notify(self, removed: list[tuple[str, Any]]) -> None:
        if self._on_evict is None:
            return
        for key, value in removed:
            try:
                self._on_evict(key, value)
            except Exception:
                logger.exception("Eviction callback failed for key %r", key)

    def _background_cleanup(self) -> None:
        while not self._stop_event.wait(self.cleanup_interval):
            try:
                removed = self.delete_expired()
                self._stats.record_cleanup_run()
                if removed:
                    logger.debug("cache sweep removed %d expired entries", removed)
            except Exception:
                logger.exception("Error in background cache cleanup")
