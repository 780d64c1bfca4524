from __future__ import annotations

import threading
from dataclasses import asdict, dataclass
from typing import Any


@dataclass(frozen=True)
class StatsSnapshot:
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    cleanup_runs: int = 0
    expired: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    def as_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["hit_rate"] = self.hit_rate
        return payload


class StatsCollector:
    """Counters for the cache store.

    Guarded by a private lock so readers on the store's shared lock can
    count misses without upgrading. Disabling stops counting but keeps the
    totals collected so far.
    """

    def __init__(self, enabled: bool = True) -> None:
        self._lock = threading.Lock()
        self._enabled = enabled
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._cleanup_runs = 0
        self._expired = 0

    @property
    def enabled(self) -> bool:
        return self._enabled

    def enable(self) -> None:
        self._enabled = True

    def disable(self) -> None:
        self._enabled = False

    def record_hit(self) -> None:
        if self._enabled:
            with self._lock:
                self._hits += 1

    def record_miss(self) -> None:
        if self._enabled:
            with self._lock:
                self._misses += 1

    def record_evictions(self, count: int = 1) -> None:
        if self._enabled and count:
            with self._lock:
                self._evictions += count

    def record_expired(self, count: int = 1) -> None:
        if self._enabled and count:
            with self._lock:
                self._expired += count

    def record_cleanup_run(self) -> None:
        if self._enabled:
            with self._lock:
                self._cleanup_runs += 1

    def reset(self) -> None:
        with self._lock:
            self._hits = 0
            self._misses = 0
            self._evictions = 0
            self._cleanup_runs = 0
            self._expired = 0

    def snapshot(self) -> StatsSnapshot:
        with self._lock:
            return StatsSnapshot(
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
                cleanup_runs=self._cleanup_runs,
                expired=self._expired,
            )
