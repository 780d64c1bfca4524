from __future__ import annotations

from enum import Enum
from typing import Callable, Iterable, Mapping, Protocol, Union

from .cache_item import CacheItem
from .errors import UnsupportedEvictionPolicyError


class EvictionPolicy(str, Enum):
    """Victim selection when the store is at capacity.

    LRU: evict by oldest ``last_accessed_at``.
    OLDEST: evict by oldest ``created_at``; reads do not refresh.
    LFU: recognised so configuration can name it, but not implemented.
    """

    LRU = "LRU"
    OLDEST = "OLDEST"
    LFU = "LFU"

    @classmethod
    def parse(cls, value: Union[str, "EvictionPolicy"]) -> Union["EvictionPolicy", str]:
        """Normalise to a member when possible, otherwise keep the raw string.

        Unknown values are only rejected once an eviction actually needs them.
        """
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().upper()
        try:
            return cls(normalized)
        except ValueError:
            return normalized


class EvictionStrategy(Protocol):
    name: str

    def select_victims(self, entries: Mapping[str, CacheItem], count: int) -> list[str]: ...


class TimestampEvictionStrategy:
    def __init__(self, name: str, timestamp: Callable[[CacheItem], float]):
        self.name = name
        self._timestamp = timestamp

    def select_victims(self, entries: Mapping[str, CacheItem], count: int) -> list[str]:
        if count <= 0 or not entries:
            return []
        candidates: Iterable[tuple[str, float]] = (
            (key, self._timestamp(item)) for key, item in entries.items()
        )
        # sorted() is stable: equal timestamps keep insertion order
        ordered = sorted(candidates, key=lambda candidate: candidate[1])
        return [key for key, _ in ordered[:count]]


LRU_STRATEGY = TimestampEvictionStrategy("LRU", lambda item: item.last_accessed_at)
OLDEST_STRATEGY = TimestampEvictionStrategy("OLDEST", lambda item: item.created_at)

_STRATEGIES: dict[EvictionPolicy, EvictionStrategy] = {
    EvictionPolicy.LRU: LRU_STRATEGY,
    EvictionPolicy.OLDEST: OLDEST_STRATEGY,
}


def resolve_strategy(policy: Union[EvictionPolicy, str]) -> EvictionStrategy:
    parsed = EvictionPolicy.parse(policy)
    if parsed is EvictionPolicy.LFU:
        raise UnsupportedEvictionPolicyError(parsed.value, reason="unimplemented")
    if not isinstance(parsed, EvictionPolicy):
        raise UnsupportedEvictionPolicyError(str(parsed))
    return _STRATEGIES[parsed]
