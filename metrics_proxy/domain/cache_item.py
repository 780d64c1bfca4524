from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


@dataclass
class CacheItem:
    value: Any
    created_at: float
    last_accessed_at: float
    expires_at: Optional[float] = None

    @classmethod
    def create(cls, value: Any, now: float, ttl: Optional[float] = None) -> "CacheItem":
        """Build a fresh item; a ttl of None, zero or below never expires."""
        expires_at = now + ttl if ttl is not None and ttl > 0 else None
        return cls(value=value, created_at=now, last_accessed_at=now, expires_at=expires_at)

    def is_expired(self, now: float) -> bool:
        if self.expires_at is None:
            return False
        return now > self.expires_at

    def remaining(self, now: float) -> float:
        if self.expires_at is None:
            return 0.0
        return max(0.0, self.expires_at - now)

    def touch(self, now: float) -> None:
        # clock readings can only move forward for this item
        if now > self.last_accessed_at:
            self.last_accessed_at = now
