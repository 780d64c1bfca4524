from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Protocol

from metrics_proxy.domain.models import Alert, Sample, Series


class CacheStorePort(Protocol):
    max_items: int

    def get(self, key: str) -> tuple[Any, bool]: ...

    def set(self, key: str, value: Any) -> None: ...

    def set_with_expiration(self, key: str, value: Any, ttl: Optional[float]) -> None: ...

    def delete(self, key: str) -> bool: ...

    def flush(self) -> int: ...

    def count(self) -> int: ...

    def stats(self) -> dict[str, Any]: ...


class QueryClientPort(Protocol):
    async def query(self, query: str, at: Optional[datetime] = None) -> list[Sample]: ...

    async def query_range(
        self, query: str, start: datetime, end: datetime, step: float
    ) -> list[Series]: ...

    async def alerts(self) -> list[Alert]: ...

    async def metric_names(self) -> list[str]: ...

    async def labels_for_metric(self, metric_name: str) -> list[str]: ...

    async def is_healthy(self) -> bool: ...
