from __future__ import annotations

import os
from typing import Callable, Optional, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field

from metrics_proxy.domain.timeparse import parse_seconds

Number = TypeVar("Number", int, float)

_TRUE_VALUES = frozenset({"1", "true", "yes", "y", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "n", "off"})


def _check_bounds(
    env_name: str,
    value: Number,
    min_value: Optional[Union[int, float]],
    max_value: Optional[Union[int, float]],
) -> Number:
    if min_value is not None and value < min_value:
        raise ValueError(f"{env_name} must be >= {min_value}, got {value}")
    if max_value is not None and value > max_value:
        raise ValueError(f"{env_name} must be <= {max_value}, got {value}")
    return value


def _read_number(
    env_name: str,
    default_value: Number,
    convert: Callable[[str], Number],
    expected: str,
) -> Number:
    raw_value = os.getenv(env_name)
    if raw_value is None:
        return default_value
    try:
        return convert(raw_value)
    except ValueError as exc:
        raise ValueError(f"{env_name} must be {expected}, got {raw_value!r}") from exc


def get_env_int(
    env_name: str,
    default_value: int,
    *,
    min_value: Optional[int] = None,
    max_value: Optional[int] = None,
) -> int:
    value = _read_number(env_name, default_value, int, "an integer")
    return _check_bounds(env_name, value, min_value, max_value)


def get_env_float(
    env_name: str,
    default_value: float,
    *,
    min_value: Optional[float] = None,
) -> float:
    """Read seconds from the environment; accepts ``30``, ``2.5``, ``30s``, ``5m`` or ``1h``."""
    value = _read_number(env_name, default_value, parse_seconds, "a number of seconds")
    return _check_bounds(env_name, value, min_value, None)


def get_env_bool(env_name: str, default_value: bool) -> bool:
    raw_value = os.getenv(env_name)
    if raw_value is None:
        return default_value

    normalized = raw_value.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise ValueError(f"{env_name} must be a boolean, got {raw_value!r}")


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    host: str
    port: int = Field(ge=1, le=65535)
    prometheus_url: str
    prometheus_timeout: float = Field(gt=0)
    cache_enabled: bool
    cache_ttl: float
    cache_cleanup_interval: float
    cache_max_items: int = Field(ge=0)
    cache_eviction_policy: str
    cache_stats_enabled: bool
    query_max_points: int = Field(ge=1)
    log_level: str
    log_format: str
    tls_enabled: bool
    tls_cert_path: str | None
    tls_key_path: str | None
    tls_require_client_auth: bool
    tls_client_ca_path: str | None


def load_settings() -> Settings:
    return Settings(
        host=os.getenv("API_HOST", "0.0.0.0"),
        port=get_env_int("API_PORT", 8080, min_value=1, max_value=65535),
        prometheus_url=os.getenv("PROMETHEUS_URL", "http://localhost:9090").rstrip("/"),
        prometheus_timeout=get_env_float("PROMETHEUS_TIMEOUT", 10.0, min_value=0.001),
        cache_enabled=get_env_bool("CACHE_ENABLED", True),
        cache_ttl=get_env_float("CACHE_TTL", 60.0),
        cache_cleanup_interval=get_env_float("CACHE_CLEANUP_INTERVAL", 300.0),
        cache_max_items=get_env_int("CACHE_MAX_ITEMS", 1000, min_value=0),
        cache_eviction_policy=os.getenv("CACHE_EVICTION_POLICY", "LRU").strip().upper(),
        cache_stats_enabled=get_env_bool("CACHE_STATS_ENABLED", True),
        query_max_points=get_env_int("QUERY_MAX_POINTS", 11000, min_value=1),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        log_format=os.getenv("LOG_FORMAT", "text"),
        tls_enabled=get_env_bool("TLS_ENABLED", False),
        tls_cert_path=os.getenv("TLS_CERT_PATH"),
        tls_key_path=os.getenv("TLS_KEY_PATH"),
        tls_require_client_auth=get_env_bool("TLS_REQUIRE_CLIENT_AUTH", False),
        tls_client_ca_path=os.getenv("TLS_CLIENT_CA_PATH"),
    )
