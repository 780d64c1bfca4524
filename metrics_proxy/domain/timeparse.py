from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Optional, Union

_DURATION_RE = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h|d|w|y)")
_UNIT_SECONDS = {
    "ms": 0.001,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
    "d": 86400.0,
    "w": 604800.0,
    "y": 31536000.0,
}
_FRACTION_RE = re.compile(r"\.(\d+)")


def parse_seconds(raw_value: Union[str, int, float]) -> float:
    """Parse ``30``, ``2.5`` or a Prometheus duration such as ``1h30m`` into seconds."""
    if isinstance(raw_value, (int, float)) and not isinstance(raw_value, bool):
        return float(raw_value)
    text = str(raw_value).strip().lower()
    if not text:
        raise ValueError("duration cannot be empty")
    try:
        return float(text)
    except ValueError:
        pass

    total = 0.0
    position = 0
    for match in _DURATION_RE.finditer(text):
        if match.start() != position:
            raise ValueError(f"invalid duration {raw_value!r}")
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        position = match.end()
    if position != len(text):
        raise ValueError(f"invalid duration {raw_value!r}")
    return total


def parse_rfc3339(raw_value: str) -> Optional[datetime]:
    """Parse an RFC 3339 timestamp, truncating sub-microsecond digits.

    Prometheus reports never-active times as year 1; those map to None.
    """
    text = raw_value.strip()
    if not text:
        return None
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    text = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    if parsed.year <= 1:
        return None
    return parsed.astimezone(timezone.utc)


def from_unix(value: Union[str, int, float]) -> datetime:
    return datetime.fromtimestamp(float(value), tz=timezone.utc)


def parse_time_param(raw_value: Union[str, int, float]) -> datetime:
    """Accept unix seconds or RFC 3339, the two forms Prometheus accepts."""
    if isinstance(raw_value, (int, float)) and not isinstance(raw_value, bool):
        return from_unix(raw_value)
    text = str(raw_value).strip()
    try:
        return from_unix(float(text))
    except ValueError:
        pass
    parsed = parse_rfc3339(text)
    if parsed is None:
        raise ValueError(f"invalid time {raw_value!r}")
    return parsed


def format_since(seconds: float) -> str:
    if seconds < 60:
        return "less than a minute ago"
    if seconds < 3600:
        return f"{int(seconds // 60)} minute(s) ago"
    if seconds < 86400:
        return f"{int(seconds // 3600)} hour(s) ago"
    return f"{int(seconds // 86400)} day(s) ago"


def format_seconds(seconds: float) -> str:
    """Shortest exact-enough form: ``60`` for 60.0, ``0.5``, ``1234567``."""
    return f"{seconds:.15g}"
