from __future__ import annotations

import re

from .constraints import MAX_METRIC_NAME_LENGTH, MAX_QUERY_LENGTH
from .errors import InvalidQueryError

_METRIC_NAME_RE = re.compile(r"[a-zA-Z_:][a-zA-Z0-9_:]*")


def validate_query(query: str) -> str:
    if not isinstance(query, str):
        raise InvalidQueryError("Query must be a string")
    query = query.strip()
    if not query:
        raise InvalidQueryError("Query cannot be empty")
    if len(query) > MAX_QUERY_LENGTH:
        raise InvalidQueryError(f"Query is too long (max {MAX_QUERY_LENGTH})")
    return query


def validate_metric_name(name: str) -> str:
    if not isinstance(name, str) or not name:
        raise InvalidQueryError("Metric name cannot be empty")
    if len(name) > MAX_METRIC_NAME_LENGTH:
        raise InvalidQueryError(f"Metric name is too long (max {MAX_METRIC_NAME_LENGTH})")
    if not _METRIC_NAME_RE.fullmatch(name):
        raise InvalidQueryError(f"Invalid metric name {name!r}")
    return name
