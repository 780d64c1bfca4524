from __future__ import annotations


class MetricsProxyError(Exception):
    """Base class for errors raised by metrics-proxy."""


class UnsupportedEvictionPolicyError(MetricsProxyError, ValueError):
    def __init__(self, policy: str, reason: str = "unknown"):
        self.policy = policy
        self.reason = reason
        if reason == "unimplemented":
            message = f"eviction policy {policy!r} is not implemented"
        else:
            message = f"unknown eviction policy {policy!r}"
        super().__init__(message)


class ValidationError(MetricsProxyError, ValueError):
    """Bad caller input; safe to show to clients."""


class InvalidQueryError(ValidationError):
    pass


class InvalidTimeRangeError(ValidationError):
    pass


class TooManyDataPointsError(ValidationError):
    pass


class UpstreamError(MetricsProxyError):
    """The metrics backend failed or returned something unusable.

    ``detail`` is for logs only; the HTTP layer answers with a generic message.
    """

    def __init__(self, message: str, *, detail: str | None = None):
        super().__init__(message)
        self.detail = detail or message
