from __future__ import annotations

import json
import logging
import threading
import time
import uuid
from typing import Awaitable, Callable

from aiohttp import web

from metrics_proxy.application.request_context import request_id_var
from metrics_proxy.domain.errors import UpstreamError, ValidationError

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "x-request-id"

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


class ActiveRequests:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._value = 0

    def increment(self) -> None:
        with self._lock:
            self._value += 1

    def decrement(self) -> None:
        with self._lock:
            self._value -= 1

    @property
    def value(self) -> int:
        with self._lock:
            return self._value


def error_body(message: str, status: int) -> web.Response:
    payload = {"status": "error", "error": message, "request_id": request_id_var.get()}
    return web.Response(text=json.dumps(payload), status=status, content_type="application/json")


@web.middleware
async def request_id_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
    token = request_id_var.set(request_id)
    try:
        response = await handler(request)
    except web.HTTPException as exc:
        exc.headers[REQUEST_ID_HEADER] = request_id
        raise
    finally:
        request_id_var.reset(token)

    response.headers[REQUEST_ID_HEADER] = request_id
    return response


def active_requests_middleware(active_requests: ActiveRequests):
    @web.middleware
    async def middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
        start_time = time.monotonic()
        active_requests.increment()
        try:
            return await handler(request)
        finally:
            active_requests.decrement()
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug(
                    "%s %s duration_ms=%.2f active=%s",
                    request.method,
                    request.path,
                    (time.monotonic() - start_time) * 1000,
                    active_requests.value,
                )

    return middleware


@web.middleware
async def error_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Map domain errors to HTTP responses without leaking upstream details."""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except ValidationError as exc:
        return error_body(str(exc), 400)
    except UpstreamError as exc:
        logger.error("Upstream failure on %s %s: %s", request.method, request.path, exc.detail)
        return error_body("upstream query failed", 502)
    except Exception:
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return error_body("internal server error", 500)
