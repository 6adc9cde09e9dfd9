"""
Request instrumentation middleware for the Products Service.

Both layers are plain ASGI middleware. Each wraps the ``send`` channel in a
``StatusRecorder`` to learn the final status code, then reports after the
inner application returns. Neither touches the body or short-circuits.
"""

import time
from typing import Optional

from shared.logging import clear_context, get_logger, set_request_id
from shared.metrics import MetricsCollector


REQUEST_ID_HEADER = b"x-request-id"
UNMATCHED_ROUTE = "unmatched"


class StatusRecorder:
    """Decorates an ASGI ``send`` callable, remembering the response status.

    The status defaults to 200 when the application never starts a response.
    """

    def __init__(self, send, request_id: Optional[str] = None):
        self._send = send
        self._request_id = request_id
        self.status_code = 200
        self.started = False

    async def __call__(self, message):
        if message["type"] == "http.response.start" and not self.started:
            self.started = True
            self.status_code = message["status"]
            if self._request_id:
                headers = list(message.get("headers", []))
                headers.append((REQUEST_ID_HEADER, self._request_id.encode("latin-1")))
                message = {**message, "headers": headers}
        await self._send(message)


def route_template(scope) -> str:
    """Route template for the request (e.g. ``/api/v1/products/{product_id:int}``).

    Requests that matched no route share one ``unmatched`` label so client
    supplied paths never become label values.
    """
    route = scope.get("route")
    return getattr(route, "path", None) or UNMATCHED_ROUTE


class MetricsMiddleware:
    """Counts requests and errors and observes latency for API routes."""

    def __init__(self, app, metrics: MetricsCollector, path_prefix: str = "/api/v1"):
        self.app = app
        self.metrics = metrics
        self.path_prefix = path_prefix

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http" or not scope.get("path", "").startswith(self.path_prefix):
            await self.app(scope, receive, send)
            return

        start_time = time.perf_counter()
        recorder = StatusRecorder(send)
        try:
            await self.app(scope, receive, recorder)
        except Exception:
            if not recorder.started:
                recorder.status_code = 500
            raise
        finally:
            duration = time.perf_counter() - start_time
            self.metrics.record_http_request(
                method=scope["method"],
                endpoint=route_template(scope),
                status_code=recorder.status_code,
                duration=duration,
            )


class AccessLogMiddleware:
    """Writes one structured line per request and binds the request id."""

    def __init__(self, app, path_prefix: str = "/api/v1", logger_name: str = "products.access"):
        self.app = app
        self.path_prefix = path_prefix
        self.logger = get_logger(logger_name)

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http" or not scope.get("path", "").startswith(self.path_prefix):
            await self.app(scope, receive, send)
            return

        incoming = dict(scope.get("headers") or []).get(REQUEST_ID_HEADER)
        request_id = set_request_id(incoming.decode("latin-1") if incoming else None)

        start_time = time.perf_counter()
        recorder = StatusRecorder(send, request_id=request_id)
        try:
            await self.app(scope, receive, recorder)
        except Exception:
            if not recorder.started:
                recorder.status_code = 500
            raise
        finally:
            self.logger.info(
                "HTTP request",
                method=scope["method"],
                target=request_target(scope),
                status_code=recorder.status_code,
                duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
            )
            clear_context()


def request_target(scope) -> str:
    """Path plus query string, as the client sent it."""
    target = scope.get("raw_path") or scope.get("path", "").encode()
    if isinstance(target, bytes):
        target = target.decode("latin-1")
    query = scope.get("query_string") or b""
    if query:
        target = f"{target}?{query.decode('latin-1')}"
    return target
