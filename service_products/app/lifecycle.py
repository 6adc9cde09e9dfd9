"""
Lifecycle management for the Products Service.

States run ``STARTING -> SERVING -> DRAINING -> STOPPED``. On SIGINT/SIGTERM
the server calls ``begin_drain`` before it stops listening, so API requests
arriving on open connections get a 503 from then on. uvicorn then waits for
connections to close and runs the lifespan shutdown, which calls
``shutdown``: it waits for tracked requests for whatever is left of the
grace period, measured from ``begin_drain``, and closes the store and then
the cache.
"""

import asyncio
import json
import time
from contextlib import asynccontextmanager
from enum import Enum
from typing import Optional

from shared.logging import get_logger
from shared.metrics import MetricsCollector

from .cache import ProductCache
from .persistence.postgres import ProductStore


class LifecycleState(str, Enum):
    STARTING = "starting"
    SERVING = "serving"
    DRAINING = "draining"
    STOPPED = "stopped"


_ALLOWED_TRANSITIONS = {
    LifecycleState.STARTING: {LifecycleState.SERVING, LifecycleState.STOPPED},
    LifecycleState.SERVING: {LifecycleState.DRAINING},
    LifecycleState.DRAINING: {LifecycleState.STOPPED},
    LifecycleState.STOPPED: set(),
}


class LifecycleManager:
    """Owns startup and graceful shutdown of the store and cache connections."""

    def __init__(self, store: ProductStore, cache: ProductCache,
                 grace_period: float = 30.0, metrics: Optional[MetricsCollector] = None,
                 tracer_provider=None):
        self.store = store
        self.cache = cache
        self.grace_period = grace_period
        self.metrics = metrics
        self.tracer_provider = tracer_provider
        self.logger = get_logger("products.lifecycle")

        self.state = LifecycleState.STARTING
        self._in_flight = 0
        self._idle = asyncio.Event()
        self._idle.set()
        self._drain_started: Optional[float] = None

    @property
    def accepting(self) -> bool:
        return self.state in (LifecycleState.STARTING, LifecycleState.SERVING)

    @property
    def in_flight(self) -> int:
        return self._in_flight

    def _transition(self, target: LifecycleState):
        if target not in _ALLOWED_TRANSITIONS[self.state]:
            raise RuntimeError(f"illegal lifecycle transition {self.state.value} -> {target.value}")
        self.logger.info("Lifecycle transition", source=self.state.value, target=target.value)
        self.state = target

    async def start(self):
        """Connect the store (fatal on failure) and the cache (warning only)."""
        if self.state is not LifecycleState.STARTING:
            raise RuntimeError(f"cannot start from state {self.state.value}")

        try:
            await self.store.start()
        except Exception as e:
            self.logger.error("Failed to initialize database", error=str(e))
            await self.store.stop()
            raise

        if not await self.cache.start():
            self.logger.warning("Starting without a working cache")

        self._transition(LifecycleState.SERVING)

    @asynccontextmanager
    async def track(self):
        """Count a request as in flight for the duration of the block."""
        self._in_flight += 1
        self._idle.clear()
        self._publish_in_flight()
        try:
            yield
        finally:
            self._in_flight -= 1
            if self._in_flight == 0:
                self._idle.set()
            self._publish_in_flight()

    def begin_drain(self):
        """Stop accepting API requests. Called when a termination signal arrives.

        Synchronous so it can run from the server's signal handler. A no-op
        outside SERVING.
        """
        if self.state is not LifecycleState.SERVING:
            return
        self._transition(LifecycleState.DRAINING)
        self._drain_started = time.monotonic()
        self.logger.info("Shutting down server...", in_flight=self._in_flight, grace_period=self.grace_period)

    async def shutdown(self) -> bool:
        """Drain and close. Returns True when every request finished in time."""
        if self.state is LifecycleState.STOPPED:
            return True

        if self.state is LifecycleState.STARTING:
            # Never reached SERVING: nothing can be in flight.
            self.logger.warning("Shutdown requested before startup completed")
            await self._close()
            self._transition(LifecycleState.STOPPED)
            return True

        self.begin_drain()

        # The grace period counts from the signal, not from this call.
        remaining = max(0.0, self.grace_period - (time.monotonic() - self._drain_started))
        drained = self._idle.is_set()
        if not drained:
            try:
                await asyncio.wait_for(self._idle.wait(), timeout=remaining)
                drained = True
            except asyncio.TimeoutError:
                self.logger.warning(
                    "Grace period elapsed with requests still in flight",
                    in_flight=self._in_flight,
                )

        self.logger.info(
            "Drain finished",
            drained=drained,
            waited_seconds=round(time.monotonic() - self._drain_started, 3),
        )

        await self._close()
        self._transition(LifecycleState.STOPPED)
        return drained

    async def _close(self):
        # Store first, then cache.
        try:
            await self.store.stop()
        except Exception as e:
            self.logger.error("Error closing database pool", error=str(e))

        await self.cache.stop()

        if self.tracer_provider is not None:
            try:
                self.tracer_provider.shutdown()
            except Exception as e:
                self.logger.warning("Error shutting down tracer provider", error=str(e))

    def _publish_in_flight(self):
        if self.metrics:
            self.metrics.set_in_flight(self._in_flight)


class RequestGate:
    """ASGI middleware tracking in-flight requests for the drain.

    Once the service is draining, new API requests get a 503.
    """

    def __init__(self, app, lifecycle: LifecycleManager, path_prefix: str = "/api/v1"):
        self.app = app
        self.lifecycle = lifecycle
        self.path_prefix = path_prefix

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        if not self.lifecycle.accepting and scope.get("path", "").startswith(self.path_prefix):
            await self._reject(send)
            return

        async with self.lifecycle.track():
            await self.app(scope, receive, send)

    @staticmethod
    async def _reject(send):
        body = json.dumps({
            "code": "SHUTTING_DOWN",
            "message": "Service is shutting down",
            "details": {},
        }).encode()
        await send({
            "type": "http.response.start",
            "status": 503,
            "headers": [
                (b"content-type", b"application/json"),
                (b"content-length", str(len(body)).encode()),
                (b"connection", b"close"),
            ],
        })
        await send({"type": "http.response.body", "body": body})
