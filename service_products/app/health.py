"""
Liveness, readiness and startup probes.

Probes are stateless. Readiness checks the store only; the cache is allowed
to be down because reads fall back to the store.
"""

import asyncio
from typing import Any, Dict, Optional, Tuple

from shared.errors import UpstreamUnavailableError
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from .persistence.postgres import ProductStore


ProbeResult = Tuple[int, Dict[str, Any]]


class HealthMonitor:
    """Answers the three probe endpoints."""

    def __init__(self, store: ProductStore, metrics: Optional[MetricsCollector] = None,
                 readiness_timeout: float = 2.0):
        self.store = store
        self.metrics = metrics
        self.readiness_timeout = readiness_timeout
        self.logger = get_logger("products.health")

    async def liveness(self) -> ProbeResult:
        self._record("live", "ok")
        return 200, {"status": "alive"}

    async def readiness(self) -> ProbeResult:
        try:
            await self.check_store()
        except UpstreamUnavailableError as e:
            self.logger.warning("Readiness check failed", error=e.message)
            self._record("ready", "error")
            return 503, {"status": "not ready", "error": e.message}

        self._record("ready", "ok")
        return 200, {"status": "ready"}

    async def startup(self) -> ProbeResult:
        self._record("startup", "ok")
        return 200, {"status": "started"}

    async def check_store(self):
        """Ping the store within the readiness budget, whatever the caller's deadline."""
        try:
            await asyncio.wait_for(self.store.ping(), timeout=self.readiness_timeout)
        except asyncio.TimeoutError:
            raise UpstreamUnavailableError(
                "postgres", f"ping timed out after {self.readiness_timeout}s"
            )
        except Exception as e:
            raise UpstreamUnavailableError("postgres", str(e) or type(e).__name__) from e

    def _record(self, probe: str, status: str):
        if self.metrics:
            self.metrics.record_health_check(probe, status)
