"""
Shared fixtures for Products Service tests.

The store and the Redis client are replaced with in-memory doubles so the
tests exercise the real repository, cache adapter, middleware and lifecycle
without PostgreSQL or Redis.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

import pytest
from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError

from shared.config import get_config
from shared.metrics import MetricsCollector
from service_products.app.cache import ProductCache
from service_products.app.main import ProductsService
from service_products.app.models import Product, ProductDraft
from service_products.app.repository import ProductRepository


class InMemoryProductStore:
    """Stand-in for ProductStore keeping rows in a dict."""

    def __init__(self):
        self.rows: Dict[int, Product] = {}
        self.events: List[Tuple[str, object]] = []
        self.next_id = 1
        self.clock = datetime(2024, 1, 1, 12, 0, 0)
        self.started = False
        self.fail_with: Optional[Exception] = None
        self.start_error: Optional[Exception] = None
        self.ping_delay = 0.0

    def _tick(self) -> datetime:
        self.clock += timedelta(seconds=1)
        return self.clock

    def _check(self, op: str, arg=None):
        self.events.append((op, arg))
        if self.fail_with is not None:
            raise self.fail_with

    async def start(self):
        self.events.append(("start", None))
        if self.start_error is not None:
            raise self.start_error
        self.started = True

    async def stop(self):
        self.events.append(("stop", None))
        self.started = False

    async def ping(self, timeout: Optional[float] = None):
        if self.ping_delay:
            await asyncio.sleep(self.ping_delay)
        self._check("ping")

    async def list_recent(self, limit: int) -> List[Product]:
        self._check("list_recent", limit)
        ordered = sorted(self.rows.values(), key=lambda p: p.created_at, reverse=True)
        return ordered[:limit]

    async def fetch(self, product_id: int) -> Optional[Product]:
        self._check("fetch", product_id)
        return self.rows.get(product_id)

    async def insert(self, draft: ProductDraft) -> Product:
        self._check("insert", draft.name)
        now = self._tick()
        product = Product(**draft.model_dump(), id=self.next_id, created_at=now, updated_at=now)
        self.rows[product.id] = product
        self.next_id += 1
        return product

    async def update(self, product_id: int, draft: ProductDraft) -> bool:
        self._check("update", product_id)
        existing = self.rows.get(product_id)
        if existing is None:
            return False
        self.rows[product_id] = Product(
            **draft.model_dump(),
            id=product_id,
            created_at=existing.created_at,
            updated_at=self._tick(),
        )
        return True

    async def delete(self, product_id: int) -> bool:
        self._check("delete", product_id)
        return self.rows.pop(product_id, None) is not None

    async def search(self, query: str, category: str, limit: int) -> List[Product]:
        self._check("search", (query, category))
        needle = query.lower()
        matches = [
            p for p in self.rows.values()
            if (not query or needle in p.name.lower() or needle in (p.description or "").lower())
            and (not category or p.category == category)
        ]
        matches.sort(key=lambda p: p.created_at, reverse=True)
        return matches[:limit]


class FakeRedis:
    """Minimal async Redis double with TTLs driven by a manual clock."""

    def __init__(self):
        self.data: Dict[str, Tuple[str, float]] = {}
        self.ttls: Dict[str, int] = {}
        self.now = 0.0
        self.available = True
        self.closed = False
        self.events: List[Tuple[str, tuple]] = []

    def advance(self, seconds: float):
        self.now += seconds

    def _ensure_up(self):
        if not self.available:
            raise RedisConnectionError("Connection refused")

    async def get(self, key):
        self._ensure_up()
        entry = self.data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self.now >= expires_at:
            del self.data[key]
            return None
        return value

    async def setex(self, key, ttl, value):
        self._ensure_up()
        self.events.append(("setex", (key,)))
        self.ttls[key] = ttl
        self.data[key] = (value, self.now + ttl)
        return True

    async def delete(self, *keys):
        self._ensure_up()
        self.events.append(("delete", keys))
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
        return removed

    async def ping(self):
        self._ensure_up()
        return True

    async def aclose(self):
        self.closed = True


@pytest.fixture
def config():
    return get_config("product-service", readiness_timeout=0.2, shutdown_grace_period=1.0)


@pytest.fixture
def metrics():
    return MetricsCollector("product-service")


@pytest.fixture
def store():
    return InMemoryProductStore()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def cache(config, fake_redis):
    return ProductCache(config, client=fake_redis)


@pytest.fixture
def repository(store, cache, metrics):
    return ProductRepository(store, cache, metrics=metrics)


@pytest.fixture
def service(config, metrics, store, cache):
    return ProductsService(config=config, metrics=metrics, store=store, cache=cache)


@pytest.fixture
def client(service):
    with TestClient(service.app) as test_client:
        yield test_client


@pytest.fixture
def mouse():
    return ProductDraft(name="Mouse", price=9.99, stock=10)


@pytest.fixture
def sample(metrics):
    """Read a sample from the service registry, 0.0 when absent."""
    def _sample(name: str, labels: Optional[dict] = None) -> float:
        return metrics.registry.get_sample_value(name, labels or {}) or 0.0
    return _sample
