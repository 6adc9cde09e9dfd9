"""
Cache-aside repository for products.

Every product read and write goes through ``ProductRepository``. Reads try
Redis first and fall back to PostgreSQL, writing the result back with a TTL.
Writes go to PostgreSQL and then delete the affected cache keys, so the next
read repopulates from the store.

The store write and the invalidation are not atomic. If the invalidation is
lost (cache partition, crash between the two calls) the old entry is served
until its TTL runs out. Invalidation must always follow the store write: the
reverse order lets a concurrent reader re-cache the pre-write row.

Concurrent misses on one key may each query the store and rewrite the entry.
Reads are idempotent, so this is left alone.
"""

from typing import List, Optional

from pydantic import ValidationError as PydanticValidationError

from shared.errors import InternalError, NotFoundError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from shared.tracing import trace_operation

from .cache import CacheStatus, ProductCache
from .models import Fetched, Product, ProductDraft, ProductList
from .persistence.postgres import ProductStore


ALL_PRODUCTS_KEY = "products:all"
PRODUCT_KEY_PREFIX = "product:"

PRODUCT_TTL_SECONDS = 600
PRODUCT_LIST_TTL_SECONDS = 300
MAX_RESULTS = 100


def product_key(product_id: int) -> str:
    return f"{PRODUCT_KEY_PREFIX}{product_id}"


class ProductRepository:
    """Single point of access for product reads and writes."""

    def __init__(self, store: ProductStore, cache: ProductCache,
                 metrics: Optional[MetricsCollector] = None):
        self.store = store
        self.cache = cache
        self.metrics = metrics
        self.logger = get_logger("products.repository")

    async def get_all(self) -> Fetched[List[Product]]:
        """Newest-first listing of up to 100 products."""
        with trace_operation("GetProducts") as span:
            cached = await self._read_cache(ALL_PRODUCTS_KEY, "product_list", ProductList.validate_json)
            span.set_attribute("cache_hit", cached is not None)
            if cached is not None:
                return Fetched(cached, from_cache=True)

            try:
                products = await self.store.list_recent(MAX_RESULTS)
            except Exception as e:
                self.logger.error("Error listing products", error=str(e))
                raise InternalError(str(e)) from e

            await self.cache.set(
                ALL_PRODUCTS_KEY,
                ProductList.dump_json(products).decode(),
                PRODUCT_LIST_TTL_SECONDS,
            )
            return Fetched(products)

    async def get_by_id(self, product_id: int) -> Fetched[Product]:
        with trace_operation("GetProduct", **{"product.id": str(product_id)}) as span:
            key = product_key(product_id)
            cached = await self._read_cache(key, "product", Product.model_validate_json)
            span.set_attribute("cache_hit", cached is not None)
            if cached is not None:
                return Fetched(cached, from_cache=True)

            try:
                product = await self.store.fetch(product_id)
            except Exception as e:
                self.logger.error("Error fetching product", product_id=product_id, error=str(e))
                raise InternalError(str(e)) from e

            if product is None:
                raise NotFoundError()

            await self.cache.set(key, product.model_dump_json(), PRODUCT_TTL_SECONDS)
            return Fetched(product)

    async def create(self, draft: ProductDraft) -> Product:
        try:
            product = await self.store.insert(draft)
        except Exception as e:
            self.logger.error("Error creating product", error=str(e))
            raise InternalError(str(e)) from e

        await self.cache.delete(ALL_PRODUCTS_KEY)

        self.logger.info("Product created", product_id=product.id, name=product.name)
        return product

    async def update(self, product_id: int, draft: ProductDraft) -> None:
        """Full-record replace of every mutable field."""
        try:
            matched = await self.store.update(product_id, draft)
        except Exception as e:
            self.logger.error("Error updating product", product_id=product_id, error=str(e))
            raise InternalError(str(e)) from e

        if not matched:
            raise NotFoundError()

        await self.cache.delete(product_key(product_id), ALL_PRODUCTS_KEY)
        self.logger.info("Product updated", product_id=product_id)

    async def delete(self, product_id: int) -> None:
        try:
            matched = await self.store.delete(product_id)
        except Exception as e:
            self.logger.error("Error deleting product", product_id=product_id, error=str(e))
            raise InternalError(str(e)) from e

        if not matched:
            raise NotFoundError()

        await self.cache.delete(product_key(product_id), ALL_PRODUCTS_KEY)
        self.logger.info("Product deleted", product_id=product_id)

    async def search(self, query: str = "", category: str = "") -> List[Product]:
        """Not cached: arbitrary filter combinations would explode the key space."""
        try:
            return await self.store.search(query or "", category or "", MAX_RESULTS)
        except Exception as e:
            self.logger.error("Error searching products", query=query, category=category, error=str(e))
            raise InternalError(str(e)) from e

    async def _read_cache(self, key: str, cache_type: str, decode):
        """Return the decoded entry, or None for a miss.

        Absent keys, an unreachable cache and undecodable payloads are all
        misses.
        """
        lookup = await self.cache.get(key)
        result = lookup.status

        value = None
        if lookup.hit:
            try:
                value = decode(lookup.payload)
            except (PydanticValidationError, ValueError) as e:
                self.logger.warning("Discarding corrupt cache entry", key=key, error=str(e))
                result = CacheStatus.MISS

        if self.metrics:
            self.metrics.record_cache_lookup(cache_type, result.value)
        return value
