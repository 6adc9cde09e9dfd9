"""
Products service: catalog reads and writes over HTTP.
"""

from typing import List, Optional

from fastapi import APIRouter, Query, Response, status
from fastapi.responses import JSONResponse

from shared.base_service import BaseService
from shared.config import ServiceConfig
from shared.metrics import MetricsCollector

from .cache import ProductCache
from .health import HealthMonitor
from .lifecycle import LifecycleManager, RequestGate
from .middleware import AccessLogMiddleware, MetricsMiddleware
from .models import Product, ProductDraft
from .persistence.postgres import ProductStore
from .repository import ProductRepository


CACHE_HEADER = "X-Cache"


class ProductsService(BaseService):
    """Products service implementation."""

    def __init__(self, config: Optional[ServiceConfig] = None,
                 metrics: Optional[MetricsCollector] = None,
                 store: Optional[ProductStore] = None,
                 cache: Optional[ProductCache] = None):
        super().__init__("product-service", config=config, metrics=metrics)

        # Initialize components
        self.store = store or ProductStore(self.config)
        self.cache = cache or ProductCache(self.config)
        self.repository = ProductRepository(self.store, self.cache, metrics=self.metrics)
        self.health = HealthMonitor(
            self.store,
            metrics=self.metrics,
            readiness_timeout=self.config.readiness_timeout,
        )
        self.lifecycle = LifecycleManager(
            self.store,
            self.cache,
            grace_period=self.config.shutdown_grace_period,
            metrics=self.metrics,
            tracer_provider=self.tracer_provider,
        )

        self._setup_products_middleware()
        self._setup_health_routes()
        self._setup_products_routes()

    def _setup_products_middleware(self):
        """Instrumentation for API routes, innermost first."""
        prefix = self.config.api_prefix
        self.app.add_middleware(MetricsMiddleware, metrics=self.metrics, path_prefix=prefix)
        self.app.add_middleware(AccessLogMiddleware, path_prefix=prefix)
        self.app.add_middleware(RequestGate, lifecycle=self.lifecycle, path_prefix=prefix)

    def _setup_health_routes(self):
        """Set up probe routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": self.service_name,
                "version": "1.0.0",
                "state": self.lifecycle.state.value,
            }

        @self.app.get("/health/live")
        async def liveness():
            status_code, body = await self.health.liveness()
            return JSONResponse(status_code=status_code, content=body)

        @self.app.get("/health/ready")
        async def readiness():
            status_code, body = await self.health.readiness()
            return JSONResponse(status_code=status_code, content=body)

        @self.app.get("/health/startup")
        async def startup():
            status_code, body = await self.health.startup()
            return JSONResponse(status_code=status_code, content=body)

    def _setup_products_routes(self):
        """Set up product routes."""
        router = APIRouter(prefix=self.config.api_prefix, tags=["products"])

        @router.get("/products", response_model=List[Product])
        async def get_products(response: Response):
            """Newest products, served from cache when possible."""
            fetched = await self.repository.get_all()
            response.headers[CACHE_HEADER] = "HIT" if fetched.from_cache else "MISS"
            return fetched.value

        @router.get("/products/search", response_model=List[Product])
        async def search_products(
            q: str = Query("", description="Substring of name or description"),
            category: str = Query("", description="Exact category"),
        ):
            """Search products. Results are never cached."""
            return await self.repository.search(q, category)

        @router.get("/products/{product_id:int}", response_model=Product)
        async def get_product(product_id: int, response: Response):
            fetched = await self.repository.get_by_id(product_id)
            response.headers[CACHE_HEADER] = "HIT" if fetched.from_cache else "MISS"
            return fetched.value

        @router.post("/products", response_model=Product, status_code=status.HTTP_201_CREATED)
        async def create_product(draft: ProductDraft):
            return await self.repository.create(draft)

        @router.put("/products/{product_id:int}")
        async def update_product(product_id: int, draft: ProductDraft):
            await self.repository.update(product_id, draft)
            return Response(status_code=status.HTTP_200_OK)

        @router.delete("/products/{product_id:int}")
        async def delete_product(product_id: int):
            await self.repository.delete(product_id)
            return Response(status_code=status.HTTP_204_NO_CONTENT)

        self.app.include_router(router)

    async def on_startup(self):
        """Start products service components."""
        await self.lifecycle.start()
        self.logger.info("Products service started", state=self.lifecycle.state.value)

    def on_exit_signal(self, sig: int):
        """Refuse new API requests as soon as a termination signal arrives."""
        self.logger.info("Termination signal received", signal=int(sig))
        self.lifecycle.begin_drain()

    async def on_shutdown(self):
        """Drain in-flight requests and release connections."""
        drained = await self.lifecycle.shutdown()
        self.logger.info("Products service stopped", drained=drained)


def create_app():
    """Create products service application."""
    service = ProductsService()
    return service.app


def main():
    """Run the products service until uvicorn receives SIGINT or SIGTERM."""
    ProductsService().run()


if __name__ == "__main__":
    main()
